"""
Application Settings
====================
Centralized configuration management using Pydantic.
Loads from environment variables (prefixed ``DEFECT_``) with sensible defaults.
"""

from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PACKAGE_DIR = Path(__file__).parent.parent


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix="DEFECT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ===================
    # Application Info
    # ===================
    APP_NAME: str = "Defect Inference Server"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # ===================
    # Server Configuration
    # ===================
    HOST: str = "0.0.0.0"
    PORT: int = 3000
    LIMIT_CONCURRENCY: int = 100

    # ===================
    # Model Configuration
    # ===================
    MODEL_PATH: Path = Field(
        default_factory=lambda: PACKAGE_DIR.parent / "models" / "model_js" / "model.json"
    )
    # Serve traffic while the model loads; inference answers 503 until ready
    MODEL_LOAD_IN_BACKGROUND: bool = True
    # Layer types the artifact may only reference once they are registered
    REQUIRED_LAYER_TYPES: List[str] = ["Normalization"]

    # ===================
    # Inference Settings
    # ===================
    IMAGE_SIZE: int = 224
    DECODE_BACKEND: str = Field(default="cv2", description="cv2 or pil")
    INFERENCE_TIMEOUT: float = 30.0  # seconds

    # ===================
    # Uploads
    # ===================
    UPLOAD_DIR: Path = Field(default_factory=lambda: PACKAGE_DIR.parent / "uploads")

    # CORS
    CORS_ORIGINS: List[str] = ["*"]

    # ===================
    # Logging
    # ===================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    LOG_DIR: Optional[Path] = None

    @field_validator("DECODE_BACKEND")
    @classmethod
    def _check_backend(cls, value: str) -> str:
        value = value.lower()
        if value not in ("cv2", "pil"):
            raise ValueError(f"Unsupported decode backend: {value}")
        return value

    @field_validator("IMAGE_SIZE")
    @classmethod
    def _check_image_size(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("IMAGE_SIZE must be positive")
        return value


# Singleton settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get cached settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings():
    """Reset settings (useful for testing)."""
    global _settings
    _settings = None


def ensure_directories(settings: Optional[Settings] = None):
    """Create upload and log directories if they don't exist."""
    settings = settings or get_settings()
    for dir_path in [settings.UPLOAD_DIR, settings.LOG_DIR]:
        if dir_path:
            Path(dir_path).mkdir(parents=True, exist_ok=True)
