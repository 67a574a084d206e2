"""
Pydantic Schemas
================
Response schemas for the FastAPI application.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class AnalyzeResponse(BaseModel):
    """Classification of one uploaded image."""
    model_config = ConfigDict(populate_by_name=True)

    class_name: str = Field(..., alias="class", description="Defective or Good")
    confidence_defective: float = Field(..., description="Raw model score for Defective")
    confidence_good: float = Field(..., description="Raw model score for Good")


class ErrorResponse(BaseModel):
    """Error body."""
    error: str = Field(..., description="Error message")


class HealthResponse(BaseModel):
    """Health check response."""
    model_config = ConfigDict(protected_namespaces=())

    status: str = Field(..., description="Model state: not_loaded, loading, ready, failed")
    model_loaded: bool = Field(..., description="Whether inference is available")
    version: str = Field(..., description="API version")
    model: Optional[Dict[str, Any]] = Field(None, description="Loaded model details")
    error: Optional[str] = Field(None, description="Load failure reason")
