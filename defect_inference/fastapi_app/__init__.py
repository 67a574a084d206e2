"""FastAPI application for the defect inference server."""
from .main import create_app, build_pipeline, run_app

__all__ = ["create_app", "build_pipeline", "run_app"]
