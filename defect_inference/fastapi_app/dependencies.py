"""
FastAPI Dependencies
====================
Dependency injection for FastAPI routes.

The pipeline and settings live on ``app.state``; handlers receive them
through these dependencies instead of module globals.
"""

import logging
import time
import uuid
from typing import Optional

from fastapi import Depends, Request

from ..config import Settings
from ..engine import InferencePipeline
from ..errors import ModelNotReadyError

logger = logging.getLogger(__name__)


def get_pipeline(request: Request) -> InferencePipeline:
    """Get the shared inference pipeline."""
    return request.app.state.pipeline


def get_app_settings(request: Request) -> Settings:
    """Get the settings the app was created with."""
    return request.app.state.settings


async def get_ready_pipeline(
    pipeline: InferencePipeline = Depends(get_pipeline),
) -> InferencePipeline:
    """
    Get the pipeline, rejecting the request while the model is not ready.
    """
    if not pipeline.is_ready:
        raise ModelNotReadyError(f"Model is not ready (state={pipeline.state.value})")
    return pipeline


class RequestContext:
    """Request context for tracking."""

    def __init__(self, request_id: Optional[str] = None):
        self.request_id: str = request_id or f"req_{uuid.uuid4().hex[:12]}"
        self.start_time: float = time.time()

    @property
    def elapsed_ms(self) -> float:
        return (time.time() - self.start_time) * 1000


async def get_request_context(request: Request) -> RequestContext:
    """Get request context dependency."""
    return RequestContext(request.headers.get("X-Request-ID"))
