"""
FastAPI Routers
===============
API routes for the defect inference server.
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile
from starlette.concurrency import run_in_threadpool

from ..config import Settings
from ..engine import InferencePipeline
from ..errors import AnalysisError, MissingImageError, ModelNotReadyError
from ..utils.logger import get_request_logger
from .dependencies import (
    RequestContext,
    get_app_settings,
    get_pipeline,
    get_ready_pipeline,
    get_request_context,
)
from .schemas import AnalyzeResponse, ErrorResponse, HealthResponse
from .uploads import staged_upload

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Inference API"])


@router.post(
    "/analyze",
    response_model=AnalyzeResponse,
    responses={
        400: {"model": ErrorResponse, "description": "No image attached"},
        500: {"model": ErrorResponse, "description": "Image could not be analysed"},
        503: {"model": ErrorResponse, "description": "Model not loaded yet"},
    },
)
async def analyze(
    image: Optional[UploadFile] = File(None, description="Image file to classify"),
    pipeline: InferencePipeline = Depends(get_ready_pipeline),
    settings: Settings = Depends(get_app_settings),
    ctx: RequestContext = Depends(get_request_context),
):
    """
    Classify an uploaded image as Defective or Good.

    Confidences are the model's raw output scores.
    """
    if image is None or not image.filename:
        raise MissingImageError("No image attached to the request")

    async with staged_upload(image, settings.UPLOAD_DIR) as path:
        try:
            data = await run_in_threadpool(path.read_bytes)
            # On timeout the executor future is abandoned; the forward pass
            # finishes in its worker thread and the result is dropped
            decision = await asyncio.wait_for(
                asyncio.get_running_loop().run_in_executor(None, pipeline.analyze, data),
                timeout=settings.INFERENCE_TIMEOUT,
            )
        except asyncio.TimeoutError:
            raise AnalysisError(f"Analysis exceeded {settings.INFERENCE_TIMEOUT}s") from None
        except (AnalysisError, ModelNotReadyError):
            raise
        except Exception as e:
            logger.exception(f"Analysis of {ctx.request_id} failed")
            raise AnalysisError(str(e)) from e

    get_request_logger().log_inference(
        ctx.request_id,
        ctx.elapsed_ms,
        decision.label,
        decision.confidence_defective,
        decision.confidence_good,
    )
    return AnalyzeResponse(**decision.to_dict())


@router.get("/health", response_model=HealthResponse)
async def health_check(
    pipeline: InferencePipeline = Depends(get_pipeline),
    settings: Settings = Depends(get_app_settings),
):
    """
    Health check endpoint.

    Always answers 200; ``status`` carries the model load state.
    """
    info = pipeline.model_info
    return HealthResponse(
        status=pipeline.state.value,
        model_loaded=pipeline.is_ready,
        version=settings.APP_VERSION,
        model=info.to_dict() if info else None,
        error=pipeline.error,
    )
