"""
FastAPI Application Factory
===========================
Create and configure the FastAPI inference server.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from ..config import Settings, ensure_directories, get_settings
from ..engine import InferencePipeline, ModelLoader, ModelState
from ..errors import AnalysisError, MissingImageError, ModelNotReadyError
from ..layers import build_layer_registry
from ..utils.logger import get_request_logger
from ..utils.postprocessing import format_error
from ..utils.preprocessing import ImagePreprocessor
from .routers import router

logger = logging.getLogger(__name__)

# uvicorn logging with timestamps (uvicorn's default access format)
UVICORN_LOG_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "()": "uvicorn.logging.DefaultFormatter",
            "fmt": "%(asctime)s - %(levelprefix)s %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
            "use_colors": True,
        },
        "access": {
            "()": "uvicorn.logging.AccessFormatter",
            "fmt": "%(asctime)s - %(levelprefix)s %(client_addr)s - \"%(request_line)s\" %(status_code)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
            "use_colors": True,
        },
    },
    "handlers": {
        "default": {
            "formatter": "default",
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stderr",
        },
        "access": {
            "formatter": "access",
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stdout",
        },
    },
    "loggers": {
        "uvicorn": {"handlers": ["default"], "level": "INFO", "propagate": False},
        "uvicorn.error": {"level": "INFO"},
        "uvicorn.access": {"handlers": ["access"], "level": "INFO", "propagate": False},
    },
}


def _request_id(request: Request) -> str:
    return request.headers.get("X-Request-ID", "-")


def _error_response(request: Request, status_code: int, message: str, exc: Exception) -> JSONResponse:
    get_request_logger().log_rejection(_request_id(request), status_code, f"{type(exc).__name__}: {exc}")
    return JSONResponse(status_code=status_code, content=format_error(message))


def build_pipeline(settings: Settings) -> InferencePipeline:
    """Wire registry -> loader -> pipeline from settings."""
    registry = build_layer_registry()
    logger.info(f"Registered layer types: {', '.join(registry.names())}")

    loader = ModelLoader(registry, required_layer_types=settings.REQUIRED_LAYER_TYPES)
    preprocessor = ImagePreprocessor(
        target_size=(settings.IMAGE_SIZE, settings.IMAGE_SIZE),
        backend=settings.DECODE_BACKEND,
    )
    return InferencePipeline(settings.MODEL_PATH, loader, preprocessor)


def create_app(
    settings: Optional[Settings] = None,
    pipeline: Optional[InferencePipeline] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Application settings (defaults to environment)
        pipeline: Pre-built pipeline; built from settings when omitted

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()
    pipeline = pipeline or build_pipeline(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ensure_directories(settings)

        load_future = None
        if pipeline.state is ModelState.NOT_LOADED:
            if settings.MODEL_LOAD_IN_BACKGROUND:
                # Accept traffic right away; /analyze answers 503 until ready
                load_future = asyncio.get_running_loop().run_in_executor(None, pipeline.load)
            else:
                await run_in_threadpool(pipeline.load)

        yield

        if load_future is not None and not load_future.done():
            logger.info("Waiting for model load to finish before shutdown")
            await load_future

    app = FastAPI(
        title=settings.APP_NAME,
        description="Binary surface-defect classification (Defective / Good)",
        version=settings.APP_VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
    )

    app.state.start_time = time.time()
    app.state.settings = settings
    app.state.pipeline = pipeline

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add timing middleware
    @app.middleware("http")
    async def add_timing_header(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        elapsed = (time.time() - start_time) * 1000
        response.headers["X-Response-Time"] = f"{elapsed:.2f}ms"
        get_request_logger().log_response(
            _request_id(request), request.method, request.url.path, response.status_code, elapsed
        )
        return response

    @app.exception_handler(ModelNotReadyError)
    async def model_not_ready_handler(request: Request, exc: ModelNotReadyError):
        return _error_response(request, 503, "model not ready", exc)

    @app.exception_handler(MissingImageError)
    async def missing_image_handler(request: Request, exc: MissingImageError):
        return _error_response(request, 400, "missing image", exc)

    @app.exception_handler(AnalysisError)
    async def analysis_error_handler(request: Request, exc: AnalysisError):
        return _error_response(request, 500, "analysis failed", exc)

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled exception: {exc}")
        return _error_response(request, 500, "internal error", exc)

    app.include_router(router)

    @app.get("/")
    async def root():
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "status": pipeline.state.value,
        }

    logger.info("FastAPI application created successfully")

    return app


def run_app(settings: Optional[Settings] = None):
    """
    Run the FastAPI application with uvicorn.

    Args:
        settings: Application settings (defaults to environment)
    """
    import uvicorn

    settings = settings or get_settings()
    app = create_app(settings)

    logger.info(f"Starting FastAPI server on {settings.HOST}:{settings.PORT}")

    uvicorn.run(
        app,
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        log_config=UVICORN_LOG_CONFIG,
        limit_concurrency=settings.LIMIT_CONCURRENCY,
        timeout_keep_alive=60,
    )
