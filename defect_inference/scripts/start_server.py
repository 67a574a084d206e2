#!/usr/bin/env python3
"""
Start Server Script
===================
Start the FastAPI defect inference server with configuration options.
"""

import argparse
import logging
import sys

from defect_inference.config import Settings
from defect_inference.utils.logger import setup_logging


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Start the defect inference server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  defect-inference-server --model models/model_js/model.json
  defect-inference-server --model models/classifier.keras --port 8080
  defect-inference-server --blocking-load --log-level DEBUG
        """,
    )

    parser.add_argument("--model", type=str, help="Path to model.json, .keras or .h5")
    parser.add_argument("--host", type=str, help="Host to bind to")
    parser.add_argument("--port", type=int, help="Port to bind to")
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level",
    )
    parser.add_argument(
        "--blocking-load",
        action="store_true",
        help="Load the model before accepting traffic",
    )

    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    # Command line wins over environment / .env
    overrides = {}
    if args.model:
        overrides["MODEL_PATH"] = args.model
    if args.host:
        overrides["HOST"] = args.host
    if args.port:
        overrides["PORT"] = args.port
    if args.log_level:
        overrides["LOG_LEVEL"] = args.log_level
    if args.blocking_load:
        overrides["MODEL_LOAD_IN_BACKGROUND"] = False

    settings = Settings(**overrides)

    setup_logging(
        level=settings.LOG_LEVEL,
        log_dir=settings.LOG_DIR,
        format_string=settings.LOG_FORMAT,
    )
    logger = logging.getLogger(__name__)

    logger.info("Starting defect inference server...")
    logger.info(f"Model: {settings.MODEL_PATH}")
    logger.info(f"Host: {settings.HOST}")
    logger.info(f"Port: {settings.PORT}")

    if not settings.MODEL_PATH.exists():
        logger.warning(
            f"Model file not found: {settings.MODEL_PATH}. "
            "The server will start but inference stays unavailable."
        )

    try:
        from defect_inference.fastapi_app import run_app

        run_app(settings)
    except ImportError as e:
        logger.error(f"Import error: {e}")
        logger.error("Make sure all dependencies are installed: pip install -e .")
        sys.exit(1)
    except Exception as e:
        logger.exception(f"Failed to start server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
