"""Utilities module."""
from .preprocessing import ImagePreprocessor
from .postprocessing import CLASS_NAMES, Decision, decide, format_error
from .logger import setup_logging, get_request_logger

__all__ = [
    "ImagePreprocessor",
    "CLASS_NAMES",
    "Decision",
    "decide",
    "format_error",
    "setup_logging",
    "get_request_logger",
]
