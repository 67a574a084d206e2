"""
Logging Configuration
=====================
Console and file logging for the defect inference server, plus the
``request`` logger that records one line per answered request.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Third-party loggers that flood INFO with model-runtime chatter
NOISY_LOGGERS = ("tensorflow", "absl", "h5py", "PIL", "python_multipart", "multipart")

REQUEST_LOGGER_NAME = "request"


class LevelColorFormatter(logging.Formatter):
    """Formatter that tints the level name for terminal output."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record):
        color = self.LEVEL_COLORS.get(record.levelno)
        if color is None:
            return super().format(record)
        # Tint a copy; file handlers format the same record untouched
        tinted = logging.makeLogRecord(record.__dict__)
        tinted.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(tinted)


def _log_file_path(log_dir: Path) -> Path:
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir / f"defect_inference_{datetime.now():%Y-%m-%d}.log"


def setup_logging(
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    format_string: Optional[str] = None,
    colored: bool = True,
    quiet_loggers: Iterable[str] = NOISY_LOGGERS,
) -> logging.Logger:
    """
    Configure the root logger for the server process.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR)
        log_dir: When set, also write to ``defect_inference_<date>.log`` there
        format_string: Record format (defaults to ``DEFAULT_FORMAT``)
        colored: Tint level names when stdout is a terminal
        quiet_loggers: Loggers raised to WARNING unless ``level`` is DEBUG

    Returns:
        Root logger
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO
    format_string = format_string or DEFAULT_FORMAT

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stdout)
    use_color = colored and sys.stdout.isatty()
    console.setFormatter((LevelColorFormatter if use_color else logging.Formatter)(format_string))
    root_logger.addHandler(console)

    if log_dir:
        file_path = _log_file_path(Path(log_dir))
        file_handler = logging.FileHandler(file_path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(format_string))
        root_logger.addHandler(file_handler)
        root_logger.info(f"Logging to file: {file_path}")

    if log_level > logging.DEBUG:
        for name in quiet_loggers:
            logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger


class RequestLogger:
    """
    One structured line per request outcome.

    ``log_response`` is written by the timing middleware for every request;
    ``log_inference`` and ``log_rejection`` add the detail of what the
    analyze route decided.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(REQUEST_LOGGER_NAME)

    def log_response(
        self,
        request_id: str,
        method: str,
        path: str,
        status_code: int,
        response_time_ms: float,
    ):
        level = logging.INFO if status_code < 400 else logging.WARNING
        self.logger.log(
            level,
            f"RESPONSE {request_id} | {method} {path} | Status: {status_code} | "
            f"Time: {response_time_ms:.2f}ms",
        )

    def log_rejection(self, request_id: str, status_code: int, reason: str):
        """A request answered with an error body."""
        level = logging.ERROR if status_code >= 500 else logging.WARNING
        self.logger.log(level, f"REJECTED {request_id} | Status: {status_code} | {reason}")

    def log_inference(
        self,
        request_id: str,
        inference_time_ms: float,
        label: str,
        confidence_defective: float,
        confidence_good: float,
    ):
        self.logger.info(
            f"INFERENCE {request_id} | Time: {inference_time_ms:.2f}ms | {label} "
            f"(defective={confidence_defective:.4f}, good={confidence_good:.4f})"
        )


_request_logger: Optional[RequestLogger] = None


def get_request_logger() -> RequestLogger:
    """Get the process-wide request logger."""
    global _request_logger
    if _request_logger is None:
        _request_logger = RequestLogger()
    return _request_logger
