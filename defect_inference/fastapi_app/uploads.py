"""
Upload Staging
==============
Spool an uploaded file to disk for the lifetime of one request.
"""

import logging
import os
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from fastapi import UploadFile

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024  # 1 MB


def _safe_suffix(filename: str) -> str:
    suffix = Path(filename).suffix
    if 1 < len(suffix) <= 10 and suffix[1:].isalnum():
        return suffix.lower()
    return ""


@asynccontextmanager
async def staged_upload(upload: UploadFile, directory: Path) -> AsyncIterator[Path]:
    """
    Write ``upload`` to a uniquely named file in ``directory``.

    The file is removed and the upload closed when the block exits,
    whether it returns normally or raises.

    Args:
        upload: Incoming multipart file
        directory: Staging directory (created if missing)

    Yields:
        Path of the staged file
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)

    fd, name = tempfile.mkstemp(
        prefix="upload_",
        suffix=_safe_suffix(upload.filename or ""),
        dir=directory,
    )
    path = Path(name)

    try:
        with os.fdopen(fd, "wb") as handle:
            while True:
                chunk = await upload.read(CHUNK_SIZE)
                if not chunk:
                    break
                handle.write(chunk)
        yield path
    finally:
        await upload.close()
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        else:
            logger.debug(f"Removed staged upload {path.name}")
