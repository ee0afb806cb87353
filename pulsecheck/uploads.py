import os
import random
import time
from typing import Iterable, Optional

from fastapi import UploadFile

from .errors import UploadError
from .logs import get_logger, log_event

logger = get_logger("pulsecheck.uploads")

_CHUNK = 64 * 1024


async def save_upload(
    upload: Optional[UploadFile],
    upload_dir: str,
    *,
    max_bytes: int,
    allowed_extensions: Iterable[str],
) -> str:
    """Stream an uploaded audio file to a uniquely named temp file.

    Raises UploadError for a missing file, a disallowed extension or a file
    over `max_bytes`; a partially written file is removed first.
    """
    if upload is None or not (upload.filename or "").strip():
        raise UploadError('No audio file uploaded. Please include an audio file with key "audio".')
    allowed = tuple(e.lower() for e in allowed_extensions)
    ext = os.path.splitext(upload.filename)[1].lower()
    if ext not in allowed:
        raise UploadError(f"Invalid file format. Allowed formats: {', '.join(allowed)}")

    os.makedirs(upload_dir, exist_ok=True)
    path = os.path.join(upload_dir, f"audio-{int(time.time() * 1000)}-{random.randint(0, 10**9)}{ext}")
    written = 0
    try:
        with open(path, "wb") as out:
            while True:
                chunk = await upload.read(_CHUNK)
                if not chunk:
                    break
                written += len(chunk)
                if written > max_bytes:
                    raise UploadError(f"File too large. Maximum size is {max_bytes // (1024 * 1024)}MB")
                out.write(chunk)
    except BaseException:
        cleanup_temp_file(path)
        raise
    if written == 0:
        cleanup_temp_file(path)
        raise UploadError("Uploaded audio file is empty")
    log_event(logger, "upload_saved", file=os.path.basename(path), bytes=written)
    return path


def cleanup_temp_file(path: Optional[str]) -> bool:
    """Remove a temporary upload. Safe to call repeatedly; returns True if a file was deleted."""
    if not path:
        return False
    try:
        os.remove(path)
    except FileNotFoundError:
        return False
    except OSError as e:
        log_event(logger, "temp_file_cleanup_failed", file=os.path.basename(path), error=str(e))
        return False
    log_event(logger, "temp_file_cleaned", file=os.path.basename(path))
    return True
