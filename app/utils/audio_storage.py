"""
Local storage for speaking recordings served under /uploads
"""
import os
import uuid
import logging
from typing import Optional

import aiofiles
from fastapi import UploadFile

from app.config import settings
from app.services.exceptions import UploadRejectedError, AudioStorageError

logger = logging.getLogger(__name__)

AUDIO_URL_PREFIX = "/uploads"
DEFAULT_AUDIO_EXTENSION = ".webm"

ALLOWED_AUDIO_MIME_TYPES = {
    "audio/webm",
    "audio/mpeg",
    "audio/mp3",
    "audio/mp4",
    "audio/m4a",
    "audio/x-m4a",
    "audio/wav",
    "audio/x-wav",
    "audio/wave",
    "audio/ogg",
}
ALLOWED_AUDIO_EXTENSIONS = {".webm", ".mp3", ".m4a", ".wav", ".mpga", ".mpeg", ".mp4", ".ogg"}


def audio_extension(filename: Optional[str]) -> str:
    """Stored extension; anything outside the audio allow-list becomes the default"""
    ext = os.path.splitext(filename or "")[1].lower()
    if ext in ALLOWED_AUDIO_EXTENSIONS:
        return ext
    return DEFAULT_AUDIO_EXTENSION


def validate_audio_type(filename: Optional[str], content_type: Optional[str]) -> None:
    """Accept a known audio extension or any audio/* media type"""
    ext = os.path.splitext(filename or "")[1].lower()
    mime = (content_type or "").lower()

    if ext in ALLOWED_AUDIO_EXTENSIONS or mime in ALLOWED_AUDIO_MIME_TYPES or mime.startswith("audio/"):
        return

    raise UploadRejectedError(f"Unsupported audio type: {content_type or ext or 'unknown'}")


async def read_upload(upload: UploadFile, max_bytes: Optional[int] = None) -> bytes:
    """
    Read an upload into memory, rejecting it once it exceeds max_bytes

    Raises:
        UploadRejectedError: 413 when the file is too large
    """
    max_bytes = max_bytes or settings.MAX_AUDIO_UPLOAD_BYTES
    content = await upload.read(max_bytes + 1)
    if len(content) > max_bytes:
        raise UploadRejectedError(
            f"Audio file exceeds the {max_bytes // (1024 * 1024)} MB limit",
            status_code=413
        )
    if not content:
        raise UploadRejectedError("Audio file is empty")
    return content


async def store_audio(content: bytes, attempt_id: uuid.UUID, question_id: uuid.UUID, extension: str) -> str:
    """
    Write a recording to a temporary file and rename it into place

    Returns:
        Public URL of the stored file
    """
    uploads_dir = settings.UPLOADS_DIR
    os.makedirs(uploads_dir, exist_ok=True)

    final_name = f"{attempt_id}_{question_id}{extension}"
    final_path = os.path.join(uploads_dir, final_name)
    temp_path = os.path.join(uploads_dir, f".{uuid.uuid4().hex}.part")

    try:
        async with aiofiles.open(temp_path, "wb") as f:
            await f.write(content)
        os.replace(temp_path, final_path)
    except OSError as e:
        logger.error(f"Failed to store audio {final_name}: {str(e)}")
        if os.path.exists(temp_path):
            os.remove(temp_path)
        raise AudioStorageError("Audio file could not be saved")

    logger.info(f"Stored speaking audio {final_name} ({len(content)} bytes)")
    return f"{AUDIO_URL_PREFIX}/{final_name}"


def local_audio_path(audio_url: str) -> str:
    """Map a public /uploads URL back to its file on disk"""
    return os.path.join(settings.UPLOADS_DIR, os.path.basename(audio_url))
