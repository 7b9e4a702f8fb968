import os
import uuid

import aiofiles

from tradeflow.config import Settings

MIME_TYPES = {
    "pdf": "application/pdf",
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "tiff": "image/tiff",
    "tif": "image/tiff",
    "csv": "text/csv",
    "txt": "text/plain",
}


async def save_upload(content: bytes, original_filename: str, settings: Settings) -> tuple[str, str]:
    """Write uploaded bytes under a fresh name.

    Returns (stored_filename, full_file_path).
    """
    ext = os.path.splitext(original_filename or "upload")[1]
    stored_filename = f"{uuid.uuid4()}{ext}"
    file_path = os.path.join(settings.upload_dir, stored_filename)

    os.makedirs(settings.upload_dir, exist_ok=True)

    async with aiofiles.open(file_path, "wb") as f:
        await f.write(content)

    return stored_filename, file_path


def get_file_extension(filename: str) -> str:
    """Extract the file extension without the dot, lowercased."""
    _, ext = os.path.splitext(filename)
    return ext.lstrip(".").lower()


def get_mime_type(filename: str) -> str:
    return MIME_TYPES.get(get_file_extension(filename), "application/octet-stream")
