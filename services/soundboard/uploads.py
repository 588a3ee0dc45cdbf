# Pi Soundboard
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Upload ingestion for ``POST /api/sounds/upload``.

Streams the multipart ``sound`` field to ``<upload_dir>/<uuid><ext>``
after checking extension and MIME type, and enforces the size limit while
writing so oversized uploads never fill the SD card.  An optional ``name``
field sets the display name (defaults to the original file name stem).
"""

import logging
import os
import uuid

from aiohttp import hdrs, web

from .errors import UploadError

log = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = (".mp3", ".wav", ".ogg", ".m4a", ".aac", ".flac", ".webm")

ALLOWED_MIME_TYPES = {
    "audio/mpeg",       # MP3
    "audio/wav",        # WAV
    "audio/wave",
    "audio/x-wav",
    "audio/ogg",        # OGG
    "audio/mp4",        # M4A
    "audio/x-m4a",
    "audio/aac",        # AAC
    "audio/flac",       # FLAC
    "audio/webm",       # WEBM
}

CHUNK_SIZE = 64 * 1024


def validate_file(filename: str, mime_type: str | None) -> str:
    """Return the lower-cased extension, or raise UploadError."""
    ext = os.path.splitext(filename or "")[1].lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise UploadError(f"Invalid file type. Allowed types: {', '.join(ALLOWED_EXTENSIONS)}")
    if (mime_type or "").split(";")[0].strip().lower() not in ALLOWED_MIME_TYPES:
        raise UploadError("Invalid MIME type. File must be an audio file.")
    return ext


def _size_label(max_size: int) -> str:
    mb = max_size / (1024 * 1024)
    return f"{mb:.0f}MB" if mb >= 1 else f"{max_size} bytes"


async def receive_upload(request: web.Request, upload_dir: str, max_size: int) -> dict:
    """Store the uploaded clip.  Returns the metadata SoundStore.add_sound needs."""
    if not request.content_type.startswith("multipart/"):
        raise UploadError("No file uploaded")

    os.makedirs(upload_dir, exist_ok=True)
    reader = await request.multipart()
    stored = None
    name = None
    try:
        while True:
            part = await reader.next()
            if part is None:
                break
            if part.name == "name":
                name = (await part.text()).strip() or None
            elif part.name == "sound" and part.filename and stored is None:
                stored = await _store_part(part, upload_dir, max_size)
            else:
                await part.release()
    except Exception:
        if stored:
            _discard(stored["file_path"])
        raise

    if stored is None:
        raise UploadError("No file uploaded")
    stored["name"] = name or os.path.splitext(stored["original_name"])[0]
    return stored


async def _store_part(part, upload_dir: str, max_size: int) -> dict:
    mime_type = part.headers.get(hdrs.CONTENT_TYPE)
    ext = validate_file(part.filename, mime_type)
    filename = f"{uuid.uuid4()}{ext}"
    file_path = os.path.join(upload_dir, filename)

    size = 0
    try:
        with open(file_path, "wb") as f:
            while True:
                chunk = await part.read_chunk(CHUNK_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                if size > max_size:
                    raise UploadError(f"File size too large. Maximum size is {_size_label(max_size)}.")
                f.write(chunk)
    except Exception:
        _discard(file_path)
        raise

    if size == 0:
        _discard(file_path)
        raise UploadError("Uploaded file is empty")

    log.info("Upload stored: %s -> %s (%d bytes)", part.filename, filename, size)
    return {
        "original_name": part.filename,
        "filename": filename,
        "file_path": file_path,
        "mime_type": mime_type.split(";")[0].strip().lower(),
        "file_size": size,
    }


def _discard(path: str):
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        log.error("Error deleting file %s: %s", path, e)
