import contextlib
import logging
import os
import random
import time

from fastapi import UploadFile

from remixer import config, path_guard, store
from remixer.errors import PathRejectedError, PayloadTooLargeError, UnsupportedMediaError, ValidationError
from remixer.jobs import JobRegistry, analyze_upload
from remixer.models import Owner, Track

logger = logging.getLogger(__name__)

CHUNK_SIZE = 65536
EXTENSION_ALIASES = {".aif": ".aiff"}


def generated_name(original_filename: str) -> str:
    """Storage name for an upload: timestamp, random suffix, original extension."""
    ext = os.path.splitext(original_filename)[1].lower()
    ext = EXTENSION_ALIASES.get(ext, ext)
    if ext not in config.ALLOWED_EXTENSIONS:
        raise PathRejectedError(original_filename, f"extension {ext or '(none)'} not allowed")
    return f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}{ext}"


async def accept_upload(owner: Owner, file: UploadFile | None, registry: JobRegistry) -> Track:
    if file is None or not file.filename:
        raise ValidationError("No file uploaded")

    if file.content_type not in config.ALLOWED_MIME_TYPES:
        raise UnsupportedMediaError("Invalid file type. Only MP3, WAV, FLAC, and AIFF files are allowed.")

    original_filename = os.path.basename(file.filename.replace("\\", "/"))
    dest = path_guard.create_safe_output_path(config.UPLOAD_DIR, generated_name(original_filename))

    size = 0
    f_out = open(dest, "xb")
    try:
        with f_out:
            while chunk := await file.read(CHUNK_SIZE):
                size += len(chunk)
                if size > config.MAX_UPLOAD_BYTES:
                    raise PayloadTooLargeError("File too large (max 15MB)")
                f_out.write(chunk)

        track = store.create_track(owner, original_filename, str(dest))
    except BaseException:
        # a failed upload leaves no file behind
        with contextlib.suppress(FileNotFoundError):
            os.unlink(dest)
        raise

    logger.info(f"Upload stored: track_id={track.id} file={dest} size={size}")

    registry.spawn(analyze_upload(track.id, str(dest)), name=f"analyze-track-{track.id}")
    return track
