"""Serving stored audio: version lookup, byte ranges, downloads."""

import logging
import re
from pathlib import Path
from typing import Iterator, Optional

from fastapi.responses import FileResponse, StreamingResponse

from remixer import lifecycle, path_guard
from remixer.errors import NotFoundError, RangeNotSatisfiableError, ValidationError
from remixer.models import Track

logger = logging.getLogger(__name__)

STREAM_CHUNK = 64 * 1024
AUDIO_TYPES = ("original", "extended")
MIME_TYPES = {
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".flac": "audio/flac",
    ".aiff": "audio/aiff",
}

_RANGE_RE = re.compile(r"^bytes=(\d*)-(\d*)$")


def get_mime_type(path: Path) -> str:
    return MIME_TYPES.get(path.suffix.lower(), "application/octet-stream")


def parse_version(version: Optional[str]) -> int:
    if version is None or version == "":
        return 0
    try:
        return int(version)
    except ValueError:
        raise ValidationError("Invalid version")


def _checked(path: str) -> Path:
    safe = path_guard.validate(path)
    if not safe.is_file():
        raise NotFoundError("Audio file not found on disk")
    return safe


def resolve_version(track: Track, kind: str, version: Optional[str] = None) -> Path:
    """Validated on-disk path for the original or one extended version."""
    if kind not in AUDIO_TYPES:
        raise ValidationError("Invalid audio type")

    if kind == "original":
        return _checked(track.original_path)

    index = parse_version(version)
    if index < 0 or index >= len(track.versions) or not track.versions[index].path:
        raise NotFoundError("extended audio file not found")
    return _checked(track.versions[index].path)


def parse_range(header: Optional[str], file_size: int) -> Optional[tuple[int, int]]:
    """Parse a single-range ``Range`` header into inclusive (start, end).

    Returns None when the header is absent or not a single byte range, in
    which case the whole file is served.
    """
    if not header:
        return None
    match = _RANGE_RE.match(header.strip())
    if not match:
        return None

    start_str, end_str = match.groups()
    if start_str:
        start = int(start_str)
        end = int(end_str) if end_str else file_size - 1
    elif end_str:
        # suffix form: bytes=-N
        suffix = int(end_str)
        if suffix == 0:
            raise RangeNotSatisfiableError("Requested range not satisfiable", file_size)
        start = max(file_size - suffix, 0)
        end = file_size - 1
    else:
        return None

    if start >= file_size or end < start:
        raise RangeNotSatisfiableError("Requested range not satisfiable", file_size)
    return start, min(end, file_size - 1)


def iter_file(path: Path, offset: int, length: int) -> Iterator[bytes]:
    with path.open("rb") as f:
        f.seek(offset)
        remaining = length
        while remaining > 0:
            data = f.read(min(STREAM_CHUNK, remaining))
            if not data:
                break
            remaining -= len(data)
            yield data


def stream_file(path: Path, range_header: Optional[str]) -> StreamingResponse:
    file_size = path.stat().st_size
    media_type = get_mime_type(path)
    byte_range = parse_range(range_header, file_size)

    if byte_range is None:
        return StreamingResponse(
            iter_file(path, 0, file_size),
            media_type=media_type,
            headers={"Accept-Ranges": "bytes", "Content-Length": str(file_size)},
        )

    start, end = byte_range
    chunk_size = end - start + 1
    return StreamingResponse(
        iter_file(path, start, chunk_size),
        status_code=206,
        media_type=media_type,
        headers={
            "Content-Range": f"bytes {start}-{end}/{file_size}",
            "Accept-Ranges": "bytes",
            "Content-Length": str(chunk_size),
        },
    )


def download_file(track: Track, version: Optional[str]) -> FileResponse:
    index = parse_version(version)
    if index < 0 or index >= len(track.versions):
        raise NotFoundError("Extended version not found")
    path = _checked(track.versions[index].path)
    filename = lifecycle.download_filename(track.original_filename, index)
    logger.info(f"Download of track {track.id} version {index} as {filename!r}")
    return FileResponse(path, media_type=get_mime_type(path), filename=filename)
