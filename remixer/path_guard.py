"""
Path validation for every file the service reads, writes, streams or deletes.

A path is accepted only when it resolves strictly inside one of the sanctioned
directories (uploads, results) and carries an allowed audio extension. Paths
that fail are rejected with ``PathRejectedError``; there is no fallback path.
"""

import logging
import os
import re
from pathlib import Path

from remixer import config
from remixer.errors import PathRejectedError

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[/\\:*?\"<>|;&$`'!(){}\[\]~#%^\x00-\x1f\x7f]")
_DOT_RUNS = re.compile(r"\.{2,}")


def allowed_dirs() -> list[Path]:
    return [Path(config.UPLOAD_DIR).resolve(), Path(config.RESULT_DIR).resolve()]


def _is_strictly_inside(path: Path, directory: Path) -> bool:
    if path == directory:
        return False
    try:
        path.relative_to(directory)
        return True
    except ValueError:
        return False


def validate(path: str | os.PathLike) -> Path:
    """Return the resolved absolute path, or raise ``PathRejectedError``."""
    raw = os.fspath(path) if path is not None else ""
    if not raw or not raw.strip():
        raise PathRejectedError(raw, "empty path")
    if ".." in raw:
        raise PathRejectedError(raw, "parent directory reference")
    if "~" in raw:
        raise PathRejectedError(raw, "home directory reference")
    if "\x00" in raw:
        raise PathRejectedError(raw, "null byte")

    ext = os.path.splitext(raw)[1].lower()
    if ext not in config.ALLOWED_EXTENSIONS:
        raise PathRejectedError(raw, f"extension {ext or '(none)'} not allowed")

    try:
        # strict=False: outputs are validated before they exist
        resolved = Path(raw).resolve()
    except (OSError, RuntimeError):
        raise PathRejectedError(raw, "unresolvable path")

    if not any(_is_strictly_inside(resolved, d) for d in allowed_dirs()):
        raise PathRejectedError(raw, "outside allowed directories")

    return resolved


def sanitize_filename(filename: str) -> str:
    name = _UNSAFE_CHARS.sub("_", filename)
    name = _DOT_RUNS.sub("_", name)
    return name.strip() or "_"


def create_safe_output_path(base_dir: str | os.PathLike, filename: str) -> Path:
    """Sanitize ``filename``, join it to ``base_dir`` and validate the result."""
    safe_name = sanitize_filename(filename)
    if safe_name != filename:
        logger.info(f"Sanitized output filename {filename!r} -> {safe_name!r}")
    path = validate(os.path.join(os.fspath(base_dir), safe_name))
    os.makedirs(path.parent, exist_ok=True)
    return path
