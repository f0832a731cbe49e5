"""
Track status state machine and the rules for accepting a processing request.

    uploaded -> processing -> completed -> regenerate -> completed
                     \\                          /
                      +-------> error <--------+

``uploaded`` and ``completed`` are resting states, ``processing`` and
``regenerate`` mean a job is in flight, and ``error`` ends one attempt
without retiring the track.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from remixer import config, path_guard
from remixer.errors import LimitExceededError, ValidationError
from remixer.models import ProcessingSettings, Track

logger = logging.getLogger(__name__)

UPLOADED = "uploaded"
PROCESSING = "processing"
REGENERATE = "regenerate"
COMPLETED = "completed"
ERROR = "error"

STATUSES = (UPLOADED, PROCESSING, REGENERATE, COMPLETED, ERROR)

TRANSITIONS = {
    UPLOADED: {PROCESSING},
    PROCESSING: {COMPLETED, ERROR},
    REGENERATE: {COMPLETED, ERROR},
    COMPLETED: {REGENERATE},
    ERROR: {PROCESSING, REGENERATE},
}


@dataclass
class ProcessingPlan:
    settings: ProcessingSettings
    status: str
    attempt: int
    output_path: Path


def is_in_flight(status: str) -> bool:
    return status in (PROCESSING, REGENERATE)


def check_transition(current: str, target: str) -> None:
    if target not in TRANSITIONS.get(current, set()):
        raise ValidationError(f"Cannot move track from '{current}' to '{target}'")


def check_version_limit(track: Track) -> None:
    if track.version_count > config.MAX_VERSION_COUNT:
        raise LimitExceededError(f"Maximum version limit ({config.MAX_VERSION_COUNT}) reached")


def parse_settings(payload) -> ProcessingSettings:
    if not isinstance(payload, dict):
        raise ValidationError("Processing settings must be a JSON object")
    try:
        return ProcessingSettings.model_validate(payload)
    except PydanticValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ValidationError(f"Invalid processing settings: {fields}")


def next_status(track: Track) -> str:
    return REGENERATE if track.versions else PROCESSING


def _split_name(original_filename: str) -> tuple[str, str]:
    name = os.path.basename(original_filename)
    return os.path.splitext(name)


def output_filename(original_filename: str, attempt: int, ext: str | None = None) -> str:
    base, original_ext = _split_name(original_filename)
    return f"{base}_extended_v{attempt}{ext or original_ext}"


def download_filename(original_filename: str, index: int) -> str:
    base, ext = _split_name(original_filename)
    return f"{base}_extended_v{index + 1}{ext}"


def track_result_dir(track_id: int) -> str:
    """Per-track directory for rendered versions, so equal filenames never collide."""
    return os.path.join(config.RESULT_DIR, str(track_id))


def plan_processing(track: Track, payload) -> ProcessingPlan:
    """Check a new processing request against ``track`` and plan the attempt.

    Nothing is written here; the caller persists the plan through
    ``store.begin_attempt`` only after every check has passed.
    """
    check_version_limit(track)
    settings = parse_settings(payload)

    status = next_status(track)
    check_transition(track.status, status)

    # version_count counts dispatched attempts, so attempt numbers never repeat
    attempt = track.version_count + 1
    output_path = path_guard.create_safe_output_path(
        track_result_dir(track.id),
        output_filename(track.original_filename, attempt, os.path.splitext(track.original_path)[1]),
    )
    logger.info(f"Planned attempt {attempt} for track {track.id} -> {output_path}")
    return ProcessingPlan(settings=settings, status=status, attempt=attempt, output_path=output_path)
