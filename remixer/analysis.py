"""
Audio analysis tool, run as a subprocess by the service:

    python -m remixer.analysis <path>

Prints one JSON line: {"format", "bitrate", "duration", "bpm", "key"}.
Container fields come from ffprobe; tempo and key from librosa.
"""

import json
import logging
import os
import subprocess
import sys

import librosa  # ty: ignore[unresolved-import]
import numpy as np

logger = logging.getLogger(__name__)

PITCH_CLASSES = ["C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"]

# Krumhansl-Schmuckler key profiles
MAJOR_PROFILE = np.array([6.35, 2.23, 3.48, 2.33, 4.38, 4.09, 2.52, 5.19, 2.39, 3.66, 2.29, 2.88])
MINOR_PROFILE = np.array([6.33, 2.68, 3.52, 5.38, 2.60, 3.53, 2.54, 4.75, 3.98, 2.69, 3.34, 3.17])


def probe_container(file_path: str) -> dict:
    """Format, bitrate and duration via ffprobe. Empty dict if ffprobe fails."""
    try:
        result = subprocess.run(
            [
                "ffprobe",
                "-v",
                "quiet",
                "-print_format",
                "json",
                "-show_format",
                "-show_streams",
                file_path,
            ],
            capture_output=True,
            text=True,
            timeout=60,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning(f"ffprobe unavailable: {e}")
        return {}
    if result.returncode != 0:
        return {}

    info = json.loads(result.stdout)
    fmt = info.get("format", {})
    out = {
        "format": (fmt.get("format_name") or "").split(",")[0] or None,
        "bitrate": int(fmt["bit_rate"]) if fmt.get("bit_rate") else None,
        "duration": float(fmt["duration"]) if fmt.get("duration") else None,
    }
    for stream in info.get("streams", []):
        if stream.get("codec_type") == "audio":
            out["duration"] = out["duration"] or (float(stream.get("duration", 0)) or None)
            break
    return out


def estimate_key(chroma: np.ndarray) -> str:
    """Best-correlating major/minor key for a 12 x frames chroma matrix."""
    profile = chroma.mean(axis=1)
    best_score = -np.inf
    best_key = "C major"
    for shift in range(12):
        rotated = np.roll(profile, -shift)
        for mode, template in (("major", MAJOR_PROFILE), ("minor", MINOR_PROFILE)):
            score = float(np.corrcoef(rotated, template)[0, 1])
            if score > best_score:
                best_score = score
                best_key = f"{PITCH_CLASSES[shift]} {mode}"
    return best_key


def analyze(file_path: str) -> dict:
    logger.info(f"Analyzing {file_path}")
    info = probe_container(file_path)

    y, sr = librosa.load(file_path, sr=None, mono=True, duration=120.0)

    # Tempo from the percussive component
    _, y_percussive = librosa.effects.hpss(y)
    tempo, _ = librosa.beat.beat_track(y=y_percussive, sr=sr)
    bpm = float(np.atleast_1d(tempo)[0])

    chroma = librosa.feature.chroma_cqt(y=y, sr=sr)

    duration = info.get("duration")
    if duration is None:
        duration = float(librosa.get_duration(path=file_path))

    return {
        "format": info.get("format") or os.path.splitext(file_path)[1].lstrip(".").lower() or None,
        "bitrate": info.get("bitrate"),
        "duration": duration,
        "bpm": round(bpm, 2) if bpm > 0 else None,
        "key": estimate_key(chroma),
    }


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    if len(args) != 1:
        print("usage: python -m remixer.analysis <audio-file>", file=sys.stderr)
        return 2
    try:
        result = analyze(args[0])
    except Exception as e:
        print(f"analysis failed: {e}", file=sys.stderr)
        return 1
    print(json.dumps(result))
    return 0


if __name__ == "__main__":
    sys.exit(main())
