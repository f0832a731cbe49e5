import asyncio
import json
import logging
import os
from typing import Optional

from remixer import config
from remixer.errors import ExternalToolError
from remixer.models import AudioInfo, ProcessingSettings

logger = logging.getLogger(__name__)


async def run_tool(argv: list[str]) -> str:
    """Run an external tool and return its stdout.

    Raises ExternalToolError on a non-zero exit, a timeout, or an OS error
    starting the process.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise ExternalToolError(f"{argv[0]} could not be started: {e}")

    timeout = config.TOOL_TIMEOUT_S or None
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise ExternalToolError(f"{argv[0]} timed out after {timeout:.0f}s")
    except asyncio.CancelledError:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise

    if proc.returncode != 0:
        err = stderr.decode(errors="replace").strip()
        raise ExternalToolError(f"{argv[0]} exited with {proc.returncode}: {err[-500:]}")

    return stdout.decode(errors="replace")


async def run_extend(source: str, dest: str, settings: ProcessingSettings) -> None:
    """Render an extended version of ``source`` into ``dest``."""
    argv = [
        *config.EXTEND_CMD,
        source,
        dest,
        str(settings.intro_length),
        str(settings.outro_length),
        "true" if settings.preserve_vocals else "false",
        settings.beat_detection,
    ]
    logger.info(f"Extending {source} -> {dest}")
    await run_tool(argv)

    if not os.path.exists(dest):
        raise ExternalToolError(f"Extension tool reported success but {dest} was not written")


def parse_audio_info(output: str) -> Optional[AudioInfo]:
    """Parse the first JSON object line the analysis tool printed."""
    for line in output.splitlines():
        line = line.strip()
        if not line.startswith("{"):
            continue
        data = json.loads(line)
        return AudioInfo(
            format=data.get("format") or None,
            bitrate=int(data["bitrate"]) if data.get("bitrate") else None,
            duration=float(data["duration"]) if data.get("duration") else None,
            bpm=float(data["bpm"]) if data.get("bpm") else None,
            key=data.get("key") or None,
        )
    return None


async def run_analysis(path: str) -> Optional[AudioInfo]:
    """Best-effort metadata for ``path``; None if the tool or its output fails."""
    try:
        output = await run_tool([*config.ANALYZE_CMD, path])
        info = parse_audio_info(output)
    except ExternalToolError as e:
        logger.warning(f"Analysis failed for {path}: {e}")
        return None
    except (ValueError, TypeError, KeyError) as e:
        logger.warning(f"Could not parse analysis output for {path}: {e}")
        return None

    if info is None:
        logger.warning(f"Analysis produced no metadata for {path}")
    return info
