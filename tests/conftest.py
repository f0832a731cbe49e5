"""
Shared fixtures for the test suite.

Every test gets its own database and media directories under ``tmp_path``,
and the external audio tools are replaced by small Python scripts so no real
audio processing happens.
"""

import sys
import textwrap
import time
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from remixer import config, store
from remixer.database import init_db

FAKE_ANALYSIS = '{"format": "mpeg", "bitrate": 320000, "duration": 215.5, "bpm": 124.0, "key": "A minor"}'


def write_tool(directory: Path, name: str, body: str) -> list[str]:
    """Write a Python script and return the argv prefix that runs it."""
    script = directory / f"{name}.py"
    script.write_text(textwrap.dedent(body))
    return [sys.executable, str(script)]


def extender_body(calls_log: Path, delay: float = 0.0, fail: bool = False) -> str:
    return f"""
        import json, shutil, sys, time
        with open({str(calls_log)!r}, "a") as f:
            f.write(json.dumps(sys.argv[1:]) + "\\n")
        time.sleep({delay})
        if {fail}:
            print("extension exploded", file=sys.stderr)
            sys.exit(3)
        shutil.copyfile(sys.argv[1], sys.argv[2])
        with open(sys.argv[2], "ab") as f:
            f.write(b"EXTENDED")
    """


@pytest.fixture
def media(tmp_path, monkeypatch):
    """Isolated database, media directories and fake tools."""
    upload_dir = tmp_path / "media" / "uploads"
    result_dir = tmp_path / "media" / "results"
    upload_dir.mkdir(parents=True)
    result_dir.mkdir(parents=True)
    tools_dir = tmp_path / "tools"
    tools_dir.mkdir()

    monkeypatch.setattr(config, "DB_PATH", str(tmp_path / "data" / "test.db"))
    monkeypatch.setattr(config, "UPLOAD_DIR", str(upload_dir))
    monkeypatch.setattr(config, "RESULT_DIR", str(result_dir))
    monkeypatch.setattr(config, "TOOL_TIMEOUT_S", 30.0)
    monkeypatch.setattr(
        config,
        "ANALYZE_CMD",
        write_tool(tools_dir, "fake_analyze", f"print({FAKE_ANALYSIS!r})"),
    )
    calls_log = tmp_path / "extend_calls.jsonl"
    monkeypatch.setattr(config, "EXTEND_CMD", write_tool(tools_dir, "fake_extend", extender_body(calls_log)))

    init_db()

    class Media:
        root = tmp_path
        uploads = upload_dir
        results = result_dir
        tools = tools_dir
        calls = calls_log

        def use_extender(self, delay: float = 0.0, fail: bool = False):
            monkeypatch.setattr(
                config,
                "EXTEND_CMD",
                write_tool(tools_dir, "fake_extend_custom", extender_body(calls_log, delay, fail)),
            )

        def use_analyzer(self, body: str):
            monkeypatch.setattr(config, "ANALYZE_CMD", write_tool(tools_dir, "fake_analyze_custom", body))

    return Media()


@pytest.fixture
def owner(media):
    return store.ensure_owner("demo")


@pytest.fixture
def uploaded_file(media):
    """A 1000-byte 'audio' file already in the upload directory."""
    path = media.uploads / "1700000000000-42.mp3"
    path.write_bytes(bytes(range(256)) * 3 + bytes(232))
    return path


@pytest.fixture
def client(media):
    from remixer.main import app

    with TestClient(app) as c:
        yield c


def wait_for_status(client, track_id, wanted=("completed", "error"), timeout=15.0) -> str:
    deadline = time.monotonic() + timeout
    status = None
    while time.monotonic() < deadline:
        status = client.get(f"/api/tracks/{track_id}/status").json()["status"]
        if status in wanted:
            return status
        time.sleep(0.05)
    raise AssertionError(f"track {track_id} stuck in {status!r}")
