import json
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Optional

from remixer import config
from remixer.database import db
from remixer.models import AudioInfo, Owner, Track, TrackVersion

logger = logging.getLogger(__name__)

IN_FLIGHT_STATUSES = ("processing", "regenerate")

# Columns update_track() may touch. id, owner_id and original_* never change.
UPDATABLE_FIELDS = {
    "format",
    "bitrate",
    "duration",
    "bpm",
    "key",
    "status",
    "settings",
    "version_count",
    "error_msg",
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _load_versions(conn: sqlite3.Connection, track_id: int) -> list[TrackVersion]:
    rows = conn.execute(
        "SELECT idx, path, duration FROM track_versions WHERE track_id=? ORDER BY idx ASC",
        (track_id,),
    ).fetchall()
    return [TrackVersion(index=r["idx"], path=r["path"], duration=r["duration"]) for r in rows]


def _row_to_track(conn: sqlite3.Connection, row: sqlite3.Row) -> Track:
    return Track(
        id=row["id"],
        owner_id=row["owner_id"],
        original_filename=row["original_filename"],
        original_path=row["original_path"],
        format=row["format"],
        bitrate=row["bitrate"],
        duration=row["duration"],
        bpm=row["bpm"],
        key=row["key"],
        status=row["status"],
        settings=json.loads(row["settings"]) if row["settings"] else None,
        version_count=row["version_count"],
        error_msg=row["error_msg"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        versions=_load_versions(conn, row["id"]),
    )


def _fetch(conn: sqlite3.Connection, track_id: int) -> Optional[Track]:
    row = conn.execute("SELECT * FROM tracks WHERE id=?", (track_id,)).fetchone()
    return _row_to_track(conn, row) if row else None


def ensure_owner(username: str) -> Owner:
    with db() as conn:
        conn.execute(
            "INSERT OR IGNORE INTO users (username, created_at) VALUES (?, ?)",
            (username, _now()),
        )
        row = conn.execute("SELECT id, username FROM users WHERE username=?", (username,)).fetchone()
    return Owner(id=row["id"], username=row["username"])


def create_track(owner: Owner, original_filename: str, original_path: str) -> Track:
    now = _now()
    with db() as conn:
        cur = conn.execute(
            """
            INSERT INTO tracks (owner_id, original_filename, original_path, status,
                                version_count, created_at, updated_at)
            VALUES (?, ?, ?, 'uploaded', 0, ?, ?)
            """,
            (owner.id, original_filename, original_path, now, now),
        )
        return _fetch(conn, cur.lastrowid)


def get_track(track_id: int) -> Optional[Track]:
    with db() as conn:
        return _fetch(conn, track_id)


def update_track(track_id: int, **fields) -> Optional[Track]:
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update track fields: {sorted(unknown)}")
    if "settings" in fields and fields["settings"] is not None:
        fields["settings"] = json.dumps(fields["settings"])

    assignments = ", ".join(f"{name}=?" for name in fields)
    with db() as conn:
        if fields:
            conn.execute(
                f"UPDATE tracks SET {assignments}, updated_at=? WHERE id=?",
                (*fields.values(), _now(), track_id),
            )
        return _fetch(conn, track_id)


def list_tracks(owner: Owner) -> list[Track]:
    with db() as conn:
        rows = conn.execute(
            "SELECT * FROM tracks WHERE owner_id=? ORDER BY created_at DESC, id DESC",
            (owner.id,),
        ).fetchall()
        return [_row_to_track(conn, r) for r in rows]


def delete_all_tracks(owner: Owner) -> int:
    with db() as conn:
        cur = conn.execute("DELETE FROM tracks WHERE owner_id=?", (owner.id,))
    return cur.rowcount


def set_analysis(track_id: int, info: AudioInfo) -> Optional[Track]:
    return update_track(
        track_id,
        format=info.format,
        bitrate=info.bitrate,
        duration=info.duration,
        bpm=info.bpm,
        key=info.key,
    )


def begin_attempt(track_id: int, status: str, settings: dict, output_path: str) -> Optional[int]:
    """Conditionally move a track into a processing state and log the job.

    The update only applies when no job is in flight and the attempt cap has
    not been passed, so two racing requests cannot both start. Returns the new
    job id, or None if the condition did not hold.
    """
    now = _now()
    with db() as conn:
        cur = conn.execute(
            """
            UPDATE tracks SET status=?, settings=?, version_count=version_count + 1,
                              error_msg=NULL, updated_at=?
            WHERE id=? AND status NOT IN (?, ?) AND version_count <= ?
            """,
            (status, json.dumps(settings), now, track_id, *IN_FLIGHT_STATUSES, config.MAX_VERSION_COUNT),
        )
        if cur.rowcount != 1:
            return None
        version = conn.execute("SELECT version_count FROM tracks WHERE id=?", (track_id,)).fetchone()[0]
        cur = conn.execute(
            """
            INSERT INTO jobs (track_id, version, output_path, status, created_at, started_at)
            VALUES (?, ?, ?, 'processing', ?, ?)
            """,
            (track_id, version, output_path, now, now),
        )
        return cur.lastrowid


def complete_attempt(track_id: int, job_id: int, path: str, duration: Optional[float]) -> Optional[Track]:
    """Append a finished version to the freshly read track and mark it completed."""
    now = _now()
    with db() as conn:
        track = _fetch(conn, track_id)
        if track is None:
            return None
        conn.execute(
            "INSERT INTO track_versions (track_id, idx, path, duration, created_at) VALUES (?, ?, ?, ?, ?)",
            (track_id, len(track.versions), path, duration, now),
        )
        conn.execute(
            "UPDATE tracks SET status='completed', error_msg=NULL, updated_at=? WHERE id=?",
            (now, track_id),
        )
        conn.execute(
            "UPDATE jobs SET status='done', finished_at=? WHERE id=?",
            (now, job_id),
        )
        return _fetch(conn, track_id)


def fail_attempt(track_id: int, job_id: int, error_msg: str) -> None:
    now = _now()
    with db() as conn:
        conn.execute(
            "UPDATE jobs SET status='failed', finished_at=?, error_msg=? WHERE id=?",
            (now, error_msg, job_id),
        )
        conn.execute(
            "UPDATE tracks SET status='error', error_msg=?, updated_at=? WHERE id=?",
            (error_msg, now, track_id),
        )


def recover_interrupted() -> int:
    """Mark jobs left in flight by a previous crash/restart as failed.

    Called once during startup, before any job can be dispatched.
    """
    now = _now()
    msg = "interrupted by restart"
    with db() as conn:
        conn.execute(
            "UPDATE jobs SET status='failed', finished_at=?, error_msg=? WHERE status='processing'",
            (now, msg),
        )
        cur = conn.execute(
            "UPDATE tracks SET status='error', error_msg=?, updated_at=? WHERE status IN (?, ?)",
            (msg, now, *IN_FLIGHT_STATUSES),
        )
    if cur.rowcount:
        logger.warning(f"Marked {cur.rowcount} interrupted track(s) as error on startup")
    else:
        logger.info("No interrupted processing jobs found on startup")
    return cur.rowcount
