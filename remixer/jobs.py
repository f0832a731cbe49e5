import asyncio
import contextlib
import logging
import os
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Optional

from remixer import store, tools
from remixer.errors import ExternalToolError
from remixer.models import ProcessingSettings

logger = logging.getLogger(__name__)


@dataclass
class ProcessingJob:
    """One run of the extension tool for one version of one track."""

    track_id: int
    job_id: int
    source_path: str
    output_path: str
    settings: ProcessingSettings

    async def run(self) -> None:
        logger.info(f"Processing job {self.job_id} for track {self.track_id}")
        try:
            await self._run()
        except ExternalToolError as e:
            logger.error(f"Job {self.job_id} failed: {e}")
            self._discard_output()
            store.fail_attempt(self.track_id, self.job_id, str(e))
        except Exception as e:
            logger.error(f"Job {self.job_id} failed unexpectedly: {e}", exc_info=True)
            self._discard_output()
            store.fail_attempt(self.track_id, self.job_id, "internal error")

    def _discard_output(self) -> None:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(self.output_path)
            logger.info(f"Removed partial output {self.output_path}")

    async def _run(self) -> None:
        await tools.run_extend(self.source_path, self.output_path, self.settings)

        info = await tools.run_analysis(self.output_path)
        duration = info.duration if info else None

        # The track is re-read inside complete_attempt; it may have changed since dispatch.
        track = store.complete_attempt(self.track_id, self.job_id, self.output_path, duration)
        if track is None:
            logger.warning(f"Track {self.track_id} was deleted while job {self.job_id} ran; discarding output")
            self._discard_output()
            return

        logger.info(
            f"Job {self.job_id} completed: track {self.track_id} "
            f"version {len(track.versions)} at {self.output_path}"
        )


async def analyze_upload(track_id: int, path: str) -> None:
    """Fill in metadata for a fresh upload. Failure leaves the fields null."""
    info = await tools.run_analysis(path)
    if info is None:
        return
    if store.set_analysis(track_id, info) is None:
        logger.info(f"Track {track_id} removed before analysis finished")
        return
    logger.info(f"Analysis stored for track {track_id}: format={info.format} bpm={info.bpm} key={info.key}")


class JobRegistry:
    """Background tasks keyed by track id, plus one lock per track.

    Holding ``lock(track_id)`` while checking state and dispatching makes the
    check-then-start sequence atomic per track. A track's lock is dropped once
    nobody holds or waits for it.
    """

    def __init__(self):
        self._tasks: dict[int, asyncio.Task] = {}
        self._locks: dict[int, asyncio.Lock] = {}
        self._lock_users: dict[int, int] = {}
        self._background: set[asyncio.Task] = set()

    @contextlib.asynccontextmanager
    async def lock(self, track_id: int) -> AsyncIterator[None]:
        lock = self._locks.setdefault(track_id, asyncio.Lock())
        self._lock_users[track_id] = self._lock_users.get(track_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[track_id] -= 1
            if not self._lock_users[track_id]:
                del self._lock_users[track_id]
                del self._locks[track_id]

    @property
    def locked_tracks(self) -> set[int]:
        """Track ids with a lock currently held or awaited."""
        return set(self._locks)

    def is_running(self, track_id: int) -> bool:
        task = self._tasks.get(track_id)
        return task is not None and not task.done()

    def get(self, track_id: int) -> Optional[asyncio.Task]:
        return self._tasks.get(track_id)

    def dispatch(self, track_id: int, coro: Awaitable[None]) -> asyncio.Task:
        if self.is_running(track_id):
            raise RuntimeError(f"Track {track_id} already has a job in flight")
        task = asyncio.create_task(coro, name=f"process-track-{track_id}")
        self._tasks[track_id] = task
        task.add_done_callback(lambda t: self._finished(track_id, t))
        return task

    def spawn(self, coro: Awaitable[None], name: str | None = None) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background_finished)
        return task

    def _finished(self, track_id: int, task: asyncio.Task) -> None:
        if self._tasks.get(track_id) is task:
            del self._tasks[track_id]
        self._report(task)

    def _background_finished(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        self._report(task)

    @staticmethod
    def _report(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background task {task.get_name()} crashed", exc_info=exc)

    async def shutdown(self) -> None:
        tasks = [*self._tasks.values(), *self._background]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if tasks:
            logger.info(f"Cancelled {len(tasks)} background task(s) on shutdown")
