"""
Periodic background sync.

A ``PeriodicSync`` runs its job once at startup and then on a fixed
interval. Runs of the same scheduler never overlap: a run requested while
another is in flight (a slow fetch, or a manual "sync now") is skipped.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

SyncJob = Callable[[], Awaitable[Any]]


class SyncInProgressError(RuntimeError):
    """A run was requested while the previous one is still executing."""


class PeriodicSync:
    """Interval runner with an in-flight guard."""

    def __init__(self, name: str, job: SyncJob, interval_seconds: float = 15 * 60):
        self.name = name
        self.job = job
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._in_flight = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def run_once(self, raise_errors: bool = False) -> Any:
        """
        Execute the job once.

        Errors are logged and swallowed unless ``raise_errors`` is set, in
        which case they propagate (and an overlapping request raises
        ``SyncInProgressError``). Existing state is never touched by a
        failed run.
        """
        if self._in_flight:
            logger.info(f"{self.name} sync already running, skipping")
            if raise_errors:
                raise SyncInProgressError(self.name)
            return None

        self._in_flight = True
        try:
            return await self.job()
        except Exception as e:
            if raise_errors:
                raise
            logger.error(f"{self.name.capitalize()} sync failed: {e}")
            return None
        finally:
            self._in_flight = False

    async def _loop(self) -> None:
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=f"sync-{self.name}")
        logger.debug(f"{self.name} sync started (every {self.interval_seconds}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
