"""Stale-lock janitor.

A worker that dies mid-item leaves the row in 'processing' with its lock
stamped. The janitor periodically hands such rows back to the queue (or fails
them once their attempts are exhausted). Disabled unless JANITOR_ENABLED.
"""

import asyncio
from typing import Optional

import structlog

from boxoffice.repositories.work_items import WorkItemRepository

logger = structlog.get_logger(__name__)


class StaleLockJanitor:
    """Periodic sweep over expired processing locks."""

    def __init__(
        self,
        store: WorkItemRepository,
        lock_timeout_s: float = 900,
        max_attempts: int = 5,
        interval_s: float = 60.0,
    ):
        self._store = store
        self._lock_timeout_s = lock_timeout_s
        self._max_attempts = max_attempts
        self._interval_s = interval_s
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self.reaped_total = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep(self) -> int:
        """Run one sweep. Returns the number of rows released."""
        count = await self._store.reap_stale(self._lock_timeout_s, self._max_attempts)
        self.reaped_total += count
        return count

    async def start(self) -> None:
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        logger.info(
            "janitor_started",
            lock_timeout_s=self._lock_timeout_s,
            interval_s=self._interval_s,
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        assert self._stop_event is not None
        self._stop_event.set()
        try:
            await self._task
        finally:
            self._task = None
        logger.info("janitor_stopped", reaped_total=self.reaped_total)

    async def _run(self) -> None:
        assert self._stop_event is not None
        while not self._stop_event.is_set():
            try:
                await self.sweep()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("janitor_sweep_failed", error=str(e))

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval_s)
            except asyncio.TimeoutError:
                pass
