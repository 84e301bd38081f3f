"""Worker pool - claims and executes work items from the queue."""

import asyncio
import os
import secrets
import socket
import traceback
from dataclasses import asdict, dataclass
from typing import Any, Optional

import structlog

from boxoffice import __version__
from boxoffice.core.errors import retry_after_hint
from boxoffice.jobs.models import WorkItem
from boxoffice.jobs.registry import TaskRegistry, default_registry
from boxoffice.jobs.types import WorkItemKind
from boxoffice.repositories.work_items import WorkItemRepository

logger = structlog.get_logger(__name__)

# Fallback wait when a rate-limit error carries no Retry-After
DEFAULT_RATE_LIMIT_RETRY_S = 10.0


def generate_worker_id() -> str:
    """Generate a unique worker ID: hostname:pid:random."""
    return f"{socket.gethostname()}:{os.getpid()}:{secrets.token_hex(4)}"


@dataclass
class PoolCounters:
    """In-process counters for one pool handle."""

    active: int = 0
    processed: int = 0
    errors: int = 0
    crashes: int = 0


class WorkerPool:
    """Fixed-size set of pollers sharing one lease store.

    Each poller claims one item at a time, runs the handler registered for
    the item's kind, then completes or fails it. Pollers never share
    in-process locks; exclusivity comes from the store's row-lock claim, so
    several pools (or processes) can poll the same table.
    """

    def __init__(
        self,
        pool,
        registry: Optional[TaskRegistry] = None,
        concurrency: int = 3,
        poll_interval_s: float = 2.0,
        worker_id: Optional[str] = None,
        kinds: Optional[list[WorkItemKind]] = None,
        context: Optional[dict[str, Any]] = None,
        store: Optional[WorkItemRepository] = None,
        crash_cooldown_s: Optional[float] = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._pool = pool
        self._registry = registry or default_registry
        self._concurrency = concurrency
        self._poll_interval_s = poll_interval_s
        self._worker_id = worker_id or generate_worker_id()
        self._kinds = kinds  # None = all kinds
        self._context = context or {}
        self._store = store or WorkItemRepository(pool)
        self._crash_cooldown_s = (
            crash_cooldown_s if crash_cooldown_s is not None else poll_interval_s * 2
        )
        self._counters = PoolCounters()
        self._stop_event: Optional[asyncio.Event] = None
        self._supervisor: Optional[asyncio.Task] = None

    @property
    def worker_id(self) -> str:
        return self._worker_id

    @property
    def running(self) -> bool:
        return self._supervisor is not None and not self._supervisor.done()

    def poller_id(self, index: int) -> str:
        """Lock owner identity of one poller."""
        return f"{self._worker_id}/{index}"

    async def start(self) -> None:
        """Spawn the pollers. No-op if already running."""
        if self.running:
            logger.info("worker_pool_already_running", worker_id=self._worker_id)
            return

        self._stop_event = asyncio.Event()
        self._supervisor = asyncio.create_task(self._supervise())

        logger.info(
            "worker_pool_started",
            worker_id=self._worker_id,
            version=__version__,
            concurrency=self._concurrency,
            poll_interval_s=self._poll_interval_s,
            kinds=[k.value for k in self._kinds] if self._kinds else "all",
        )

    async def stop(self) -> None:
        """Signal pollers to stop and wait for in-flight items to finish."""
        if self._supervisor is None:
            return
        assert self._stop_event is not None
        self._stop_event.set()
        try:
            await self._supervisor
        finally:
            self._supervisor = None
        logger.info("worker_pool_stopped", worker_id=self._worker_id, **asdict(self._counters))

    def stats(self) -> dict[str, Any]:
        """In-process counters for this pool."""
        return {
            "running": self.running,
            "worker_id": self._worker_id,
            "concurrency": self._concurrency,
            **asdict(self._counters),
        }

    async def get_stats(self) -> dict[str, Any]:
        """Pool counters plus queue counts by status."""
        return {"pool": self.stats(), "queue": await self._store.stats(self._kinds)}

    async def _supervise(self) -> None:
        async with asyncio.TaskGroup() as tg:
            for index in range(self._concurrency):
                tg.create_task(self._poller(index))

    async def _poller(self, index: int) -> None:
        """Poll loop for one poller; crashes are logged and the loop restarts."""
        poller_id = self.poller_id(index)
        assert self._stop_event is not None

        while not self._stop_event.is_set():
            try:
                await self.poll_once(poller_id)
            except asyncio.CancelledError:
                logger.info("poller_cancelled", poller_id=poller_id)
                raise
            except Exception as e:
                self._counters.crashes += 1
                logger.error(
                    "poller_crashed",
                    poller_id=poller_id,
                    error=str(e),
                    traceback=traceback.format_exc(),
                    cooldown_s=self._crash_cooldown_s,
                )
                await self._sleep(self._crash_cooldown_s)

        logger.info("poller_stopped", poller_id=poller_id)

    async def poll_once(self, poller_id: str) -> bool:
        """Claim and run at most one item. Returns True if an item was claimed."""
        items = await self._store.claim(1, poller_id, self._kinds)
        if not items:
            await self._sleep(self._poll_interval_s)
            return False

        for item in items:
            await self._execute(item, poller_id)
        return True

    async def _execute(self, item: WorkItem, poller_id: str) -> None:
        """Run the handler for one claimed item and resolve it in the store."""
        log = logger.bind(item_id=item.id, kind=item.kind.value, tenant=item.tenant)
        log.info("work_item_executing", attempts=item.attempts, poller_id=poller_id)
        policy = self._registry.policy_for(item.kind)

        try:
            handler = self._registry.get_handler(item.kind)
        except KeyError:
            error = f"No handler registered for kind: {item.kind.value}"
            log.error("work_item_no_handler", error=error)
            self._counters.errors += 1
            await self._store.fail(
                item.id, error, policy=policy, terminal=True, worker_id=poller_id
            )
            return

        context = {
            "worker_id": poller_id,
            "pool": self._pool,
            "store": self._store,
            **self._context,
        }

        self._counters.active += 1
        try:
            try:
                result = await handler(item, context)
            except Exception as e:
                self._counters.errors += 1
                error = str(e) or type(e).__name__
                hint = retry_after_hint(e, default=DEFAULT_RATE_LIMIT_RETRY_S)
                log.error("work_item_handler_failed", error=error, retry_after_s=hint)
                outcome = await self._store.fail(
                    item.id, error, hint, policy=policy, worker_id=poller_id
                )
                log.info(
                    "work_item_fail_recorded",
                    status=outcome.status.value,
                    attempts=outcome.attempts,
                    delay_s=outcome.delay_s,
                )
                return

            await self._store.complete(item.id, result, worker_id=poller_id)
            self._counters.processed += 1
            log.info("work_item_succeeded")
        finally:
            self._counters.active -= 1

    async def _sleep(self, seconds: float) -> None:
        """Sleep, waking early when stop is requested."""
        assert self._stop_event is not None
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
