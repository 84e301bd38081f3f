"""Repository for the durable work queue (lease store).

Mutual exclusion between workers, including workers in separate processes,
comes only from Postgres row locks: claims use FOR UPDATE SKIP LOCKED and
enqueue dedup relies on the (tenant, kind, natural_key) unique constraint.
"""

from typing import Any, Optional

import structlog

from boxoffice.jobs.models import EnqueueResult, FailResult, WorkItem
from boxoffice.jobs.retry import DEFAULT_POLICY, RetryPolicy
from boxoffice.jobs.types import EnqueueOutcome, WorkItemKind, WorkItemStatus
from boxoffice.repositories.utils import dump_json, ensure_json, truncate_error

logger = structlog.get_logger(__name__)


class WorkItemRepository:
    """Repository for work queue operations."""

    def __init__(self, pool, policy: RetryPolicy = DEFAULT_POLICY):
        self._pool = pool
        self._policy = policy

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def enqueue(
        self,
        tenant: str,
        kind: WorkItemKind,
        natural_key: str,
        payload: dict[str, Any],
        delay_s: float = 0,
    ) -> EnqueueResult:
        """Upsert a work item on its natural key.

        - new key: inserted as queued, eligible after delay_s
        - queued/processing: payload refreshed (latest producer wins)
        - failed: re-created as queued with attempts reset
        - completed: left untouched, reported as duplicate
        """
        query = """
            INSERT INTO work_items (tenant, kind, natural_key, status, payload, run_after)
            VALUES ($1, $2, $3, 'queued', $4::jsonb,
                    now() + make_interval(secs => $5))
            ON CONFLICT (tenant, kind, natural_key) DO UPDATE SET
                payload = EXCLUDED.payload,
                status = CASE WHEN work_items.status = 'failed'
                              THEN 'queued' ELSE work_items.status END,
                attempts = CASE WHEN work_items.status = 'failed'
                                THEN 0 ELSE work_items.attempts END,
                run_after = CASE WHEN work_items.status = 'failed'
                                 THEN EXCLUDED.run_after ELSE work_items.run_after END,
                last_error = CASE WHEN work_items.status = 'failed'
                                  THEN NULL ELSE work_items.last_error END,
                updated_at = now()
            WHERE work_items.status <> 'completed'
            RETURNING id, (xmax = 0) AS inserted
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                query,
                tenant,
                kind.value,
                natural_key,
                dump_json(payload),
                float(delay_s),
            )
            if row is None:
                # Conflict with a completed row; the WHERE suppressed the update
                existing_id = await conn.fetchval(
                    """
                    SELECT id FROM work_items
                    WHERE tenant = $1 AND kind = $2 AND natural_key = $3
                    """,
                    tenant,
                    kind.value,
                    natural_key,
                )
                logger.info(
                    "work_item_enqueue_duplicate",
                    tenant=tenant,
                    kind=kind.value,
                    natural_key=natural_key,
                    item_id=existing_id,
                )
                return EnqueueResult(EnqueueOutcome.DUPLICATE, existing_id)

        outcome = EnqueueOutcome.INSERTED if row["inserted"] else EnqueueOutcome.UPDATED
        logger.info(
            "work_item_enqueued",
            tenant=tenant,
            kind=kind.value,
            natural_key=natural_key,
            item_id=row["id"],
            outcome=outcome.value,
            delay_s=delay_s,
        )
        return EnqueueResult(outcome, row["id"])

    async def claim(
        self,
        limit: int,
        worker_id: str,
        kinds: Optional[list[WorkItemKind]] = None,
    ) -> list[WorkItem]:
        """Claim up to ``limit`` eligible items using FOR UPDATE SKIP LOCKED.

        Eligible means queued with run_after <= now(), taken oldest-due first
        with id as tie-break. Selected rows move to processing with the lock
        stamped and attempts incremented, all in one transaction.

        Returns an empty list if nothing is eligible.
        """
        if limit <= 0:
            return []

        kind_filter = ""
        params: list[Any] = [worker_id, limit]
        if kinds:
            kind_filter = "AND kind = ANY($3::text[])"
            params.append([k.value for k in kinds])

        query = f"""
            WITH cte AS (
                SELECT id FROM work_items
                WHERE status = 'queued' AND run_after <= now()
                {kind_filter}
                ORDER BY run_after, id
                FOR UPDATE SKIP LOCKED
                LIMIT $2
            )
            UPDATE work_items w SET
                status = 'processing',
                lock_owner = $1,
                locked_at = now(),
                attempts = w.attempts + 1,
                updated_at = now()
            FROM cte
            WHERE w.id = cte.id
            RETURNING w.*
        """
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                rows = await conn.fetch(query, *params)

        # UPDATE ... RETURNING does not preserve the CTE order
        items = sorted(
            (self._row_to_item(row) for row in rows),
            key=lambda item: (item.run_after, item.id),
        )
        for item in items:
            logger.info(
                "work_item_claimed",
                item_id=item.id,
                kind=item.kind.value,
                tenant=item.tenant,
                attempts=item.attempts,
                worker_id=worker_id,
            )
        return items

    async def complete(
        self,
        item_id: int,
        stats: Optional[dict[str, Any]] = None,
        worker_id: Optional[str] = None,
    ) -> bool:
        """Mark a processing item completed and release its lock.

        When worker_id is given the update only applies while that worker
        still holds the lock. Returns False if no row was updated.
        """
        owner_filter = "AND lock_owner = $3" if worker_id else ""
        params: list[Any] = [item_id, dump_json(stats)]
        if worker_id:
            params.append(worker_id)

        query = f"""
            UPDATE work_items SET
                status = 'completed',
                lock_owner = NULL,
                locked_at = NULL,
                last_error = NULL,
                stats = COALESCE($2::jsonb, stats),
                updated_at = now()
            WHERE id = $1 AND status = 'processing'
            {owner_filter}
            RETURNING id
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(query, *params)

        if row is None:
            logger.warning("work_item_complete_lock_lost", item_id=item_id, worker_id=worker_id)
            return False
        logger.info("work_item_completed", item_id=item_id)
        return True

    async def fail(
        self,
        item_id: int,
        error: str,
        retry_after_s: Optional[float] = None,
        policy: Optional[RetryPolicy] = None,
        terminal: bool = False,
        worker_id: Optional[str] = None,
    ) -> FailResult:
        """Record a failure, scheduling a retry or marking the item failed.

        The item becomes failed once attempts >= max_attempts (or when
        ``terminal`` is set). Otherwise it is requeued after the hint, if
        given, else the policy's exponential backoff.
        """
        policy = policy or self._policy
        message = truncate_error(error)

        async with self._pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    """
                    SELECT attempts, status, lock_owner FROM work_items
                    WHERE id = $1
                    FOR UPDATE
                    """,
                    item_id,
                )
                if not row:
                    raise ValueError(f"Work item {item_id} not found")

                attempts = row["attempts"]
                if worker_id and row["lock_owner"] != worker_id:
                    logger.warning(
                        "work_item_fail_lock_lost",
                        item_id=item_id,
                        worker_id=worker_id,
                        lock_owner=row["lock_owner"],
                    )
                    return FailResult(WorkItemStatus(row["status"]), attempts)

                if terminal or policy.is_terminal(attempts):
                    await conn.execute(
                        """
                        UPDATE work_items SET
                            status = 'failed',
                            lock_owner = NULL,
                            locked_at = NULL,
                            last_error = $2,
                            updated_at = now()
                        WHERE id = $1
                        """,
                        item_id,
                        message,
                    )
                    logger.warning(
                        "work_item_failed",
                        item_id=item_id,
                        attempts=attempts,
                        error=message,
                    )
                    return FailResult(WorkItemStatus.FAILED, attempts)

                delay = policy.next_delay(attempts, retry_after_s)
                await conn.execute(
                    """
                    UPDATE work_items SET
                        status = 'queued',
                        lock_owner = NULL,
                        locked_at = NULL,
                        last_error = $2,
                        run_after = now() + make_interval(secs => $3),
                        updated_at = now()
                    WHERE id = $1
                    """,
                    item_id,
                    message,
                    float(delay),
                )

        logger.info(
            "work_item_retry_scheduled",
            item_id=item_id,
            attempts=attempts,
            delay_s=delay,
            rate_limited=retry_after_s is not None,
        )
        return FailResult(WorkItemStatus.QUEUED, attempts, delay)

    async def stats(self, kinds: Optional[list[WorkItemKind]] = None) -> dict[str, int]:
        """Count items by status (every status present, zero-filled)."""
        if kinds:
            query = """
                SELECT status, COUNT(*) AS count FROM work_items
                WHERE kind = ANY($1::text[])
                GROUP BY status
            """
            params: list[Any] = [[k.value for k in kinds]]
        else:
            query = "SELECT status, COUNT(*) AS count FROM work_items GROUP BY status"
            params = []

        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query, *params)

        counts = {status.value: 0 for status in WorkItemStatus}
        for row in rows:
            counts[row["status"]] = row["count"]
        return counts

    async def get(self, item_id: int) -> Optional[WorkItem]:
        """Get a work item by ID."""
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM work_items WHERE id = $1", item_id)
        return self._row_to_item(row) if row else None

    async def get_by_key(
        self, tenant: str, kind: WorkItemKind, natural_key: str
    ) -> Optional[WorkItem]:
        """Get a work item by its natural key."""
        query = """
            SELECT * FROM work_items
            WHERE tenant = $1 AND kind = $2 AND natural_key = $3
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(query, tenant, kind.value, natural_key)
        return self._row_to_item(row) if row else None

    async def reap_stale(self, lock_timeout_s: float, max_attempts: int) -> int:
        """Release processing items whose lock is older than lock_timeout_s.

        Items under the attempt bound go back to queued; exhausted ones fail.
        """
        query = """
            UPDATE work_items SET
                status = CASE WHEN attempts >= $2 THEN 'failed' ELSE 'queued' END,
                lock_owner = NULL,
                locked_at = NULL,
                last_error = $3,
                run_after = now(),
                updated_at = now()
            WHERE status = 'processing'
              AND locked_at < now() - make_interval(secs => $1)
            RETURNING id, status
        """
        message = f"Lock expired after {int(lock_timeout_s)}s"
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query, float(lock_timeout_s), max_attempts, message)

        count = len(rows)
        if count > 0:
            logger.warning(
                "stale_work_items_reaped",
                count=count,
                requeued=sum(1 for r in rows if r["status"] == "queued"),
                failed=sum(1 for r in rows if r["status"] == "failed"),
            )
        return count

    def _row_to_item(self, row) -> WorkItem:
        """Convert a database row to a WorkItem."""
        return WorkItem(
            id=row["id"],
            tenant=row["tenant"],
            kind=WorkItemKind(row["kind"]),
            natural_key=row["natural_key"],
            status=WorkItemStatus(row["status"]),
            payload=ensure_json(row["payload"]) or {},
            attempts=row["attempts"],
            run_after=row["run_after"],
            lock_owner=row["lock_owner"],
            locked_at=row["locked_at"],
            last_error=row["last_error"],
            stats=ensure_json(row["stats"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
