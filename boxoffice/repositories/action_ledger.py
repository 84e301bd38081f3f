"""Repository for the idempotency ledger (action_records).

A row per (tenant, subject, action). Inserting the row is the lock: the
unique constraint decides which attempt owns an action, no locking read is
needed.
"""

from typing import Any, Optional

import structlog

from boxoffice.repositories.utils import (
    MAX_TARGET_ERROR_LENGTH,
    dump_json,
    ensure_json,
    truncate_error,
)
from boxoffice.services.idempotency import ActionRecord

logger = structlog.get_logger(__name__)

_COLUMNS = "id, tenant, subject, action, status, details, created_at, updated_at"

# Insert attempts when a conflicting row is released before it is read
_ACQUIRE_TRIES = 3


class ActionLedgerRepository:
    """Repository for idempotent action records."""

    def __init__(self, pool):
        """Initialize with database pool."""
        self.pool = pool

    async def acquire(
        self,
        tenant: str,
        subject: str,
        action: str,
        details: Optional[dict[str, Any]] = None,
    ) -> tuple[bool, ActionRecord]:
        """Atomically acquire an action or get the existing record.

        Uses INSERT ... ON CONFLICT DO NOTHING for atomic claim semantics.
        When the conflicting row is released before it can be read, the
        insert is tried again.

        Returns:
            Tuple of (acquired, record)
            - (True, record) = this attempt owns the action, proceed
            - (False, record) = another attempt owns or finished it
        """
        existing = None
        async with self.pool.acquire() as conn:
            for attempt in range(_ACQUIRE_TRIES):
                row = await conn.fetchrow(
                    f"""
                    INSERT INTO action_records (tenant, subject, action, status, details)
                    VALUES ($1, $2, $3, 'acquired', $4::jsonb)
                    ON CONFLICT (tenant, subject, action) DO NOTHING
                    RETURNING {_COLUMNS}
                    """,
                    tenant,
                    subject,
                    action,
                    dump_json(details),
                )

                if row:
                    logger.info(
                        "action_acquired", tenant=tenant, subject=subject, action=action
                    )
                    return (True, self._row_to_record(row))

                existing = await conn.fetchrow(
                    f"""
                    SELECT {_COLUMNS} FROM action_records
                    WHERE tenant = $1 AND subject = $2 AND action = $3
                    """,
                    tenant,
                    subject,
                    action,
                )
                if existing:
                    break
                logger.info(
                    "action_released_during_acquire",
                    tenant=tenant,
                    subject=subject,
                    action=action,
                    attempt=attempt + 1,
                )

        if not existing:
            raise RuntimeError("Action record kept disappearing during acquire")

        logger.info(
            "action_exists",
            tenant=tenant,
            subject=subject,
            action=action,
            status=existing["status"],
        )
        return (False, self._row_to_record(existing))

    async def mark_completed(
        self,
        tenant: str,
        subject: str,
        action: str,
        details: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Mark an acquired action completed, keeping prior details if none given."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE action_records
                SET status = 'completed',
                    details = COALESCE($4::jsonb, details),
                    updated_at = now()
                WHERE tenant = $1 AND subject = $2 AND action = $3
                  AND status = 'acquired'
                RETURNING id
                """,
                tenant,
                subject,
                action,
                dump_json(details),
            )
        logger.info("action_completed", tenant=tenant, subject=subject, action=action)
        return row is not None

    async def mark_failed(
        self, tenant: str, subject: str, action: str, error: str
    ) -> bool:
        """Mark an acquired action permanently failed."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE action_records
                SET status = 'failed',
                    details = $4::jsonb,
                    updated_at = now()
                WHERE tenant = $1 AND subject = $2 AND action = $3
                  AND status = 'acquired'
                RETURNING id
                """,
                tenant,
                subject,
                action,
                dump_json({"error": truncate_error(error, MAX_TARGET_ERROR_LENGTH)}),
            )
        logger.info("action_failed", tenant=tenant, subject=subject, action=action)
        return row is not None

    async def release(self, tenant: str, subject: str, action: str) -> bool:
        """Delete an acquired record so a later attempt can re-acquire it."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                DELETE FROM action_records
                WHERE tenant = $1 AND subject = $2 AND action = $3
                  AND status = 'acquired'
                RETURNING id
                """,
                tenant,
                subject,
                action,
            )
        logger.info("action_released", tenant=tenant, subject=subject, action=action)
        return row is not None

    async def get(
        self, tenant: str, subject: str, action: str
    ) -> Optional[ActionRecord]:
        """Get a single action record."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_COLUMNS} FROM action_records
                WHERE tenant = $1 AND subject = $2 AND action = $3
                """,
                tenant,
                subject,
                action,
            )
        return self._row_to_record(row) if row else None

    async def list_for_subject(self, tenant: str, subject: str) -> list[ActionRecord]:
        """List every action recorded against a subject, oldest first."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_COLUMNS} FROM action_records
                WHERE tenant = $1 AND subject = $2
                ORDER BY created_at ASC, id ASC
                """,
                tenant,
                subject,
            )
        return [self._row_to_record(row) for row in rows]

    @staticmethod
    def _row_to_record(row) -> ActionRecord:
        return ActionRecord.from_row(dict(row), details=ensure_json(row["details"]))
