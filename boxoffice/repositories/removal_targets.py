"""Repository for removal targets and the removal audit log.

Status updates only ever apply to rows still 'pending', so a target that
reached a terminal state never regresses.
"""

from typing import Optional

import structlog

from boxoffice.repositories.utils import (
    MAX_ERROR_LENGTH,
    MAX_TARGET_ERROR_LENGTH,
    truncate_error,
)
from boxoffice.services.removal.models import RemovalLogEntry, RemovalStatus, RemovalTarget

logger = structlog.get_logger(__name__)

_COLUMNS = """
    id, tenant, period, contract_id, customer_id, email, line_variant_id,
    removal_status, removal_error, removed_at
"""


class RemovalTargetRepository:
    """Repository for removal_targets and removal_logs."""

    def __init__(self, pool):
        self.pool = pool

    async def list_pending(self, tenant: str, period: str) -> list[RemovalTarget]:
        """Pending targets for a period in ascending id order."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_COLUMNS} FROM removal_targets
                WHERE tenant = $1 AND period = $2 AND removal_status = 'pending'
                ORDER BY id ASC
                """,
                tenant,
                period,
            )
        return [RemovalTarget.from_row(row) for row in rows]

    async def get(self, target_id: int) -> Optional[RemovalTarget]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM removal_targets WHERE id = $1", target_id
            )
        return RemovalTarget.from_row(row) if row else None

    async def get_for_contract(
        self, tenant: str, period: str, contract_id: str
    ) -> Optional[RemovalTarget]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_COLUMNS} FROM removal_targets
                WHERE tenant = $1 AND period = $2 AND contract_id = $3
                """,
                tenant,
                period,
                contract_id,
            )
        return RemovalTarget.from_row(row) if row else None

    async def upsert_pending(
        self,
        tenant: str,
        period: str,
        contract_id: str,
        customer_id: Optional[str],
        line_variant_id: Optional[str],
    ) -> RemovalTarget:
        """Create a pending target, or return the existing one unchanged.

        A still-pending row gets its customer and variant refreshed.
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO removal_targets
                    (tenant, period, contract_id, customer_id, line_variant_id, removal_status)
                VALUES ($1, $2, $3, $4, $5, 'pending')
                ON CONFLICT (tenant, period, contract_id) DO UPDATE SET
                    customer_id = EXCLUDED.customer_id,
                    line_variant_id = EXCLUDED.line_variant_id
                WHERE removal_targets.removal_status = 'pending'
                RETURNING {_COLUMNS}
                """,
                tenant,
                period,
                contract_id,
                customer_id,
                line_variant_id,
            )
            if row is None:
                row = await conn.fetchrow(
                    f"""
                    SELECT {_COLUMNS} FROM removal_targets
                    WHERE tenant = $1 AND period = $2 AND contract_id = $3
                    """,
                    tenant,
                    period,
                    contract_id,
                )
        return RemovalTarget.from_row(row)

    async def promote_cancelled(self, tenant: str, period: str) -> dict[str, int]:
        """Create pending targets for the period from cancelled contracts.

        A cancelled contract is skipped when its customer still holds an
        active contract, or when the period already has a target for it.

        Returns:
            Counts: total, inserted, skipped_active, skipped_duplicate
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                total = await conn.fetchval(
                    "SELECT COUNT(*) FROM cancelled_subscriptions WHERE tenant = $1",
                    tenant,
                )
                skipped_active = await conn.fetchval(
                    """
                    SELECT COUNT(*) FROM cancelled_subscriptions c
                    WHERE c.tenant = $1
                      AND EXISTS (
                          SELECT 1 FROM active_subscriptions a
                          WHERE a.tenant = c.tenant AND a.customer_id = c.customer_id
                      )
                    """,
                    tenant,
                )
                rows = await conn.fetch(
                    """
                    INSERT INTO removal_targets
                        (tenant, period, contract_id, customer_id, line_variant_id, removal_status)
                    SELECT c.tenant, $2, c.contract_id, c.customer_id, c.line_variant_id, 'pending'
                    FROM cancelled_subscriptions c
                    WHERE c.tenant = $1
                      AND NOT EXISTS (
                          SELECT 1 FROM active_subscriptions a
                          WHERE a.tenant = c.tenant AND a.customer_id = c.customer_id
                      )
                    ORDER BY c.id
                    ON CONFLICT (tenant, period, contract_id) DO NOTHING
                    RETURNING id
                    """,
                    tenant,
                    period,
                )

        inserted = len(rows)
        stats = {
            "total": total,
            "inserted": inserted,
            "skipped_active": skipped_active,
            "skipped_duplicate": total - skipped_active - inserted,
        }
        logger.info("removal_targets_promoted", tenant=tenant, period=period, **stats)
        return stats

    async def list_for_period(
        self,
        tenant: str,
        period: str,
        status: Optional[RemovalStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[RemovalTarget], int]:
        """Page of a period's targets in id order, with the total count."""
        status_filter = "AND removal_status = $3" if status else ""
        params: list = [tenant, period]
        if status:
            params.append(status.value)

        async with self.pool.acquire() as conn:
            total = await conn.fetchval(
                f"""
                SELECT COUNT(*) FROM removal_targets
                WHERE tenant = $1 AND period = $2 {status_filter}
                """,
                *params,
            )
            rows = await conn.fetch(
                f"""
                SELECT {_COLUMNS} FROM removal_targets
                WHERE tenant = $1 AND period = $2 {status_filter}
                ORDER BY id ASC
                LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
                """,
                *params,
                limit,
                offset,
            )
        return [RemovalTarget.from_row(row) for row in rows], total

    async def list_logs(self, tenant: str, target_id: int) -> list[RemovalLogEntry]:
        """Audit rows for one target, oldest first."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id, target_id, status, calendar_key, email, subscriber_id,
                       error, created_at
                FROM removal_logs
                WHERE tenant = $1 AND target_id = $2
                ORDER BY id ASC
                """,
                tenant,
                target_id,
            )
        return [RemovalLogEntry(**dict(row)) for row in rows]

    async def list_periods(self, tenant: str) -> list[dict]:
        """Every period with targets, newest first, with counts by status."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT period, removal_status, COUNT(*) AS count FROM removal_targets
                WHERE tenant = $1
                GROUP BY period, removal_status
                ORDER BY period DESC
                """,
                tenant,
            )

        periods: dict[str, dict[str, int]] = {}
        for row in rows:
            counts = periods.setdefault(
                row["period"], {status.value: 0 for status in RemovalStatus}
            )
            counts[row["removal_status"]] = row["count"]
        return [{"period": period, "counts": counts} for period, counts in periods.items()]

    async def set_email(self, target_id: int, email: str) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                "UPDATE removal_targets SET email = $2 WHERE id = $1", target_id, email
            )

    async def mark(
        self, target_id: int, status: RemovalStatus, error: Optional[str] = None
    ) -> bool:
        """Move a pending target to a terminal status.

        Returns False when the row was no longer pending.
        """
        if status is RemovalStatus.PENDING:
            raise ValueError("Cannot mark a target pending")

        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE removal_targets SET
                    removal_status = $2,
                    removal_error = $3,
                    removed_at = CASE WHEN $2 = 'done' THEN now() ELSE removed_at END
                WHERE id = $1 AND removal_status = 'pending'
                RETURNING id
                """,
                target_id,
                status.value,
                truncate_error(error, MAX_TARGET_ERROR_LENGTH) if error else None,
            )
        if row is None:
            logger.info("removal_target_not_pending", target_id=target_id, status=status.value)
            return False
        return True

    async def skip_reactivated(self, tenant: str, period: str, contract_id: str) -> int:
        """Skip pending targets of a contract that became active again."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                UPDATE removal_targets SET
                    removal_status = 'skipped',
                    removal_error = 'Contract reactivated'
                WHERE tenant = $1 AND period = $2 AND contract_id = $3
                  AND removal_status = 'pending'
                RETURNING id
                """,
                tenant,
                period,
                contract_id,
            )
        return len(rows)

    async def counts(self, tenant: str, period: str) -> dict[str, int]:
        """Target counts by status for a period (zero-filled)."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT removal_status, COUNT(*) AS count FROM removal_targets
                WHERE tenant = $1 AND period = $2
                GROUP BY removal_status
                """,
                tenant,
                period,
            )
        counts = {status.value: 0 for status in RemovalStatus}
        for row in rows:
            counts[row["removal_status"]] = row["count"]
        return counts

    async def log_attempt(
        self,
        tenant: str,
        target_id: int,
        status: RemovalStatus,
        calendar_key: Optional[str] = None,
        email: Optional[str] = None,
        subscriber_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        """Append an audit row. A write failure is logged, never raised."""
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO removal_logs
                        (tenant, target_id, calendar_key, email, subscriber_id, status, error)
                    VALUES ($1, $2, $3, $4, $5, $6, $7)
                    """,
                    tenant,
                    target_id,
                    calendar_key,
                    email,
                    subscriber_id,
                    status.value,
                    truncate_error(error, MAX_ERROR_LENGTH) if error else None,
                )
        except Exception as e:
            logger.error("removal_log_write_failed", target_id=target_id, error=str(e))
