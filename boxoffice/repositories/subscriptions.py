"""Repository for active and cancelled subscription contracts.

A contract lives in at most one of the two tables: moving it to one side
deletes it from the other.
"""

from typing import Optional

from boxoffice.services.removal.models import SubscriptionRow


class ActiveSubscriptionRepository:
    """Tracks which contracts are active or cancelled per shop."""

    def __init__(self, pool):
        self.pool = pool

    async def upsert(
        self,
        tenant: str,
        contract_id: str,
        customer_id: str,
        line_variant_id: Optional[str] = None,
    ) -> None:
        """Record a contract as active and drop any cancelled entry for it."""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    """
                    INSERT INTO active_subscriptions
                        (tenant, contract_id, customer_id, line_variant_id)
                    VALUES ($1, $2, $3, $4)
                    ON CONFLICT (tenant, contract_id) DO UPDATE SET
                        customer_id = EXCLUDED.customer_id,
                        line_variant_id = EXCLUDED.line_variant_id,
                        updated_at = now()
                    """,
                    tenant,
                    contract_id,
                    customer_id,
                    line_variant_id,
                )
                await conn.execute(
                    "DELETE FROM cancelled_subscriptions WHERE tenant = $1 AND contract_id = $2",
                    tenant,
                    contract_id,
                )

    async def mark_cancelled(
        self,
        tenant: str,
        contract_id: str,
        customer_id: str,
        line_variant_id: Optional[str] = None,
        status: str = "CANCELLED",
    ) -> None:
        """Record a contract as paused or cancelled and drop it from the active set."""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    """
                    INSERT INTO cancelled_subscriptions
                        (tenant, contract_id, customer_id, line_variant_id, status)
                    VALUES ($1, $2, $3, $4, $5)
                    ON CONFLICT (tenant, contract_id) DO UPDATE SET
                        customer_id = EXCLUDED.customer_id,
                        line_variant_id = EXCLUDED.line_variant_id,
                        status = EXCLUDED.status,
                        updated_at = now()
                    """,
                    tenant,
                    contract_id,
                    customer_id,
                    line_variant_id,
                    status,
                )
                await conn.execute(
                    "DELETE FROM active_subscriptions WHERE tenant = $1 AND contract_id = $2",
                    tenant,
                    contract_id,
                )

    async def import_rows(self, tenant: str, rows: list[SubscriptionRow]) -> dict[str, int]:
        """Bulk upsert an export: ACTIVE rows to the active set, the rest to cancelled.

        Runs in one transaction so a failed import leaves both tables as
        they were.
        """
        active = [r for r in rows if r.is_active]
        cancelled = [r for r in rows if not r.is_active]

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                if active:
                    await conn.executemany(
                        """
                        INSERT INTO active_subscriptions
                            (tenant, contract_id, customer_id, line_variant_id)
                        VALUES ($1, $2, $3, $4)
                        ON CONFLICT (tenant, contract_id) DO UPDATE SET
                            customer_id = EXCLUDED.customer_id,
                            line_variant_id = EXCLUDED.line_variant_id,
                            updated_at = now()
                        """,
                        [(tenant, r.contract_id, r.customer_id, r.line_variant_id) for r in active],
                    )
                    await conn.execute(
                        """
                        DELETE FROM cancelled_subscriptions
                        WHERE tenant = $1 AND contract_id = ANY($2::text[])
                        """,
                        tenant,
                        [r.contract_id for r in active],
                    )
                if cancelled:
                    await conn.executemany(
                        """
                        INSERT INTO cancelled_subscriptions
                            (tenant, contract_id, customer_id, line_variant_id, status)
                        VALUES ($1, $2, $3, $4, $5)
                        ON CONFLICT (tenant, contract_id) DO UPDATE SET
                            customer_id = EXCLUDED.customer_id,
                            line_variant_id = EXCLUDED.line_variant_id,
                            status = EXCLUDED.status,
                            updated_at = now()
                        """,
                        [
                            (tenant, r.contract_id, r.customer_id, r.line_variant_id, r.status)
                            for r in cancelled
                        ],
                    )
                    await conn.execute(
                        """
                        DELETE FROM active_subscriptions
                        WHERE tenant = $1 AND contract_id = ANY($2::text[])
                        """,
                        tenant,
                        [r.contract_id for r in cancelled],
                    )

        return {"active": len(active), "cancelled": len(cancelled)}

    async def is_customer_active(self, tenant: str, customer_id: str) -> bool:
        """True when the customer still holds any active contract."""
        async with self.pool.acquire() as conn:
            found = await conn.fetchval(
                """
                SELECT EXISTS (
                    SELECT 1 FROM active_subscriptions
                    WHERE tenant = $1 AND customer_id = $2
                )
                """,
                tenant,
                customer_id,
            )
        return bool(found)

    async def counts(self, tenant: str) -> dict[str, int]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT
                    (SELECT COUNT(*) FROM active_subscriptions WHERE tenant = $1) AS active,
                    (SELECT COUNT(*) FROM cancelled_subscriptions WHERE tenant = $1) AS cancelled
                """,
                tenant,
            )
        return {"active": row["active"], "cancelled": row["cancelled"]}
