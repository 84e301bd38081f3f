"""Repository for workshop settings and registrations."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from boxoffice.repositories.utils import dump_json, ensure_json


@dataclass
class WorkshopSettings:
    tenant: str
    workshop_at: Optional[datetime]
    notify_offsets: list[int] = field(default_factory=list)


@dataclass
class WorkshopRegistration:
    id: int
    tenant: str
    order_id: str
    email: Optional[str]
    order_name: Optional[str] = None
    customer_id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    purchased_at: Optional[datetime] = None
    workshop_at: Optional[datetime] = None


def _offsets(value) -> list[int]:
    parsed = ensure_json(value) or []
    if not isinstance(parsed, list):
        return []
    return [int(v) for v in parsed]


class WorkshopRepository:
    """workshop_settings and workshop_registrations access."""

    def __init__(self, pool):
        self.pool = pool

    async def get_settings(self, tenant: str) -> Optional[WorkshopSettings]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT tenant, workshop_at, notify_offsets FROM workshop_settings
                WHERE tenant = $1
                """,
                tenant,
            )
        if not row:
            return None
        return WorkshopSettings(row["tenant"], row["workshop_at"], _offsets(row["notify_offsets"]))

    async def list_scheduled(self) -> list[WorkshopSettings]:
        """Settings of every tenant with a workshop date."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT tenant, workshop_at, notify_offsets FROM workshop_settings
                WHERE workshop_at IS NOT NULL
                ORDER BY tenant
                """
            )
        return [
            WorkshopSettings(r["tenant"], r["workshop_at"], _offsets(r["notify_offsets"]))
            for r in rows
        ]

    async def save_settings(
        self, tenant: str, workshop_at: Optional[datetime], notify_offsets: list[int]
    ) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO workshop_settings (tenant, workshop_at, notify_offsets)
                VALUES ($1, $2, $3::jsonb)
                ON CONFLICT (tenant) DO UPDATE SET
                    workshop_at = EXCLUDED.workshop_at,
                    notify_offsets = EXCLUDED.notify_offsets,
                    updated_at = now()
                """,
                tenant,
                workshop_at,
                dump_json(notify_offsets),
            )

    async def upsert_registration(
        self,
        tenant: str,
        order_id: str,
        order_name: Optional[str],
        customer_id: Optional[str],
        email: Optional[str],
        first_name: Optional[str],
        last_name: Optional[str],
        purchased_at: Optional[datetime],
        workshop_at: Optional[datetime],
    ) -> int:
        """One registration per order; first purchase/workshop dates win."""
        async with self.pool.acquire() as conn:
            return await conn.fetchval(
                """
                INSERT INTO workshop_registrations
                    (tenant, order_id, order_name, customer_id, email,
                     first_name, last_name, purchased_at, workshop_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                ON CONFLICT (tenant, order_id) DO UPDATE SET
                    order_name = EXCLUDED.order_name,
                    email = EXCLUDED.email,
                    first_name = EXCLUDED.first_name,
                    last_name = EXCLUDED.last_name,
                    purchased_at = COALESCE(workshop_registrations.purchased_at,
                                            EXCLUDED.purchased_at),
                    workshop_at = COALESCE(workshop_registrations.workshop_at,
                                           EXCLUDED.workshop_at)
                RETURNING id
                """,
                tenant,
                order_id,
                order_name,
                customer_id,
                email,
                first_name,
                last_name,
                purchased_at,
                workshop_at,
            )

    async def list_notifiable(self, tenant: str) -> list[WorkshopRegistration]:
        """Registrations with an email address, oldest first."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id, tenant, order_id, order_name, customer_id, email,
                       first_name, last_name, purchased_at, workshop_at
                FROM workshop_registrations
                WHERE tenant = $1 AND email IS NOT NULL AND email <> ''
                ORDER BY id
                """,
                tenant,
            )
        return [WorkshopRegistration(**dict(r)) for r in rows]
