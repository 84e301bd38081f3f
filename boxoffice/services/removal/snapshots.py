"""TTL-cached copies of calendar subscriber listings.

Listing a calendar costs up to a hundred paged API calls, so the result is
stored per (tenant, period, calendar) and reused until it is older than the
TTL. A stale snapshot is rebuilt wholesale inside one transaction.
"""

from typing import Optional

import structlog

from boxoffice.services.addevent import AddEventClient, normalize_email
from boxoffice.services.removal.calendars import CalendarDirectory

logger = structlog.get_logger(__name__)


class SnapshotStore:
    """subscriber_snapshots and subscriber_cache access."""

    def __init__(
        self,
        pool,
        addevent: AddEventClient,
        directory: CalendarDirectory,
        ttl_minutes: int = 15,
    ):
        self.pool = pool
        self.addevent = addevent
        self.directory = directory
        self.ttl_minutes = ttl_minutes

    async def ensure(self, tenant: str, period: str, calendar_key: str) -> Optional[int]:
        """Snapshot id for the calendar, refreshing it when stale.

        Returns None when the calendar key has no configured calendar id.
        """
        calendar_id = self.directory.calendar_id(calendar_key)
        if not calendar_id:
            logger.warning("snapshot_no_calendar_id", tenant=tenant, calendar_key=calendar_key)
            return None

        log = logger.bind(tenant=tenant, period=period, calendar_key=calendar_key)

        async with self.pool.acquire() as conn:
            existing = await conn.fetchrow(
                """
                SELECT id, subscriber_count,
                       (now() - fetched_at) < make_interval(mins => $4) AS fresh
                FROM subscriber_snapshots
                WHERE tenant = $1 AND period = $2 AND calendar_key = $3
                """,
                tenant,
                period,
                calendar_key,
                self.ttl_minutes,
            )
        if existing and existing["fresh"]:
            log.info("snapshot_reused", snapshot_id=existing["id"])
            return existing["id"]

        subscribers = await self.addevent.list_subscribers(calendar_id)
        records = [
            (s["email"], s["subscriber_id"])
            for s in subscribers
            if s["email"] and s["subscriber_id"]
        ]

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                snapshot_id = await conn.fetchval(
                    """
                    INSERT INTO subscriber_snapshots
                        (tenant, period, calendar_key, calendar_id, fetched_at, subscriber_count)
                    VALUES ($1, $2, $3, $4, now(), $5)
                    ON CONFLICT (tenant, period, calendar_key) DO UPDATE SET
                        calendar_id = EXCLUDED.calendar_id,
                        fetched_at = EXCLUDED.fetched_at,
                        subscriber_count = EXCLUDED.subscriber_count
                    RETURNING id
                    """,
                    tenant,
                    period,
                    calendar_key,
                    calendar_id,
                    len(subscribers),
                )
                await conn.execute(
                    "DELETE FROM subscriber_cache WHERE snapshot_id = $1", snapshot_id
                )
                if records:
                    await conn.executemany(
                        """
                        INSERT INTO subscriber_cache (snapshot_id, email, subscriber_id)
                        VALUES ($1, $2, $3)
                        ON CONFLICT (snapshot_id, email) DO UPDATE SET
                            subscriber_id = EXCLUDED.subscriber_id
                        """,
                        [(snapshot_id, email, sub_id) for email, sub_id in records],
                    )

        log.info("snapshot_rebuilt", snapshot_id=snapshot_id, subscribers=len(subscribers))
        return snapshot_id

    async def lookup(self, snapshot_id: int, email: str) -> Optional[str]:
        """Subscriber id for an email within a snapshot."""
        async with self.pool.acquire() as conn:
            return await conn.fetchval(
                """
                SELECT subscriber_id FROM subscriber_cache
                WHERE snapshot_id = $1 AND email = $2
                """,
                snapshot_id,
                normalize_email(email),
            )
