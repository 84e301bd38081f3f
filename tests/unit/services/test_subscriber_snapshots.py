"""Tests for calendar classification and subscriber snapshots."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from boxoffice.services.removal.calendars import NORTHERN, SOUTHERN, CalendarDirectory
from boxoffice.services.removal.snapshots import SnapshotStore


class TestCalendarDirectory:
    def test_key_for_variant(self):
        directory = CalendarDirectory(["111", " 112"], ["222"], "cal-n", "cal-s")
        assert directory.key_for_variant("111") == NORTHERN
        assert directory.key_for_variant(112) == NORTHERN
        assert directory.key_for_variant("222") == SOUTHERN
        assert directory.key_for_variant("999") is None
        assert directory.key_for_variant(None) is None

    def test_calendar_id(self):
        directory = CalendarDirectory(["111"], ["222"], "cal-n", "")
        assert directory.calendar_id(NORTHERN) == "cal-n"
        assert directory.calendar_id(SOUTHERN) is None
        assert directory.calendar_id(None) is None

    def test_from_settings(self):
        settings = MagicMock()
        settings.northern_variants = ["111"]
        settings.southern_variants = ["222"]
        settings.addevent_northern_calendar_id = "cal-n"
        settings.addevent_southern_calendar_id = "cal-s"

        directory = CalendarDirectory.from_settings(settings)

        assert directory.calendar_id(directory.key_for_variant("222")) == "cal-s"


@pytest.fixture
def store(mock_pool):
    pool, conn = mock_pool
    addevent = AsyncMock()
    addevent.list_subscribers.return_value = [
        {"subscriber_id": "s1", "email": "ada@example.com"},
        {"subscriber_id": "s2", "email": "bob@example.com"},
        {"subscriber_id": "", "email": "broken@example.com"},
    ]
    directory = CalendarDirectory(["111"], ["222"], "cal-n", None)
    return SnapshotStore(pool, addevent, directory, ttl_minutes=15), conn, addevent


class TestSnapshotStore:
    @pytest.mark.asyncio
    async def test_fresh_snapshot_reused(self, store):
        snapshots, conn, addevent = store
        conn.fetchrow.return_value = {"id": 5, "subscriber_count": 2, "fresh": True}

        assert await snapshots.ensure("shop", "2024-03", NORTHERN) == 5

        addevent.list_subscribers.assert_not_awaited()
        assert conn.fetchrow.call_args.args[4] == 15

    @pytest.mark.asyncio
    async def test_stale_snapshot_rebuilt(self, store):
        snapshots, conn, addevent = store
        conn.fetchrow.return_value = {"id": 5, "subscriber_count": 2, "fresh": False}
        conn.fetchval.return_value = 5

        assert await snapshots.ensure("shop", "2024-03", NORTHERN) == 5

        addevent.list_subscribers.assert_awaited_once_with("cal-n")
        conn.transaction.assert_called_once()
        assert conn.fetchval.call_args.args[1:] == ("shop", "2024-03", NORTHERN, "cal-n", 3)
        conn.execute.assert_awaited_once_with(
            "DELETE FROM subscriber_cache WHERE snapshot_id = $1", 5
        )
        rows = conn.executemany.call_args.args[1]
        assert rows == [(5, "ada@example.com", "s1"), (5, "bob@example.com", "s2")]

    @pytest.mark.asyncio
    async def test_missing_snapshot_built(self, store):
        snapshots, conn, addevent = store
        conn.fetchrow.return_value = None
        conn.fetchval.return_value = 8

        assert await snapshots.ensure("shop", "2024-03", NORTHERN) == 8
        addevent.list_subscribers.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unconfigured_calendar(self, store):
        snapshots, conn, addevent = store

        assert await snapshots.ensure("shop", "2024-03", SOUTHERN) is None

        conn.fetchrow.assert_not_awaited()
        addevent.list_subscribers.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_lookup_normalizes_email(self, store):
        snapshots, conn, _ = store
        conn.fetchval.return_value = "s1"

        assert await snapshots.lookup(5, "  Ada@Example.com ") == "s1"
        assert conn.fetchval.call_args.args[1:] == (5, "ada@example.com")
