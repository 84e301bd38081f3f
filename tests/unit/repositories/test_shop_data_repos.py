"""Tests for the smaller shop data repositories."""

import json
from datetime import datetime, timezone

import pytest

from boxoffice.core.errors import PermanentError
from boxoffice.repositories.email_templates import EmailTemplateRepository
from boxoffice.repositories.shop_sessions import ShopSessionRepository
from boxoffice.repositories.subscriptions import ActiveSubscriptionRepository
from boxoffice.repositories.workshops import WorkshopRepository
from boxoffice.services.removal.models import SubscriptionRow

WORKSHOP_AT = datetime(2024, 6, 1, 18, 0, tzinfo=timezone.utc)


class TestShopSessions:
    @pytest.mark.asyncio
    async def test_token_returned(self, mock_pool):
        pool, conn = mock_pool
        conn.fetchval.return_value = "shpat_123"

        assert await ShopSessionRepository(pool).get_access_token("shop") == "shpat_123"
        assert "is_uninstalled = false" in conn.fetchval.call_args.args[0]

    @pytest.mark.asyncio
    async def test_missing_token_is_permanent(self, mock_pool):
        pool, conn = mock_pool
        conn.fetchval.return_value = None

        with pytest.raises(PermanentError):
            await ShopSessionRepository(pool).get_access_token("gone.myshopify.com")


class TestEmailTemplates:
    @pytest.mark.asyncio
    async def test_get(self, mock_pool):
        pool, conn = mock_pool
        conn.fetchrow.return_value = {
            "tenant": "shop",
            "template_key": "northern_subscription",
            "title": "Welcome",
            "subject": "Hi {{first_name}}",
            "html": None,
        }

        template = await EmailTemplateRepository(pool).get("shop", "northern_subscription")

        assert template.subject == "Hi {{first_name}}"
        assert template.html == ""

    @pytest.mark.asyncio
    async def test_missing(self, mock_pool):
        pool, conn = mock_pool
        conn.fetchrow.return_value = None
        assert await EmailTemplateRepository(pool).get("shop", "nope") is None


class TestActiveSubscriptions:
    @pytest.mark.asyncio
    async def test_is_customer_active(self, mock_pool):
        pool, conn = mock_pool
        conn.fetchval.return_value = True
        assert await ActiveSubscriptionRepository(pool).is_customer_active("shop", "501")

    @pytest.mark.asyncio
    async def test_upsert_clears_cancelled_entry(self, mock_pool):
        pool, conn = mock_pool

        await ActiveSubscriptionRepository(pool).upsert("shop", "77", "501", "111")

        queries = [c.args[0] for c in conn.execute.await_args_list]
        assert "INSERT INTO active_subscriptions" in queries[0]
        assert "DELETE FROM cancelled_subscriptions" in queries[1]

    @pytest.mark.asyncio
    async def test_mark_cancelled_moves_contract(self, mock_pool):
        pool, conn = mock_pool

        await ActiveSubscriptionRepository(pool).mark_cancelled(
            "shop", "77", "501", "111", "PAUSED"
        )

        insert, delete = conn.execute.await_args_list
        assert "INSERT INTO cancelled_subscriptions" in insert.args[0]
        assert insert.args[1:] == ("shop", "77", "501", "111", "PAUSED")
        assert "DELETE FROM active_subscriptions" in delete.args[0]

    @pytest.mark.asyncio
    async def test_import_rows_splits_by_status(self, mock_pool):
        pool, conn = mock_pool
        rows = [
            SubscriptionRow("77", "501", "ACTIVE", "111"),
            SubscriptionRow("78", "502", "CANCELLED", "222"),
            SubscriptionRow("79", "503", "PAUSED", None),
        ]

        counts = await ActiveSubscriptionRepository(pool).import_rows("shop", rows)

        assert counts == {"active": 1, "cancelled": 2}
        active_call, cancelled_call = conn.executemany.await_args_list
        assert "INSERT INTO active_subscriptions" in active_call.args[0]
        assert active_call.args[1] == [("shop", "77", "501", "111")]
        assert cancelled_call.args[1] == [
            ("shop", "78", "502", "222", "CANCELLED"),
            ("shop", "79", "503", None, "PAUSED"),
        ]
        # each side removes its contracts from the other table
        deletes = [c.args for c in conn.execute.await_args_list]
        assert deletes[0][2] == ["77"]
        assert deletes[1][2] == ["78", "79"]
        conn.transaction.assert_called_once()

    @pytest.mark.asyncio
    async def test_import_nothing(self, mock_pool):
        pool, conn = mock_pool

        counts = await ActiveSubscriptionRepository(pool).import_rows("shop", [])

        assert counts == {"active": 0, "cancelled": 0}
        conn.executemany.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_counts(self, mock_pool):
        pool, conn = mock_pool
        conn.fetchrow.return_value = {"active": 4, "cancelled": 2}

        assert await ActiveSubscriptionRepository(pool).counts("shop") == {
            "active": 4,
            "cancelled": 2,
        }


class TestWorkshops:
    @pytest.mark.asyncio
    async def test_list_scheduled_parses_offsets(self, mock_pool):
        pool, conn = mock_pool
        conn.fetch.return_value = [
            {"tenant": "a", "workshop_at": WORKSHOP_AT, "notify_offsets": "[1440, 60]"},
            {"tenant": "b", "workshop_at": WORKSHOP_AT, "notify_offsets": None},
        ]

        scheduled = await WorkshopRepository(pool).list_scheduled()

        assert scheduled[0].notify_offsets == [1440, 60]
        assert scheduled[1].notify_offsets == []

    @pytest.mark.asyncio
    async def test_save_settings_serializes_offsets(self, mock_pool):
        pool, conn = mock_pool

        await WorkshopRepository(pool).save_settings("shop", WORKSHOP_AT, [60, 15])

        assert json.loads(conn.execute.call_args.args[3]) == [60, 15]

    @pytest.mark.asyncio
    async def test_upsert_registration_keeps_first_dates(self, mock_pool):
        pool, conn = mock_pool
        conn.fetchval.return_value = 12

        registration_id = await WorkshopRepository(pool).upsert_registration(
            "shop", "1001", "#1001", "501", "a@b.c", "Ada", "L", None, WORKSHOP_AT
        )

        assert registration_id == 12
        assert "COALESCE(workshop_registrations.purchased_at" in conn.fetchval.call_args.args[0]
