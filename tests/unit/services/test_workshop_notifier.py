"""Tests for workshop reminder notifications."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from boxoffice.core.errors import PermanentError
from boxoffice.repositories.workshops import WorkshopRegistration, WorkshopSettings
from boxoffice.services.idempotency import ActionRecord, ActionStatus
from boxoffice.services.workshop_notifications import (
    WorkshopNotifier,
    in_send_window,
    notify_action,
    template_variables,
)

WORKSHOP_AT = datetime(2024, 6, 1, 18, 0, tzinfo=timezone.utc)


def registration(reg_id, email="ada@example.com"):
    return WorkshopRegistration(
        id=reg_id, tenant="shop", order_id=f"10{reg_id}", email=email, first_name="Ada"
    )


class TestWindow:
    def test_inside_window(self):
        due = WORKSHOP_AT - timedelta(minutes=60)
        assert in_send_window(WORKSHOP_AT, 60, due)
        assert in_send_window(WORKSHOP_AT, 60, due + timedelta(minutes=2))
        assert in_send_window(WORKSHOP_AT, 60, due - timedelta(minutes=2))

    def test_outside_window(self):
        due = WORKSHOP_AT - timedelta(minutes=60)
        assert not in_send_window(WORKSHOP_AT, 60, due + timedelta(minutes=3))
        assert not in_send_window(WORKSHOP_AT, 60, due - timedelta(minutes=3))

    def test_notify_action(self):
        assert notify_action(1440) == "workshop_notify:1440"

    def test_template_variables(self):
        variables = template_variables(registration(1), WORKSHOP_AT, 120)
        assert variables["first_name"] == "Ada"
        assert variables["workshop_time"] == "18:00"
        assert variables["hours_before"] == "2"
        assert variables["minutes_before"] == "120"


@pytest.fixture
def deps():
    workshops = AsyncMock()
    workshops.list_scheduled.return_value = [WorkshopSettings("shop", WORKSHOP_AT, [1440, 60])]
    workshops.list_notifiable.return_value = [registration(1), registration(2)]
    ledger = AsyncMock()
    ledger.acquire.return_value = (
        True,
        ActionRecord(1, "shop", "registration:1", "workshop_notify:60", ActionStatus.ACQUIRED),
    )
    mailer = AsyncMock()
    mailer.send.return_value = "msg"
    return WorkshopNotifier(workshops, ledger, mailer), workshops, ledger, mailer


class TestWorkshopNotifier:
    @pytest.mark.asyncio
    async def test_sends_due_offset_once_per_registration(self, deps):
        notifier, workshops, ledger, mailer = deps

        stats = await notifier.run(now=WORKSHOP_AT - timedelta(minutes=61))

        assert stats == {"sent": 2, "skipped": 0, "failed": 0, "tenants": 1}
        keys = [(c.args[1], c.args[2]) for c in ledger.acquire.await_args_list]
        assert keys == [
            ("registration:1", "workshop_notify:60"),
            ("registration:2", "workshop_notify:60"),
        ]
        assert mailer.send.call_args.args[1] == "workshop_notification"

    @pytest.mark.asyncio
    async def test_nothing_due(self, deps):
        notifier, workshops, _, mailer = deps

        stats = await notifier.run(now=WORKSHOP_AT - timedelta(hours=5))

        assert stats["sent"] == 0
        workshops.list_notifiable.assert_not_awaited()
        mailer.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_already_sent_skipped(self, deps):
        notifier, _, ledger, mailer = deps
        ledger.acquire.return_value = (
            False,
            ActionRecord(1, "shop", "registration:1", "workshop_notify:60", ActionStatus.COMPLETED),
        )

        stats = await notifier.run(now=WORKSHOP_AT - timedelta(minutes=60))

        assert stats["skipped"] == 2
        mailer.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_send_failure_does_not_abort_run(self, deps):
        notifier, _, _, mailer = deps
        mailer.send.side_effect = [PermanentError("bad address"), "msg"]

        stats = await notifier.run(now=WORKSHOP_AT - timedelta(minutes=60))

        assert stats["failed"] == 1
        assert stats["sent"] == 1

    @pytest.mark.asyncio
    async def test_naive_now_treated_as_utc(self, deps):
        notifier, _, _, _ = deps

        stats = await notifier.run(now=datetime(2024, 6, 1, 17, 0))

        assert stats["sent"] == 2
