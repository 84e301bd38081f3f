"""Tests for with_idempotent_action."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from boxoffice.core.errors import PermanentError, RateLimitedError, TransientError
from boxoffice.services.idempotency import (
    ActionRecord,
    ActionStatus,
    ActionType,
    contract_subject,
    order_subject,
    registration_subject,
    with_idempotent_action,
)


def make_record(status=ActionStatus.ACQUIRED):
    return ActionRecord(
        id=1,
        tenant="shop",
        subject="order:1001",
        action="email_northern",
        status=status,
    )


@pytest.fixture
def ledger():
    mock = AsyncMock()
    mock.acquire.return_value = (True, make_record())
    return mock


class TestWithIdempotentAction:
    @pytest.mark.asyncio
    async def test_runs_task_and_marks_completed(self, ledger):
        task = AsyncMock(return_value={"message_id": "m1"})

        outcome = await with_idempotent_action(
            ledger, "shop", "order:1001", ActionType.EMAIL_NORTHERN, {"email": "a@b.c"}, task
        )

        assert outcome.skipped is False
        assert outcome.result == {"message_id": "m1"}
        ledger.acquire.assert_awaited_once_with(
            "shop", "order:1001", "email_northern", {"email": "a@b.c"}
        )
        ledger.mark_completed.assert_awaited_once_with(
            "shop", "order:1001", "email_northern", {"message_id": "m1"}
        )

    @pytest.mark.asyncio
    async def test_scalar_result_wrapped(self, ledger):
        await with_idempotent_action(
            ledger, "shop", "order:1001", "custom", None, AsyncMock(return_value="msg-1")
        )

        ledger.mark_completed.assert_awaited_once_with(
            "shop", "order:1001", "custom", {"result": "msg-1"}
        )

    @pytest.mark.asyncio
    async def test_existing_record_skips_task(self, ledger):
        existing = make_record(ActionStatus.COMPLETED)
        ledger.acquire.return_value = (False, existing)
        task = AsyncMock()

        outcome = await with_idempotent_action(
            ledger, "shop", "order:1001", ActionType.EMAIL_NORTHERN, None, task
        )

        assert outcome.skipped is True
        assert outcome.existing is existing
        task.assert_not_awaited()
        ledger.mark_completed.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [TransientError("reset"), RateLimitedError("slow", retry_after_s=3), ConnectionResetError()],
    )
    async def test_retryable_failure_releases(self, ledger, error):
        with pytest.raises(type(error)):
            await with_idempotent_action(
                ledger, "shop", "order:1001", "fulfill_subscription", None,
                AsyncMock(side_effect=error),
            )

        ledger.release.assert_awaited_once_with("shop", "order:1001", "fulfill_subscription")
        ledger.mark_failed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_permanent_failure_marks_failed(self, ledger):
        with pytest.raises(PermanentError):
            await with_idempotent_action(
                ledger, "shop", "order:1001", "fulfill_subscription", None,
                AsyncMock(side_effect=PermanentError("no open fulfillment orders")),
            )

        ledger.mark_failed.assert_awaited_once_with(
            "shop", "order:1001", "fulfill_subscription", "no open fulfillment orders"
        )
        ledger.release.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancelled_task_releases(self, ledger):
        with pytest.raises(asyncio.CancelledError):
            await with_idempotent_action(
                ledger, "shop", "order:1001", "fulfill_subscription", None,
                AsyncMock(side_effect=asyncio.CancelledError()),
            )

        ledger.release.assert_awaited_once_with("shop", "order:1001", "fulfill_subscription")
        ledger.mark_failed.assert_not_awaited()
        ledger.mark_completed.assert_not_awaited()


def test_subjects():
    assert order_subject("1001") == "order:1001"
    assert contract_subject("77") == "contract:77"
    assert registration_subject(5) == "registration:5"
