"""Tests for the removal pipeline."""

from unittest.mock import AsyncMock

import pytest

from boxoffice.core.errors import PermanentError, RateLimitedError, TransientError
from boxoffice.services.idempotency import ActionRecord, ActionStatus
from boxoffice.services.removal.calendars import CalendarDirectory
from boxoffice.services.removal.models import RemovalStatus, RemovalTarget
from boxoffice.services.removal.pipeline import (
    RemovalInProgressError,
    RemovalPipeline,
    removal_action,
)

PERIOD = "2024-03"


def make_target(target_id=1, email="ada@example.com", variant="111", customer_id="501"):
    return RemovalTarget(
        id=target_id,
        tenant="shop",
        period=PERIOD,
        contract_id=str(70 + target_id),
        customer_id=customer_id,
        email=email,
        line_variant_id=variant,
    )


def ledger_record(status):
    return ActionRecord(
        id=1,
        tenant="shop",
        subject="contract:71",
        action=removal_action(PERIOD),
        status=status,
        details={"error": "calendar gone"} if status is ActionStatus.FAILED else None,
    )


@pytest.fixture
def deps():
    targets = AsyncMock()
    shopify = AsyncMock()
    addevent = AsyncMock()
    snapshots = AsyncMock()
    snapshots.ensure.return_value = 10
    snapshots.lookup.side_effect = lambda snapshot_id, email: "sub-" + email.split("@")[0]
    ledger = AsyncMock()
    ledger.acquire.return_value = (True, ledger_record(ActionStatus.ACQUIRED))
    directory = CalendarDirectory(["111"], ["222"], "cal-n", "cal-s")
    pipeline = RemovalPipeline(targets, shopify, addevent, snapshots, directory, ledger=ledger)
    return pipeline, targets, shopify, addevent, snapshots, ledger


def marked(targets):
    return [(c.args[0], c.args[1]) for c in targets.mark.await_args_list]


class TestProcessTarget:
    @pytest.mark.asyncio
    async def test_removes_subscriber(self, deps):
        pipeline, targets, _, addevent, snapshots, ledger = deps

        result = await pipeline.process_target("shop", make_target())

        assert result.status is RemovalStatus.DONE
        assert result.calendar_key == "northern"
        assert result.subscriber_id == "sub-ada"
        snapshots.ensure.assert_awaited_once_with("shop", PERIOD, "northern")
        addevent.delete_subscriber.assert_awaited_once_with("cal-n", "sub-ada")
        targets.mark.assert_awaited_once_with(1, RemovalStatus.DONE, None)
        targets.log_attempt.assert_awaited_once()
        ledger.acquire.assert_awaited_once()
        ledger.mark_completed.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_email_looked_up_and_cached(self, deps):
        pipeline, targets, shopify, addevent, _, _ = deps
        shopify.get_customer_email.return_value = "bob@example.com"

        result = await pipeline.process_target("shop", make_target(email=None, variant="222"))

        assert result.status is RemovalStatus.DONE
        targets.set_email.assert_awaited_once_with(1, "bob@example.com")
        addevent.delete_subscriber.assert_awaited_once_with("cal-s", "sub-bob")

    @pytest.mark.asyncio
    async def test_customer_without_email_not_found(self, deps):
        pipeline, targets, shopify, _, snapshots, _ = deps
        shopify.get_customer_email.return_value = None

        result = await pipeline.process_target("shop", make_target(email=None))

        assert result.status is RemovalStatus.NOT_FOUND
        assert result.reason == "Customer email not found in Shopify"
        snapshots.ensure.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_email_and_no_customer(self, deps):
        pipeline, targets, shopify, _, _, _ = deps

        result = await pipeline.process_target("shop", make_target(email=None, customer_id=None))

        assert result.status is RemovalStatus.NOT_FOUND
        assert result.reason == "No email available"
        shopify.get_customer_email.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unmapped_variant_skipped(self, deps):
        pipeline, targets, _, addevent, _, _ = deps

        result = await pipeline.process_target("shop", make_target(variant="999"))

        assert result.status is RemovalStatus.SKIPPED
        assert result.reason == "No calendar mapping for variant"
        targets.mark.assert_awaited_once_with(
            1, RemovalStatus.SKIPPED, "No calendar mapping for variant"
        )
        addevent.delete_subscriber.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unconfigured_calendar_skipped(self, deps):
        pipeline, _, _, _, snapshots, _ = deps
        snapshots.ensure.return_value = None

        result = await pipeline.process_target("shop", make_target())

        assert result.status is RemovalStatus.SKIPPED
        assert result.reason == "No calendar configured"

    @pytest.mark.asyncio
    async def test_subscriber_missing_from_calendar(self, deps):
        pipeline, _, _, addevent, snapshots, _ = deps
        snapshots.lookup.side_effect = None
        snapshots.lookup.return_value = None

        result = await pipeline.process_target("shop", make_target())

        assert result.status is RemovalStatus.NOT_FOUND
        assert result.reason == "Subscriber not found in calendar"
        addevent.delete_subscriber.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_error_leaves_target_pending(self, deps):
        pipeline, targets, _, addevent, _, _ = deps
        addevent.delete_subscriber.side_effect = TransientError("reset")

        with pytest.raises(TransientError):
            await pipeline.process_target("shop", make_target())

        targets.mark.assert_not_awaited()


class TestRunBatch:
    @pytest.mark.asyncio
    async def test_processes_all_pending(self, deps):
        pipeline, targets, _, _, snapshots, _ = deps
        targets.list_pending.return_value = [
            make_target(1, "a@x.com"),
            make_target(2, "b@x.com"),
            make_target(3, "c@x.com", variant="999"),
        ]

        stats = await pipeline.run_batch("shop", PERIOD)

        assert stats.to_dict() == {
            "processed": 3,
            "done": 2,
            "not_found": 0,
            "failed": 0,
            "skipped": 1,
            "deferred": 0,
            "errors": [],
        }
        # One snapshot per calendar per batch
        snapshots.ensure.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_rate_limit_aborts_batch(self, deps):
        pipeline, targets, _, addevent, _, _ = deps
        targets.list_pending.return_value = [
            make_target(1, "a@x.com"),
            make_target(2, "b@x.com"),
            make_target(3, "c@x.com"),
        ]

        async def delete(calendar_id, subscriber_id):
            if subscriber_id == "sub-b":
                raise RateLimitedError("429", retry_after_s=30.0, service="addevent")
            return {}

        addevent.delete_subscriber.side_effect = delete

        with pytest.raises(RateLimitedError) as exc_info:
            await pipeline.run_batch("shop", PERIOD)

        assert exc_info.value.retry_after_s == 30.0
        # Target 1 done, target 2 still pending, target 3 never attempted
        assert marked(targets) == [(1, RemovalStatus.DONE)]
        assert [c.args[1] for c in addevent.delete_subscriber.await_args_list] == [
            "sub-a",
            "sub-b",
        ]

    @pytest.mark.asyncio
    async def test_other_errors_fail_only_their_target(self, deps):
        pipeline, targets, _, addevent, _, _ = deps
        targets.list_pending.return_value = [
            make_target(1, "a@x.com"),
            make_target(2, "b@x.com"),
            make_target(3, "c@x.com"),
        ]

        async def delete(calendar_id, subscriber_id):
            if subscriber_id == "sub-b":
                raise TransientError("connection reset")
            return {}

        addevent.delete_subscriber.side_effect = delete

        stats = await pipeline.run_batch("shop", PERIOD)

        assert stats.done == 2
        assert stats.failed == 1
        assert stats.errors == [{"id": 2, "error": "connection reset"}]
        assert marked(targets) == [
            (1, RemovalStatus.DONE),
            (2, RemovalStatus.FAILED),
            (3, RemovalStatus.DONE),
        ]

    @pytest.mark.asyncio
    async def test_empty_period(self, deps):
        pipeline, targets, _, _, _, _ = deps
        targets.list_pending.return_value = []

        stats = await pipeline.run_batch("shop", PERIOD)

        assert stats.processed == 0

    @pytest.mark.asyncio
    async def test_batch_uses_contract_ledger_key(self, deps):
        pipeline, targets, _, _, _, ledger = deps
        targets.list_pending.return_value = [make_target(1, "a@x.com")]

        await pipeline.run_batch("shop", PERIOD)

        subject, action = ledger.acquire.call_args.args[1:3]
        assert subject == "contract:71"
        assert action == "remove_subscriber:2024-03"

    @pytest.mark.asyncio
    async def test_batch_skips_delete_already_recorded(self, deps):
        pipeline, targets, _, addevent, _, ledger = deps
        targets.list_pending.return_value = [make_target(1, "a@x.com")]
        ledger.acquire.return_value = (False, ledger_record(ActionStatus.COMPLETED))

        stats = await pipeline.run_batch("shop", PERIOD)

        assert stats.done == 1
        addevent.delete_subscriber.assert_not_awaited()
        assert marked(targets) == [(1, RemovalStatus.DONE)]

    @pytest.mark.asyncio
    async def test_batch_defers_target_owned_by_contract_removal(self, deps):
        pipeline, targets, _, addevent, _, ledger = deps
        targets.list_pending.return_value = [
            make_target(1, "a@x.com"),
            make_target(2, "b@x.com"),
        ]

        async def acquire(tenant, subject, action, details):
            if subject == "contract:71":
                return (False, ledger_record(ActionStatus.ACQUIRED))
            return (True, ledger_record(ActionStatus.ACQUIRED))

        ledger.acquire.side_effect = acquire

        stats = await pipeline.run_batch("shop", PERIOD)

        assert stats.deferred == 1
        assert stats.done == 1
        assert stats.failed == 0
        # Target 1 stays pending for the attempt holding its ledger row
        assert marked(targets) == [(2, RemovalStatus.DONE)]
        addevent.delete_subscriber.assert_awaited_once_with("cal-n", "sub-b")

    def test_in_progress_error_is_retryable(self):
        assert isinstance(RemovalInProgressError("busy"), TransientError)


class TestProcessContract:
    @pytest.mark.asyncio
    async def test_delete_goes_through_ledger(self, deps):
        pipeline, targets, _, addevent, _, ledger = deps

        result = await pipeline.process_contract("shop", make_target())

        assert result.status is RemovalStatus.DONE
        subject, action = ledger.acquire.call_args.args[1:3]
        assert subject == "contract:71"
        assert action == "remove_subscriber:2024-03"
        addevent.delete_subscriber.assert_awaited_once()
        ledger.mark_completed.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_already_removed_is_done_without_delete(self, deps):
        pipeline, targets, _, addevent, _, ledger = deps
        ledger.acquire.return_value = (False, ledger_record(ActionStatus.COMPLETED))

        result = await pipeline.process_contract("shop", make_target())

        assert result.status is RemovalStatus.DONE
        addevent.delete_subscriber.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_removal_in_flight_elsewhere_retries(self, deps):
        pipeline, targets, _, _, _, ledger = deps
        ledger.acquire.return_value = (False, ledger_record(ActionStatus.ACQUIRED))

        with pytest.raises(TransientError):
            await pipeline.process_contract("shop", make_target())

        targets.mark.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_previously_failed_removal_fails_target(self, deps):
        pipeline, targets, _, addevent, _, ledger = deps
        ledger.acquire.return_value = (False, ledger_record(ActionStatus.FAILED))

        result = await pipeline.process_contract("shop", make_target())

        assert result.status is RemovalStatus.FAILED
        assert "calendar gone" in result.reason
        targets.mark.assert_awaited_once()
        assert targets.mark.call_args.args[1] is RemovalStatus.FAILED

    @pytest.mark.asyncio
    async def test_permanent_error_fails_target(self, deps):
        pipeline, targets, shopify, _, _, _ = deps
        shopify.get_customer_email.side_effect = PermanentError("No access token for shop")

        result = await pipeline.process_contract("shop", make_target(email=None))

        assert result.status is RemovalStatus.FAILED
        assert marked(targets) == [(1, RemovalStatus.FAILED)]

    @pytest.mark.asyncio
    async def test_rate_limit_propagates(self, deps):
        pipeline, targets, _, addevent, _, ledger = deps
        addevent.delete_subscriber.side_effect = RateLimitedError("429", retry_after_s=30.0)

        with pytest.raises(RateLimitedError):
            await pipeline.process_contract("shop", make_target())

        ledger.release.assert_awaited_once()
        targets.mark.assert_not_awaited()
