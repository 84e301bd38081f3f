"""Tests for the work item handlers."""

from unittest.mock import AsyncMock

import pytest

from boxoffice.core.errors import PermanentError
from boxoffice.jobs.handlers.contract_removal import handle_contract_removal
from boxoffice.jobs.handlers.monthly_removal import handle_monthly_removal
from boxoffice.jobs.handlers.order_paid import handle_order_paid
from boxoffice.jobs.models import WorkItem
from boxoffice.jobs.types import WorkItemKind, WorkItemStatus
from boxoffice.services.removal.models import BatchStats, RemovalStatus, RemovalTarget, StepResult


def make_item(kind, natural_key, payload):
    return WorkItem(
        id=1,
        tenant="shop",
        kind=kind,
        natural_key=natural_key,
        status=WorkItemStatus.PROCESSING,
        payload=payload,
        attempts=1,
    )


def make_target(status=RemovalStatus.PENDING):
    return RemovalTarget(
        id=4, tenant="shop", period="2024-03", contract_id="77", removal_status=status
    )


class TestOrderPaid:
    @pytest.mark.asyncio
    async def test_delegates_to_processor(self):
        processor = AsyncMock()
        processor.process.return_value = {"order_id": "1001", "actions": []}
        item = make_item(WorkItemKind.ORDER_PAID, "1001", {"id": 1001})

        result = await handle_order_paid(item, {"order_processor": processor})

        assert result == {"order_id": "1001", "actions": []}
        processor.process.assert_awaited_once_with("shop", {"id": 1001})

    @pytest.mark.asyncio
    async def test_payload_without_id(self):
        item = make_item(WorkItemKind.ORDER_PAID, "1001", {})
        with pytest.raises(PermanentError):
            await handle_order_paid(item, {"order_processor": AsyncMock()})


class TestMonthlyRemoval:
    @pytest.mark.asyncio
    async def test_returns_batch_stats(self):
        pipeline = AsyncMock()
        pipeline.run_batch.return_value = BatchStats(processed=2, done=2)
        item = make_item(WorkItemKind.MONTHLY_REMOVAL, "2024-03", {})

        result = await handle_monthly_removal(item, {"removal_pipeline": pipeline})

        assert result["done"] == 2
        pipeline.run_batch.assert_awaited_once_with("shop", "2024-03")


class TestContractRemoval:
    @pytest.mark.asyncio
    async def test_processes_pending_target(self):
        targets = AsyncMock()
        targets.get.return_value = make_target()
        pipeline = AsyncMock()
        pipeline.process_contract.return_value = StepResult(
            RemovalStatus.DONE, calendar_key="northern", subscriber_id="s1"
        )
        item = make_item(
            WorkItemKind.CONTRACT_REMOVAL,
            "2024-03:77",
            {"period": "2024-03", "contract_id": "77", "target_id": 4},
        )

        result = await handle_contract_removal(
            item, {"removal_pipeline": pipeline, "removal_targets": targets}
        )

        assert result["status"] == "done"
        assert result["subscriber_id"] == "s1"
        targets.get.assert_awaited_once_with(4)

    @pytest.mark.asyncio
    async def test_resolved_target_not_reprocessed(self):
        targets = AsyncMock()
        targets.get_for_contract.return_value = make_target(RemovalStatus.SKIPPED)
        pipeline = AsyncMock()
        item = make_item(
            WorkItemKind.CONTRACT_REMOVAL, "2024-03:77", {"period": "2024-03", "contract_id": "77"}
        )

        result = await handle_contract_removal(
            item, {"removal_pipeline": pipeline, "removal_targets": targets}
        )

        assert result == {"target_id": 4, "status": "skipped", "skipped": True}
        pipeline.process_contract.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_target(self):
        targets = AsyncMock()
        targets.get.return_value = None
        item = make_item(WorkItemKind.CONTRACT_REMOVAL, "2024-03:77", {"target_id": 4})

        with pytest.raises(PermanentError):
            await handle_contract_removal(
                item, {"removal_pipeline": AsyncMock(), "removal_targets": targets}
            )
