"""Subscription contract status events."""

from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from boxoffice.jobs.types import WorkItemKind
from boxoffice.repositories.removal_targets import RemovalTargetRepository
from boxoffice.repositories.subscriptions import ActiveSubscriptionRepository
from boxoffice.repositories.work_items import WorkItemRepository
from boxoffice.services.removal.models import RemovalStatus

logger = structlog.get_logger(__name__)


def current_period(now: Optional[datetime] = None) -> str:
    """Period stamp (YYYY-MM) for a moment, default now in UTC."""
    return (now or datetime.now(timezone.utc)).strftime("%Y-%m")


def contract_natural_key(period: str, contract_id: str) -> str:
    return f"{period}:{contract_id}"


class ContractEvents:
    """Reacts to contracts becoming active or cancelled."""

    def __init__(
        self,
        subscriptions: ActiveSubscriptionRepository,
        targets: RemovalTargetRepository,
        store: WorkItemRepository,
    ):
        self.subscriptions = subscriptions
        self.targets = targets
        self.store = store

    async def on_contract_active(
        self,
        tenant: str,
        contract_id: str,
        customer_id: str,
        line_variant_id: Optional[str] = None,
        period: Optional[str] = None,
    ) -> dict[str, Any]:
        """Record the contract as active and cancel its pending removal."""
        period = period or current_period()
        await self.subscriptions.upsert(tenant, contract_id, customer_id, line_variant_id)
        skipped = await self.targets.skip_reactivated(tenant, period, contract_id)
        logger.info(
            "contract_activated",
            tenant=tenant,
            contract_id=contract_id,
            period=period,
            removals_skipped=skipped,
        )
        return {"status": "active", "removals_skipped": skipped}

    async def on_contract_cancelled(
        self,
        tenant: str,
        contract_id: str,
        customer_id: str,
        line_variant_id: Optional[str] = None,
        period: Optional[str] = None,
        status: str = "CANCELLED",
    ) -> dict[str, Any]:
        """Queue a single-contract removal unless the customer is still subscribed."""
        period = period or current_period()
        log = logger.bind(tenant=tenant, contract_id=contract_id, period=period)

        await self.subscriptions.mark_cancelled(
            tenant, contract_id, customer_id, line_variant_id, status
        )

        if await self.subscriptions.is_customer_active(tenant, customer_id):
            log.info("contract_cancelled_customer_active", customer_id=customer_id)
            return {"status": "customer_active"}

        target = await self.targets.upsert_pending(
            tenant, period, contract_id, customer_id, line_variant_id
        )
        if target.removal_status is not RemovalStatus.PENDING:
            log.info("contract_cancelled_already_processed", status=target.removal_status.value)
            return {"status": "already_processed", "removal_status": target.removal_status.value}

        result = await self.store.enqueue(
            tenant,
            WorkItemKind.CONTRACT_REMOVAL,
            contract_natural_key(period, contract_id),
            {"period": period, "contract_id": contract_id, "target_id": target.id},
        )
        log.info("contract_removal_enqueued", item_id=result.item_id, outcome=result.outcome.value)
        return {
            "status": "enqueued",
            "target_id": target.id,
            "item_id": result.item_id,
            "outcome": result.outcome.value,
        }
