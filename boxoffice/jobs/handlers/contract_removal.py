"""CONTRACT_REMOVAL handler - removes one cancelled contract's subscriber."""

from typing import Any

import structlog

from boxoffice.core.errors import PermanentError
from boxoffice.jobs.models import WorkItem
from boxoffice.jobs.registry import default_registry
from boxoffice.jobs.retry import REMOVAL_POLICY
from boxoffice.jobs.types import WorkItemKind
from boxoffice.repositories.removal_targets import RemovalTargetRepository
from boxoffice.services.removal.models import RemovalStatus
from boxoffice.services.removal.pipeline import RemovalPipeline

logger = structlog.get_logger(__name__)


@default_registry.handler(WorkItemKind.CONTRACT_REMOVAL, policy=REMOVAL_POLICY)
async def handle_contract_removal(item: WorkItem, ctx: dict[str, Any]) -> dict[str, Any]:
    """Handle a CONTRACT_REMOVAL item.

    Payload:
        period: str
        contract_id: str
        target_id: int
    """
    pipeline: RemovalPipeline = ctx["removal_pipeline"]
    targets: RemovalTargetRepository = ctx["removal_targets"]
    payload = item.payload

    target = None
    if payload.get("target_id") is not None:
        target = await targets.get(int(payload["target_id"]))
    elif payload.get("period") and payload.get("contract_id"):
        target = await targets.get_for_contract(
            item.tenant, payload["period"], str(payload["contract_id"])
        )
    if target is None:
        raise PermanentError(f"Removal target not found for {item.natural_key}")

    if target.removal_status is not RemovalStatus.PENDING:
        logger.info(
            "contract_removal_already_resolved",
            item_id=item.id,
            target_id=target.id,
            status=target.removal_status.value,
        )
        return {"target_id": target.id, "status": target.removal_status.value, "skipped": True}

    result = await pipeline.process_contract(item.tenant, target)
    return {
        "target_id": target.id,
        "status": result.status.value,
        "reason": result.reason,
        "calendar_key": result.calendar_key,
        "subscriber_id": result.subscriber_id,
    }
