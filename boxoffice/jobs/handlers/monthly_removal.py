"""MONTHLY_REMOVAL handler - removes a period's cancelled subscribers."""

from typing import Any

from boxoffice.core.errors import PermanentError
from boxoffice.jobs.models import WorkItem
from boxoffice.jobs.registry import default_registry
from boxoffice.jobs.retry import REMOVAL_POLICY
from boxoffice.jobs.types import WorkItemKind
from boxoffice.services.removal.pipeline import RemovalPipeline


@default_registry.handler(WorkItemKind.MONTHLY_REMOVAL, policy=REMOVAL_POLICY)
async def handle_monthly_removal(item: WorkItem, ctx: dict[str, Any]) -> dict[str, Any]:
    """Handle a MONTHLY_REMOVAL item.

    Payload:
        period: str - YYYY-MM

    A rate-limit error aborts the batch and propagates so the whole period
    is retried after the upstream's Retry-After.
    """
    pipeline: RemovalPipeline = ctx["removal_pipeline"]
    period = item.payload.get("period") or item.natural_key
    if not period:
        raise PermanentError("Removal payload has no period")

    stats = await pipeline.run_batch(item.tenant, period)
    return stats.to_dict()
