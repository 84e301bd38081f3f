"""Operator inspection endpoints."""

from fastapi import APIRouter, Depends, Query

from boxoffice.core import lifespan
from boxoffice.core.container import ServiceContainer
from boxoffice.deps import get_container
from boxoffice.schemas import ActionListResponse, ActionRecordView, QueueStatsResponse

router = APIRouter(prefix="/ops", tags=["ops"])


@router.get("/queue", response_model=QueueStatsResponse)
async def queue_stats(
    container: ServiceContainer = Depends(get_container),
) -> QueueStatsResponse:
    """Pool counters (when pollers run in this process) and queue counts."""
    worker = lifespan.get_worker_pool()
    if worker is not None:
        stats = await worker.get_stats()
        return QueueStatsResponse(pool=stats["pool"], queue=stats["queue"])
    return QueueStatsResponse(pool=None, queue=await container.store.stats())


@router.get("/actions/{subject}", response_model=ActionListResponse)
async def subject_actions(
    subject: str,
    shop: str = Query(..., min_length=1, description="Shop domain"),
    container: ServiceContainer = Depends(get_container),
) -> ActionListResponse:
    """Ledger rows for a subject such as ``order:1001``."""
    records = await container.ledger.list_for_subject(shop, subject)
    return ActionListResponse(
        subject=subject,
        actions=[ActionRecordView.from_record(r) for r in records],
    )
