"""Monthly removal endpoints."""

import math
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Path, Query, status

from boxoffice.core.container import ServiceContainer
from boxoffice.deps import get_container
from boxoffice.jobs.types import EnqueueOutcome, WorkItemKind, WorkItemStatus
from boxoffice.schemas import (
    PERIOD_PATTERN,
    RemovalLogResponse,
    RemovalLogView,
    RemovalPeriodsResponse,
    RemovalPeriodSummary,
    RemovalStartResponse,
    RemovalStatusResponse,
    RemovalTargetPage,
    RemovalTargetView,
    WorkItemView,
)
from boxoffice.services.removal.models import RemovalStatus

router = APIRouter(prefix="/removals", tags=["removals"])
logger = structlog.get_logger(__name__)


@router.get("", response_model=RemovalPeriodsResponse)
async def list_periods(
    shop: str = Query(..., min_length=1, description="Shop domain"),
    container: ServiceContainer = Depends(get_container),
) -> RemovalPeriodsResponse:
    """Periods with removal targets, newest first, with counts by status."""
    periods = await container.targets.list_periods(shop)
    return RemovalPeriodsResponse(periods=[RemovalPeriodSummary(**p) for p in periods])


@router.post("/{period}", response_model=RemovalStartResponse)
async def start_removal(
    period: str = Path(..., pattern=PERIOD_PATTERN, description="YYYY-MM"),
    shop: str = Query(..., min_length=1, description="Shop domain"),
    container: ServiceContainer = Depends(get_container),
) -> RemovalStartResponse:
    """
    Build the period's removal targets and queue the removal batch.

    Cancelled contracts whose customer holds no active contract become
    pending targets first. Re-posting while the batch is queued or running
    adds newly cancelled contracts and refreshes it; a failed batch is
    requeued from scratch. A completed batch is left alone and no targets
    are added.
    """
    existing = await container.store.get_by_key(shop, WorkItemKind.MONTHLY_REMOVAL, period)
    if existing is not None and existing.status is WorkItemStatus.COMPLETED:
        logger.info("removal_already_completed", tenant=shop, period=period, item_id=existing.id)
        return RemovalStartResponse(
            outcome=EnqueueOutcome.DUPLICATE.value, item_id=existing.id, filter=None
        )

    filter_stats = await container.importer.prepare_period(shop, period)
    result = await container.store.enqueue(
        shop, WorkItemKind.MONTHLY_REMOVAL, period, {"period": period}
    )
    logger.info(
        "removal_requested",
        tenant=shop,
        period=period,
        outcome=result.outcome.value,
        targets_added=filter_stats["inserted"],
    )
    return RemovalStartResponse(
        outcome=result.outcome.value, item_id=result.item_id, filter=filter_stats
    )


@router.get("/{period}", response_model=RemovalStatusResponse)
async def removal_status(
    period: str = Path(..., pattern=PERIOD_PATTERN, description="YYYY-MM"),
    shop: str = Query(..., min_length=1, description="Shop domain"),
    container: ServiceContainer = Depends(get_container),
) -> RemovalStatusResponse:
    """Removal batch state and target counts by status."""
    item = await container.store.get_by_key(shop, WorkItemKind.MONTHLY_REMOVAL, period)
    counts = await container.targets.counts(shop, period)
    return RemovalStatusResponse(
        period=period,
        job=WorkItemView.from_item(item) if item else None,
        counts=counts,
    )


@router.get("/{period}/targets", response_model=RemovalTargetPage)
async def list_targets(
    period: str = Path(..., pattern=PERIOD_PATTERN, description="YYYY-MM"),
    shop: str = Query(..., min_length=1, description="Shop domain"),
    removal_status: Optional[RemovalStatus] = Query(
        None, alias="status", description="Only targets in this status"
    ),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    container: ServiceContainer = Depends(get_container),
) -> RemovalTargetPage:
    """Targets of a period with their removal status and error."""
    targets, total = await container.targets.list_for_period(
        shop,
        period,
        status=removal_status,
        limit=page_size,
        offset=(page - 1) * page_size,
    )
    return RemovalTargetPage(
        period=period,
        targets=[RemovalTargetView.from_target(t) for t in targets],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size),
    )


@router.get("/{period}/targets/{target_id}/logs", response_model=RemovalLogResponse)
async def target_logs(
    target_id: int,
    period: str = Path(..., pattern=PERIOD_PATTERN, description="YYYY-MM"),
    shop: str = Query(..., min_length=1, description="Shop domain"),
    container: ServiceContainer = Depends(get_container),
) -> RemovalLogResponse:
    """Every removal attempt recorded for one target."""
    target = await container.targets.get(target_id)
    if target is None or target.tenant != shop or target.period != period:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="target_not_found")

    logs = await container.targets.list_logs(shop, target_id)
    return RemovalLogResponse(
        target=RemovalTargetView.from_target(target),
        logs=[RemovalLogView.from_entry(entry) for entry in logs],
    )
