"""Subscription export upload and contract counts."""

import structlog
from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status

from boxoffice.core.container import ServiceContainer
from boxoffice.deps import get_container
from boxoffice.schemas import SubscriptionCountsResponse, SubscriptionImportResponse

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])
logger = structlog.get_logger(__name__)


@router.post("/import", response_model=SubscriptionImportResponse)
async def import_subscriptions(
    file: UploadFile = File(..., description="Subscription export (CSV)"),
    shop: str = Query(..., min_length=1, description="Shop domain"),
    container: ServiceContainer = Depends(get_container),
) -> SubscriptionImportResponse:
    """
    Load a subscription export.

    ACTIVE contracts go to the active set; PAUSED and CANCELLED ones to the
    cancelled set that the next removal batch is built from.
    """
    content = await file.read()
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="empty_file")

    try:
        result = await container.importer.import_csv(shop, content)
    except ValueError as e:
        logger.warning("subscription_import_rejected", tenant=shop, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)
        ) from e

    return SubscriptionImportResponse(stats=result["stats"], skipped=result["skipped"])


@router.get("/counts", response_model=SubscriptionCountsResponse)
async def subscription_counts(
    shop: str = Query(..., min_length=1, description="Shop domain"),
    container: ServiceContainer = Depends(get_container),
) -> SubscriptionCountsResponse:
    """Active and cancelled contract counts for a shop."""
    return SubscriptionCountsResponse(**await container.subscriptions.counts(shop))
