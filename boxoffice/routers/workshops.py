"""Workshop reminder settings."""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from boxoffice.core.container import ServiceContainer
from boxoffice.deps import get_container
from boxoffice.schemas import WorkshopSettingsBody, WorkshopSettingsResponse

router = APIRouter(prefix="/workshops", tags=["workshops"])
logger = structlog.get_logger(__name__)


@router.get("/settings", response_model=WorkshopSettingsResponse)
async def get_workshop_settings(
    shop: str = Query(..., min_length=1, description="Shop domain"),
    container: ServiceContainer = Depends(get_container),
) -> WorkshopSettingsResponse:
    settings = await container.workshops.get_settings(shop)
    if settings is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="settings_not_found")
    return WorkshopSettingsResponse(
        tenant=settings.tenant,
        workshop_at=settings.workshop_at,
        notify_offsets=settings.notify_offsets,
    )


@router.put("/settings", response_model=WorkshopSettingsResponse)
async def save_workshop_settings(
    body: WorkshopSettingsBody,
    shop: str = Query(..., min_length=1, description="Shop domain"),
    container: ServiceContainer = Depends(get_container),
) -> WorkshopSettingsResponse:
    """Set the workshop date and reminder offsets used by the cron run."""
    await container.workshops.save_settings(shop, body.workshop_at, body.notify_offsets)
    logger.info(
        "workshop_settings_saved",
        tenant=shop,
        workshop_at=body.workshop_at.isoformat() if body.workshop_at else None,
        notify_offsets=body.notify_offsets,
    )
    return WorkshopSettingsResponse(tenant=shop, **body.model_dump())
