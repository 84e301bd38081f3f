"""Endpoints driven by an external scheduler."""

import structlog
from fastapi import APIRouter, Depends

from boxoffice.core.container import ServiceContainer
from boxoffice.deps import get_container, require_cron_token
from boxoffice.schemas import WorkshopRunResponse

router = APIRouter(prefix="/cron", tags=["cron"])
logger = structlog.get_logger(__name__)


@router.post("/workshop-notifications", response_model=WorkshopRunResponse)
async def workshop_notifications(
    _: bool = Depends(require_cron_token),
    container: ServiceContainer = Depends(get_container),
) -> WorkshopRunResponse:
    """Send any workshop reminders whose window is open now."""
    stats = await container.notifier.run()
    return WorkshopRunResponse(**stats)
