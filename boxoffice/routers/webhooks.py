"""Shopify webhook endpoints.

Webhooks only enqueue; the work happens in the worker pool so Shopify gets
its 200 quickly and retries go through the queue's backoff.
"""

from typing import Any, Optional

import structlog
from fastapi import APIRouter, Body, Depends, Header, HTTPException, status

from boxoffice.core.container import ServiceContainer
from boxoffice.deps import get_container
from boxoffice.jobs.handlers.order_paid import ORDER_PAID_DELAY_S
from boxoffice.jobs.types import WorkItemKind
from boxoffice.schemas import EnqueueResponse

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = structlog.get_logger(__name__)


@router.post("/orders/paid", response_model=EnqueueResponse)
async def order_paid(
    order: dict[str, Any] = Body(...),
    x_shopify_shop_domain: Optional[str] = Header(default=None),
    container: ServiceContainer = Depends(get_container),
) -> EnqueueResponse:
    """Queue an ORDER_PAID work item keyed on the order id."""
    if not x_shopify_shop_domain:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Shopify-Shop-Domain header required",
        )
    order_id = order.get("id")
    if order_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Order payload has no id",
        )

    result = await container.store.enqueue(
        x_shopify_shop_domain,
        WorkItemKind.ORDER_PAID,
        str(order_id),
        order,
        delay_s=ORDER_PAID_DELAY_S,
    )
    logger.info(
        "order_paid_webhook_received",
        tenant=x_shopify_shop_domain,
        order_id=str(order_id),
        outcome=result.outcome.value,
    )
    return EnqueueResponse(outcome=result.outcome.value, item_id=result.item_id)
