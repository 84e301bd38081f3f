"""ORDER_PAID handler - emails and fulfilment for a paid Shopify order."""

from typing import Any

import structlog

from boxoffice.core.errors import PermanentError
from boxoffice.jobs.models import WorkItem
from boxoffice.jobs.registry import default_registry
from boxoffice.jobs.types import WorkItemKind
from boxoffice.services.orders import OrderProcessor

logger = structlog.get_logger(__name__)

# Paid webhooks arrive before Shopify finishes tagging the order
ORDER_PAID_DELAY_S = 3


@default_registry.handler(WorkItemKind.ORDER_PAID)
async def handle_order_paid(item: WorkItem, ctx: dict[str, Any]) -> dict[str, Any]:
    """Handle an ORDER_PAID item.

    Payload: the Shopify order webhook body (needs at least ``id``).
    """
    processor: OrderProcessor = ctx["order_processor"]
    if "id" not in item.payload:
        raise PermanentError("Order payload has no id")

    logger.info("order_paid_started", item_id=item.id, order_id=item.natural_key)
    return await processor.process(item.tenant, item.payload)
