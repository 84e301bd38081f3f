"""Paid-order processing.

Subscription boxes (northern, southern) and workshop tickets are detected
from line item titles. Each side effect (welcome email, fulfilment) runs
through the idempotency ledger under subject ``order:{id}``, so a retried
work item only repeats the steps that did not complete.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

import structlog

from boxoffice.repositories.workshops import WorkshopRepository
from boxoffice.services.email import (
    NORTHERN_TEMPLATE,
    SOUTHERN_TEMPLATE,
    WORKSHOP_TEMPLATE,
    TemplateMailer,
)
from boxoffice.services.idempotency import ActionType, order_subject, with_idempotent_action
from boxoffice.services.shopify import ShopifyClient

logger = structlog.get_logger(__name__)

FIRST_ORDER_TAG = "subscription first order"
RECURRING_ORDER_TAG = "subscription recurring order"

_TITLE_FIELDS = ("title", "name", "product_title", "variant_title")


@dataclass
class ProductLines:
    northern: list[dict] = field(default_factory=list)
    southern: list[dict] = field(default_factory=list)
    workshop: list[dict] = field(default_factory=list)

    @property
    def has_subscription(self) -> bool:
        return bool(self.northern or self.southern)


@dataclass
class CustomerInfo:
    email: str
    first_name: str
    last_name: str
    customer_id: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


def detect_products(line_items: list[dict]) -> ProductLines:
    """Classify line items by substring match on their titles."""
    lines = ProductLines()
    for item in line_items:
        combined = " ".join(str(item.get(f) or "") for f in _TITLE_FIELDS).lower()
        if "northern" in combined:
            lines.northern.append(item)
        if "southern" in combined:
            lines.southern.append(item)
        if "workshop" in combined:
            lines.workshop.append(item)
    return lines


def extract_customer(order: dict) -> CustomerInfo:
    customer = order.get("customer") or {}
    billing = order.get("billing_address") or {}
    email = order.get("contact_email") or order.get("email") or customer.get("email") or ""
    customer_id = customer.get("id")
    return CustomerInfo(
        email=email,
        first_name=customer.get("first_name") or billing.get("first_name") or "",
        last_name=customer.get("last_name") or billing.get("last_name") or "",
        customer_id=str(customer_id) if customer_id is not None else None,
    )


def classify_tags(tags: list[str]) -> tuple[bool, bool]:
    """(is_first_order, is_recurring_order) from Shopify order tags."""
    normalized = {t.strip().lower() for t in tags}
    return FIRST_ORDER_TAG in normalized, RECURRING_ORDER_TAG in normalized


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class OrderProcessor:
    """Runs the side effects for one paid order."""

    def __init__(
        self,
        ledger,
        shopify: ShopifyClient,
        mailer: TemplateMailer,
        workshops: WorkshopRepository,
    ):
        self.ledger = ledger
        self.shopify = shopify
        self.mailer = mailer
        self.workshops = workshops

    async def process(self, tenant: str, order: dict[str, Any]) -> dict[str, Any]:
        order_id = str(order["id"])
        order_name = order.get("name") or f"#{order.get('order_number')}"
        log = logger.bind(tenant=tenant, order_id=order_id)

        products = detect_products(order.get("line_items") or [])
        customer = extract_customer(order)
        if not customer.email:
            log.warning("order_missing_email")

        actions: list[dict[str, Any]] = []
        variables = {
            "first_name": customer.first_name,
            "last_name": customer.last_name,
            "order_name": order_name,
            "order_id": order_id,
        }

        tags: list[str] = []
        if products.has_subscription:
            tags = await self.shopify.get_order_tags(tenant, order_id)
            is_first, is_recurring = classify_tags(tags)

            if is_first:
                if products.northern and customer.email:
                    actions.append(
                        await self._send_email(
                            tenant, order_id, ActionType.EMAIL_NORTHERN,
                            NORTHERN_TEMPLATE, customer.email, variables,
                        )
                    )
                if products.southern and customer.email:
                    actions.append(
                        await self._send_email(
                            tenant, order_id, ActionType.EMAIL_SOUTHERN,
                            SOUTHERN_TEMPLATE, customer.email, variables,
                        )
                    )
                actions.append(
                    await self._fulfill(tenant, order_id, ActionType.FULFILL_SUBSCRIPTION, True)
                )
            elif is_recurring:
                actions.append(
                    await self._fulfill(tenant, order_id, ActionType.FULFILL_SUBSCRIPTION, False)
                )
            else:
                actions.append({"action": "subscription", "status": "no_matching_tag"})

        if products.workshop:
            await self._save_registration(tenant, order, order_id, order_name, customer)
            if customer.email:
                actions.append(
                    await self._send_email(
                        tenant, order_id, ActionType.EMAIL_WORKSHOP,
                        WORKSHOP_TEMPLATE, customer.email, variables,
                    )
                )
            actions.append(
                await self._fulfill(tenant, order_id, ActionType.FULFILL_WORKSHOP, True)
            )

        if not products.has_subscription and not products.workshop:
            actions.append({"action": "order", "status": "no_matching_products"})

        log.info("order_processed", actions=actions)
        return {
            "order_id": order_id,
            "order_name": order_name,
            "tags": tags,
            "actions": actions,
        }

    async def _run(
        self,
        tenant: str,
        order_id: str,
        action: ActionType,
        details: dict[str, Any],
        task: Callable[[], Awaitable[Any]],
        done_status: str,
    ) -> dict[str, Any]:
        outcome = await with_idempotent_action(
            self.ledger, tenant, order_subject(order_id), action, details, task
        )
        if outcome.skipped:
            return {"action": action.value, "status": "skipped"}
        return {"action": action.value, "status": done_status}

    async def _send_email(
        self,
        tenant: str,
        order_id: str,
        action: ActionType,
        template_key: str,
        email: str,
        variables: dict[str, Any],
    ) -> dict[str, Any]:
        return await self._run(
            tenant,
            order_id,
            action,
            {"template": template_key, "email": email},
            lambda: self.mailer.send(tenant, template_key, email, variables),
            "sent",
        )

    async def _fulfill(
        self, tenant: str, order_id: str, action: ActionType, notify: bool
    ) -> dict[str, Any]:
        return await self._run(
            tenant,
            order_id,
            action,
            {"notify_customer": notify},
            lambda: self.shopify.fulfill_order(tenant, order_id, notify_customer=notify),
            "completed",
        )

    async def _save_registration(
        self,
        tenant: str,
        order: dict[str, Any],
        order_id: str,
        order_name: str,
        customer: CustomerInfo,
    ) -> None:
        settings = await self.workshops.get_settings(tenant)
        await self.workshops.upsert_registration(
            tenant,
            order_id,
            order_name,
            customer.customer_id,
            customer.email or None,
            customer.first_name,
            customer.last_name,
            _parse_timestamp(order.get("processed_at") or order.get("created_at")),
            settings.workshop_at if settings else None,
        )
