"""Thin Shopify Admin API client.

Only the calls the back office needs: customer lookup (GraphQL), order tags,
and fulfilment through fulfillment orders. Access tokens come from the
shopify_sessions table.
"""

from typing import Any, Optional

import httpx
import structlog

from boxoffice.core.errors import PermanentError
from boxoffice.repositories.shop_sessions import ShopSessionRepository
from boxoffice.services.http import send_request

logger = structlog.get_logger(__name__)

SERVICE = "shopify"
DEFAULT_RETRY_AFTER_S = 10.0

CUSTOMER_QUERY = """
query getCustomer($id: ID!) {
  node(id: $id) {
    ... on Customer {
      id
      email
      firstName
      lastName
    }
  }
}
"""

OPEN_FULFILLMENT_STATUSES = ("open", "in_progress")


def customer_gid(customer_id: str) -> str:
    """Global id for a numeric or already-global customer id."""
    customer_id = str(customer_id)
    if customer_id.startswith("gid://"):
        return customer_id
    return f"gid://shopify/Customer/{customer_id}"


def parse_tags(tags: Optional[str]) -> list[str]:
    """Split Shopify's comma-separated tag string."""
    return [t.strip() for t in (tags or "").split(",") if t.strip()]


class ShopifyClient:
    """Admin API client for one app installation per shop."""

    def __init__(
        self,
        sessions: ShopSessionRepository,
        api_version: str = "2024-01",
        timeout: float = 20.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.sessions = sessions
        self.api_version = api_version
        self.timeout = timeout
        self._client = client

    def _url(self, shop: str, path: str) -> str:
        return f"https://{shop}/admin/api/{self.api_version}{path}"

    async def _request(
        self, shop: str, method: str, path: str, body: Optional[dict] = None
    ) -> dict[str, Any]:
        token = await self.sessions.get_access_token(shop)
        resp = await send_request(
            method,
            self._url(shop, path),
            service=SERVICE,
            timeout=self.timeout,
            default_retry_after_s=DEFAULT_RETRY_AFTER_S,
            client=self._client,
            headers={"X-Shopify-Access-Token": token},
            json=body,
        )
        return resp.json()

    async def get_customer(self, shop: str, customer_id: str) -> Optional[dict[str, Any]]:
        """Customer email and names, or None when the customer does not exist."""
        data = await self._request(
            shop,
            "POST",
            "/graphql.json",
            {"query": CUSTOMER_QUERY, "variables": {"id": customer_gid(customer_id)}},
        )
        if data.get("errors"):
            message = data["errors"][0].get("message", "Unknown")
            raise PermanentError(f"GraphQL error: {message}", service=SERVICE)

        node = (data.get("data") or {}).get("node")
        if not node:
            logger.info("shopify_customer_not_found", shop=shop, customer_id=customer_id)
            return None
        return {
            "email": node.get("email") or None,
            "first_name": node.get("firstName") or "",
            "last_name": node.get("lastName") or "",
        }

    async def get_customer_email(self, shop: str, customer_id: str) -> Optional[str]:
        customer = await self.get_customer(shop, customer_id)
        return customer["email"] if customer else None

    async def get_order_tags(self, shop: str, order_id: str) -> list[str]:
        data = await self._request(shop, "GET", f"/orders/{order_id}.json?fields=id,tags")
        return parse_tags((data.get("order") or {}).get("tags"))

    async def get_fulfillment_orders(self, shop: str, order_id: str) -> list[dict]:
        data = await self._request(shop, "GET", f"/orders/{order_id}/fulfillment_orders.json")
        return data.get("fulfillment_orders") or []

    async def get_fulfillments(self, shop: str, order_id: str) -> list[dict]:
        data = await self._request(shop, "GET", f"/orders/{order_id}/fulfillments.json")
        return data.get("fulfillments") or []

    async def fulfill_order(
        self, shop: str, order_id: str, notify_customer: bool = True
    ) -> dict[str, Any]:
        """Fulfil every open fulfillment order of an order.

        An order with no open fulfillment orders but existing fulfillments is
        reported as already fulfilled rather than an error.

        Raises:
            PermanentError: nothing open and nothing fulfilled
        """
        log = logger.bind(shop=shop, order_id=order_id)
        fulfillment_orders = await self.get_fulfillment_orders(shop, order_id)
        open_orders = [
            fo for fo in fulfillment_orders if fo.get("status") in OPEN_FULFILLMENT_STATUSES
        ]

        if not open_orders:
            existing = await self.get_fulfillments(shop, order_id)
            if existing:
                log.info("shopify_order_already_fulfilled", fulfillments=len(existing))
                return {"already_fulfilled": True, "fulfillments": len(existing)}
            raise PermanentError(
                f"No open fulfillment orders and no existing fulfillments for order {order_id}",
                service=SERVICE,
            )

        body = {
            "fulfillment": {
                "notify_customer": notify_customer,
                "line_items_by_fulfillment_order": [
                    {"fulfillment_order_id": fo["id"]} for fo in open_orders
                ],
            }
        }
        data = await self._request(shop, "POST", "/fulfillments.json", body)
        fulfillment = data.get("fulfillment") or {}
        log.info(
            "shopify_order_fulfilled",
            fulfillment_id=fulfillment.get("id"),
            notify_customer=notify_customer,
        )
        return {"already_fulfilled": False, "fulfillment_id": fulfillment.get("id")}
