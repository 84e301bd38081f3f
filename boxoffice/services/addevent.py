"""Thin AddEvent calendar API client."""

from typing import Any, Optional

import httpx
import structlog

from boxoffice.core.errors import PermanentError
from boxoffice.services.http import send_request

logger = structlog.get_logger(__name__)

SERVICE = "addevent"
DEFAULT_RETRY_AFTER_S = 30.0
PAGE_SIZE = 100
MAX_PAGES = 100


def normalize_email(email: Optional[str]) -> str:
    return str(email or "").strip().lower()


class AddEventClient:
    """Calendar subscriber listing and deletion."""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://www.addevent.com/api/v1",
        timeout: float = 20.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    async def _request(self, method: str, path: str, params: dict[str, Any]) -> dict:
        if not self.api_key:
            raise PermanentError("ADDEVENT_API_KEY not configured", service=SERVICE)
        resp = await send_request(
            method,
            f"{self.base_url}{path}",
            service=SERVICE,
            timeout=self.timeout,
            default_retry_after_s=DEFAULT_RETRY_AFTER_S,
            client=self._client,
            params={"token": self.api_key, **params},
        )
        return resp.json()

    async def list_subscribers(self, calendar_id: str) -> list[dict[str, str]]:
        """All subscribers of a calendar as {subscriber_id, email}.

        Pages of PAGE_SIZE until a short page, stopping after MAX_PAGES.
        Emails are lower-cased and trimmed.
        """
        subscribers: list[dict[str, str]] = []
        for page in range(1, MAX_PAGES + 1):
            data = await self._request(
                "GET",
                "/calendar/subscribers/list",
                {"calendar_id": calendar_id, "page": page, "per_page": PAGE_SIZE},
            )
            rows = data.get("subscribers") or data.get("data") or []
            for row in rows:
                subscribers.append(
                    {
                        "subscriber_id": str(row.get("id") or row.get("subscriber_id") or ""),
                        "email": normalize_email(row.get("email")),
                    }
                )
            if len(rows) < PAGE_SIZE:
                break
        else:
            logger.warning("addevent_page_limit_reached", calendar_id=calendar_id)

        logger.info(
            "addevent_subscribers_listed", calendar_id=calendar_id, count=len(subscribers)
        )
        return subscribers

    async def delete_subscriber(self, calendar_id: str, subscriber_id: str) -> dict:
        data = await self._request(
            "POST",
            "/calendar/subscribers/delete",
            {"calendar_id": calendar_id, "subscriber_id": subscriber_id},
        )
        logger.info(
            "addevent_subscriber_deleted",
            calendar_id=calendar_id,
            subscriber_id=subscriber_id,
        )
        return data
