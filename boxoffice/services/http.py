"""Shared outbound HTTP call with typed error mapping."""

from typing import Any, Optional

import httpx
import structlog

from boxoffice.core.errors import TransientError, error_from_status

logger = structlog.get_logger(__name__)


async def send_request(
    method: str,
    url: str,
    service: str,
    timeout: float = 20.0,
    default_retry_after_s: float = 10.0,
    client: Optional[httpx.AsyncClient] = None,
    **kwargs: Any,
) -> httpx.Response:
    """Send one request and raise a TaskError for anything but 2xx.

    Args:
        method: HTTP method
        url: Absolute URL
        service: Upstream name carried on raised errors ("shopify", "addevent")
        timeout: Request timeout in seconds when no client is supplied
        default_retry_after_s: Hint used for a 429 without Retry-After
        client: Shared client (tests pass one built on httpx.MockTransport)

    Raises:
        RateLimitedError: 429
        TransientError: 5xx, 408, connection or timeout failure
        PermanentError: any other non-2xx status
    """
    try:
        if client is not None:
            resp = await client.request(method, url, **kwargs)
        else:
            async with httpx.AsyncClient(timeout=timeout) as session:
                resp = await session.request(method, url, **kwargs)
    except httpx.TransportError as e:
        logger.warning("http_transport_error", service=service, method=method, error=str(e))
        raise TransientError(f"{service} request failed: {e}", service=service) from e

    if resp.is_success:
        return resp

    body = resp.text[:200]
    logger.warning(
        "http_error_response",
        service=service,
        method=method,
        status=resp.status_code,
        response=body,
    )
    raise error_from_status(
        resp.status_code,
        f"{service} API error: {resp.status_code} - {body}",
        service=service,
        retry_after_header=resp.headers.get("Retry-After"),
        default_retry_after_s=default_retry_after_s,
    )
