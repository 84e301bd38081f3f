"""FastAPI dependencies: service access and shared-secret checks."""

import hmac
from typing import Optional

import structlog
from fastapi import Depends, Header, HTTPException, status

from boxoffice.config import Settings, get_settings
from boxoffice.core import lifespan
from boxoffice.core.container import ServiceContainer

logger = structlog.get_logger(__name__)


def get_container() -> ServiceContainer:
    """Services built at startup; 503 while the database is unavailable."""
    container = lifespan.get_container()
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database not available",
        )
    return container


def _secret_matches(expected: str, provided: Optional[str]) -> bool:
    return provided is not None and hmac.compare_digest(expected, provided)


def require_cron_token(
    x_cron_token: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> bool:
    """
    Require X-Cron-Token for scheduled endpoints.

    Returns 503 when CRON_TOKEN is unset (the endpoint stays closed) and 401
    for a missing or wrong token.
    """
    if not settings.cron_token:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="CRON_TOKEN not configured",
        )
    if not _secret_matches(settings.cron_token, x_cron_token):
        logger.warning("cron_token_rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid cron token",
        )
    return True


def require_flow_secret(
    x_flow_secret: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> bool:
    """Check X-Flow-Secret when FLOW_SHARED_SECRET is configured."""
    if not settings.flow_shared_secret:
        return True
    if not _secret_matches(settings.flow_shared_secret, x_flow_secret):
        logger.warning("flow_secret_rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="invalid_secret",
        )
    return True
