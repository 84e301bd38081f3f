"""Sentry initialization and configuration."""

import os
from typing import Optional

import sentry_sdk
import structlog
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from boxoffice import __version__
from boxoffice.config import Settings
from boxoffice.core.errors import TaskError

logger = structlog.get_logger(__name__)


def _before_send(event: dict, hint: dict) -> Optional[dict]:
    """
    Drop client errors and retryable task errors.

    4xx responses are caller mistakes, and rate-limited or transient task
    errors are retried by the queue; only what is left is worth an event.
    """
    if "exc_info" in hint:
        _, exc_value, _ = hint["exc_info"]
        if hasattr(exc_value, "status_code"):
            if 400 <= exc_value.status_code < 500:
                return None
        if isinstance(exc_value, TaskError) and exc_value.kind.is_retryable:
            return None

    if "contexts" in event:
        response = event.get("contexts", {}).get("response", {})
        status_code = response.get("status_code", 0)
        if 400 <= status_code < 500:
            return None

    return event


def init_sentry(settings: Settings) -> bool:
    """
    Initialize Sentry if DSN is configured.

    Returns True if Sentry was initialized, False otherwise.
    """
    if not settings.sentry_dsn:
        return False

    # Only send ERROR-level logs as Sentry events
    sentry_logging = LoggingIntegration(
        level=None,
        event_level="ERROR",
    )

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.sentry_environment,
        release=os.environ.get("GIT_SHA", f"boxoffice@{__version__}"),
        integrations=[
            sentry_logging,
            StarletteIntegration(transaction_style="endpoint"),
            FastApiIntegration(transaction_style="endpoint"),
        ],
        send_default_pii=False,
        attach_stacktrace=True,
        before_send=_before_send,
    )
    sentry_sdk.set_tag("service", "boxoffice")

    logger.info("sentry_initialized", environment=settings.sentry_environment)
    return True
