"""Typed error taxonomy for task execution.

Errors are classified where the external call is made (HTTP clients, mailer)
and carried as a ``TaskError`` so the queue and the idempotency ledger never
need to re-inspect status codes or message text.

    RATE_LIMITED - upstream asked us to back off; carries retry_after_s
    TRANSIENT    - connection reset, timeout, 5xx; safe to retry
    PERMANENT    - validation, missing data, other 4xx
"""

import asyncio
from enum import Enum
from typing import Optional

import httpx


class ErrorKind(str, Enum):
    """Retry classification of a task failure."""

    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    PERMANENT = "permanent"

    @property
    def is_retryable(self) -> bool:
        return self in (ErrorKind.RATE_LIMITED, ErrorKind.TRANSIENT)


class TaskError(Exception):
    """Base error raised by task collaborators."""

    kind: ErrorKind = ErrorKind.PERMANENT

    def __init__(
        self,
        message: str,
        retry_after_s: Optional[float] = None,
        service: Optional[str] = None,
    ):
        super().__init__(message)
        self.retry_after_s = retry_after_s
        self.service = service


class RateLimitedError(TaskError):
    """Upstream returned 429 (or equivalent)."""

    kind = ErrorKind.RATE_LIMITED


class TransientError(TaskError):
    """Network-class failure worth retrying."""

    kind = ErrorKind.TRANSIENT


class PermanentError(TaskError):
    """Failure that will not go away on retry."""

    kind = ErrorKind.PERMANENT


# Built-in exceptions treated as network-class failures
_TRANSIENT_BUILTINS = (
    ConnectionError,  # includes ConnectionResetError / ConnectionRefusedError
    TimeoutError,
    asyncio.TimeoutError,
    httpx.TransportError,  # includes httpx.TimeoutException
)


def classify_error(error: BaseException) -> ErrorKind:
    """Classify an exception into the retry taxonomy."""
    if isinstance(error, TaskError):
        return error.kind
    if isinstance(error, _TRANSIENT_BUILTINS):
        return ErrorKind.TRANSIENT
    return ErrorKind.PERMANENT


def retry_after_hint(
    error: BaseException, default: Optional[float] = None
) -> Optional[float]:
    """Return the retry-after hint carried by a rate-limit error.

    Non rate-limit errors return None so the caller falls back to backoff.
    A rate-limit error without an explicit hint returns ``default``.
    """
    if isinstance(error, TaskError) and error.kind is ErrorKind.RATE_LIMITED:
        if error.retry_after_s is not None:
            return error.retry_after_s
        return default
    return None


def error_from_status(
    status_code: int,
    message: str,
    service: str,
    retry_after_header: Optional[str] = None,
    default_retry_after_s: float = 10.0,
) -> TaskError:
    """Map a non-2xx HTTP status to a typed error."""
    if status_code == 429:
        return RateLimitedError(
            message,
            retry_after_s=parse_retry_after(retry_after_header, default_retry_after_s),
            service=service,
        )
    if status_code >= 500 or status_code == 408:
        return TransientError(message, service=service)
    return PermanentError(message, service=service)


def parse_retry_after(value: Optional[str], default: float) -> float:
    """Parse a Retry-After header given in seconds."""
    if not value:
        return default
    try:
        seconds = float(value.strip())
    except ValueError:
        return default
    return max(0.0, seconds)
