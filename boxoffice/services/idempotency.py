"""Idempotent side-effecting actions.

Each distinct side effect against a subject (send the northern email for
order 1001, fulfil order 1001, remove contract 77 from its calendar) runs
through ``with_idempotent_action`` exactly once per subject/action pair:

    1. acquire() inserts an 'acquired' row; a unique-key collision means
       another attempt owns or already finished the action -> skip
    2. the task runs
    3. success  -> row marked 'completed' with the task result as details
       transient/rate-limited failure or cancellation -> row deleted
       (released), re-raised
       permanent failure -> row marked 'failed', re-raised

Callers treat a skip as "already happened" and continue with the next step.
A crash between the side effect and mark_completed leaves the row
'acquired', and later attempts skip it. A timeout reported after the remote
side already accepted the request releases the row, so that action can run
twice.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import structlog

from boxoffice.core.errors import ErrorKind, classify_error

logger = structlog.get_logger(__name__)


class ActionType(str, Enum):
    """Named side-effecting actions tracked in the ledger."""

    EMAIL_NORTHERN = "email_northern"
    EMAIL_SOUTHERN = "email_southern"
    EMAIL_WORKSHOP = "email_workshop"
    FULFILL_SUBSCRIPTION = "fulfill_subscription"
    FULFILL_WORKSHOP = "fulfill_workshop"
    REMOVE_SUBSCRIBER = "remove_subscriber"
    WORKSHOP_NOTIFY = "workshop_notify"


class ActionStatus(str, Enum):
    ACQUIRED = "acquired"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ActionRecord:
    """Record from the action_records table."""

    id: int
    tenant: str
    subject: str
    action: str
    status: ActionStatus
    details: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict, details: Optional[dict] = None) -> "ActionRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            tenant=row["tenant"],
            subject=row["subject"],
            action=row["action"],
            status=ActionStatus(row["status"]),
            details=details if details is not None else row.get("details"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )


@dataclass
class ActionOutcome:
    """Result of with_idempotent_action."""

    skipped: bool
    result: Any = None
    existing: Optional[ActionRecord] = None


def order_subject(order_id: str) -> str:
    return f"order:{order_id}"


def contract_subject(contract_id: str) -> str:
    return f"contract:{contract_id}"


def registration_subject(registration_id: int) -> str:
    return f"registration:{registration_id}"


def _action_name(action) -> str:
    return action.value if isinstance(action, Enum) else str(action)


async def with_idempotent_action(
    ledger,
    tenant: str,
    subject: str,
    action,
    details: Optional[dict[str, Any]],
    task: Callable[[], Awaitable[Any]],
) -> ActionOutcome:
    """Run ``task`` at most once per (tenant, subject, action).

    Args:
        ledger: ActionLedgerRepository
        tenant: Shop domain
        subject: Entity the action applies to (e.g. "order:1001")
        action: ActionType or free-form action name
        details: Request summary stored on the acquired row
        task: Zero-arg coroutine function performing the side effect

    Returns:
        ActionOutcome(skipped=True, existing=...) when another attempt owns
        or finished the action, else ActionOutcome(skipped=False, result=...)

    Raises:
        Whatever ``task`` raised, after the ledger row is released or failed
    """
    action_name = _action_name(action)
    acquired, record = await ledger.acquire(tenant, subject, action_name, details)

    if not acquired:
        return ActionOutcome(skipped=True, existing=record)

    log = logger.bind(tenant=tenant, subject=subject, action=action_name)

    try:
        result = await task()
    except asyncio.CancelledError:
        log.warning("idempotent_action_cancelled")
        await ledger.release(tenant, subject, action_name)
        raise
    except Exception as e:
        kind = classify_error(e)
        log.error("idempotent_action_failed", error=str(e), error_kind=kind.value)
        if kind is ErrorKind.PERMANENT:
            await ledger.mark_failed(tenant, subject, action_name, str(e))
        else:
            await ledger.release(tenant, subject, action_name)
        raise

    stored = result if isinstance(result, dict) or result is None else {"result": result}
    await ledger.mark_completed(tenant, subject, action_name, stored)
    return ActionOutcome(skipped=False, result=result)
