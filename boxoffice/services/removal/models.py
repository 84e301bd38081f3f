"""Removal target models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class RemovalStatus(str, Enum):
    """Per-target outcome. Only PENDING is non-terminal."""

    PENDING = "pending"
    DONE = "done"
    NOT_FOUND = "not_found"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class RemovalTarget:
    """A cancelled contract to remove from its calendar for one period."""

    id: int
    tenant: str
    period: str
    contract_id: str
    customer_id: Optional[str] = None
    email: Optional[str] = None
    line_variant_id: Optional[str] = None
    removal_status: RemovalStatus = RemovalStatus.PENDING
    removal_error: Optional[str] = None
    removed_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "RemovalTarget":
        return cls(
            id=row["id"],
            tenant=row["tenant"],
            period=row["period"],
            contract_id=row["contract_id"],
            customer_id=row["customer_id"],
            email=row["email"],
            line_variant_id=row["line_variant_id"],
            removal_status=RemovalStatus(row["removal_status"]),
            removal_error=row["removal_error"],
            removed_at=row["removed_at"],
        )


@dataclass
class BatchStats:
    """Counters stored on the monthly_removal work item when it completes."""

    processed: int = 0
    done: int = 0
    not_found: int = 0
    failed: int = 0
    skipped: int = 0
    deferred: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    def record(self, status: RemovalStatus) -> None:
        if status is RemovalStatus.DONE:
            self.done += 1
        elif status is RemovalStatus.NOT_FOUND:
            self.not_found += 1
        elif status is RemovalStatus.SKIPPED:
            self.skipped += 1
        elif status is RemovalStatus.FAILED:
            self.failed += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "done": self.done,
            "not_found": self.not_found,
            "failed": self.failed,
            "skipped": self.skipped,
            "deferred": self.deferred,
            "errors": self.errors,
        }


@dataclass
class StepResult:
    """Outcome of running one target through the removal steps."""

    status: RemovalStatus
    reason: Optional[str] = None
    calendar_key: Optional[str] = None
    subscriber_id: Optional[str] = None


@dataclass
class SubscriptionRow:
    """One contract from a subscription export."""

    contract_id: str
    customer_id: str
    status: str
    line_variant_id: Optional[str] = None
    handle: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == "ACTIVE"


@dataclass
class RemovalLogEntry:
    """One attempt recorded against a removal target."""

    id: int
    target_id: int
    status: str
    calendar_key: Optional[str] = None
    email: Optional[str] = None
    subscriber_id: Optional[str] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None
