"""Work queue data models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from boxoffice.jobs.types import EnqueueOutcome, WorkItemKind, WorkItemStatus


@dataclass
class WorkItem:
    """A unit of deferred work in the lease store."""

    id: int
    tenant: str
    kind: WorkItemKind
    natural_key: str
    status: WorkItemStatus
    payload: dict[str, Any]

    # Retry handling
    attempts: int = 0
    run_after: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    # Lock info
    lock_owner: Optional[str] = None
    locked_at: Optional[datetime] = None

    last_error: Optional[str] = None
    stats: Optional[dict[str, Any]] = None

    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: Optional[datetime] = None


@dataclass
class EnqueueResult:
    """Outcome of WorkItemRepository.enqueue."""

    outcome: EnqueueOutcome
    item_id: Optional[int] = None

    @property
    def inserted(self) -> bool:
        return self.outcome is EnqueueOutcome.INSERTED


@dataclass
class FailResult:
    """Outcome of WorkItemRepository.fail."""

    status: WorkItemStatus
    attempts: int
    delay_s: Optional[float] = None  # None when terminal

    @property
    def requeued(self) -> bool:
        return self.status is WorkItemStatus.QUEUED
