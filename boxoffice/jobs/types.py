"""Work queue type definitions."""

from enum import Enum


class WorkItemKind(str, Enum):
    """Kinds of deferred work."""

    ORDER_PAID = "order_paid"
    MONTHLY_REMOVAL = "monthly_removal"
    CONTRACT_REMOVAL = "contract_removal"


class WorkItemStatus(str, Enum):
    """Work item lifecycle statuses."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Check if this status is terminal (no further retries)."""
        return self in (WorkItemStatus.COMPLETED, WorkItemStatus.FAILED)


class EnqueueOutcome(str, Enum):
    """Result of an enqueue upsert."""

    INSERTED = "inserted"
    UPDATED = "updated"
    DUPLICATE = "duplicate"  # existing row is completed, left untouched
