"""Work queue package."""

from boxoffice.jobs.types import EnqueueOutcome, WorkItemKind, WorkItemStatus
from boxoffice.jobs.models import EnqueueResult, FailResult, WorkItem
from boxoffice.jobs.registry import TaskRegistry, default_registry
from boxoffice.jobs.retry import DEFAULT_POLICY, REMOVAL_POLICY, RetryPolicy

__all__ = [
    "EnqueueOutcome",
    "WorkItemKind",
    "WorkItemStatus",
    "EnqueueResult",
    "FailResult",
    "WorkItem",
    "TaskRegistry",
    "default_registry",
    "DEFAULT_POLICY",
    "REMOVAL_POLICY",
    "RetryPolicy",
]
