"""Task handler registry."""

from typing import Any, Callable, Coroutine, Optional

from boxoffice.jobs.models import WorkItem
from boxoffice.jobs.retry import DEFAULT_POLICY, RetryPolicy
from boxoffice.jobs.types import WorkItemKind

# Handler signature: async def handler(item: WorkItem, ctx: dict) -> dict
TaskHandler = Callable[[WorkItem, dict[str, Any]], Coroutine[Any, Any, dict[str, Any]]]


class TaskRegistry:
    """Registry mapping work item kinds to their handlers and retry policies."""

    def __init__(self, default_policy: RetryPolicy = DEFAULT_POLICY):
        self._handlers: dict[WorkItemKind, TaskHandler] = {}
        self._policies: dict[WorkItemKind, RetryPolicy] = {}
        self._default_policy = default_policy

    def register(
        self,
        kind: WorkItemKind,
        handler: TaskHandler,
        policy: Optional[RetryPolicy] = None,
    ) -> None:
        """Register a handler (and optional retry policy) for a kind."""
        self._handlers[kind] = handler
        if policy is not None:
            self._policies[kind] = policy

    def get_handler(self, kind: WorkItemKind) -> TaskHandler:
        """Get the handler for a kind. Raises KeyError if not found."""
        if kind not in self._handlers:
            raise KeyError(f"No handler registered for kind: {kind}")
        return self._handlers[kind]

    def policy_for(self, kind: WorkItemKind) -> RetryPolicy:
        return self._policies.get(kind, self._default_policy)

    def kinds(self) -> list[WorkItemKind]:
        return list(self._handlers)

    def with_max_attempts(self, max_attempts: int) -> "TaskRegistry":
        """Copy of this registry with every policy's attempt bound replaced."""
        clone = TaskRegistry(self._default_policy.with_max_attempts(max_attempts))
        for kind, handler in self._handlers.items():
            policy = self._policies.get(kind)
            clone.register(
                kind,
                handler,
                policy.with_max_attempts(max_attempts) if policy else None,
            )
        return clone

    def handler(
        self, kind: WorkItemKind, policy: Optional[RetryPolicy] = None
    ) -> Callable[[TaskHandler], TaskHandler]:
        """Decorator to register a handler."""

        def decorator(fn: TaskHandler) -> TaskHandler:
            self.register(kind, fn, policy)
            return fn

        return decorator


# Global registry instance
default_registry = TaskRegistry()
