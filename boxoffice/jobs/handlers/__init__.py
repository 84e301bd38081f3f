"""Work item handlers.

Importing this package registers every handler with default_registry.

Handler contract:
    async def handle_<kind>(item: WorkItem, ctx: dict) -> dict:
        - item: the claimed WorkItem (payload, tenant, attempts)
        - ctx: worker_id, pool, store plus the services wired in lifespan
          (order_processor, removal_pipeline, removal_targets)
        - Returns: stats dict stored on the item when it completes
"""

from boxoffice.jobs.handlers import contract_removal  # noqa: F401
from boxoffice.jobs.handlers import monthly_removal  # noqa: F401
from boxoffice.jobs.handlers import order_paid  # noqa: F401

__all__ = ["contract_removal", "monthly_removal", "order_paid"]
