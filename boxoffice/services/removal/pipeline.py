"""Removal pipeline - removes cancelled subscribers from their calendar.

Targets are processed one at a time in ascending id order:

    1. email     cached on the target, else looked up in Shopify and stored
    2. calendar  variant classified into a calendar key
    3. snapshot  subscriber listing for (tenant, period, calendar), TTL cached
    4. lookup    email -> subscriber id in the snapshot
    5. delete    AddEvent delete, target marked done

A rate-limit error anywhere in the batch aborts the whole batch and
propagates, so the enclosing work item is retried after the hint. Any other
error fails only the target it happened on.

The monthly batch and the single-contract path both delete through the
action ledger under the same key (contract:{id}, remove_subscriber:{period}),
so a subscriber is removed once per period whichever path gets there first.
"""

from typing import Optional

import structlog

from boxoffice.core.errors import RateLimitedError, TransientError, classify_error
from boxoffice.repositories.removal_targets import RemovalTargetRepository
from boxoffice.services.addevent import AddEventClient
from boxoffice.services.idempotency import (
    ActionStatus,
    ActionType,
    contract_subject,
    with_idempotent_action,
)
from boxoffice.services.removal.calendars import CalendarDirectory
from boxoffice.services.removal.models import (
    BatchStats,
    RemovalStatus,
    RemovalTarget,
    StepResult,
)
from boxoffice.services.removal.snapshots import SnapshotStore
from boxoffice.services.shopify import ShopifyClient

logger = structlog.get_logger(__name__)


class RemovalInProgressError(TransientError):
    """Another attempt holds the ledger row for this removal."""


def removal_action(period: str) -> str:
    """Ledger action name for removing a contract's subscriber in a period."""
    return f"{ActionType.REMOVE_SUBSCRIBER.value}:{period}"


class RemovalPipeline:
    """Runs removal targets through lookup, classification and deletion."""

    def __init__(
        self,
        targets: RemovalTargetRepository,
        shopify: ShopifyClient,
        addevent: AddEventClient,
        snapshots: SnapshotStore,
        directory: CalendarDirectory,
        ledger=None,
    ):
        self.targets = targets
        self.shopify = shopify
        self.addevent = addevent
        self.snapshots = snapshots
        self.directory = directory
        self.ledger = ledger

    async def run_batch(self, tenant: str, period: str) -> BatchStats:
        """Process every pending target of a period.

        Raises:
            RateLimitedError: the batch stopped at the target that hit the limit
        """
        log = logger.bind(tenant=tenant, period=period)
        pending = await self.targets.list_pending(tenant, period)
        log.info("removal_batch_started", pending=len(pending))

        stats = BatchStats()
        snapshot_ids: dict[str, Optional[int]] = {}

        for target in pending:
            stats.processed += 1
            try:
                result = await self.process_target(tenant, target, snapshot_ids)
            except RateLimitedError as e:
                log.warning(
                    "removal_batch_rate_limited",
                    target_id=target.id,
                    retry_after_s=e.retry_after_s,
                    service=e.service,
                    **stats.to_dict(),
                )
                raise
            except RemovalInProgressError:
                # Left pending for the attempt that owns the removal
                stats.deferred += 1
                log.info("removal_target_deferred", target_id=target.id)
                continue
            except Exception as e:
                await self._fail_target(tenant, target, e)
                stats.failed += 1
                stats.errors.append({"id": target.id, "error": str(e)})
                continue

            stats.record(result.status)

        log.info("removal_batch_finished", **stats.to_dict())
        return stats

    async def process_target(
        self,
        tenant: str,
        target: RemovalTarget,
        snapshot_ids: Optional[dict[str, Optional[int]]] = None,
    ) -> StepResult:
        """Run one target through the removal steps and record its outcome.

        Errors from collaborators propagate to the caller with the target
        still pending.
        """
        if snapshot_ids is None:
            snapshot_ids = {}
        log = logger.bind(tenant=tenant, target_id=target.id, contract_id=target.contract_id)

        email = target.email
        if not email and target.customer_id:
            email = await self.shopify.get_customer_email(tenant, target.customer_id)
            if email:
                await self.targets.set_email(target.id, email)
            else:
                return await self._finish(
                    tenant, target, RemovalStatus.NOT_FOUND, "Customer email not found in Shopify"
                )
        if not email:
            return await self._finish(tenant, target, RemovalStatus.NOT_FOUND, "No email available")

        calendar_key = self.directory.key_for_variant(target.line_variant_id)
        if calendar_key is None:
            return await self._finish(
                tenant, target, RemovalStatus.SKIPPED, "No calendar mapping for variant", email=email
            )

        if calendar_key not in snapshot_ids:
            snapshot_ids[calendar_key] = await self.snapshots.ensure(
                tenant, target.period, calendar_key
            )
        snapshot_id = snapshot_ids[calendar_key]
        if snapshot_id is None:
            return await self._finish(
                tenant,
                target,
                RemovalStatus.SKIPPED,
                "No calendar configured",
                calendar_key=calendar_key,
                email=email,
            )

        subscriber_id = await self.snapshots.lookup(snapshot_id, email)
        if not subscriber_id:
            return await self._finish(
                tenant,
                target,
                RemovalStatus.NOT_FOUND,
                "Subscriber not found in calendar",
                calendar_key=calendar_key,
                email=email,
            )

        calendar_id = self.directory.calendar_id(calendar_key)
        await self._delete(tenant, target, calendar_id, subscriber_id)
        log.info("removal_target_removed", calendar_key=calendar_key, subscriber_id=subscriber_id)
        return await self._finish(
            tenant,
            target,
            RemovalStatus.DONE,
            None,
            calendar_key=calendar_key,
            email=email,
            subscriber_id=subscriber_id,
        )

    async def process_contract(self, tenant: str, target: RemovalTarget) -> StepResult:
        """Single-target removal for a contract cancelled mid-period.

        Retryable errors propagate (target stays pending, the work item is
        retried); a permanent error fails the target and is reported in the
        result.
        """
        try:
            return await self.process_target(tenant, target)
        except Exception as e:
            if classify_error(e).is_retryable:
                raise
            await self._fail_target(tenant, target, e)
            return StepResult(RemovalStatus.FAILED, reason=str(e))

    async def _delete(
        self,
        tenant: str,
        target: RemovalTarget,
        calendar_id: str,
        subscriber_id: str,
    ) -> None:
        if self.ledger is None:
            await self.addevent.delete_subscriber(calendar_id, subscriber_id)
            return

        outcome = await with_idempotent_action(
            self.ledger,
            tenant,
            contract_subject(target.contract_id),
            removal_action(target.period),
            {"calendar_id": calendar_id, "subscriber_id": subscriber_id},
            lambda: self.addevent.delete_subscriber(calendar_id, subscriber_id),
        )
        if not outcome.skipped:
            return

        existing = outcome.existing
        if existing is not None and existing.status is ActionStatus.FAILED:
            raise RuntimeError(
                f"Removal previously failed: {(existing.details or {}).get('error')}"
            )
        if existing is not None and existing.status is ActionStatus.ACQUIRED:
            raise RemovalInProgressError("Removal in progress by another attempt")

    async def _finish(
        self,
        tenant: str,
        target: RemovalTarget,
        status: RemovalStatus,
        reason: Optional[str],
        calendar_key: Optional[str] = None,
        email: Optional[str] = None,
        subscriber_id: Optional[str] = None,
    ) -> StepResult:
        await self.targets.mark(target.id, status, reason)
        await self.targets.log_attempt(
            tenant,
            target.id,
            status,
            calendar_key=calendar_key,
            email=email,
            subscriber_id=subscriber_id,
            error=reason if status is not RemovalStatus.DONE else None,
        )
        if status is not RemovalStatus.DONE:
            logger.info(
                "removal_target_resolved",
                target_id=target.id,
                status=status.value,
                reason=reason,
            )
        return StepResult(status, reason, calendar_key, subscriber_id)

    async def _fail_target(self, tenant: str, target: RemovalTarget, error: Exception) -> None:
        logger.error(
            "removal_target_failed",
            tenant=tenant,
            target_id=target.id,
            error=str(error),
            error_kind=classify_error(error).value,
        )
        await self.targets.mark(target.id, RemovalStatus.FAILED, str(error))
        await self.targets.log_attempt(
            tenant, target.id, RemovalStatus.FAILED, email=target.email, error=str(error)
        )
