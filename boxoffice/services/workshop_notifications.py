"""Scheduled workshop reminder emails.

Each tenant configures a workshop date and a list of offsets in minutes
(e.g. [1440, 60] for a day and an hour before). A cron call runs the
notifier every few minutes; an offset fires while now is within
SEND_WINDOW of ``workshop_at - offset``. The ledger keeps each
(registration, offset) pair to a single send.
"""

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog

from boxoffice.repositories.workshops import (
    WorkshopRegistration,
    WorkshopRepository,
    WorkshopSettings,
)
from boxoffice.services.email import WORKSHOP_NOTIFICATION_TEMPLATE, TemplateMailer
from boxoffice.services.idempotency import (
    ActionType,
    registration_subject,
    with_idempotent_action,
)

logger = structlog.get_logger(__name__)

SEND_WINDOW = timedelta(minutes=2)


@dataclass
class NotifyStats:
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    tenants: int = 0


def notify_action(offset_minutes: int) -> str:
    return f"{ActionType.WORKSHOP_NOTIFY.value}:{offset_minutes}"


def in_send_window(workshop_at: datetime, offset_minutes: int, now: datetime) -> bool:
    """True when now is within SEND_WINDOW of workshop_at - offset."""
    target = workshop_at - timedelta(minutes=offset_minutes)
    return target - SEND_WINDOW <= now <= target + SEND_WINDOW


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def template_variables(
    registration: WorkshopRegistration, workshop_at: datetime, offset_minutes: int
) -> dict[str, str]:
    when = registration.workshop_at or workshop_at
    return {
        "first_name": registration.first_name or "",
        "last_name": registration.last_name or "",
        "order_id": registration.order_id or "",
        "workshop_date": when.strftime("%A %d %B %Y"),
        "workshop_time": when.strftime("%H:%M"),
        "workshop_at": when.isoformat(),
        "minutes_before": str(offset_minutes),
        "hours_before": str(round(offset_minutes / 60)),
    }


class WorkshopNotifier:
    """Sends due workshop reminders across all tenants."""

    def __init__(self, workshops: WorkshopRepository, ledger, mailer: TemplateMailer):
        self.workshops = workshops
        self.ledger = ledger
        self.mailer = mailer

    async def run(self, now: Optional[datetime] = None) -> dict[str, int]:
        now = _aware(now or datetime.now(timezone.utc))
        stats = NotifyStats()

        scheduled = await self.workshops.list_scheduled()
        stats.tenants = len(scheduled)

        for settings in scheduled:
            await self._run_tenant(settings, now, stats)

        logger.info("workshop_notifications_run", **asdict(stats))
        return asdict(stats)

    async def _run_tenant(
        self, settings: WorkshopSettings, now: datetime, stats: NotifyStats
    ) -> None:
        workshop_at = _aware(settings.workshop_at)
        due = [o for o in settings.notify_offsets if in_send_window(workshop_at, o, now)]
        if not due:
            return

        registrations = await self.workshops.list_notifiable(settings.tenant)
        for offset in due:
            for registration in registrations:
                await self._notify(settings.tenant, registration, workshop_at, offset, stats)

    async def _notify(
        self,
        tenant: str,
        registration: WorkshopRegistration,
        workshop_at: datetime,
        offset: int,
        stats: NotifyStats,
    ) -> None:
        variables = template_variables(registration, workshop_at, offset)
        try:
            outcome = await with_idempotent_action(
                self.ledger,
                tenant,
                registration_subject(registration.id),
                notify_action(offset),
                {"email": registration.email, "offset_minutes": offset},
                lambda: self.mailer.send(
                    tenant, WORKSHOP_NOTIFICATION_TEMPLATE, registration.email, variables
                ),
            )
        except Exception as e:
            stats.failed += 1
            logger.error(
                "workshop_notification_failed",
                tenant=tenant,
                registration_id=registration.id,
                offset_minutes=offset,
                error=str(e),
            )
            return

        if outcome.skipped:
            stats.skipped += 1
        else:
            stats.sent += 1
