"""Wiring of repositories, clients and services around one database pool."""

from dataclasses import dataclass
from typing import Any, Optional

import httpx

from boxoffice.config import Settings
from boxoffice.repositories.action_ledger import ActionLedgerRepository
from boxoffice.repositories.email_templates import EmailTemplateRepository
from boxoffice.repositories.removal_targets import RemovalTargetRepository
from boxoffice.repositories.shop_sessions import ShopSessionRepository
from boxoffice.repositories.subscriptions import ActiveSubscriptionRepository
from boxoffice.repositories.work_items import WorkItemRepository
from boxoffice.repositories.workshops import WorkshopRepository
from boxoffice.services.addevent import AddEventClient
from boxoffice.services.email import TemplateMailer
from boxoffice.services.orders import OrderProcessor
from boxoffice.services.removal.calendars import CalendarDirectory
from boxoffice.services.removal.contracts import ContractEvents
from boxoffice.services.removal.imports import SubscriptionImporter
from boxoffice.services.removal.pipeline import RemovalPipeline
from boxoffice.services.removal.snapshots import SnapshotStore
from boxoffice.services.shopify import ShopifyClient
from boxoffice.services.workshop_notifications import WorkshopNotifier


@dataclass
class ServiceContainer:
    pool: Any
    store: WorkItemRepository
    ledger: ActionLedgerRepository
    targets: RemovalTargetRepository
    subscriptions: ActiveSubscriptionRepository
    workshops: WorkshopRepository
    shopify: ShopifyClient
    addevent: AddEventClient
    mailer: TemplateMailer
    directory: CalendarDirectory
    snapshots: SnapshotStore
    pipeline: RemovalPipeline
    orders: OrderProcessor
    contracts: ContractEvents
    importer: SubscriptionImporter
    notifier: WorkshopNotifier

    def handler_context(self) -> dict[str, Any]:
        """Extra context handed to every work item handler."""
        return {
            "order_processor": self.orders,
            "removal_pipeline": self.pipeline,
            "removal_targets": self.targets,
            "ledger": self.ledger,
        }


def build_container(
    pool, settings: Settings, http_client: Optional[httpx.AsyncClient] = None
) -> ServiceContainer:
    """Build every collaborator from settings.

    ``http_client`` is shared by the outbound clients when given; otherwise
    each call opens its own client.
    """
    store = WorkItemRepository(pool)
    ledger = ActionLedgerRepository(pool)
    targets = RemovalTargetRepository(pool)
    subscriptions = ActiveSubscriptionRepository(pool)
    workshops = WorkshopRepository(pool)

    shopify = ShopifyClient(
        ShopSessionRepository(pool),
        api_version=settings.shopify_api_version,
        timeout=settings.http_timeout_s,
        client=http_client,
    )
    addevent = AddEventClient(
        settings.addevent_api_key,
        base_url=settings.addevent_base_url,
        timeout=settings.http_timeout_s,
        client=http_client,
    )
    mailer = TemplateMailer(
        EmailTemplateRepository(pool),
        relay_url=settings.mail_relay_url,
        relay_token=settings.mail_relay_token,
        sender=settings.mail_from,
        timeout=settings.http_timeout_s,
        client=http_client,
    )

    directory = CalendarDirectory.from_settings(settings)
    snapshots = SnapshotStore(
        pool, addevent, directory, ttl_minutes=settings.addevent_snapshot_ttl_minutes
    )
    pipeline = RemovalPipeline(targets, shopify, addevent, snapshots, directory, ledger=ledger)

    return ServiceContainer(
        pool=pool,
        store=store,
        ledger=ledger,
        targets=targets,
        subscriptions=subscriptions,
        workshops=workshops,
        shopify=shopify,
        addevent=addevent,
        mailer=mailer,
        directory=directory,
        snapshots=snapshots,
        pipeline=pipeline,
        orders=OrderProcessor(ledger, shopify, mailer, workshops),
        contracts=ContractEvents(subscriptions, targets, store),
        importer=SubscriptionImporter(subscriptions, targets),
        notifier=WorkshopNotifier(workshops, ledger, mailer),
    )
