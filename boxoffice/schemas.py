"""Pydantic models for request/response validation."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from boxoffice.jobs.models import WorkItem
from boxoffice.services.idempotency import ActionRecord
from boxoffice.services.removal.models import RemovalLogEntry, RemovalTarget

PERIOD_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


class DependencyHealth(BaseModel):
    """Health status of a single dependency."""

    status: str = Field(..., description="ok or error")
    latency_ms: Optional[float] = Field(None, description="Check latency")
    error: Optional[str] = Field(None, description="Error message if unhealthy")


class HealthResponse(BaseModel):
    """Response for health endpoint."""

    status: str = Field(..., description="Overall service status")
    database: DependencyHealth = Field(..., description="Postgres health")
    worker_running: bool = Field(..., description="True if pollers are running")
    version: str = Field(..., description="Service version")


class EnqueueResponse(BaseModel):
    """Result of enqueueing a work item."""

    ok: bool = True
    outcome: str = Field(..., description="inserted, updated or duplicate")
    item_id: Optional[int] = Field(None, description="Work item id")


class WorkItemView(BaseModel):
    """Operator view of a work item."""

    id: int
    tenant: str
    kind: str
    natural_key: str
    status: str
    attempts: int
    run_after: datetime
    last_error: Optional[str] = None
    stats: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_item(cls, item: WorkItem) -> "WorkItemView":
        return cls(
            id=item.id,
            tenant=item.tenant,
            kind=item.kind.value,
            natural_key=item.natural_key,
            status=item.status.value,
            attempts=item.attempts,
            run_after=item.run_after,
            last_error=item.last_error,
            stats=item.stats,
            created_at=item.created_at,
            updated_at=item.updated_at,
        )


class RemovalStatusResponse(BaseModel):
    """Removal job for a period plus target counts by status."""

    period: str
    job: Optional[WorkItemView] = None
    counts: dict[str, int]


class QueueStatsResponse(BaseModel):
    """Worker pool counters and queue counts by status."""

    pool: Optional[dict[str, Any]] = Field(None, description="None when pollers are off")
    queue: dict[str, int]


class ActionRecordView(BaseModel):
    action: str
    status: str
    details: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: ActionRecord) -> "ActionRecordView":
        return cls(
            action=record.action,
            status=record.status.value,
            details=record.details,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class ActionListResponse(BaseModel):
    subject: str
    actions: list[ActionRecordView]


class ContractUpdateRequest(BaseModel):
    """Subscription contract status change sent by a Shopify Flow."""

    shop: Optional[str] = Field(None, description="Shop domain (or X-Shopify-Shop-Domain)")
    contract_id: Optional[str] = Field(None, description="Numeric contract id")
    handle: Optional[str] = Field(None, description="Contract handle; trailing digits used as id")
    customer_id: str = Field(..., min_length=1)
    line_variant_id: Optional[str] = None
    status: str = Field(..., min_length=1, description="ACTIVE, PAUSED or CANCELLED")


class ContractUpdateResponse(BaseModel):
    ok: bool = True
    status: str
    details: dict[str, Any] = Field(default_factory=dict)


class WorkshopRunResponse(BaseModel):
    sent: int
    skipped: int
    failed: int
    tenants: int


class RemovalStartResponse(EnqueueResponse):
    """Removal batch enqueue result plus the target filter counts."""

    filter: Optional[dict[str, int]] = Field(
        None, description="total, inserted, skipped_active, skipped_duplicate"
    )


class RemovalTargetView(BaseModel):
    id: int
    contract_id: str
    customer_id: Optional[str] = None
    email: Optional[str] = None
    line_variant_id: Optional[str] = None
    removal_status: str
    removal_error: Optional[str] = None
    removed_at: Optional[datetime] = None

    @classmethod
    def from_target(cls, target: RemovalTarget) -> "RemovalTargetView":
        return cls(
            id=target.id,
            contract_id=target.contract_id,
            customer_id=target.customer_id,
            email=target.email,
            line_variant_id=target.line_variant_id,
            removal_status=target.removal_status.value,
            removal_error=target.removal_error,
            removed_at=target.removed_at,
        )


class RemovalTargetPage(BaseModel):
    """Page of removal targets for a period."""

    period: str
    targets: list[RemovalTargetView]
    total: int
    page: int
    page_size: int
    total_pages: int


class RemovalLogView(BaseModel):
    id: int
    status: str
    calendar_key: Optional[str] = None
    email: Optional[str] = None
    subscriber_id: Optional[str] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_entry(cls, entry: RemovalLogEntry) -> "RemovalLogView":
        return cls(
            id=entry.id,
            status=entry.status,
            calendar_key=entry.calendar_key,
            email=entry.email,
            subscriber_id=entry.subscriber_id,
            error=entry.error,
            created_at=entry.created_at,
        )


class RemovalLogResponse(BaseModel):
    target: RemovalTargetView
    logs: list[RemovalLogView]


class RemovalPeriodSummary(BaseModel):
    period: str
    counts: dict[str, int]


class RemovalPeriodsResponse(BaseModel):
    periods: list[RemovalPeriodSummary]


class SubscriptionImportResponse(BaseModel):
    """Counts from a subscription export import."""

    ok: bool = True
    stats: dict[str, int]
    skipped: list[dict[str, Any]] = Field(
        default_factory=list, description="First skipped rows with their reason"
    )


class SubscriptionCountsResponse(BaseModel):
    active: int
    cancelled: int


class WorkshopSettingsBody(BaseModel):
    """Workshop date and reminder offsets (minutes before the workshop)."""

    workshop_at: Optional[datetime] = Field(None, description="Workshop start; null disables reminders")
    notify_offsets: list[int] = Field(default_factory=list)

    @field_validator("notify_offsets")
    @classmethod
    def offsets_positive(cls, value: list[int]) -> list[int]:
        if any(offset <= 0 for offset in value):
            raise ValueError("notify_offsets must be positive minutes")
        return sorted(set(value), reverse=True)


class WorkshopSettingsResponse(WorkshopSettingsBody):
    tenant: str
