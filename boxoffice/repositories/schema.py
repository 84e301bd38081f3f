"""Database schema (flat DDL, idempotent)."""

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS work_items (
    id BIGSERIAL PRIMARY KEY,
    tenant TEXT NOT NULL,
    kind TEXT NOT NULL CHECK (kind IN ('order_paid', 'monthly_removal', 'contract_removal')),
    natural_key TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'queued'
        CHECK (status IN ('queued', 'processing', 'completed', 'failed')),
    payload JSONB NOT NULL DEFAULT '{}',
    attempts INTEGER NOT NULL DEFAULT 0,
    run_after TIMESTAMPTZ NOT NULL DEFAULT now(),
    lock_owner TEXT,
    locked_at TIMESTAMPTZ,
    last_error TEXT,
    stats JSONB,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    CONSTRAINT work_items_natural_key UNIQUE (tenant, kind, natural_key),
    CONSTRAINT work_items_lock_fields CHECK (
        (status = 'processing' AND lock_owner IS NOT NULL AND locked_at IS NOT NULL)
        OR (status <> 'processing' AND lock_owner IS NULL AND locked_at IS NULL)
    )
);

CREATE INDEX IF NOT EXISTS idx_work_items_claimable
    ON work_items (run_after, id) WHERE status = 'queued';
CREATE INDEX IF NOT EXISTS idx_work_items_processing
    ON work_items (locked_at) WHERE status = 'processing';

CREATE TABLE IF NOT EXISTS action_records (
    id BIGSERIAL PRIMARY KEY,
    tenant TEXT NOT NULL,
    subject TEXT NOT NULL,
    action TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'acquired'
        CHECK (status IN ('acquired', 'completed', 'failed')),
    details JSONB,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    CONSTRAINT action_records_key UNIQUE (tenant, subject, action)
);

CREATE TABLE IF NOT EXISTS removal_targets (
    id BIGSERIAL PRIMARY KEY,
    tenant TEXT NOT NULL,
    period TEXT NOT NULL,
    contract_id TEXT NOT NULL,
    customer_id TEXT,
    email TEXT,
    line_variant_id TEXT,
    removal_status TEXT NOT NULL DEFAULT 'pending'
        CHECK (removal_status IN ('pending', 'done', 'not_found', 'failed', 'skipped')),
    removal_error TEXT,
    removed_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    CONSTRAINT removal_targets_key UNIQUE (tenant, period, contract_id)
);

CREATE INDEX IF NOT EXISTS idx_removal_targets_pending
    ON removal_targets (tenant, period, id) WHERE removal_status = 'pending';

CREATE TABLE IF NOT EXISTS removal_logs (
    id BIGSERIAL PRIMARY KEY,
    tenant TEXT NOT NULL,
    target_id BIGINT NOT NULL,
    calendar_key TEXT,
    email TEXT,
    subscriber_id TEXT,
    status TEXT NOT NULL,
    error TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS subscriber_snapshots (
    id BIGSERIAL PRIMARY KEY,
    tenant TEXT NOT NULL,
    period TEXT NOT NULL,
    calendar_key TEXT NOT NULL,
    calendar_id TEXT NOT NULL,
    fetched_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    subscriber_count INTEGER NOT NULL DEFAULT 0,
    CONSTRAINT subscriber_snapshots_key UNIQUE (tenant, period, calendar_key)
);

CREATE TABLE IF NOT EXISTS subscriber_cache (
    id BIGSERIAL PRIMARY KEY,
    snapshot_id BIGINT NOT NULL REFERENCES subscriber_snapshots(id) ON DELETE CASCADE,
    email TEXT NOT NULL,
    subscriber_id TEXT NOT NULL,
    CONSTRAINT subscriber_cache_key UNIQUE (snapshot_id, email)
);

CREATE TABLE IF NOT EXISTS shopify_sessions (
    id BIGSERIAL PRIMARY KEY,
    shop TEXT NOT NULL UNIQUE,
    access_token TEXT,
    is_uninstalled BOOLEAN NOT NULL DEFAULT false,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS email_templates (
    id BIGSERIAL PRIMARY KEY,
    tenant TEXT NOT NULL,
    template_key TEXT NOT NULL,
    title TEXT,
    subject TEXT NOT NULL DEFAULT '',
    html TEXT NOT NULL DEFAULT '',
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    CONSTRAINT email_templates_key UNIQUE (tenant, template_key)
);

CREATE TABLE IF NOT EXISTS workshop_settings (
    tenant TEXT PRIMARY KEY,
    workshop_at TIMESTAMPTZ,
    notify_offsets JSONB NOT NULL DEFAULT '[]',
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS workshop_registrations (
    id BIGSERIAL PRIMARY KEY,
    tenant TEXT NOT NULL,
    order_id TEXT NOT NULL,
    order_name TEXT,
    customer_id TEXT,
    email TEXT,
    first_name TEXT,
    last_name TEXT,
    purchased_at TIMESTAMPTZ,
    workshop_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    CONSTRAINT workshop_registrations_key UNIQUE (tenant, order_id)
);

CREATE TABLE IF NOT EXISTS active_subscriptions (
    id BIGSERIAL PRIMARY KEY,
    tenant TEXT NOT NULL,
    contract_id TEXT NOT NULL,
    customer_id TEXT NOT NULL,
    line_variant_id TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    CONSTRAINT active_subscriptions_key UNIQUE (tenant, contract_id)
);

CREATE INDEX IF NOT EXISTS idx_active_subscriptions_customer
    ON active_subscriptions (tenant, customer_id);

CREATE TABLE IF NOT EXISTS cancelled_subscriptions (
    id BIGSERIAL PRIMARY KEY,
    tenant TEXT NOT NULL,
    contract_id TEXT NOT NULL,
    customer_id TEXT NOT NULL,
    line_variant_id TEXT,
    status TEXT NOT NULL CHECK (status IN ('PAUSED', 'CANCELLED')),
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    CONSTRAINT cancelled_subscriptions_key UNIQUE (tenant, contract_id)
);

CREATE INDEX IF NOT EXISTS idx_removal_logs_target
    ON removal_logs (target_id, id);
"""

TABLES = (
    "work_items",
    "action_records",
    "removal_targets",
    "removal_logs",
    "subscriber_cache",
    "subscriber_snapshots",
    "shopify_sessions",
    "email_templates",
    "workshop_settings",
    "workshop_registrations",
    "active_subscriptions",
    "cancelled_subscriptions",
)


async def apply_schema(conn) -> None:
    """Create every table and index that does not exist yet."""
    await conn.execute(SCHEMA_SQL)
