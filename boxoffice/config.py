"""Configuration management using Pydantic Settings."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service Configuration
    service_host: str = Field(default="0.0.0.0", description="Service host")
    service_port: int = Field(default=8000, description="Service port")
    log_level: str = Field(default="INFO", description="Logging level")

    # Database
    database_url: Optional[str] = Field(
        default=None, description="PostgreSQL connection URL"
    )
    db_pool_min_size: int = Field(default=2, description="Minimum connection pool size")
    db_pool_max_size: int = Field(default=10, description="Maximum connection pool size")

    # Worker pool
    worker_enabled: bool = Field(
        default=True, description="Start the work-item pollers with the app"
    )
    worker_concurrency: int = Field(
        default=3, ge=1, description="Number of concurrent pollers"
    )
    worker_poll_interval_s: float = Field(
        default=2.0, gt=0, description="Sleep between empty polls (seconds)"
    )
    worker_max_attempts: int = Field(
        default=5, ge=1, description="Attempts before a work item is marked failed"
    )

    # Stale lock janitor (optional)
    janitor_enabled: bool = Field(
        default=False,
        description="Requeue processing items whose lock outlived lock timeout",
    )
    janitor_lock_timeout_s: int = Field(
        default=900, description="Age after which a processing lock is stale"
    )
    janitor_interval_s: float = Field(
        default=60.0, description="Seconds between janitor sweeps"
    )

    # Shopify
    shopify_api_version: str = Field(default="2024-01", description="Admin API version")

    # AddEvent
    addevent_api_key: Optional[str] = Field(default=None, description="AddEvent API token")
    addevent_base_url: str = Field(
        default="https://www.addevent.com/api/v1", description="AddEvent API base URL"
    )
    addevent_northern_calendar_id: Optional[str] = Field(
        default=None, description="Calendar id for northern subscribers"
    )
    addevent_southern_calendar_id: Optional[str] = Field(
        default=None, description="Calendar id for southern subscribers"
    )
    addevent_snapshot_ttl_minutes: int = Field(
        default=15, description="Reuse subscriber snapshots younger than this"
    )
    northern_variant_ids: str = Field(
        default="", description="Comma-separated variant ids for the northern box"
    )
    southern_variant_ids: str = Field(
        default="", description="Comma-separated variant ids for the southern box"
    )

    # Mail relay
    mail_relay_url: Optional[str] = Field(
        default=None, description="HTTP endpoint that accepts outbound mail"
    )
    mail_relay_token: Optional[str] = Field(
        default=None, description="Bearer token for the mail relay"
    )
    mail_from: Optional[str] = Field(default=None, description="From address")

    # Outbound HTTP
    http_timeout_s: float = Field(
        default=20.0, description="Timeout for outbound API calls"
    )

    # Cron / Flow callers
    cron_token: Optional[str] = Field(
        default=None, description="Shared secret expected in X-Cron-Token"
    )
    flow_shared_secret: Optional[str] = Field(
        default=None,
        description="Shared secret expected in X-Flow-Secret (unset = not checked)",
    )

    # Sentry Observability
    sentry_dsn: Optional[str] = Field(
        default=None,
        description="Sentry DSN for error tracking",
    )
    sentry_environment: str = Field(
        default="development",
        description="Sentry environment tag (development, staging, production)",
    )

    @property
    def northern_variants(self) -> list[str]:
        """Northern variant ids as a list."""
        return _split_csv(self.northern_variant_ids)

    @property
    def southern_variants(self) -> list[str]:
        """Southern variant ids as a list."""
        return _split_csv(self.southern_variant_ids)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
