"""Application lifespan management - startup and shutdown logic."""

import traceback
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import asyncpg
import httpx
import structlog
from fastapi import FastAPI

from boxoffice import __version__
from boxoffice.config import Settings, get_settings
from boxoffice.core.container import ServiceContainer, build_container
from boxoffice.jobs.janitor import StaleLockJanitor
from boxoffice.jobs.registry import default_registry
from boxoffice.jobs.worker import WorkerPool

logger = structlog.get_logger(__name__)

# Global handles - accessed by routers through boxoffice.deps
_db_pool: Optional[asyncpg.Pool] = None
_http_client: Optional[httpx.AsyncClient] = None
_container: Optional[ServiceContainer] = None
_worker_pool: Optional[WorkerPool] = None
_janitor: Optional[StaleLockJanitor] = None


def get_db_pool() -> Optional[asyncpg.Pool]:
    """Get the database connection pool."""
    return _db_pool


def get_container() -> Optional[ServiceContainer]:
    return _container


def get_worker_pool() -> Optional[WorkerPool]:
    return _worker_pool


async def _init_database(settings: Settings) -> Optional[asyncpg.Pool]:
    """Create the asyncpg pool. Returns None when unconfigured or unreachable."""
    if not settings.database_url:
        logger.warning("database_not_configured", hint="Set DATABASE_URL in .env")
        return None

    try:
        pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            timeout=10,
            command_timeout=30,
        )
    except Exception as e:
        logger.error(
            "database_pool_init_failed",
            error=str(e),
            traceback=traceback.format_exc(),
        )
        return None

    logger.info(
        "database_pool_initialized",
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
    )
    return pool


async def _start_worker(container: ServiceContainer, settings: Settings) -> WorkerPool:
    # Registers every handler with default_registry
    import boxoffice.jobs.handlers  # noqa: F401

    registry = default_registry.with_max_attempts(settings.worker_max_attempts)
    worker = WorkerPool(
        container.pool,
        registry=registry,
        concurrency=settings.worker_concurrency,
        poll_interval_s=settings.worker_poll_interval_s,
        context=container.handler_context(),
        store=container.store,
    )
    await worker.start()
    return worker


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    global _db_pool, _http_client, _container, _worker_pool, _janitor

    settings = get_settings()
    logger.info(
        "service_starting",
        version=__version__,
        host=settings.service_host,
        port=settings.service_port,
    )

    _db_pool = await _init_database(settings)

    if _db_pool:
        _http_client = httpx.AsyncClient(timeout=settings.http_timeout_s)
        _container = build_container(_db_pool, settings, http_client=_http_client)

        if settings.worker_enabled:
            _worker_pool = await _start_worker(_container, settings)
        else:
            logger.info("worker_pool_disabled", hint="WORKER_ENABLED=false")

        if settings.janitor_enabled:
            _janitor = StaleLockJanitor(
                _container.store,
                lock_timeout_s=settings.janitor_lock_timeout_s,
                max_attempts=settings.worker_max_attempts,
                interval_s=settings.janitor_interval_s,
            )
            await _janitor.start()

    yield

    logger.info("service_shutting_down")

    # Stop pollers before the pool closes so in-flight items can finish
    if _janitor:
        await _janitor.stop()
        _janitor = None

    if _worker_pool:
        await _worker_pool.stop()
        _worker_pool = None

    _container = None

    if _http_client:
        await _http_client.aclose()
        _http_client = None

    if _db_pool:
        await _db_pool.close()
        _db_pool = None
        logger.info("database_pool_closed")
