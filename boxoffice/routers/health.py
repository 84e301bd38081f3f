"""Health check endpoint."""

import time

import structlog
from fastapi import APIRouter

from boxoffice import __version__
from boxoffice.core import lifespan
from boxoffice.schemas import DependencyHealth, HealthResponse

router = APIRouter()
logger = structlog.get_logger(__name__)


async def check_database_health() -> DependencyHealth:
    """Run SELECT 1 against the pool."""
    pool = lifespan.get_db_pool()
    if pool is None:
        return DependencyHealth(status="error", error="Database not configured")

    start = time.perf_counter()
    try:
        async with pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
    except Exception as e:
        latency = (time.perf_counter() - start) * 1000
        return DependencyHealth(status="error", latency_ms=latency, error=str(e))
    return DependencyHealth(status="ok", latency_ms=(time.perf_counter() - start) * 1000)


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Service health.

    Returns status "ok" when Postgres answers, "degraded" otherwise. The
    endpoint itself always answers 200 so load balancers can tell a slow
    database from a dead process.
    """
    database = await check_database_health()
    worker = lifespan.get_worker_pool()
    return HealthResponse(
        status="ok" if database.status == "ok" else "degraded",
        database=database,
        worker_running=bool(worker and worker.running),
        version=__version__,
    )
