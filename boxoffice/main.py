"""Boxoffice back-office service - FastAPI application."""

import logging
import time
import uuid

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from boxoffice import __version__
from boxoffice.config import get_settings
from boxoffice.core.lifespan import lifespan
from boxoffice.core.sentry import init_sentry
from boxoffice.routers import (
    cron,
    health,
    ops,
    removals,
    subscription_exports,
    subscriptions,
    webhooks,
    workshops,
)

settings = get_settings()

logging.basicConfig(format="%(message)s", level=settings.log_level.upper())

# Configure structured logging
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)

init_sentry(settings)

app = FastAPI(
    title="Boxoffice",
    description="Subscription fulfilment, calendar removal and workshop reminders",
    version=__version__,
    lifespan=lifespan,
)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    """Add request ID and timing to all requests."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )

    start_time = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception as e:
        logger.exception("request_failed", error=str(e))
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "retryable": True},
            headers={"X-Request-ID": request_id},
        )

    duration_ms = (time.perf_counter() - start_time) * 1000
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Response-Time-Ms"] = f"{duration_ms:.2f}"

    if request.url.path != "/health":
        logger.info(
            "request_completed",
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
        )
    return response


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(webhooks.router)
app.include_router(subscriptions.router)
app.include_router(subscription_exports.router)
app.include_router(removals.router)
app.include_router(ops.router)
app.include_router(cron.router)
app.include_router(workshops.router)


@app.get("/")
async def root():
    """Root endpoint with service info."""
    return {
        "service": "boxoffice",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "boxoffice.main:app",
        host=settings.service_host,
        port=settings.service_port,
        reload=False,
    )
