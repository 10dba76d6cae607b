"""FastAPI application factory for the intake operations surface.

Creates the app with metrics middleware, Sentry, lifespan events for
database initialization, the health router, and /metrics.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.requests import Request
from fastapi.responses import Response

from src.intake.api.health import router as health_router
from src.intake.config import get_settings
from src.intake.core.database import close_db, init_db
from src.intake.core.logging import configure_structlog
from src.intake.core.monitoring import (
    MetricsMiddleware,
    get_metrics_response,
    init_sentry,
    update_queue_metrics,
)
from src.intake.core.redis import close_redis, get_redis_pool
from src.intake.queue.sync_queue import SyncQueue


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB and Sentry on startup, close on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    app.state.sync_queue = SyncQueue(get_redis_pool())
    if not settings.has_feishu_config():
        log.warning("app.feishu_not_configured")
    log.info("app.started", environment=settings.ENVIRONMENT.value)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Intake Sync",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(MetricsMiddleware)
    app.include_router(health_router)

    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint; refreshes the queue gauges first."""
        queue = getattr(request.app.state, "sync_queue", None)
        if queue is not None:
            await update_queue_metrics(queue)
        return get_metrics_response()

    return app


app = create_app()
