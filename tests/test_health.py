"""Tests for the operations surface: health checks, /metrics and monitoring helpers.

Covers:
- /health liveness
- /health/ready with healthy and failing dependencies
- /metrics exposition refreshing queue gauges
- update_queue_metrics() tolerance of Redis failures
- init_sentry() stripping request bodies
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from prometheus_client import REGISTRY

from src.intake.core.monitoring import init_sentry, update_queue_metrics
from src.intake.main import create_app


def _engine(fail: bool = False) -> MagicMock:
    engine = MagicMock()
    conn = AsyncMock()
    if fail:
        conn.execute.side_effect = OSError("connection refused")
    engine.connect.return_value.__aenter__.return_value = conn
    return engine


def _redis(pong: bool = True) -> AsyncMock:
    redis = AsyncMock()
    redis.ping.return_value = pong
    return redis


@pytest.fixture
def app():
    return create_app()


class TestHealthEndpoints:

    @pytest.mark.asyncio
    async def test_liveness(self, app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            response = await ac.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    @pytest.mark.asyncio
    async def test_ready_when_dependencies_respond(self, app):
        with (
            patch("src.intake.api.health.get_engine", return_value=_engine()),
            patch("src.intake.core.redis.get_redis_pool", return_value=_redis()),
        ):
            async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
                response = await ac.get("/health/ready")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ready"
        assert body["checks"]["database"] == "ok"
        assert body["checks"]["redis"] == "ok"

    @pytest.mark.asyncio
    async def test_degraded_when_database_down(self, app):
        with (
            patch("src.intake.api.health.get_engine", return_value=_engine(fail=True)),
            patch("src.intake.core.redis.get_redis_pool", return_value=_redis(pong=False)),
        ):
            async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
                response = await ac.get("/health/ready")

        assert response.status_code == 503
        checks = response.json()["checks"]
        assert checks["database"] == "error"
        assert "connection refused" in checks["database_error"]
        assert checks["redis"] == "error"


class TestMetrics:

    @pytest.mark.asyncio
    async def test_metrics_refreshes_queue_gauges(self, app):
        queue = MagicMock()
        queue.get_job_counts = AsyncMock(
            return_value={"waiting": 7, "active": 2, "delayed": 3, "failed": 1},
        )
        app.state.sync_queue = queue

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            response = await ac.get("/metrics")

        assert response.status_code == 200
        assert "intake_sync_queue_jobs" in response.text
        assert REGISTRY.get_sample_value("intake_sync_queue_jobs", {"state": "waiting"}) == 7
        assert REGISTRY.get_sample_value("intake_sync_queue_jobs", {"state": "failed"}) == 1

    @pytest.mark.asyncio
    async def test_update_queue_metrics_swallows_redis_errors(self):
        queue = MagicMock()
        queue.get_job_counts = AsyncMock(side_effect=ConnectionError("redis down"))

        await update_queue_metrics(queue)


class TestInitSentry:

    def test_before_send_strips_request_body(self):
        with patch("src.intake.core.monitoring.sentry_sdk.init") as mock_init:
            init_sentry(dsn="https://key@sentry.test/1", environment="production")

        kwargs = mock_init.call_args.kwargs
        assert kwargs["traces_sample_rate"] == 0.1
        assert kwargs["send_default_pii"] is False

        event = {"request": {"url": "/submissions", "data": {"phone": "13800000000"}}}
        cleaned = kwargs["before_send"](event, {})
        assert cleaned["request"] == {"url": "/submissions"}
