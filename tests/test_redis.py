"""Tests for the shared Redis client and its readiness helper."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.intake.core import redis as redis_module
from src.intake.core.redis import close_redis, create_redis, get_redis_pool, redis_error


@pytest.fixture(autouse=True)
def reset_client():
    redis_module._client = None
    yield
    redis_module._client = None


class TestRedisClient:

    def test_create_redis_uses_settings(self, settings):
        settings.REDIS_URL = "redis://cache.internal:6380/2"
        settings.REDIS_CONNECT_TIMEOUT_S = 2.5
        with patch("src.intake.core.redis.aioredis.from_url") as from_url:
            create_redis(settings)

        from_url.assert_called_once_with(
            "redis://cache.internal:6380/2",
            decode_responses=True,
            socket_connect_timeout=2.5,
            health_check_interval=30,
        )

    def test_pool_is_created_once(self):
        with patch("src.intake.core.redis.create_redis", return_value=MagicMock()) as create:
            first = get_redis_pool()
            second = get_redis_pool()

        assert first is second
        create.assert_called_once()

    @pytest.mark.asyncio
    async def test_close_resets_client(self):
        client = MagicMock()
        client.aclose = AsyncMock()
        redis_module._client = client

        await close_redis()

        client.aclose.assert_awaited_once()
        assert redis_module._client is None


class TestRedisError:

    @pytest.mark.asyncio
    async def test_none_when_ping_succeeds(self):
        client = MagicMock()
        client.ping = AsyncMock(return_value=True)
        redis_module._client = client

        assert await redis_error() is None

    @pytest.mark.asyncio
    async def test_reports_connection_errors(self):
        client = MagicMock()
        client.ping = AsyncMock(side_effect=ConnectionRefusedError("Connection refused"))
        redis_module._client = client

        assert await redis_error() == "Connection refused"

    @pytest.mark.asyncio
    async def test_reports_missing_pong(self):
        client = MagicMock()
        client.ping = AsyncMock(return_value=False)
        redis_module._client = client

        assert await redis_error() == "PING did not return PONG"
