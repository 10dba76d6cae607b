"""Redis connection for the sync queue, the metrics refresh and readiness.

One client per process. Reads have no socket timeout because consumer
loops block in BLMOVE for up to their claim timeout; connects are bounded
and idle connections are re-checked before reuse.
"""

from __future__ import annotations

import redis.asyncio as aioredis

from src.intake.config import Settings, get_settings

_client: aioredis.Redis | None = None


def create_redis(settings: Settings) -> aioredis.Redis:
    """Build a client from ``REDIS_URL`` with string replies."""
    return aioredis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_connect_timeout=settings.REDIS_CONNECT_TIMEOUT_S,
        health_check_interval=settings.REDIS_HEALTH_CHECK_INTERVAL_S,
    )


def get_redis_pool() -> aioredis.Redis:
    """Process-wide client, created on first use."""
    global _client
    if _client is None:
        _client = create_redis(get_settings())
    return _client


async def redis_error() -> str | None:
    """None when Redis answers PING, otherwise why it did not."""
    try:
        if await get_redis_pool().ping():
            return None
        return "PING did not return PONG"
    except Exception as exc:
        return str(exc) or type(exc).__name__


async def close_redis() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
