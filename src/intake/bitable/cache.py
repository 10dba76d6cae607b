"""Single-flight TTL cache for Bitable credentials and table schema.

Each BitableClient owns one cache per resource (tenant access token, field
metadata). A cache entry is served while ``now < expires_at - margin``.
On a miss, the first caller starts the loader as a task and registers it
as in-flight before yielding to the event loop; every concurrent caller
awaits that same task instead of issuing its own request. The in-flight
marker is cleared when the load settles, whether it succeeded or failed.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")

Loader = Callable[[], Awaitable[tuple[T, float]]]


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    expires_at: float


class SingleFlightCache(Generic[T]):
    """Cache one value with a TTL and de-duplicated refreshes.

    Args:
        refresh_margin: Seconds before expiry at which the entry is treated
            as stale and refreshed.
        clock: Monotonic time source in seconds (injectable for tests).
    """

    def __init__(
        self,
        refresh_margin: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._refresh_margin = refresh_margin
        self._clock = clock
        self._entry: CacheEntry[T] | None = None
        self._inflight: asyncio.Task[T] | None = None

    def peek(self) -> T | None:
        """Return the cached value if still fresh, without loading."""
        entry = self._entry
        if entry is not None and self._clock() < entry.expires_at - self._refresh_margin:
            return entry.value
        return None

    @property
    def loading(self) -> bool:
        return self._inflight is not None

    async def get(self, loader: Loader[T]) -> T:
        """Return the cached value, loading it at most once concurrently.

        Args:
            loader: Coroutine function returning ``(value, ttl_seconds)``.

        Raises:
            Whatever the loader raises; a failed load is not cached.
        """
        entry = self._entry
        if entry is not None and self._clock() < entry.expires_at - self._refresh_margin:
            return entry.value

        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._load(loader))

        # A cancelled waiter must not cancel the load other callers share
        return await asyncio.shield(self._inflight)

    def invalidate(self) -> None:
        """Drop the cached entry; the next get() reloads."""
        self._entry = None

    async def _load(self, loader: Loader[T]) -> T:
        try:
            value, ttl = await loader()
            self._entry = CacheEntry(value=value, expires_at=self._clock() + ttl)
            return value
        finally:
            self._inflight = None
