"""Queue-pressure monitoring for the sync queue.

Samples the queue backlog (waiting + active + delayed) and classifies it
against two watermarks. Samples are cached for a short window so that a
burst of submissions does not turn into a burst of Redis round trips.

Sampling failures degrade to a "normal" snapshot: backpressure is an
optimization and must never block or fail an enqueue.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

import structlog

from src.intake.config import Settings

logger = structlog.get_logger(__name__)


class QueuePressureLevel(str, Enum):
    normal = "normal"
    high = "high"
    critical = "critical"


@dataclass(frozen=True)
class QueuePressureSnapshot:
    level: QueuePressureLevel
    backlog: int
    waiting: int
    active: int
    delayed: int


NORMAL_SNAPSHOT = QueuePressureSnapshot(
    level=QueuePressureLevel.normal,
    backlog=0,
    waiting=0,
    active=0,
    delayed=0,
)


class JobCountSource(Protocol):
    async def get_job_counts(self, *states: str) -> dict[str, int]: ...


def classify_queue_pressure(
    backlog: int,
    high_watermark: int,
    critical_watermark: int,
) -> QueuePressureLevel:
    """Classify a backlog; each watermark is inclusive."""
    if backlog >= critical_watermark:
        return QueuePressureLevel.critical
    if backlog >= high_watermark:
        return QueuePressureLevel.high
    return QueuePressureLevel.normal


class QueuePressureMonitor:
    """Cached backlog sampler for one queue.

    Args:
        high_watermark: Backlog at or above which pressure is "high".
        critical_watermark: Backlog at or above which pressure is "critical".
        cache_ms: How long a sample is reused before sampling again.
        clock: Monotonic time source in seconds.
    """

    def __init__(
        self,
        high_watermark: int,
        critical_watermark: int,
        cache_ms: int = 500,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._high_watermark = high_watermark
        self._critical_watermark = critical_watermark
        self._cache_ms = max(0, cache_ms)
        self._clock = clock
        self._cached: QueuePressureSnapshot | None = None
        self._cached_at: float = 0.0

    @classmethod
    def from_settings(cls, settings: Settings) -> QueuePressureMonitor:
        return cls(
            high_watermark=settings.FEISHU_QUEUE_HIGH_WATERMARK,
            critical_watermark=settings.FEISHU_QUEUE_CRITICAL_WATERMARK,
            cache_ms=settings.FEISHU_QUEUE_PRESSURE_CACHE_MS,
        )

    async def get_queue_pressure(self, queue: JobCountSource) -> QueuePressureSnapshot:
        """Return the current pressure snapshot, sampling at most once per window."""
        now = self._clock()
        if self._cached is not None and (now - self._cached_at) * 1000 < self._cache_ms:
            return self._cached

        try:
            counts = await queue.get_job_counts("waiting", "active", "delayed")
        except Exception as exc:
            logger.warning("queue.pressure_sample_failed", error=str(exc))
            return NORMAL_SNAPSHOT

        waiting = int(counts.get("waiting", 0) or 0)
        active = int(counts.get("active", 0) or 0)
        delayed = int(counts.get("delayed", 0) or 0)
        backlog = waiting + active + delayed

        snapshot = QueuePressureSnapshot(
            level=classify_queue_pressure(backlog, self._high_watermark, self._critical_watermark),
            backlog=backlog,
            waiting=waiting,
            active=active,
            delayed=delayed,
        )
        self._cached = snapshot
        self._cached_at = now
        return snapshot
