"""Backpressure policy: enqueue delay and retry backoff from pressure level.

Pure functions over QueuePressureLevel. Under pressure new sync jobs are
enqueued with a delay, and failed jobs back off longer, so the worker pool
drains the backlog instead of hammering Bitable's rate limits.
"""

from __future__ import annotations

import random
from collections.abc import Callable

from src.intake.queue.pressure import QueuePressureLevel

CRITICAL_DELAY_FLOOR_MS = 200
HIGH_DELAY_FLOOR_MS = 50
CRITICAL_MIN_JITTER_MS = 100
HIGH_MIN_JITTER_MS = 50
RETRY_JITTER_MS = 200


def compute_enqueue_delay_ms(
    level: QueuePressureLevel,
    *,
    high_base_ms: int = 200,
    critical_base_ms: int = 1000,
    rng: Callable[[], float] = random.random,
) -> int:
    """Delay before a newly enqueued job becomes runnable.

    The jitter spreads out jobs enqueued in the same burst so they do not
    all become due at the same instant.
    """
    if level == QueuePressureLevel.critical:
        base = max(CRITICAL_DELAY_FLOOR_MS, int(critical_base_ms or 0))
        return base + int(rng() * max(CRITICAL_MIN_JITTER_MS, base // 2))
    if level == QueuePressureLevel.high:
        base = max(HIGH_DELAY_FLOOR_MS, int(high_base_ms or 0))
        return base + int(rng() * max(HIGH_MIN_JITTER_MS, base // 2))
    return 0


def retry_backoff_multiplier(
    level: QueuePressureLevel,
    *,
    high: float = 1.5,
    critical: float = 2.5,
) -> float:
    if level == QueuePressureLevel.critical:
        return max(1.0, float(critical or 1))
    if level == QueuePressureLevel.high:
        return max(1.0, float(high or 1))
    return 1.0


def compute_retry_backoff_ms(
    attempt: int,
    *,
    base_ms: int = 1000,
    max_ms: int = 120000,
    multiplier: float = 1.0,
    rng: Callable[[], float] = random.random,
) -> int:
    """Exponential backoff for the ``attempt``-th failure (1-based), capped."""
    base = max(50, int(base_ms or 0))
    cap = max(base, int(max_ms or 0))
    delay = min(cap, base * 2 ** max(0, attempt - 1) * max(1.0, multiplier))
    return int(delay) + int(rng() * RETRY_JITTER_MS)
