"""Tests for queue-pressure classification, sampling and backpressure policy.

Covers:
- Watermark boundaries (inclusive)
- QueuePressureMonitor caching and failure degradation
- Enqueue delay floors, jitter and monotonicity across levels
- Retry backoff multipliers and exponential backoff capping
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.intake.queue.backpressure import (
    compute_enqueue_delay_ms,
    compute_retry_backoff_ms,
    retry_backoff_multiplier,
)
from src.intake.queue.pressure import (
    QueuePressureLevel,
    QueuePressureMonitor,
    classify_queue_pressure,
)


def counting_queue(waiting: int = 0, active: int = 0, delayed: int = 0) -> MagicMock:
    queue = MagicMock()
    queue.get_job_counts = AsyncMock(
        return_value={"waiting": waiting, "active": active, "delayed": delayed},
    )
    return queue


class TestClassifyQueuePressure:

    @pytest.mark.parametrize(
        ("backlog", "expected"),
        [
            (0, QueuePressureLevel.normal),
            (499, QueuePressureLevel.normal),
            (500, QueuePressureLevel.high),
            (1999, QueuePressureLevel.high),
            (2000, QueuePressureLevel.critical),
            (10_000, QueuePressureLevel.critical),
        ],
    )
    def test_boundaries(self, backlog, expected):
        assert classify_queue_pressure(backlog, 500, 2000) == expected


class TestQueuePressureMonitor:
    """Tests for sampling, caching and degradation."""

    @pytest.mark.asyncio
    async def test_backlog_sums_waiting_active_delayed(self):
        monitor = QueuePressureMonitor(high_watermark=10, critical_watermark=20)
        snapshot = await monitor.get_queue_pressure(counting_queue(4, 3, 3))

        assert snapshot.backlog == 10
        assert snapshot.level == QueuePressureLevel.high
        assert (snapshot.waiting, snapshot.active, snapshot.delayed) == (4, 3, 3)

    @pytest.mark.asyncio
    async def test_samples_cached_within_window(self):
        now = [100.0]
        monitor = QueuePressureMonitor(10, 20, cache_ms=500, clock=lambda: now[0])
        queue = counting_queue(1)

        await monitor.get_queue_pressure(queue)
        now[0] += 0.4
        await monitor.get_queue_pressure(queue)
        assert queue.get_job_counts.await_count == 1

        now[0] += 0.2
        await monitor.get_queue_pressure(queue)
        assert queue.get_job_counts.await_count == 2

    @pytest.mark.asyncio
    async def test_sampling_failure_degrades_to_normal_and_is_not_cached(self):
        monitor = QueuePressureMonitor(10, 20, cache_ms=10_000)
        queue = MagicMock()
        queue.get_job_counts = AsyncMock(
            side_effect=[ConnectionError("redis down"), {"waiting": 25}],
        )

        first = await monitor.get_queue_pressure(queue)
        assert first.level == QueuePressureLevel.normal
        assert first.backlog == 0

        second = await monitor.get_queue_pressure(queue)
        assert second.level == QueuePressureLevel.critical

    def test_from_settings(self, settings):
        monitor = QueuePressureMonitor.from_settings(settings)
        assert monitor._high_watermark == 500
        assert monitor._critical_watermark == 2000


class TestComputeEnqueueDelay:
    """Tests for pressure-derived enqueue delays."""

    def test_normal_has_no_delay(self):
        assert compute_enqueue_delay_ms(QueuePressureLevel.normal, rng=lambda: 0.99) == 0

    def test_critical_floor_and_jitter(self):
        assert compute_enqueue_delay_ms(
            QueuePressureLevel.critical, critical_base_ms=10, rng=lambda: 0.0,
        ) == 200
        # Jitter below max(100, 200 // 2)
        assert compute_enqueue_delay_ms(
            QueuePressureLevel.critical, critical_base_ms=10, rng=lambda: 0.999,
        ) == 299

    def test_high_floor_and_jitter(self):
        assert compute_enqueue_delay_ms(
            QueuePressureLevel.high, high_base_ms=0, rng=lambda: 0.0,
        ) == 50
        assert compute_enqueue_delay_ms(
            QueuePressureLevel.high, high_base_ms=400, rng=lambda: 0.5,
        ) == 500

    @pytest.mark.parametrize("base", [0, 100, 500, 1000])
    @pytest.mark.parametrize("jitter", [0.0, 0.3, 0.999])
    def test_monotonic_across_levels(self, base, jitter):
        def delay(level):
            return compute_enqueue_delay_ms(
                level, high_base_ms=base, critical_base_ms=base, rng=lambda: jitter,
            )

        assert (
            delay(QueuePressureLevel.critical)
            >= delay(QueuePressureLevel.high)
            >= delay(QueuePressureLevel.normal)
            == 0
        )


class TestRetryBackoff:
    """Tests for retry multipliers and exponential backoff."""

    def test_multipliers(self):
        assert retry_backoff_multiplier(QueuePressureLevel.normal) == 1.0
        assert retry_backoff_multiplier(QueuePressureLevel.high) == 1.5
        assert retry_backoff_multiplier(QueuePressureLevel.critical) == 2.5

    def test_multiplier_floor(self):
        assert retry_backoff_multiplier(QueuePressureLevel.critical, critical=0.5) == 1.0
        assert retry_backoff_multiplier(QueuePressureLevel.high, high=0.1) == 1.0

    def test_exponential_growth(self):
        delays = [
            compute_retry_backoff_ms(attempt, base_ms=1000, rng=lambda: 0.0)
            for attempt in (1, 2, 3, 4)
        ]
        assert delays == [1000, 2000, 4000, 8000]

    def test_capped_at_max(self):
        assert compute_retry_backoff_ms(
            20, base_ms=1000, max_ms=120_000, multiplier=2.5, rng=lambda: 0.0,
        ) == 120_000

    def test_multiplier_scales_delay(self):
        assert compute_retry_backoff_ms(
            2, base_ms=1000, multiplier=2.5, rng=lambda: 0.0,
        ) == 5000

    def test_jitter_below_200ms(self):
        assert compute_retry_backoff_ms(1, base_ms=1000, rng=lambda: 0.999) == 1199

    def test_base_floor(self):
        assert compute_retry_backoff_ms(1, base_ms=0, rng=lambda: 0.0) == 50
