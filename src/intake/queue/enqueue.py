"""Enqueue a submission for Bitable sync, honouring queue pressure."""

from __future__ import annotations

import random
from collections.abc import Callable

import structlog

from src.intake.config import Settings
from src.intake.queue.backpressure import compute_enqueue_delay_ms
from src.intake.queue.pressure import QueuePressureLevel, QueuePressureMonitor
from src.intake.queue.sync_queue import JobOptions, SyncQueue

logger = structlog.get_logger(__name__)


async def enqueue_submission_sync(
    queue: SyncQueue,
    monitor: QueuePressureMonitor,
    submission_id: str,
    settings: Settings,
    *,
    trace_id: str = "",
    rng: Callable[[], float] = random.random,
) -> bool:
    """Add a sync job for ``submission_id``.

    The job id is the submission id, so a submission already queued is not
    queued twice. Under pressure the job is delayed before it becomes
    runnable.

    Returns:
        True when a new job was created.
    """
    pressure = await monitor.get_queue_pressure(queue)
    delay_ms = compute_enqueue_delay_ms(
        pressure.level,
        high_base_ms=settings.FEISHU_ENQUEUE_DELAY_HIGH_MS,
        critical_base_ms=settings.FEISHU_ENQUEUE_DELAY_CRITICAL_MS,
        rng=rng,
    )

    created = await queue.add(
        submission_id,
        {"submission_id": submission_id, "trace_id": trace_id},
        JobOptions(
            attempts=settings.FEISHU_SYNC_ATTEMPTS,
            backoff_delay_ms=settings.FEISHU_SYNC_BACKOFF_MS,
            delay_ms=delay_ms,
        ),
    )

    if pressure.level != QueuePressureLevel.normal:
        logger.warning(
            "queue.enqueue_backpressure",
            trace_id=trace_id,
            submission_id=submission_id,
            level=pressure.level.value,
            backlog=pressure.backlog,
            delay_ms=delay_ms,
        )
    return created
