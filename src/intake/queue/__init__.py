"""Sync job queue, queue-pressure monitoring, and backpressure policy."""

from src.intake.queue.backpressure import (
    compute_enqueue_delay_ms,
    compute_retry_backoff_ms,
    retry_backoff_multiplier,
)
from src.intake.queue.dead_letter import DeadLetterQueue
from src.intake.queue.enqueue import enqueue_submission_sync
from src.intake.queue.pressure import (
    QueuePressureLevel,
    QueuePressureMonitor,
    QueuePressureSnapshot,
    classify_queue_pressure,
)
from src.intake.queue.sync_queue import JobOptions, SyncJob, SyncQueue

__all__ = [
    "DeadLetterQueue",
    "JobOptions",
    "QueuePressureLevel",
    "QueuePressureMonitor",
    "QueuePressureSnapshot",
    "SyncJob",
    "SyncQueue",
    "classify_queue_pressure",
    "compute_enqueue_delay_ms",
    "compute_retry_backoff_ms",
    "enqueue_submission_sync",
    "retry_backoff_multiplier",
]
