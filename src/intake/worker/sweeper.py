"""Orphan sweeper: re-enqueues submissions whose queue job was lost.

A submission is committed before its sync job is enqueued, so a Redis
outage or a crash between the two leaves it PENDING with no job. A Redis
flush likewise loses the delayed job of a RETRYING submission. The sweeper
periodically finds both and enqueues them again; job-id dedupe makes this
a no-op for submissions whose job still exists.
"""

from __future__ import annotations

import asyncio

import structlog

from src.intake.config import Settings
from src.intake.queue.sync_queue import JobOptions, SyncQueue
from src.intake.submissions.repository import SubmissionRepository

logger = structlog.get_logger(__name__)

MIN_SWEEP_INTERVAL_MS = 5000


class OrphanSweeper:
    """Periodic re-enqueue of orphaned submissions.

    Args:
        repository: Submission persistence.
        queue: SyncQueue to enqueue into.
        settings: Attempt budget, backoff base and sweep interval.
    """

    def __init__(
        self,
        repository: SubmissionRepository,
        queue: SyncQueue,
        settings: Settings,
    ) -> None:
        self._repository = repository
        self._queue = queue
        self._settings = settings
        self._interval_s = max(MIN_SWEEP_INTERVAL_MS, settings.SWEEP_PENDING_INTERVAL_MS) / 1000
        self._stopped = asyncio.Event()

    async def sweep_once(self) -> int:
        """Enqueue every orphan found; returns the number of new jobs."""
        orphans = await self._repository.list_orphans()
        enqueued = 0

        for orphan in orphans:
            try:
                created = await self._queue.add(
                    orphan.id,
                    {"submission_id": orphan.id, "trace_id": orphan.trace_id},
                    JobOptions(
                        attempts=self._settings.FEISHU_SYNC_ATTEMPTS,
                        backoff_delay_ms=self._settings.FEISHU_SYNC_BACKOFF_MS,
                    ),
                )
            except Exception as exc:
                logger.error(
                    "sweeper.enqueue_failed",
                    submission_id=orphan.id,
                    trace_id=orphan.trace_id,
                    error=str(exc),
                )
                continue
            if created:
                enqueued += 1

        if enqueued:
            logger.info("sweeper.orphans_enqueued", found=len(orphans), enqueued=enqueued)
        return enqueued

    async def run(self) -> None:
        """Sweep on an interval until stop() is called."""
        while not self._stopped.is_set():
            try:
                await self.sweep_once()
            except Exception as exc:
                logger.error("sweeper.sweep_failed", error=str(exc))

            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self._interval_s)
            except asyncio.TimeoutError:
                pass

    def stop(self) -> None:
        self._stopped.set()
