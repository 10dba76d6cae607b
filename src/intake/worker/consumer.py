"""Queue consumer running bounded-concurrency sync loops.

Each loop promotes due delayed jobs, claims the next runnable job, and
hands it to SyncWorker.process(). Job starts across all loops share one
rate limiter so the process stays under Bitable's per-app QPS limit.
"""

from __future__ import annotations

import asyncio
import time

import structlog

from src.intake.queue.sync_queue import SyncJob, SyncQueue
from src.intake.worker.sync_worker import SyncWorker, error_message

logger = structlog.get_logger(__name__)


class RateLimiter:
    """Spaces acquisitions at least ``1 / qps`` seconds apart."""

    def __init__(self, qps: float) -> None:
        self._interval = 1.0 / qps if qps > 0 else 0.0
        self._lock = asyncio.Lock()
        self._next_at = 0.0

    async def acquire(self) -> None:
        if not self._interval:
            return
        async with self._lock:
            now = time.monotonic()
            wait = self._next_at - now
            if wait > 0:
                await asyncio.sleep(wait)
                now = time.monotonic()
            self._next_at = now + self._interval


class SyncConsumer:
    """Runs ``concurrency`` cooperative worker loops over one queue.

    Args:
        queue: SyncQueue to consume.
        worker: SyncWorker that processes each job.
        concurrency: Number of jobs processed at the same time.
        qps: Maximum job starts per second (0 disables the limit).
        claim_timeout: Seconds each loop blocks waiting for a job.
    """

    def __init__(
        self,
        queue: SyncQueue,
        worker: SyncWorker,
        concurrency: int = 4,
        qps: float = 0,
        claim_timeout: float = 1.0,
    ) -> None:
        self._queue = queue
        self._worker = worker
        self._concurrency = max(1, concurrency)
        self._limiter = RateLimiter(qps)
        self._claim_timeout = claim_timeout
        self._running = False

    async def run(self) -> None:
        """Process jobs until stop() is called."""
        self._running = True
        logger.info(
            "consumer.started",
            queue=self._queue.name,
            concurrency=self._concurrency,
        )
        await asyncio.gather(*(self._loop(index) for index in range(self._concurrency)))
        logger.info("consumer.stopped", queue=self._queue.name)

    def stop(self) -> None:
        """Signal all loops to stop after their current job."""
        self._running = False

    async def _loop(self, index: int) -> None:
        while self._running:
            try:
                await self._queue.promote_delayed()
                job = await self._queue.claim(timeout=self._claim_timeout)
            except Exception as exc:
                logger.error("consumer.claim_failed", loop=index, error=str(exc))
                await asyncio.sleep(self._claim_timeout)
                continue

            if job is None:
                continue

            await self._limiter.acquire()
            try:
                await self.handle(job)
            except Exception as exc:
                # Settling failed; the job is still in the active list until recover_stalled()
                logger.error("consumer.settle_failed", loop=index, job_id=job.id, error=str(exc))

    async def handle(self, job: SyncJob) -> None:
        """Process one job; reschedule it when processing itself crashes."""
        try:
            await self._worker.process(job)
        except Exception as exc:
            logger.exception("consumer.job_crashed", job_id=job.id, error=error_message(exc)[:200])
            await self._worker.reschedule_crashed(job, exc)
