"""Dead letter view over the sync queue's failed set.

Jobs that exhausted their attempt budget, or failed with a terminal error,
stay in the failed set with their last error. Operators list them for
review and replay them once the cause (bad credentials, a renamed column)
is fixed.
"""

from __future__ import annotations

from typing import Any

import structlog

from src.intake.queue.sync_queue import SyncQueue

logger = structlog.get_logger(__name__)


class DeadLetterQueue:
    """Review and replay of failed sync jobs.

    Args:
        queue: The SyncQueue whose failed set to manage.
    """

    def __init__(self, queue: SyncQueue) -> None:
        self._queue = queue

    async def list_failed(self, count: int = 50) -> list[dict[str, Any]]:
        """Most recently failed jobs first.

        Returns:
            Dicts with ``job_id``, ``data``, ``attempts_made`` and ``error``.
        """
        entries: list[dict[str, Any]] = []
        for job_id in await self._queue.list_failed_ids(count):
            job = await self._queue.get_job(job_id)
            if job is None:
                continue
            entries.append(
                {
                    "job_id": job.id,
                    "data": job.data,
                    "attempts_made": job.attempts_made,
                    "error": job.failed_reason,
                }
            )
        return entries

    async def replay(self, job_id: str) -> None:
        """Requeue a failed job for fresh processing.

        Raises:
            ValueError: If the job is not in the failed set.
        """
        if not await self._queue.requeue_failed(job_id):
            msg = f"Failed job '{job_id}' not found in queue '{self._queue.name}'"
            raise ValueError(msg)

        logger.info("queue.job_replayed", queue=self._queue.name, job_id=job_id)
