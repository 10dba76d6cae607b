"""Sync worker: pushes one submission to Bitable per job.

For each claimed job the worker loads the submission, marks it
PROCESSING, decrypts the sensitive fields, maps them to a record payload,
and creates the record (or updates it when a record id is already known).

Failures are classified with is_retryable_error():
- retryable with attempts left: RETRYING, rescheduled with exponential
  backoff scaled by the current queue pressure;
- otherwise: FAILED, and the job moves to the failed set.
"""

from __future__ import annotations

import random
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import structlog

from src.intake.bitable.client import BitableClient
from src.intake.bitable.errors import is_retryable_error
from src.intake.bitable.field_mapping import FieldMapper
from src.intake.config import Settings
from src.intake.core.logging import id_suffix
from src.intake.core.monitoring import (
    bitable_api_errors_total,
    sync_jobs_total,
    update_queue_metrics,
)
from src.intake.queue.backpressure import compute_retry_backoff_ms, retry_backoff_multiplier
from src.intake.queue.pressure import (
    QueuePressureLevel,
    QueuePressureMonitor,
    QueuePressureSnapshot,
)
from src.intake.queue.sync_queue import SyncJob, SyncQueue
from src.intake.submissions.repository import SubmissionRepository, decrypt_sensitive
from src.intake.submissions.schemas import SubmissionRecord, SyncStatus

logger = structlog.get_logger(__name__)


def error_message(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class SyncWorker:
    """Processes sync jobs for the Bitable table.

    Args:
        repository: Submission persistence.
        mapper: Builds record payloads with resolved select options.
        client: Bitable API client.
        queue: The queue the jobs come from; used to complete, retry or fail.
        monitor: Queue pressure sampler for retry backoff scaling.
        settings: Backoff and pressure settings.
        rng: Jitter source.
    """

    def __init__(
        self,
        repository: SubmissionRepository,
        mapper: FieldMapper,
        client: BitableClient,
        queue: SyncQueue,
        monitor: QueuePressureMonitor,
        settings: Settings,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._repository = repository
        self._mapper = mapper
        self._client = client
        self._queue = queue
        self._monitor = monitor
        self._settings = settings
        self._rng = rng

    async def process(self, job: SyncJob) -> None:
        """Run one sync attempt for ``job`` and settle it on the queue.

        Lookup and status-update failures before the attempt starts
        propagate to the caller.
        """
        submission_id = str(job.data.get("submission_id") or job.id)
        submission = await self._repository.find_submission_by_id(submission_id)

        if submission is None:
            logger.warning("worker.submission_missing", job_id=job.id, submission_id=submission_id)
            await self._queue.complete(job)
            return
        if submission.sync_status == SyncStatus.SUCCESS:
            logger.debug("worker.already_synced", submission_id=submission_id)
            await self._queue.complete(job)
            return

        attempt = job.attempts_made + 1
        await self._repository.mark_processing(submission.id, attempt)

        try:
            record_id = await self._sync(submission)
        except Exception as exc:
            await self._handle_failure(job, submission, attempt, exc)
        else:
            await self._repository.mark_success(submission.id, record_id)
            await self._queue.complete(job)
            sync_jobs_total.labels(result="success").inc()
            logger.info(
                "worker.sync_succeeded",
                trace_id=submission.trace_id,
                submission_id=submission.id,
                record_id=record_id,
                attempt=attempt,
            )

        await update_queue_metrics(self._queue)

    async def _sync(self, submission: SubmissionRecord) -> str:
        sensitive = decrypt_sensitive(submission)
        fields = await self._mapper.map_submission(submission, sensitive)

        if submission.feishu_record_id:
            await self._client.update_record(submission.feishu_record_id, fields)
            return submission.feishu_record_id

        record_id = await self._client.create_record(fields)
        logger.debug(
            "worker.record_created",
            trace_id=submission.trace_id,
            id_suffix=id_suffix(sensitive.id_number),
            record_id=record_id,
        )
        return record_id

    async def reschedule_crashed(self, job: SyncJob, exc: BaseException) -> None:
        """Settle a job whose processing raised before it could settle itself.

        The job is retried with the same capped, pressure-scaled backoff as
        a retryable sync failure, or dead-lettered once its budget is spent.
        """
        message = error_message(exc)
        if job.attempts_left > 0:
            backoff_ms, pressure = await self._retry_backoff(job, job.attempts_made + 1)
            await self._queue.retry_later(job, backoff_ms, message)
            logger.warning(
                "worker.crash_rescheduled",
                job_id=job.id,
                attempts_made=job.attempts_made,
                backoff_ms=backoff_ms,
                queue_level=pressure.level.value,
            )
        else:
            await self._queue.fail(job, message)
            logger.error("worker.crash_dead_lettered", job_id=job.id, error=message[:200])

    async def _retry_backoff(
        self, job: SyncJob, attempt: int,
    ) -> tuple[int, QueuePressureSnapshot]:
        pressure = await self._monitor.get_queue_pressure(self._queue)
        backoff_ms = compute_retry_backoff_ms(
            attempt,
            base_ms=job.backoff_delay_ms or self._settings.FEISHU_SYNC_BACKOFF_MS,
            max_ms=self._settings.FEISHU_SYNC_BACKOFF_MAX_MS,
            multiplier=retry_backoff_multiplier(
                pressure.level,
                high=self._settings.FEISHU_RETRY_BACKOFF_HIGH_MULTIPLIER,
                critical=self._settings.FEISHU_RETRY_BACKOFF_CRITICAL_MULTIPLIER,
            ),
            rng=self._rng,
        )
        return backoff_ms, pressure

    async def _handle_failure(
        self,
        job: SyncJob,
        submission: SubmissionRecord,
        attempt: int,
        exc: Exception,
    ) -> None:
        message = error_message(exc)
        retryable = is_retryable_error(exc)
        bitable_api_errors_total.labels(retryable=str(retryable).lower()).inc()

        if retryable and attempt < job.attempts:
            backoff_ms, pressure = await self._retry_backoff(job, attempt)
            next_attempt_at = datetime.now(timezone.utc) + timedelta(milliseconds=backoff_ms)

            await self._repository.mark_retrying(submission.id, attempt, next_attempt_at, message)
            await self._queue.retry_later(job, backoff_ms, message)
            sync_jobs_total.labels(result="retry").inc()

            log = logger.warning if pressure.level != QueuePressureLevel.normal else logger.info
            log(
                "worker.sync_retrying",
                trace_id=submission.trace_id,
                submission_id=submission.id,
                attempt=attempt,
                backoff_ms=backoff_ms,
                queue_level=pressure.level.value,
                queue_backlog=pressure.backlog,
                error=message[:200],
            )
            return

        await self._repository.mark_failed(submission.id, message)
        await self._queue.fail(job, message)
        sync_jobs_total.labels(result="failed").inc()
        logger.error(
            "worker.sync_failed",
            trace_id=submission.trace_id,
            submission_id=submission.id,
            attempt=attempt,
            retryable=retryable,
            error=message[:200],
        )
