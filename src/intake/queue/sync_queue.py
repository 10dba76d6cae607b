"""Redis-backed job queue for Bitable sync jobs.

One queue is a handful of keys under ``queue:{name}``:

- ``job:{id}`` hash: payload and retry bookkeeping for one job.
- ``wait`` list: runnable job ids (pushed left, claimed from the right).
- ``active`` list: job ids currently claimed by a worker.
- ``delayed`` zset: job ids scored by the epoch ms they become runnable.
- ``failed`` zset: dead-lettered job ids scored by failure time.

The job id is the submission id. ``add`` creates the job hash with HSETNX,
so enqueueing the same submission twice while a job exists is a no-op.
Completed jobs are deleted, which lets a later sweep enqueue the id again.

Every transition runs as one Lua script or one MULTI/EXEC block, so a job
id is always in exactly one of wait, active, delayed or failed while its
hash exists. A Redis error during a transition leaves the job where it was.

The active list is shared by every consumer of the queue, and
``recover_stalled`` cannot tell a dead consumer's jobs from a live one's.
Run a single worker process per queue name (scale with its concurrency
setting instead of with replicas).
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import redis.asyncio as aioredis
import structlog

logger = structlog.get_logger(__name__)

JOB_STATES = ("waiting", "active", "delayed", "failed")

# KEYS: job hash, wait, delayed
# ARGV: data, attempts, backoff_delay_ms, created_at, delay_ms, run_at, job id
_ADD_SCRIPT = """
if redis.call('HSETNX', KEYS[1], 'data', ARGV[1]) == 0 then
  return 0
end
redis.call('HSET', KEYS[1], 'attempts', ARGV[2], 'attempts_made', 0,
  'backoff_delay_ms', ARGV[3], 'created_at', ARGV[4])
if tonumber(ARGV[5]) > 0 then
  redis.call('ZADD', KEYS[3], ARGV[6], ARGV[7])
else
  redis.call('LPUSH', KEYS[2], ARGV[7])
end
return 1
"""

# KEYS: delayed, wait
# ARGV: now ms, limit
_PROMOTE_SCRIPT = """
local due = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1], 'LIMIT', 0, ARGV[2])
for _, job_id in ipairs(due) do
  redis.call('ZREM', KEYS[1], job_id)
  redis.call('LPUSH', KEYS[2], job_id)
end
return #due
"""

# KEYS: failed, job hash, wait
# ARGV: job id
_REQUEUE_SCRIPT = """
if redis.call('ZREM', KEYS[1], ARGV[1]) == 0 then
  return 0
end
redis.call('HSET', KEYS[2], 'attempts_made', 0)
redis.call('HDEL', KEYS[2], 'failed_reason', 'finished_at')
redis.call('LPUSH', KEYS[3], ARGV[1])
return 1
"""


@dataclass(frozen=True)
class JobOptions:
    attempts: int = 1
    backoff_delay_ms: int = 1000
    delay_ms: int = 0


@dataclass
class SyncJob:
    """A claimed job. ``attempts_made`` counts failed attempts so far."""

    id: str
    data: dict[str, Any] = field(default_factory=dict)
    attempts: int = 1
    attempts_made: int = 0
    backoff_delay_ms: int = 1000
    failed_reason: str | None = None

    @property
    def attempts_left(self) -> int:
        """Attempts remaining after the one currently running."""
        return max(0, self.attempts - self.attempts_made - 1)


def _now_ms(clock: Callable[[], float]) -> int:
    return int(clock() * 1000)


class SyncQueue:
    """Job queue on plain Redis lists and sorted sets.

    Args:
        redis: Async Redis client created with ``decode_responses=True``.
        name: Queue name used in key prefixes.
        clock: Wall-clock time source in seconds; delayed scores are epoch ms.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        name: str = "feishu-sync",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis = redis
        self._name = name
        self._clock = clock
        self._add_script = redis.register_script(_ADD_SCRIPT)
        self._promote_script = redis.register_script(_PROMOTE_SCRIPT)
        self._requeue_script = redis.register_script(_REQUEUE_SCRIPT)

    @property
    def name(self) -> str:
        return self._name

    def _key(self, suffix: str) -> str:
        return f"queue:{self._name}:{suffix}"

    def _job_key(self, job_id: str) -> str:
        return self._key(f"job:{job_id}")

    # ── Producing ────────────────────────────────────────────────────────

    async def add(self, job_id: str, data: dict[str, Any], options: JobOptions) -> bool:
        """Enqueue a job unless one with the same id already exists.

        Returns:
            True when the job was created, False for a duplicate.
        """
        now_ms = _now_ms(self._clock)
        delay_ms = max(0, options.delay_ms)
        created = await self._add_script(
            keys=[self._job_key(job_id), self._key("wait"), self._key("delayed")],
            args=[
                json.dumps(data),
                max(1, options.attempts),
                max(0, options.backoff_delay_ms),
                now_ms,
                delay_ms,
                now_ms + delay_ms,
                job_id,
            ],
        )
        if not created:
            logger.debug("queue.job_duplicate", queue=self._name, job_id=job_id)
            return False

        logger.debug(
            "queue.job_added",
            queue=self._name,
            job_id=job_id,
            delay_ms=options.delay_ms,
        )
        return True

    # ── Inspection ───────────────────────────────────────────────────────

    async def get_job_counts(self, *states: str) -> dict[str, int]:
        """Number of jobs in each requested state (all states by default)."""
        counts: dict[str, int] = {}
        for state in states or JOB_STATES:
            if state == "waiting":
                counts[state] = await self._redis.llen(self._key("wait"))
            elif state == "active":
                counts[state] = await self._redis.llen(self._key("active"))
            elif state == "delayed":
                counts[state] = await self._redis.zcard(self._key("delayed"))
            elif state == "failed":
                counts[state] = await self._redis.zcard(self._key("failed"))
            else:
                counts[state] = 0
        return counts

    async def get_job(self, job_id: str) -> SyncJob | None:
        raw = await self._redis.hgetall(self._job_key(job_id))
        if not raw:
            return None
        return SyncJob(
            id=job_id,
            data=json.loads(raw.get("data") or "{}"),
            attempts=int(raw.get("attempts") or 1),
            attempts_made=int(raw.get("attempts_made") or 0),
            backoff_delay_ms=int(raw.get("backoff_delay_ms") or 0),
            failed_reason=raw.get("failed_reason"),
        )

    # ── Consuming ────────────────────────────────────────────────────────

    async def promote_delayed(self, now_ms: int | None = None, limit: int = 100) -> int:
        """Move delayed jobs that are due onto the wait list.

        Safe to run from several consumer loops: the range read and the
        moves happen in one script.
        """
        now_ms = _now_ms(self._clock) if now_ms is None else now_ms
        return int(
            await self._promote_script(
                keys=[self._key("delayed"), self._key("wait")],
                args=[now_ms, limit],
            )
        )

    async def claim(self, timeout: float = 1.0) -> SyncJob | None:
        """Block up to ``timeout`` seconds for the next runnable job."""
        job_id = await self._redis.blmove(
            self._key("wait"), self._key("active"), timeout, "RIGHT", "LEFT",
        )
        if job_id is None:
            return None

        job = await self.get_job(job_id)
        if job is None:
            # Hash gone (completed or removed elsewhere); drop the stale id
            await self._redis.lrem(self._key("active"), 1, job_id)
            logger.warning("queue.job_missing", queue=self._name, job_id=job_id)
            return None
        return job

    async def complete(self, job: SyncJob) -> None:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self._key("active"), 1, job.id)
            pipe.delete(self._job_key(job.id))
            await pipe.execute()

    async def retry_later(self, job: SyncJob, delay_ms: int, error: str) -> None:
        """Record a failed attempt and reschedule the job after ``delay_ms``.

        ``job.attempts_made`` is only bumped once Redis has applied the move.
        """
        attempts_made = job.attempts_made + 1
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.hset(
                self._job_key(job.id),
                mapping={"attempts_made": attempts_made, "last_error": error[:2000]},
            )
            pipe.lrem(self._key("active"), 1, job.id)
            pipe.zadd(
                self._key("delayed"), {job.id: _now_ms(self._clock) + max(0, delay_ms)},
            )
            await pipe.execute()
        job.attempts_made = attempts_made

    async def fail(self, job: SyncJob, error: str) -> None:
        """Move the job to the failed set for review and replay."""
        attempts_made = job.attempts_made + 1
        now_ms = _now_ms(self._clock)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.hset(
                self._job_key(job.id),
                mapping={
                    "attempts_made": attempts_made,
                    "failed_reason": error[:2000],
                    "finished_at": now_ms,
                },
            )
            pipe.lrem(self._key("active"), 1, job.id)
            pipe.zadd(self._key("failed"), {job.id: now_ms})
            await pipe.execute()
        job.attempts_made = attempts_made

    async def recover_stalled(self) -> int:
        """Requeue jobs left in the active list by a crashed worker process.

        Every id in the active list is treated as abandoned, including ids
        claimed by another live process. Only call on startup of the single
        worker process for this queue, before any of its consumer loops run.
        """
        recovered = 0
        while await self._redis.lmove(
            self._key("active"), self._key("wait"), "LEFT", "RIGHT",
        ) is not None:
            recovered += 1
        if recovered:
            logger.warning("queue.stalled_jobs_recovered", queue=self._name, count=recovered)
        return recovered

    # ── Dead letters ─────────────────────────────────────────────────────

    async def list_failed_ids(self, count: int = 50) -> list[str]:
        return await self._redis.zrevrange(self._key("failed"), 0, max(0, count - 1))

    async def requeue_failed(self, job_id: str) -> bool:
        """Move a failed job back to the wait list with a fresh attempt budget."""
        requeued = await self._requeue_script(
            keys=[self._key("failed"), self._job_key(job_id), self._key("wait")],
            args=[job_id],
        )
        return bool(requeued)
