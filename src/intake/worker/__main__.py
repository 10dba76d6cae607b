"""Sync worker process entrypoint.

Usage:
    python -m src.intake.worker                  # run consumer and sweeper
    python -m src.intake.worker --list-failed    # show dead-lettered jobs
    python -m src.intake.worker --replay <id>    # requeue a dead-lettered job
"""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys

import structlog

from src.intake.bitable.client import BitableClient
from src.intake.bitable.field_mapping import FieldMapper
from src.intake.config import get_settings
from src.intake.core.database import close_db, get_session, init_db
from src.intake.core.logging import configure_structlog
from src.intake.core.monitoring import init_sentry
from src.intake.core.redis import close_redis, get_redis_pool
from src.intake.queue.dead_letter import DeadLetterQueue
from src.intake.queue.pressure import QueuePressureMonitor
from src.intake.queue.sync_queue import SyncQueue
from src.intake.submissions.repository import SubmissionRepository
from src.intake.worker.consumer import SyncConsumer
from src.intake.worker.sweeper import OrphanSweeper
from src.intake.worker.sync_worker import SyncWorker

logger = structlog.get_logger(__name__)


async def run_worker() -> None:
    settings = get_settings()
    if not settings.has_feishu_config():
        logger.error("worker.feishu_not_configured")
        sys.exit(1)

    await init_db()
    queue = SyncQueue(get_redis_pool())
    await queue.recover_stalled()

    repository = SubmissionRepository(session_factory=get_session)
    monitor = QueuePressureMonitor.from_settings(settings)

    async with BitableClient(settings) as client:
        worker = SyncWorker(
            repository=repository,
            mapper=FieldMapper(client, settings.field_map()),
            client=client,
            queue=queue,
            monitor=monitor,
            settings=settings,
        )
        consumer = SyncConsumer(
            queue,
            worker,
            concurrency=settings.FEISHU_WORKER_CONCURRENCY,
            qps=settings.FEISHU_WORKER_QPS,
        )
        sweeper = OrphanSweeper(repository, queue, settings)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda: (consumer.stop(), sweeper.stop()))

        try:
            await asyncio.gather(consumer.run(), sweeper.run())
        finally:
            await close_db()
            await close_redis()


async def list_failed(count: int) -> None:
    dlq = DeadLetterQueue(SyncQueue(get_redis_pool()))
    try:
        for entry in await dlq.list_failed(count):
            print(json.dumps(entry, ensure_ascii=False))
    finally:
        await close_redis()


async def replay(job_id: str) -> None:
    dlq = DeadLetterQueue(SyncQueue(get_redis_pool()))
    try:
        await dlq.replay(job_id)
    finally:
        await close_redis()


def main() -> None:
    parser = argparse.ArgumentParser(description="Bitable sync worker")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--list-failed", action="store_true", help="List dead-lettered jobs")
    group.add_argument("--replay", metavar="JOB_ID", help="Requeue a dead-lettered job")
    parser.add_argument("--count", type=int, default=50, help="Jobs to list (default 50)")
    args = parser.parse_args()

    configure_structlog()
    settings = get_settings()
    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    if args.list_failed:
        asyncio.run(list_failed(args.count))
    elif args.replay:
        asyncio.run(replay(args.replay))
    else:
        asyncio.run(run_worker())


if __name__ == "__main__":
    main()
