"""Bitable sync worker: job processing, queue consumer, orphan sweeper."""

from src.intake.worker.consumer import SyncConsumer
from src.intake.worker.sweeper import OrphanSweeper
from src.intake.worker.sync_worker import SyncWorker

__all__ = ["OrphanSweeper", "SyncConsumer", "SyncWorker"]
