"""Submission repository -- async persistence for intake and sync state.

Provides SubmissionRepository with the session_factory callable pattern.
The sync worker uses the find/mark methods; the orphan sweeper uses
list_orphans to recover submissions whose queue job was lost.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.intake.core.crypto import decrypt_field, encrypt_field, hash_field
from src.intake.submissions.models import SubmissionModel
from src.intake.submissions.schemas import (
    OrphanSubmission,
    SensitiveFields,
    SubmissionCreate,
    SubmissionRecord,
    SyncStatus,
)

logger = structlog.get_logger(__name__)

SYNC_ERROR_MAX_CHARS = 2000


def _sanitize_text(value: str) -> str:
    return value.replace("<", "").replace(">", "").strip()


def _model_to_record(model: SubmissionModel) -> SubmissionRecord:
    """Convert SubmissionModel to SubmissionRecord schema."""
    return SubmissionRecord(
        id=model.id,
        trace_id=model.trace_id,
        role=model.role,
        id_type=model.id_type,
        name=model.name,
        title=model.title,
        company=model.company,
        business_type=model.business_type,
        department=model.department,
        proof_urls=list(model.proof_urls or []),
        phone_enc=model.phone_enc,
        id_enc=model.id_enc,
        sync_status=SyncStatus(model.sync_status),
        sync_error=model.sync_error,
        sync_attempts=model.sync_attempts or 0,
        next_attempt_at=model.next_attempt_at,
        feishu_record_id=model.feishu_record_id,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def decrypt_sensitive(record: SubmissionRecord) -> SensitiveFields:
    """Decrypt the phone and identifier number of a stored submission."""
    return SensitiveFields(
        phone=decrypt_field(record.phone_enc),
        id_number=decrypt_field(record.id_enc),
    )


class SubmissionRepository:
    """Async CRUD for submissions and their Bitable sync state.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def create_submission(self, data: SubmissionCreate) -> SubmissionRecord:
        """Persist a new submission with encrypted sensitive fields."""
        phone = data.phone.strip()
        id_number = data.id_number.strip()

        async for session in self._session_factory():
            model = SubmissionModel(
                name=_sanitize_text(data.name),
                title=_sanitize_text(data.title),
                company=_sanitize_text(data.company),
                role=data.role,
                id_type=data.id_type,
                business_type=data.business_type,
                department=data.department,
                proof_urls=list(data.proof_urls),
                phone_enc=encrypt_field(phone),
                phone_hash=hash_field(phone),
                id_enc=encrypt_field(id_number),
                id_hash=hash_field(id_number),
                sync_status=SyncStatus.PENDING.value,
            )
            if data.trace_id:
                model.trace_id = data.trace_id
            session.add(model)
            await session.commit()
            await session.refresh(model)

            logger.info(
                "submission.created",
                submission_id=model.id,
                trace_id=model.trace_id,
                role=model.role,
            )
            return _model_to_record(model)

    async def find_submission_by_id(self, submission_id: str) -> SubmissionRecord | None:
        """Get a submission by ID, or None if it does not exist."""
        async for session in self._session_factory():
            result = await session.execute(
                select(SubmissionModel).where(SubmissionModel.id == submission_id)
            )
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_record(model)

    async def mark_processing(self, submission_id: str, attempt: int) -> None:
        await self._update(
            submission_id,
            sync_status=SyncStatus.PROCESSING.value,
            sync_attempts=attempt,
        )

    async def mark_retrying(
        self,
        submission_id: str,
        attempt: int,
        next_attempt_at: datetime,
        error: str,
    ) -> None:
        """Record a failed attempt that the queue will retry."""
        await self._update(
            submission_id,
            sync_status=SyncStatus.RETRYING.value,
            sync_attempts=attempt,
            next_attempt_at=next_attempt_at,
            sync_error=error[:SYNC_ERROR_MAX_CHARS],
        )

    async def mark_success(self, submission_id: str, record_id: str) -> None:
        """Record a successful sync and clear any earlier error."""
        await self._update(
            submission_id,
            sync_status=SyncStatus.SUCCESS.value,
            feishu_record_id=record_id,
            sync_error=None,
            next_attempt_at=None,
        )

    async def mark_failed(self, submission_id: str, error: str) -> None:
        """Record a terminal sync failure with a truncated error message."""
        await self._update(
            submission_id,
            sync_status=SyncStatus.FAILED.value,
            sync_error=error[:SYNC_ERROR_MAX_CHARS],
            next_attempt_at=None,
        )

    async def list_orphans(
        self,
        now: datetime | None = None,
        pending_age: timedelta = timedelta(seconds=10),
        limit: int = 100,
    ) -> list[OrphanSubmission]:
        """Submissions that may have lost their queue job.

        - PENDING rows older than ``pending_age`` (the enqueue may have been
          lost to a Redis outage or a crash between commit and enqueue).
        - RETRYING rows whose ``next_attempt_at`` has passed.
        """
        now = now or datetime.now(timezone.utc)

        async for session in self._session_factory():
            pending = await session.execute(
                select(SubmissionModel.id, SubmissionModel.trace_id)
                .where(
                    SubmissionModel.sync_status == SyncStatus.PENDING.value,
                    SubmissionModel.created_at < now - pending_age,
                )
                .order_by(SubmissionModel.created_at.asc())
                .limit(limit)
            )
            retrying = await session.execute(
                select(SubmissionModel.id, SubmissionModel.trace_id)
                .where(
                    SubmissionModel.sync_status == SyncStatus.RETRYING.value,
                    SubmissionModel.next_attempt_at <= now,
                )
                .order_by(SubmissionModel.next_attempt_at.asc())
                .limit(limit)
            )

            return [
                OrphanSubmission(id=row.id, trace_id=row.trace_id)
                for row in [*pending.all(), *retrying.all()]
            ]

    async def _update(self, submission_id: str, **values) -> None:
        async for session in self._session_factory():
            await session.execute(
                update(SubmissionModel)
                .where(SubmissionModel.id == submission_id)
                .values(**values)
            )
            await session.commit()
