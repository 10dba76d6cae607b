"""Submission table.

One row per registration. Sensitive fields are stored as AES-GCM payloads
(``*_enc``) plus salted hashes (``*_hash``) for lookups.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from src.intake.core.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class SubmissionModel(Base):
    """A consumer or industry attendee registration."""

    __tablename__ = "submissions"
    __table_args__ = (
        Index("ix_submissions_sync_status_created_at", "sync_status", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    trace_id: Mapped[str] = mapped_column(String(64), nullable=False, default=_new_id)

    role: Mapped[str] = mapped_column(String(32), nullable=False, default="consumer")
    id_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    company: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    business_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    department: Mapped[str | None] = mapped_column(String(128), nullable=True)
    proof_urls: Mapped[list] = mapped_column(JSON, default=list)

    phone_enc: Mapped[str] = mapped_column(Text, nullable=False)
    phone_hash: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    id_enc: Mapped[str] = mapped_column(Text, nullable=False)
    id_hash: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    sync_status: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING")
    sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    sync_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_attempt_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    feishu_record_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )
