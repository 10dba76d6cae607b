"""Pydantic schemas for submissions and their sync state."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class SyncStatus(str, Enum):
    """Bitable sync lifecycle of a submission."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    RETRYING = "RETRYING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class SubmissionCreate(BaseModel):
    """Validated registration input (validation itself happens upstream)."""

    name: str
    phone: str
    title: str = ""
    company: str = ""
    id_number: str
    role: str = "consumer"
    id_type: str | None = None
    business_type: str | None = None
    department: str | None = None
    proof_urls: list[str] = Field(default_factory=list)
    trace_id: str | None = None


class SubmissionRecord(BaseModel):
    """Stored submission. Sensitive values stay encrypted until decrypted."""

    id: str
    trace_id: str
    role: str
    id_type: str | None = None
    name: str
    title: str = ""
    company: str = ""
    business_type: str | None = None
    department: str | None = None
    proof_urls: list[str] = Field(default_factory=list)
    phone_enc: str
    id_enc: str
    sync_status: SyncStatus = SyncStatus.PENDING
    sync_error: str | None = None
    sync_attempts: int = 0
    next_attempt_at: datetime | None = None
    feishu_record_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class SensitiveFields(BaseModel):
    """Decrypted sensitive values. Never logged."""

    phone: str
    id_number: str


class OrphanSubmission(BaseModel):
    """A submission the sweeper should (re-)enqueue."""

    id: str
    trace_id: str
