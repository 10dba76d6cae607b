"""Tests for SubmissionRepository against sqlite+aiosqlite.

Covers:
- create_submission encrypts and hashes sensitive fields
- Sync status transitions and error truncation
- list_orphans selection of stale PENDING and due RETRYING rows
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from src.intake.core.crypto import hash_field
from src.intake.submissions.repository import SubmissionRepository, decrypt_sensitive
from src.intake.submissions.schemas import SubmissionCreate, SyncStatus

FAR_FUTURE = datetime(2100, 1, 1, tzinfo=timezone.utc)


def _create_payload(**overrides) -> SubmissionCreate:
    values = {
        "name": "李<四>",
        "phone": " 13900000000 ",
        "title": "市场总监",
        "company": "示例连锁超市",
        "id_number": "110101198502023456",
        "role": "industry",
        "id_type": "cn_id",
        "business_type": "线下零售",
        "department": "市场/销售/电商",
        "proof_urls": ["https://oss.test/card.png"],
        "trace_id": "trace-abc",
    }
    values.update(overrides)
    return SubmissionCreate(**values)


class TestSubmissionRepository:

    @pytest.mark.asyncio
    async def test_create_encrypts_sensitive_fields(self, session_factory):
        repo = SubmissionRepository(session_factory)

        created = await repo.create_submission(_create_payload())

        assert created.name == "李四"
        assert created.trace_id == "trace-abc"
        assert created.sync_status == SyncStatus.PENDING
        assert "13900000000" not in created.phone_enc
        assert created.created_at is not None

        sensitive = decrypt_sensitive(created)
        assert sensitive.phone == "13900000000"
        assert sensitive.id_number == "110101198502023456"

    @pytest.mark.asyncio
    async def test_find_missing_returns_none(self, session_factory):
        repo = SubmissionRepository(session_factory)
        assert await repo.find_submission_by_id("nope") is None

    @pytest.mark.asyncio
    async def test_status_transitions(self, session_factory):
        repo = SubmissionRepository(session_factory)
        created = await repo.create_submission(_create_payload())

        await repo.mark_processing(created.id, 1)
        found = await repo.find_submission_by_id(created.id)
        assert found.sync_status == SyncStatus.PROCESSING
        assert found.sync_attempts == 1

        next_at = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)
        await repo.mark_retrying(created.id, 1, next_at, "Feishu error: rate limit")
        found = await repo.find_submission_by_id(created.id)
        assert found.sync_status == SyncStatus.RETRYING
        assert found.sync_error == "Feishu error: rate limit"
        assert found.next_attempt_at is not None

        await repo.mark_success(created.id, "rec-42")
        found = await repo.find_submission_by_id(created.id)
        assert found.sync_status == SyncStatus.SUCCESS
        assert found.feishu_record_id == "rec-42"
        assert found.sync_error is None
        assert found.next_attempt_at is None

    @pytest.mark.asyncio
    async def test_mark_failed_truncates_error(self, session_factory):
        repo = SubmissionRepository(session_factory)
        created = await repo.create_submission(_create_payload())

        await repo.mark_failed(created.id, "e" * 5000)

        found = await repo.find_submission_by_id(created.id)
        assert found.sync_status == SyncStatus.FAILED
        assert len(found.sync_error) == 2000

    @pytest.mark.asyncio
    async def test_list_orphans(self, session_factory):
        repo = SubmissionRepository(session_factory)
        pending = await repo.create_submission(_create_payload(trace_id="t-pending"))
        due = await repo.create_submission(_create_payload(trace_id="t-due"))
        later = await repo.create_submission(_create_payload(trace_id="t-later"))
        done = await repo.create_submission(_create_payload(trace_id="t-done"))

        await repo.mark_retrying(due.id, 1, FAR_FUTURE - timedelta(days=1), "timeout")
        await repo.mark_retrying(later.id, 1, FAR_FUTURE + timedelta(days=1), "timeout")
        await repo.mark_success(done.id, "rec-1")

        orphans = await repo.list_orphans(now=FAR_FUTURE)

        assert {o.id for o in orphans} == {pending.id, due.id}
        assert {o.trace_id for o in orphans} == {"t-pending", "t-due"}

    @pytest.mark.asyncio
    async def test_fresh_pending_not_orphaned(self, session_factory):
        repo = SubmissionRepository(session_factory)
        await repo.create_submission(_create_payload())

        orphans = await repo.list_orphans(now=datetime.now(timezone.utc) - timedelta(hours=1))

        assert orphans == []


class TestHashing:

    def test_hash_is_salted_and_stable(self):
        assert hash_field("13900000000", salt="a") == hash_field("13900000000", salt="a")
        assert hash_field("13900000000", salt="a") != hash_field("13900000000", salt="b")
