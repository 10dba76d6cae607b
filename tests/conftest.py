"""Shared test fixtures.

Provides:
- Test environment (AES key, hash salt, sqlite database URL) set before
  any settings are loaded
- A Settings instance with Bitable credentials configured
- A file-backed sqlite+aiosqlite session factory with the tables created
- Submission record builders
"""

from __future__ import annotations

import base64
import os
from collections.abc import AsyncGenerator
from datetime import datetime, timezone

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATA_KEY", base64.b64encode(b"k" * 32).decode("ascii"))
os.environ.setdefault("DATA_HASH_SALT", "test-salt")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./intake-test.db")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from src.intake.config import Settings
from src.intake.core.crypto import encrypt_field
from src.intake.core.database import Base
from src.intake.submissions.models import SubmissionModel  # noqa: F401
from src.intake.submissions.schemas import SubmissionRecord, SyncStatus


@pytest.fixture
def settings() -> Settings:
    return Settings(
        FEISHU_BASE_URL="https://bitable.test/open-apis",
        FEISHU_APP_ID="cli_test",
        FEISHU_APP_SECRET="secret",
        FEISHU_APP_TOKEN="app_token",
        FEISHU_TABLE_ID="tbl_test",
    )


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator:
    """Session factory over a fresh sqlite database per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'intake.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async def factory() -> AsyncGenerator[AsyncSession, None]:
        async with AsyncSession(engine, expire_on_commit=False) as session:
            yield session

    yield factory
    await engine.dispose()


def _make_submission(**overrides) -> SubmissionRecord:
    values = {
        "id": "sub-1",
        "trace_id": "trace-1",
        "role": "industry",
        "id_type": "cn_id",
        "name": "张三",
        "title": "采购经理",
        "company": "示例食品有限公司",
        "business_type": "食品制造商",
        "department": "高管/战略",
        "proof_urls": ["https://oss.test/proof-1.jpg", "https://oss.test/proof-2.jpg"],
        "phone_enc": encrypt_field("13800000000"),
        "id_enc": encrypt_field("110101199001011234"),
        "sync_status": SyncStatus.PENDING,
        "created_at": datetime(2026, 5, 20, 8, 30, tzinfo=timezone.utc),
    }
    values.update(overrides)
    return SubmissionRecord(**values)


@pytest.fixture
def make_submission():
    """Builder for a stored industry submission with encrypted phone and id number."""
    return _make_submission
