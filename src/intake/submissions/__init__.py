"""Submission persistence -- the record of truth for registration intake.

Submissions are stored with phone and identifier numbers encrypted at the
field level. The sync worker reads them through SubmissionRepository and
writes back the Bitable sync outcome.
"""

from src.intake.submissions.repository import SubmissionRepository, decrypt_sensitive
from src.intake.submissions.schemas import (
    SensitiveFields,
    SubmissionCreate,
    SubmissionRecord,
    SyncStatus,
)

__all__ = [
    "SensitiveFields",
    "SubmissionCreate",
    "SubmissionRecord",
    "SubmissionRepository",
    "SyncStatus",
    "decrypt_sensitive",
]
