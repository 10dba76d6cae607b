"""Feishu Bitable integration -- the external table submissions sync into.

- BitableClient: Authenticated, retrying API client with cached token and schema
- FieldMapper / build_bitable_fields: Submission -> record field payload
- resolve_single_select_option_id / apply_single_select_mappings: Option resolution
- BitableError / is_retryable_error: Failure classification
"""

from src.intake.bitable.client import BitableClient
from src.intake.bitable.errors import BitableError, is_retryable, is_retryable_error
from src.intake.bitable.field_mapping import FieldMapper, build_bitable_fields
from src.intake.bitable.select import (
    FieldMeta,
    apply_single_select_mappings,
    resolve_single_select_option_id,
)

__all__ = [
    "BitableClient",
    "BitableError",
    "FieldMapper",
    "FieldMeta",
    "apply_single_select_mappings",
    "build_bitable_fields",
    "is_retryable",
    "is_retryable_error",
    "resolve_single_select_option_id",
]
