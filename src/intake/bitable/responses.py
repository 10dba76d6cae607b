"""Typed results for Bitable API responses.

Every endpoint answers with an envelope ``{"code": int, "msg": str, ...}``.
parse_envelope() turns the raw status and body text into either a
BitableSuccess or a BitableFailure, so callers match on the result type
instead of probing an untyped dict.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class BitableSuccess:
    """A 2xx response whose envelope code is zero (or absent)."""

    status: int
    body: dict[str, Any] = field(default_factory=dict)

    @property
    def data(self) -> dict[str, Any]:
        data = self.body.get("data")
        return data if isinstance(data, dict) else {}


@dataclass(frozen=True)
class BitableFailure:
    """A non-2xx response, or a 2xx response with a non-zero code."""

    status: int
    code: int | None
    message: str


BitableResult = BitableSuccess | BitableFailure


def parse_body(text: str) -> Any | None:
    """Parse a body as JSON, returning None instead of raising."""
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None


def parse_envelope(status: int, text: str, reason: str = "") -> BitableResult:
    """Classify a raw response into success or failure.

    Args:
        status: HTTP status code.
        text: Response body text (may be empty or not JSON).
        reason: HTTP reason phrase, used when the body carries no message.
    """
    payload = parse_body(text)
    body: dict[str, Any] = payload if isinstance(payload, dict) else {}

    raw_code = body.get("code")
    code = raw_code if isinstance(raw_code, int) else None
    message = str(body.get("msg") or reason or "")

    if status >= 400 or (code is not None and code != 0):
        return BitableFailure(status=status, code=code, message=message)
    return BitableSuccess(status=status, body=body)
