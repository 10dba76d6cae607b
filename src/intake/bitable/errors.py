"""Bitable error type and retryability classification.

A single classifier decides whether a failed call is worth retrying. Both
HTTP-level failures and application-level failures (a non-zero ``code`` in
an HTTP 200 envelope) go through it:

- HTTP 429/502/503/504 or any 5xx status is retryable.
- An upstream message mentioning rate limiting, "too many", a timeout or a
  temporary condition is retryable regardless of status.
- Everything else is terminal.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from src.intake.bitable.responses import BitableFailure

RETRYABLE_STATUSES = frozenset({429, 502, 503, 504})
RETRYABLE_MESSAGE_HINTS = ("rate limit", "too many", "timeout", "temporarily")


def is_retryable(status: int | None, message: str | None) -> bool:
    """Classify an upstream failure by HTTP status and message text."""
    if status is not None and (status in RETRYABLE_STATUSES or status >= 500):
        return True
    text = (message or "").lower()
    return any(hint in text for hint in RETRYABLE_MESSAGE_HINTS)


class BitableError(Exception):
    """A failed Bitable API call.

    Args:
        message: Human-readable error, stored on the submission on failure.
        status: HTTP status of the response, if one was received.
        code: Application error code from the response envelope.
        upstream_message: The ``msg`` reported by Bitable, used for
            classification.
        retryable: Explicit classification; derived from status and
            upstream message when omitted.
    """

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        code: int | None = None,
        upstream_message: str | None = None,
        retryable: bool | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.code = code
        self.upstream_message = upstream_message
        if retryable is None:
            retryable = is_retryable(status, upstream_message)
        self.retryable = retryable

    @classmethod
    def from_failure(cls, failure: BitableFailure, operation: str) -> BitableError:
        return cls(
            f"Feishu {operation} error: {failure.message or 'Unknown error'}",
            status=failure.status,
            code=failure.code,
            upstream_message=failure.message,
        )


def is_retryable_error(exc: BaseException) -> bool:
    """Whether an exception raised during a sync attempt is transient."""
    if isinstance(exc, BitableError):
        return exc.retryable
    # Timeouts, refused connections, and dropped sockets
    if isinstance(exc, httpx.TransportError):
        return True
    return False
