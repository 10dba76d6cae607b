"""Async HTTP client for the Feishu Bitable open API.

Provides BitableClient, owning:
- an httpx.AsyncClient with the configured request timeout,
- a single-flight cache for the tenant access token (60s refresh margin),
- a single-flight cache for the table's field schema (10 min TTL, 30s
  refresh margin).

Every call goes through request(), which attaches the bearer token,
classifies failures (see errors.py), and retries once after 200ms for
transient failures. This local retry only smooths over token-fetch and
network blips; the sync queue owns the real retry budget.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

import httpx
import structlog
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from src.intake.bitable.cache import SingleFlightCache
from src.intake.bitable.errors import BitableError, is_retryable_error
from src.intake.bitable.responses import BitableFailure, parse_envelope
from src.intake.bitable.select import FieldMeta, parse_field_meta
from src.intake.config import Settings

logger = structlog.get_logger(__name__)

TOKEN_PATH = "/auth/v3/tenant_access_token/internal"

# 2 attempts total, 200ms before the second
_bitable_retry = retry(
    stop=stop_after_attempt(2),
    wait=wait_exponential(multiplier=0.2),
    retry=retry_if_exception(is_retryable_error),
    reraise=True,
)


class BitableClient:
    """Client for one Bitable table.

    Args:
        settings: Application settings (credentials, table, timeout).
        http_client: Optional pre-built httpx.AsyncClient (tests inject a
            MockTransport-backed client). Must use FEISHU_BASE_URL as base.
        clock: Monotonic time source for the caches.
    """

    TOKEN_REFRESH_MARGIN_S = 60.0
    DEFAULT_TOKEN_TTL_S = 3600.0
    FIELD_META_REFRESH_MARGIN_S = 30.0
    FIELD_META_TTL_S = 600.0
    FIELD_PAGE_SIZE = 200

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=settings.FEISHU_BASE_URL,
            timeout=settings.FEISHU_REQUEST_TIMEOUT_MS / 1000,
            headers={"Content-Type": "application/json; charset=utf-8"},
        )
        self._token_cache: SingleFlightCache[str] = SingleFlightCache(
            refresh_margin=self.TOKEN_REFRESH_MARGIN_S, clock=clock,
        )
        self._field_meta_cache: SingleFlightCache[dict[str, FieldMeta]] = SingleFlightCache(
            refresh_margin=self.FIELD_META_REFRESH_MARGIN_S, clock=clock,
        )

    async def __aenter__(self) -> BitableClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    def _table_path(self, suffix: str) -> str:
        return (
            f"/bitable/v1/apps/{self._settings.FEISHU_APP_TOKEN}"
            f"/tables/{self._settings.FEISHU_TABLE_ID}/{suffix}"
        )

    # ── Credentials ─────────────────────────────────────────────────────

    async def get_token(self) -> str:
        """Return a tenant access token, fetching one when near expiry."""
        return await self._token_cache.get(self._fetch_token)

    async def _fetch_token(self) -> tuple[str, float]:
        response = await self._http.post(
            TOKEN_PATH,
            json={
                "app_id": self._settings.FEISHU_APP_ID,
                "app_secret": self._settings.FEISHU_APP_SECRET,
            },
        )
        result = parse_envelope(response.status_code, response.text, response.reason_phrase)
        if isinstance(result, BitableFailure):
            raise BitableError.from_failure(result, "tenant token")

        token = result.body.get("tenant_access_token")
        if not token:
            raise BitableError(
                "Feishu tenant token error: missing token",
                status=result.status,
                retryable=True,
            )

        ttl = result.body.get("expire") or result.body.get("expires_in") or self.DEFAULT_TOKEN_TTL_S
        logger.info("bitable.token_refreshed", expires_in=ttl)
        return str(token), float(ttl)

    # ── Generic request ─────────────────────────────────────────────────

    @_bitable_retry
    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Perform an authenticated API call and return the envelope ``data``.

        Raises:
            BitableError: On HTTP or application-level failure.
            httpx.TransportError: On timeouts and connection failures.
        """
        token = await self.get_token()
        response = await self._http.request(
            method,
            path,
            json=json,
            params=params,
            headers={"Authorization": f"Bearer {token}"},
        )
        result = parse_envelope(response.status_code, response.text, response.reason_phrase)

        if isinstance(result, BitableFailure):
            error = BitableError.from_failure(result, f"{method} {path.rsplit('/', 1)[-1]}")
            logger.warning(
                "bitable.request_failed",
                method=method,
                status=result.status,
                code=result.code,
                retryable=error.retryable,
                error=result.message[:200],
            )
            raise error

        return result.data

    # ── Table schema ────────────────────────────────────────────────────

    async def get_field_meta_by_name(self) -> dict[str, FieldMeta]:
        """Current field schema of the table, keyed by field name."""
        return await self._field_meta_cache.get(self._fetch_field_meta)

    async def _fetch_field_meta(self) -> tuple[dict[str, FieldMeta], float]:
        # Only the first page: the tables we sync have far fewer columns
        data = await self.request(
            "GET",
            self._table_path("fields"),
            params={"page_size": self.FIELD_PAGE_SIZE},
        )
        metas = parse_field_meta(data.get("items") or [])
        logger.info("bitable.field_meta_refreshed", field_count=len(metas))
        return metas, self.FIELD_META_TTL_S

    # ── Records ─────────────────────────────────────────────────────────

    async def create_record(self, fields: dict[str, Any]) -> str:
        """Create a record and return its record id.

        Raises:
            BitableError: Retryable when the response lacks a record id.
        """
        data = await self.request("POST", self._table_path("records"), json={"fields": fields})
        record = data.get("record") or {}
        record_id = record.get("record_id") if isinstance(record, dict) else None
        if not record_id:
            raise BitableError("Feishu record error: missing record id", retryable=True)
        return str(record_id)

    async def update_record(self, record_id: str, fields: dict[str, Any]) -> None:
        await self.request(
            "PUT",
            self._table_path(f"records/{record_id}"),
            json={"fields": fields},
        )

    async def delete_record(self, record_id: str) -> None:
        await self.request("DELETE", self._table_path(f"records/{record_id}"))
