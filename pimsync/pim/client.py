#===========================================================================
# pimsync/pim/client.py
# PIM JSON-RPC 2.0 interface module.
# One POST per call; bounded retry on transport failures and on
# 429/502/503/504. Every call returns a result dict, never raises.
#===========================================================================

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional

import httpx

from pimsync.config import settings as default_settings
from pimsync.logging_filters import trim_body

logger = logging.getLogger("uvicorn.error")

API_VERSION = "2"
RETRYABLE_STATUS = {429, 502, 503, 504}
BACKOFF_BASE = 0.5

KIND_TRANSPORT = "transport"
KIND_PROTOCOL = "protocol"

CODE_NETWORK = -1
CODE_PARSE_ERROR = -32700
CODE_INTERNAL = -32603


class PimClientError(Exception):
    """Raised by result_or_raise() for callers that prefer exceptions."""

    def __init__(self, kind: str, code: int, message: str, data: Any = None):
        super().__init__(f"[{kind}] {code}: {message}")
        self.kind = kind
        self.code = code
        self.message = message
        self.data = data


def _clamp(v: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, int(v)))


def _failure(kind: str, code: int, message: str, data: Any = None) -> Dict[str, Any]:
    err: Dict[str, Any] = {"code": code, "message": message, "kind": kind}
    if data is not None:
        err["data"] = data
    return {"success": False, "error": err}


def _retry_after_seconds(resp: httpx.Response) -> float:
    raw = (resp.headers.get("Retry-After") or "").strip()
    if not raw:
        return 0.0
    if raw.isdigit():
        return float(raw)
    try:
        when = parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        return 0.0
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def result_or_raise(result: Dict[str, Any]) -> Any:
    if result.get("success"):
        return result.get("result")
    err = result.get("error") or {}
    raise PimClientError(
        err.get("kind", KIND_PROTOCOL),
        err.get("code", CODE_INTERNAL),
        err.get("message", "Unknown error"),
        err.get("data"),
    )


class PimClient:
    def __init__(
        self,
        endpoint: str,
        token: str = "",
        *,
        auth_type: str = "bearer",
        timeout: int = 30,
        retries: int = 2,
        backoff_base: float = BACKOFF_BASE,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.endpoint = (endpoint or "").rstrip("/")
        self.token = token or ""
        self.auth_type = (auth_type or "bearer").strip().lower()
        self.timeout = _clamp(timeout, 5, 120)
        self.retries = _clamp(retries, 0, 5)
        self.backoff_base = backoff_base
        self._request_id = 0
        self._http = httpx.AsyncClient(timeout=self.timeout, transport=transport)

    @classmethod
    def from_settings(cls, s=None, **kwargs) -> "PimClient":
        s = s or default_settings
        return cls(
            s.PIM_ENDPOINT,
            s.PIM_TOKEN,
            auth_type=s.PIM_AUTH_TYPE,
            timeout=s.PIM_TIMEOUT,
            retries=s.PIM_RETRIES,
            **kwargs,
        )

    async def __aenter__(self) -> "PimClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    def _headers(self) -> Dict[str, str]:
        h = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-Skwirrel-Api-Version": API_VERSION,
        }
        if self.token:
            if self.auth_type == "token":
                h["X-Skwirrel-Api-Token"] = self.token
            else:
                h["Authorization"] = f"Bearer {self.token}"
        return h

    async def _backoff(self, method: str, attempt: int, reason: str, hint: float = 0.0) -> None:
        delay = max(self.backoff_base * attempt, hint)
        logger.warning(
            "[HTTP RETRY] %s failed (attempt %s/%s): %s. Retrying in %.1fs...",
            method, attempt, self.retries + 1, reason, delay,
        )
        await asyncio.sleep(delay)

    async def call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        self._request_id += 1
        body = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params or {},
            "id": self._request_id,
        }
        last_error: Dict[str, Any] = _failure(KIND_TRANSPORT, CODE_NETWORK, "No attempt made")
        attempt = 0

        while attempt <= self.retries:
            attempt += 1
            try:
                resp = await self._http.post(self.endpoint, json=body, headers=self._headers())
            except httpx.RequestError as e:
                last_error = _failure(KIND_TRANSPORT, CODE_NETWORK, str(e) or e.__class__.__name__)
                if attempt <= self.retries:
                    await self._backoff(method, attempt, str(e) or e.__class__.__name__)
                continue

            status = resp.status_code
            if status in RETRYABLE_STATUS:
                last_error = _failure(KIND_TRANSPORT, status, f"HTTP {status}", trim_body(resp.text))
                if attempt <= self.retries:
                    await self._backoff(method, attempt, f"HTTP {status}", _retry_after_seconds(resp))
                continue

            try:
                decoded = resp.json()
            except ValueError:
                if status >= 400:
                    return _failure(KIND_TRANSPORT, status, f"HTTP {status}", trim_body(resp.text))
                logger.error("[PIM] %s returned a malformed body (HTTP %s)", method, status)
                return _failure(KIND_PROTOCOL, CODE_PARSE_ERROR, "Invalid JSON response", trim_body(resp.text))

            if status >= 400:
                err = decoded.get("error") if isinstance(decoded, dict) else None
                err = err if isinstance(err, dict) else {}
                logger.error("[PIM] %s HTTP %s: %s", method, status, err.get("message") or "")
                return _failure(KIND_TRANSPORT, status, err.get("message") or f"HTTP {status}", err.get("data"))

            if not isinstance(decoded, dict):
                return _failure(KIND_PROTOCOL, CODE_PARSE_ERROR, "Invalid JSON response")

            if decoded.get("error"):
                err = decoded["error"]
                if not isinstance(err, dict):
                    err = {"message": str(err)}
                logger.error("[PIM] %s RPC error %s: %s", method, err.get("code"), err.get("message"))
                return _failure(
                    KIND_PROTOCOL,
                    err.get("code", CODE_INTERNAL),
                    err.get("message") or "Unknown error",
                    err.get("data"),
                )

            return {"success": True, "result": decoded.get("result")}

        logger.error("[PIM] %s gave up after %s attempt(s): %s", method, attempt, last_error["error"]["message"])
        return last_error

    async def test_connection(self) -> Dict[str, Any]:
        return await self.call("getProducts", {
            "page": 1,
            "limit": 1,
            "include_product_status": False,
            "include_product_translations": False,
            "include_attachments": False,
            "include_trade_items": False,
            "include_trade_item_prices": False,
            "include_categories": False,
            "include_product_groups": False,
            "include_grouped_products": False,
            "include_etim": False,
            "include_etim_translations": False,
            "include_custom_classes": False,
        })
