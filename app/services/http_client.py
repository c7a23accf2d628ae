from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Mapping

import httpx


log = logging.getLogger(__name__)

MAX_RAW_CHARS = 2_000


@dataclass(frozen=True)
class HttpResult:
    ok: bool
    status_code: int | None
    detail: dict[str, Any] = field(default_factory=dict)

    error_code: str | None = None
    error_message: str | None = None

    elapsed_ms: int | None = None


def _failure(code: str, message: str, *, status_code: int | None = None, detail: dict | None = None, elapsed_ms: int | None = None) -> HttpResult:
    return HttpResult(
        ok=False,
        status_code=status_code,
        detail=detail or {},
        error_code=code,
        error_message=message,
        elapsed_ms=elapsed_ms,
    )


def _body(resp: httpx.Response) -> dict[str, Any] | None:
    """JSON body as a dict; arrays are wrapped as {"data": [...]}. None if not JSON."""
    ctype = (resp.headers.get("content-type") or "").lower()
    if "json" not in ctype:
        return None
    try:
        parsed = resp.json()
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else {"data": parsed}


class ProviderHttpClient:
    """
    One pooled AsyncClient shared by the geocoding and routing providers.

    A call is a single GET: no retries, and no timeout of our own unless one
    is configured. Transport and HTTP failures come back as an HttpResult
    with ok=False; the provider decides what that means.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float | None = None,
        default_headers: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        kwargs: dict[str, Any] = {"headers": dict(default_headers or {}), "transport": transport}
        if timeout_seconds is not None:
            kwargs["timeout"] = httpx.Timeout(timeout_seconds)
        self._client = httpx.AsyncClient(**kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_json(
        self,
        *,
        url: str,
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, str] | None = None,
    ) -> HttpResult:
        started = time.monotonic()
        try:
            resp = await self._client.get(url, headers=dict(headers or {}), params=dict(params or {}))
        except httpx.TimeoutException as e:
            log.debug("GET %s timed out: %s", url, e)
            return _failure("TIMEOUT", str(e) or "timeout")
        except httpx.RequestError as e:
            # DNS, refused connection, TLS
            log.debug("GET %s failed: %s", url, e)
            return _failure("REQUEST_ERROR", str(e) or type(e).__name__)
        elapsed_ms = int((time.monotonic() - started) * 1000)

        body = _body(resp)
        if not resp.is_success:
            detail = body if body is not None else {"raw": resp.text[:MAX_RAW_CHARS]}
            return _failure(
                f"HTTP_{resp.status_code}",
                f"HTTP {resp.status_code}",
                status_code=resp.status_code,
                detail=detail,
                elapsed_ms=elapsed_ms,
            )
        if body is None:
            return _failure(
                "NOT_JSON",
                f"expected JSON, got {resp.headers.get('content-type')!r}",
                status_code=resp.status_code,
                elapsed_ms=elapsed_ms,
            )
        return HttpResult(ok=True, status_code=resp.status_code, detail=body, elapsed_ms=elapsed_ms)
