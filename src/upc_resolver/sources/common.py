from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen


USER_AGENT = "upc-resolver/0.1 (+inventory lookup)"
LOGGER = logging.getLogger(__name__)
DEBUG_ENABLED = False
DEBUG_DIR = Path("debug/sources")
DEFAULT_RETRY_AFTER_SECONDS = 60


class SourceError(RuntimeError):
    """Base class for one adapter failing to produce a usable result."""

    status = "transport_error"


class SourceUnconfiguredError(SourceError):
    status = "unconfigured"


class SourceNotFoundError(SourceError):
    status = "not_found"


class SourceTransportError(SourceError):
    status = "transport_error"


class SourceRateLimitedError(SourceError):
    status = "rate_limited"

    def __init__(self, message: str, *, retry_after_seconds: int | None = None, vendor_remaining: int | None = None) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds
        self.vendor_remaining = vendor_remaining


@dataclass(slots=True)
class HttpResponse:
    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        return json.loads(self.body) if self.body.strip() else {}


def configure_debug(enabled: bool, output_dir: str | Path) -> None:
    global DEBUG_ENABLED, DEBUG_DIR
    DEBUG_ENABLED = enabled
    DEBUG_DIR = Path(output_dir)
    if DEBUG_ENABLED:
        DEBUG_DIR.mkdir(parents=True, exist_ok=True)


def _write_debug_snapshot(source_key: str, label: str, content: str) -> None:
    if not DEBUG_ENABLED:
        return
    ts = int(time.time() * 1000)
    safe_label = re.sub(r"[^a-zA-Z0-9._-]+", "_", label)[:80]
    out_dir = DEBUG_DIR / (source_key or "unknown")
    out_dir.mkdir(parents=True, exist_ok=True)
    (out_dir / f"{ts}_{safe_label}.json").write_text(content, encoding="utf-8")


def _lower_headers(raw: Any) -> dict[str, str]:
    if raw is None:
        return {}
    return {str(k).lower(): str(v) for k, v in raw.items()}


def fetch_json(
    url: str,
    *,
    method: str = "GET",
    headers: dict[str, str] | None = None,
    data: bytes | None = None,
    timeout_seconds: float = 10,
    source_key: str = "",
    debug_label: str = "response",
) -> HttpResponse:
    """Perform one HTTP call and return status, headers and body.

    Non-2xx replies are returned, not raised, so callers can read quota
    headers from error responses. Network failures and timeouts raise
    ``SourceTransportError``.
    """
    request = Request(
        url,
        data=data,
        method=method,
        headers={"User-Agent": USER_AGENT, "Accept": "application/json", **(headers or {})},
    )
    try:
        with urlopen(request, timeout=timeout_seconds) as response:
            body = response.read().decode("utf-8", errors="ignore")
            result = HttpResponse(
                status=int(getattr(response, "status", 200) or 200),
                headers=_lower_headers(getattr(response, "headers", None)),
                body=body,
            )
    except HTTPError as exc:
        try:
            body = exc.read().decode("utf-8", errors="ignore")
        except Exception:  # noqa: BLE001
            body = ""
        result = HttpResponse(status=exc.code, headers=_lower_headers(exc.headers), body=body)
    except (URLError, TimeoutError, OSError) as exc:
        raise SourceTransportError(f"{method} {url} failed: {exc}") from exc
    _write_debug_snapshot(source_key, f"{debug_label}_{result.status}", result.body)
    return result


def _header_int(headers: dict[str, str], name: str) -> int | None:
    raw = headers.get(name)
    if raw is None:
        return None
    try:
        return int(float(raw.strip()))
    except ValueError:
        return None


def read_quota_headers(headers: dict[str, str]) -> dict[str, Any]:
    """Extract ``x-ratelimit-*`` quota numbers; missing values are omitted."""
    quota: dict[str, Any] = {}
    limit = _header_int(headers, "x-ratelimit-limit")
    remaining = _header_int(headers, "x-ratelimit-remaining")
    reset = _header_int(headers, "x-ratelimit-reset")
    if limit is not None:
        quota["limit"] = limit
    if remaining is not None:
        quota["remaining"] = remaining
    if reset is not None and reset > 0:
        quota["reset_at"] = datetime.fromtimestamp(reset, tz=timezone.utc)
    return quota


def read_retry_after(headers: dict[str, str]) -> int:
    value = _header_int(headers, "retry-after")
    return value if value is not None and value >= 0 else DEFAULT_RETRY_AFTER_SECONDS


def decode_payload(response: HttpResponse, source_key: str) -> dict[str, Any]:
    try:
        payload = response.json()
    except json.JSONDecodeError as exc:
        raise SourceTransportError(f"{source_key}: response was not valid JSON") from exc
    if not isinstance(payload, dict):
        raise SourceTransportError(f"{source_key}: expected a JSON object, got {type(payload).__name__}")
    return payload


class RequestPacer:
    """Keeps a minimum gap between consecutive calls from one adapter."""

    def __init__(
        self,
        min_spacing_seconds: float,
        *,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.min_spacing_seconds = max(0.0, min_spacing_seconds)
        self.last_call_at: float | None = None
        self._sleep = sleep
        self._monotonic = monotonic

    def wait(self) -> float:
        """Sleep out the rest of the gap, then stamp the call time."""
        waited = 0.0
        if self.last_call_at is not None and self.min_spacing_seconds:
            elapsed = self._monotonic() - self.last_call_at
            if elapsed < self.min_spacing_seconds:
                waited = self.min_spacing_seconds - elapsed
                LOGGER.debug("Pacing outbound call for %.2fs", waited)
                self._sleep(waited)
        self.last_call_at = self._monotonic()
        return waited
