from __future__ import annotations

import io
from datetime import datetime, timezone
from email.message import Message
from pathlib import Path
from typing import Any
from urllib.error import HTTPError, URLError

import pytest

from upc_resolver.sources import common
from upc_resolver.sources.common import (
    HttpResponse,
    RequestPacer,
    SourceTransportError,
    decode_payload,
    read_quota_headers,
    read_retry_after,
)


class _FakeResponse:
    def __init__(self, body: bytes, status: int = 200, headers: dict[str, str] | None = None) -> None:
        self._body = body
        self.status = status
        self.headers = headers or {}

    def __enter__(self) -> "_FakeResponse":
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        return None

    def read(self) -> bytes:
        return self._body


def test_fetch_json_returns_status_headers_and_body(monkeypatch: Any) -> None:
    seen: dict[str, Any] = {}

    def fake_urlopen(request: Any, timeout: float = 0) -> _FakeResponse:
        seen["url"] = request.full_url
        seen["method"] = request.get_method()
        seen["timeout"] = timeout
        seen["agent"] = request.get_header("User-agent")
        return _FakeResponse(b'{"code":"OK"}', headers={"X-RateLimit-Remaining": "99"})

    monkeypatch.setattr(common, "urlopen", fake_urlopen)

    response = common.fetch_json("https://api.example.com/lookup?upc=1", timeout_seconds=3)

    assert response.ok
    assert response.json() == {"code": "OK"}
    assert response.headers == {"x-ratelimit-remaining": "99"}
    assert seen["method"] == "GET"
    assert seen["timeout"] == 3
    assert seen["agent"] == common.USER_AGENT


def test_fetch_json_returns_http_errors_instead_of_raising(monkeypatch: Any) -> None:
    headers = Message()
    headers["Retry-After"] = "15"

    def fake_urlopen(request: Any, timeout: float = 0) -> _FakeResponse:
        raise HTTPError(request.full_url, 429, "Too Many Requests", headers, io.BytesIO(b'{"code":"TOO_FAST"}'))

    monkeypatch.setattr(common, "urlopen", fake_urlopen)

    response = common.fetch_json("https://api.example.com/lookup", method="POST", data=b"{}")

    assert response.status == 429
    assert not response.ok
    assert response.headers["retry-after"] == "15"
    assert response.json() == {"code": "TOO_FAST"}


def test_fetch_json_wraps_network_failures(monkeypatch: Any) -> None:
    monkeypatch.setattr(common, "urlopen", lambda request, timeout=0: (_ for _ in ()).throw(URLError("dns failure")))

    with pytest.raises(SourceTransportError):
        common.fetch_json("https://api.example.com/lookup")


def test_fetch_json_wraps_timeouts(monkeypatch: Any) -> None:
    monkeypatch.setattr(common, "urlopen", lambda request, timeout=0: (_ for _ in ()).throw(TimeoutError("slow")))

    with pytest.raises(SourceTransportError):
        common.fetch_json("https://api.example.com/lookup")


def test_fetch_json_writes_debug_snapshot_when_enabled(monkeypatch: Any, tmp_path: Path) -> None:
    monkeypatch.setattr(common, "urlopen", lambda request, timeout=0: _FakeResponse(b'{"items":[]}'))
    common.configure_debug(True, tmp_path)
    try:
        common.fetch_json("https://api.example.com/lookup", source_key="upcitemdb", debug_label="lookup_123")
    finally:
        common.configure_debug(False, "debug/sources")

    files = list((tmp_path / "upcitemdb").glob("*.json"))
    assert len(files) == 1
    assert files[0].name.endswith("lookup_123_200.json")


def test_read_quota_headers_parses_limit_remaining_and_reset() -> None:
    quota = read_quota_headers(
        {"x-ratelimit-limit": "100", "x-ratelimit-remaining": "0", "x-ratelimit-reset": "1772409600"}
    )

    assert quota["limit"] == 100
    assert quota["remaining"] == 0
    assert quota["reset_at"] == datetime.fromtimestamp(1772409600, tz=timezone.utc)


def test_read_quota_headers_skips_missing_and_garbage_values() -> None:
    assert read_quota_headers({}) == {}
    assert read_quota_headers({"x-ratelimit-remaining": "lots"}) == {}


def test_read_retry_after_defaults_to_sixty_seconds() -> None:
    assert read_retry_after({"retry-after": "12"}) == 12
    assert read_retry_after({}) == 60
    assert read_retry_after({"retry-after": "Wed, 21 Oct 2026 07:28:00 GMT"}) == 60


def test_decode_payload_rejects_non_objects() -> None:
    with pytest.raises(SourceTransportError):
        decode_payload(HttpResponse(status=200, body="<html>"), "upcitemdb")
    with pytest.raises(SourceTransportError):
        decode_payload(HttpResponse(status=200, body="[1, 2]"), "upcitemdb")
    assert decode_payload(HttpResponse(status=200, body=""), "upcitemdb") == {}


def test_request_pacer_sleeps_out_the_remaining_gap() -> None:
    now = {"t": 100.0}
    sleeps: list[float] = []

    def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)
        now["t"] += seconds

    pacer = RequestPacer(10.0, sleep=fake_sleep, monotonic=lambda: now["t"])

    assert pacer.wait() == 0.0
    now["t"] += 3.0
    waited = pacer.wait()

    assert waited == pytest.approx(7.0)
    assert sleeps == [pytest.approx(7.0)]
    assert pacer.last_call_at == pytest.approx(110.0)


def test_request_pacer_does_not_sleep_after_long_gap() -> None:
    now = {"t": 0.0}
    sleeps: list[float] = []
    pacer = RequestPacer(10.0, sleep=sleeps.append, monotonic=lambda: now["t"])

    pacer.wait()
    now["t"] += 30.0
    pacer.wait()

    assert sleeps == []
