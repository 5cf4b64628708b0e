from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from upc_resolver.budget import RateBudgetTracker
from upc_resolver.models import NormalizedProduct, RawVendorResponse
from upc_resolver.normalize import normalize_upcitemdb
from upc_resolver.sources.base import HttpSourceAdapter, SourceDescriptor
from upc_resolver.sources.common import HttpResponse, SourceNotFoundError


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 1, 15, 30, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


def json_response(payload: dict[str, Any], status: int = 200, headers: dict[str, str] | None = None) -> HttpResponse:
    return HttpResponse(status=status, headers=headers or {}, body=json.dumps(payload))


def item_payload(title: str, **fields: Any) -> dict[str, Any]:
    return {"code": "OK", "total": 1, "offset": 0, "items": [{"title": title, **fields}]}


EMPTY_PAYLOAD: dict[str, Any] = {"code": "OK", "total": 0, "offset": 0, "items": []}


class ScriptedAdapter(HttpSourceAdapter):
    """Adapter whose HTTP replies are scripted; records every outbound call."""

    def __init__(
        self,
        tracker: RateBudgetTracker,
        *,
        key: str,
        priority: int,
        responses: list[HttpResponse | Exception] | None = None,
        configured: bool = True,
        limits: dict[str, int] | None = None,
        name: str | None = None,
    ) -> None:
        self.descriptor = SourceDescriptor(
            key=key,
            name=name or key,
            priority=priority,
            daily_limits=limits or {"lookup": 10, "search": 10},
        )
        self._configured = configured
        self.responses = list(responses or [])
        self.calls: list[tuple[str, str]] = []
        super().__init__(tracker, sleep=lambda _seconds: None)

    def is_configured(self) -> bool:
        return self._configured

    def _next(self, kind: str, subject: str) -> HttpResponse:
        self.calls.append((kind, subject))
        reply = self.responses.pop(0) if self.responses else json_response(EMPTY_PAYLOAD)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def _send_lookup(self, code: str) -> HttpResponse:
        return self._next("lookup", code)

    def _send_search(self, query: str) -> HttpResponse:
        return self._next("search", query)

    def _check_found(self, kind: str, response: HttpResponse, payload: dict) -> None:
        if response.ok and not payload.get("items"):
            raise SourceNotFoundError(f"{self.descriptor.name} has no items")

    def normalize(self, raw: RawVendorResponse) -> NormalizedProduct:
        return normalize_upcitemdb(raw.payload)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tracker(clock: FakeClock) -> RateBudgetTracker:
    return RateBudgetTracker(clock=clock)
