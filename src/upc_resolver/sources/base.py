from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

from upc_resolver.budget import RateBudgetTracker
from upc_resolver.config import DEFAULT_CONFIG, RuntimeConfig
from upc_resolver.models import NormalizedProduct, RateBudget, RawVendorResponse
from upc_resolver.normalize import normalize
from upc_resolver.sources.common import (
    HttpResponse,
    RequestPacer,
    SourceNotFoundError,
    SourceRateLimitedError,
    SourceTransportError,
    SourceUnconfiguredError,
    decode_payload,
    read_quota_headers,
    read_retry_after,
)


LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SourceDescriptor:
    key: str
    name: str
    priority: int
    min_spacing_seconds: float = 0.0
    daily_limits: dict[str, int] = field(default_factory=dict)
    kind_priorities: dict[str, int] = field(default_factory=dict)
    # Budget that a vendor's x-ratelimit-* headers describe, per call kind.
    quota_kinds: dict[str, str] = field(default_factory=dict)

    def supports(self, kind: str) -> bool:
        return kind in self.daily_limits

    def priority_for(self, kind: str) -> int:
        return self.kind_priorities.get(kind, self.priority)

    def quota_kind_for(self, kind: str) -> str:
        return self.quota_kinds.get(kind, kind)


class SourceAdapter(Protocol):
    descriptor: SourceDescriptor

    def is_configured(self) -> bool:
        ...

    def lookup_by_code(self, code: str) -> RawVendorResponse:
        ...

    def search_by_name(self, product_name: str, brand: str | None = None) -> RawVendorResponse:
        ...

    def normalize(self, raw: RawVendorResponse) -> NormalizedProduct:
        ...


class HttpSourceAdapter:
    """Shared call discipline for JSON-over-HTTP product sources.

    Subclasses set ``descriptor`` and implement ``_send_lookup`` /
    ``_send_search`` (one HTTP call each) and ``_check_found``. Everything
    else lives here: credential check, local budget check, pacing, budget
    consumption, vendor quota headers and status mapping.
    """

    descriptor: SourceDescriptor

    def __init__(
        self,
        tracker: RateBudgetTracker,
        config: RuntimeConfig = DEFAULT_CONFIG,
        *,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.tracker = tracker
        self.config = config
        self.timeout_seconds = config.request_timeout_seconds
        self.pacer = RequestPacer(self.descriptor.min_spacing_seconds, sleep=sleep, monotonic=monotonic)
        for kind, default_limit in self.descriptor.daily_limits.items():
            limit = config.daily_limit_overrides.get(f"{self.descriptor.key}.{kind}", default_limit)
            tracker.register(self.descriptor.key, kind, limit)

    @property
    def last_call_at(self) -> float | None:
        return self.pacer.last_call_at

    def is_configured(self) -> bool:
        return True

    def lookup_by_code(self, code: str) -> RawVendorResponse:
        return self._call("lookup", lambda: self._send_lookup(code), code)

    def search_by_name(self, product_name: str, brand: str | None = None) -> RawVendorResponse:
        query = f"{brand.strip()} {product_name.strip()}" if brand and brand.strip() else product_name.strip()
        return self._call("search", lambda: self._send_search(query), query)

    def normalize(self, raw: RawVendorResponse) -> NormalizedProduct:
        return normalize(raw)

    def _send_lookup(self, code: str) -> HttpResponse:
        raise SourceUnconfiguredError(f"{self.descriptor.name} does not support code lookup")

    def _send_search(self, query: str) -> HttpResponse:
        raise SourceUnconfiguredError(f"{self.descriptor.name} does not support name search")

    def _check_found(self, kind: str, response: HttpResponse, payload: dict) -> None:
        """Raise ``SourceNotFoundError`` when a 2xx payload holds no match."""

    def _prepare(self, kind: str) -> None:
        """Run before the budgeted call; failures here consume no budget."""

    def _budget_kinds(self, kind: str) -> list[str]:
        quota_kind = self.descriptor.quota_kind_for(kind)
        if quota_kind == kind or not self.descriptor.supports(quota_kind):
            return [kind]
        return [kind, quota_kind]

    def _record_call(self, kind: str, response: HttpResponse | None) -> RateBudget:
        """Consume one unit and fold in vendor quota headers.

        Headers go to the budget they describe. A call kind that shares that
        vendor quota keeps its own limit; a vendor ``remaining`` only lowers it.
        """
        key = self.descriptor.key
        quota_kind = self.descriptor.quota_kind_for(kind)
        budget = self.tracker.consume(key, kind)
        shared = quota_kind != kind and self.descriptor.supports(quota_kind)
        if shared:
            self.tracker.consume(key, quota_kind)
        quota = read_quota_headers(response.headers) if response is not None else {}
        if not quota:
            return budget
        if not shared:
            return self.tracker.apply_vendor_quota(key, kind, **quota) or budget
        self.tracker.apply_vendor_quota(key, quota_kind, **quota)
        if "remaining" in quota:
            return self.tracker.cap_remaining(key, kind, quota["remaining"]) or budget
        return budget

    def _call(self, kind: str, send: Callable[[], HttpResponse], subject: str) -> RawVendorResponse:
        key = self.descriptor.key
        name = self.descriptor.name
        if not self.is_configured():
            raise SourceUnconfiguredError(f"{name} credentials are not configured")
        if not self.descriptor.supports(kind):
            raise SourceUnconfiguredError(f"{name} does not support {kind}")
        for budget_kind in self._budget_kinds(kind):
            if self.tracker.check_remaining(key, budget_kind) <= 0:
                raise SourceRateLimitedError(
                    f"{name} daily {budget_kind} budget exhausted",
                    retry_after_seconds=self.tracker.seconds_until_reset(key, budget_kind),
                    vendor_remaining=None,
                )

        self._prepare(kind)
        self.pacer.wait()
        LOGGER.info("%s %s for %s", name, kind, subject)
        response: HttpResponse | None = None
        try:
            response = send()
        finally:
            budget = self._record_call(kind, response)
            LOGGER.info("%s %s budget: %d/%d remaining", name, kind, budget.remaining, budget.limit)

        if response.status == 429:
            quota = read_quota_headers(response.headers)
            raise SourceRateLimitedError(
                f"{name} rate limited the {kind} request",
                retry_after_seconds=read_retry_after(response.headers),
                vendor_remaining=quota.get("remaining"),
            )
        if response.status == 404:
            raise SourceNotFoundError(f"{name} has no match for {subject}")
        payload = self._decode_error_payload(response)
        if not response.ok:
            self._check_found(kind, response, payload)
            raise SourceTransportError(f"{name} {kind} request failed with status {response.status}")

        payload = decode_payload(response, key)
        self._check_found(kind, response, payload)
        return RawVendorResponse(
            source=key,
            operation=kind,
            status=response.status,
            payload=payload,
            headers=response.headers,
        )

    @staticmethod
    def _decode_error_payload(response: HttpResponse) -> dict:
        if response.ok:
            return {}
        try:
            payload = response.json()
        except ValueError:
            return {}
        return payload if isinstance(payload, dict) else {}
