from __future__ import annotations

"""Priority-ordered product resolution across lookup sources."""

import logging
from collections.abc import Sequence

from upc_resolver.budget import RateBudgetTracker
from upc_resolver.models import LookupKey, NormalizedProduct, RateBudget, ResolutionResult, SourceAttempt
from upc_resolver.sources.base import SourceAdapter
from upc_resolver.sources.common import SourceError, SourceRateLimitedError
from upc_resolver.tracing import traceable


LOGGER = logging.getLogger(__name__)

TRANSIENT_STATUSES = frozenset({"rate_limited", "transport_error", "budget_exhausted"})


def _resolve_status(found: bool, attempts: list[SourceAttempt]) -> str:
    """Collapse per-source attempts into one outcome.

    found > unavailable (something transient got in the way) > not_found.
    With no candidate sources at all the outcome is no_sources.
    """
    if found:
        return "found"
    if not attempts:
        return "no_sources"
    if any(a.status in TRANSIENT_STATUSES for a in attempts):
        return "unavailable"
    return "not_found"


def _fill_identifier(product: NormalizedProduct, code: str | None) -> None:
    if not code or product.upc or product.ean or product.gtin:
        return
    if len(code) == 12:
        product.upc = code
    elif len(code) == 13:
        product.ean = code
    else:
        product.gtin = code


class ProductResolver:
    """Turn one ``LookupKey`` into one ``ResolutionResult``.

    Sources are tried one at a time in ascending priority for the key's
    operation kind. Unconfigured sources are never called, sources with no
    remaining budget are skipped, and the first success wins.
    """

    def __init__(self, adapters: Sequence[SourceAdapter], tracker: RateBudgetTracker) -> None:
        self.adapters = tuple(adapters)
        self.tracker = tracker

    def candidates(self, kind: str) -> list[SourceAdapter]:
        eligible = [a for a in self.adapters if a.descriptor.supports(kind) and a.is_configured()]
        return sorted(eligible, key=lambda a: a.descriptor.priority_for(kind))

    def adapter_by_key(self, key: str) -> SourceAdapter | None:
        for adapter in self.adapters:
            if adapter.descriptor.key == key:
                return adapter
        return None

    def _usage_snapshot(self, adapters: Sequence[SourceAdapter], kind: str) -> dict[str, RateBudget]:
        snapshot: dict[str, RateBudget] = {}
        for adapter in adapters:
            budget = self.tracker.get(adapter.descriptor.key, kind)
            if budget is not None:
                snapshot[adapter.descriptor.name] = budget
        return snapshot

    def _attempt(self, adapter: SourceAdapter, key: LookupKey) -> NormalizedProduct:
        if key.kind == "lookup":
            raw = adapter.lookup_by_code(key.code or "")
        else:
            raw = adapter.search_by_name(key.product_name or "", key.brand)
        return adapter.normalize(raw)

    @traceable(name="resolve_product", run_type="chain")
    def resolve(self, key: LookupKey) -> ResolutionResult:
        kind = key.kind
        candidates = self.candidates(kind)
        attempts: list[SourceAttempt] = []
        product: NormalizedProduct | None = None
        winner: SourceAdapter | None = None

        if not candidates:
            LOGGER.warning("No configured sources support %s for %s", kind, key.describe())

        for adapter in candidates:
            name = adapter.descriptor.name
            if self.tracker.check_remaining(adapter.descriptor.key, kind) <= 0:
                LOGGER.warning("Skipping %s: daily %s budget exhausted", name, kind)
                attempts.append(SourceAttempt(name, "budget_exhausted", f"daily {kind} budget exhausted"))
                continue
            try:
                product = self._attempt(adapter, key)
            except SourceRateLimitedError as exc:
                LOGGER.warning("%s rate limited %s: %s", name, key.describe(), exc)
                attempts.append(SourceAttempt(name, exc.status, str(exc), exc.retry_after_seconds))
                continue
            except SourceError as exc:
                LOGGER.warning("%s failed for %s: %s", name, key.describe(), exc)
                attempts.append(SourceAttempt(name, exc.status, str(exc)))
                continue
            except Exception as exc:  # noqa: BLE001
                LOGGER.exception("Unexpected error from %s for %s", name, key.describe())
                attempts.append(SourceAttempt(name, "transport_error", f"unexpected error: {exc}"))
                continue
            attempts.append(SourceAttempt(name, "found"))
            winner = adapter
            break

        if winner is not None and product is not None:
            _fill_identifier(product, key.code)
            LOGGER.info("Resolved %s via %s", key.describe(), winner.descriptor.name)
        else:
            product = None
            LOGGER.info("No source resolved %s", key.describe())

        found = winner is not None
        return ResolutionResult(
            found=found,
            source=winner.descriptor.name if winner is not None else None,
            product=product,
            usage_snapshot=self._usage_snapshot(candidates, kind),
            attempts=attempts,
            status=_resolve_status(found, attempts),
        )

    def resolve_code(self, code: str) -> ResolutionResult:
        return self.resolve(LookupKey.for_code(code))

    def resolve_name(self, product_name: str, brand: str | None = None) -> ResolutionResult:
        return self.resolve(LookupKey.for_name(product_name, brand))
