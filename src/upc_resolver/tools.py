from __future__ import annotations

"""Tool functions shared by the CLI, the HTTP routes and the ADK agents.

They all go through one process resolver, built lazily from the environment
unless a caller installs its own with ``configure_resolver``. Results are
plain dicts so they serialise cleanly for agents and JSON output.
"""

import logging
import threading

from upc_resolver.budget import RateBudgetTracker
from upc_resolver.config import RuntimeConfig
from upc_resolver.models import OPERATION_KINDS, ResolutionResult
from upc_resolver.resolver import ProductResolver
from upc_resolver.sources import EbayBrowseAdapter, UPCDatabaseAdapter, UPCItemDBAdapter
from upc_resolver.tracing import traceable


LOGGER = logging.getLogger(__name__)

_RESOLVER: ProductResolver | None = None
_STATE_PATH: str = ""
_RESOLVER_LOCK = threading.Lock()


def build_default_resolver(config: RuntimeConfig) -> ProductResolver:
    """Wire the tracker and every known source from one config."""
    tracker = RateBudgetTracker(reset_mode=config.budget_reset_mode)
    adapters = (
        UPCItemDBAdapter(tracker, config),
        UPCDatabaseAdapter(tracker, config),
        EbayBrowseAdapter(tracker, config),
    )
    for adapter in adapters:
        if not adapter.is_configured():
            LOGGER.info("%s is not configured; it will be skipped", adapter.descriptor.name)
    if config.budget_state_path:
        restored = tracker.load(config.budget_state_path)
        LOGGER.info("Restored %d budget counters from %s", restored, config.budget_state_path)
    return ProductResolver(adapters, tracker)


def configure_resolver(resolver: ProductResolver | None, *, state_path: str = "") -> None:
    """Install the process resolver (``None`` forces a rebuild from env)."""
    global _RESOLVER, _STATE_PATH
    with _RESOLVER_LOCK:
        _RESOLVER = resolver
        _STATE_PATH = state_path


def get_resolver() -> ProductResolver:
    global _RESOLVER, _STATE_PATH
    with _RESOLVER_LOCK:
        if _RESOLVER is None:
            config = RuntimeConfig.from_env()
            _RESOLVER = build_default_resolver(config)
            _STATE_PATH = config.budget_state_path
        return _RESOLVER


def persist_budgets(resolver: ProductResolver) -> None:
    if not _STATE_PATH:
        return
    try:
        resolver.tracker.save(_STATE_PATH)
    except OSError as exc:
        LOGGER.warning("Could not save budget state to %s: %s", _STATE_PATH, exc)


def _invalid_input(exc: ValueError) -> dict:
    return {"found": False, "source": None, "status": "invalid_input", "product": None, "error": str(exc)}


def _result_payload(result: ResolutionResult, **extra: object) -> dict:
    payload = result.to_dict()
    payload.update(extra)
    return payload


@traceable(name="lookup_product_by_upc", run_type="tool")
def lookup_product_by_upc(upc: str) -> dict:
    """Look up a product by UPC/EAN/GTIN code across the configured sources."""
    resolver = get_resolver()
    try:
        result = resolver.resolve_code(upc)
    except ValueError as exc:
        return _invalid_input(exc)
    persist_budgets(resolver)
    return _result_payload(result)


@traceable(name="search_product_by_name", run_type="tool")
def search_product_by_name(product_name: str, brand: str = "") -> dict:
    """Find a product (and its UPC) from a product name and optional brand."""
    resolver = get_resolver()
    try:
        result = resolver.resolve_name(product_name, brand or None)
    except ValueError as exc:
        return _invalid_input(exc)
    persist_budgets(resolver)
    upc = None
    if result.product is not None:
        upc = result.product.upc or result.product.ean or result.product.gtin
    return _result_payload(result, upc=upc)


def _percentage(used: int, limit: int) -> int:
    return round(used / limit * 100) if limit else 100


def build_usage_report(resolver: ProductResolver) -> dict:
    """Summarise remaining capacity per source and recommend a search source."""
    services: dict[str, dict] = {}
    search_total = search_used = search_remaining = 0
    best_name: str | None = None
    best_remaining = 0
    budgets = resolver.tracker.snapshot()

    for adapter in resolver.adapters:
        descriptor = adapter.descriptor
        configured = adapter.is_configured()
        entry: dict = {"name": descriptor.name, "configured": configured}
        for kind in OPERATION_KINDS:
            budget = budgets.get(descriptor.key, {}).get(kind)
            if budget is None:
                continue
            entry[kind] = {
                "used": budget.used,
                "remaining": budget.remaining,
                "limit": budget.limit,
                "percentage": _percentage(budget.used, budget.limit),
                "window_reset_at": budget.window_reset_at.isoformat(),
            }
            if kind == "search" and configured:
                search_total += budget.limit
                search_used += budget.used
                search_remaining += budget.remaining
                if budget.remaining > best_remaining:
                    best_name, best_remaining = descriptor.name, budget.remaining
        services[descriptor.key] = entry

    if best_name is None:
        best_option = "No searches remaining"
        recommendation = "Daily search limits exceeded for every configured source"
    else:
        best_option = best_name
        recommendation = f"{best_name} has the most search capacity ({best_remaining} left)"

    return {
        "services": services,
        "total_search_capacity": {
            "total": search_total,
            "used": search_used,
            "remaining": search_remaining,
        },
        "summary": {"best_option": best_option, "recommendation": recommendation},
    }


@traceable(name="get_lookup_usage", run_type="tool")
def get_lookup_usage() -> dict:
    """Report used/remaining daily lookup and search capacity per source."""
    return build_usage_report(get_resolver())


def reset_budgets(resolver: ProductResolver, source: str | None = None, kind: str | None = None) -> dict:
    """Reset daily budgets on ``resolver``; with no arguments every budget is reset.

    Raises ``ValueError`` for an unknown source or operation kind.
    """
    if kind and kind not in OPERATION_KINDS:
        raise ValueError(f"Unknown operation kind: {kind}")
    if source and resolver.adapter_by_key(source) is None:
        raise ValueError(f"Unknown source: {source}")
    if not source and not kind:
        resolver.tracker.reset_all()
    else:
        keys = [source] if source else [a.descriptor.key for a in resolver.adapters]
        kinds = [kind] if kind else list(OPERATION_KINDS)
        for key in keys:
            for k in kinds:
                resolver.tracker.reset(key, k)
    LOGGER.info("Budgets reset: source=%s kind=%s", source or "*", kind or "*")
    persist_budgets(resolver)
    return build_usage_report(resolver)


@traceable(name="reset_lookup_budgets", run_type="tool")
def reset_lookup_budgets(source: str | None = None, kind: str | None = None) -> dict:
    """Admin reset of daily budgets on the process resolver."""
    return reset_budgets(get_resolver(), source, kind)
