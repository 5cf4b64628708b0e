from __future__ import annotations

"""Optional tracing for resolver calls.

LangSmith and Langfuse can both be active at once. Each is switched on by its
API keys (and can be forced off with ``ENABLE_LANGSMITH_TRACING`` /
``ENABLE_LANGFUSE_TRACING``). Without keys, or without the SDK installed,
``traceable`` returns the function unchanged.
"""

import atexit
import logging
import os
from collections.abc import Callable
from typing import Any, TypeVar, cast


F = TypeVar("F", bound=Callable[..., Any])
LOGGER = logging.getLogger(__name__)
DEFAULT_PROJECT = "upc-resolver"


try:
    from langsmith import traceable as _langsmith_traceable
except Exception:
    _langsmith_traceable = None

try:
    from langfuse import get_client as _langfuse_get_client
    from langfuse import observe as _langfuse_observe
except Exception:
    _langfuse_observe = None
    _langfuse_get_client = None


_FLUSH_REGISTERED = False


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def langsmith_enabled() -> bool:
    return _env_flag("ENABLE_LANGSMITH_TRACING", True) and bool(os.getenv("LANGSMITH_API_KEY"))


def langfuse_enabled() -> bool:
    return (
        _env_flag("ENABLE_LANGFUSE_TRACING", True)
        and bool(os.getenv("LANGFUSE_PUBLIC_KEY"))
        and bool(os.getenv("LANGFUSE_SECRET_KEY"))
    )


def _langfuse_decorator(name: str | None, run_type: str | None) -> Callable[[F], F] | None:
    if _langfuse_observe is None or not langfuse_enabled():
        return None
    kwargs: dict[str, Any] = {}
    if name:
        kwargs["name"] = name
    # Langfuse only knows a subset of LangSmith's run types.
    if run_type in {"tool", "chain", "agent"}:
        kwargs["as_type"] = run_type
    return cast(Callable[[F], F], _langfuse_observe(**kwargs))


def _langsmith_decorator(name: str | None, run_type: str | None) -> Callable[[F], F] | None:
    if _langsmith_traceable is None or not langsmith_enabled():
        return None
    kwargs: dict[str, Any] = {}
    if name:
        kwargs["name"] = name
    if run_type:
        kwargs["run_type"] = run_type
    return cast(Callable[[F], F], _langsmith_traceable(**kwargs))


def traceable(name: str | None = None, run_type: str | None = None) -> Callable[[F], F]:
    """Wrap a function with every enabled tracing provider (outermost first)."""
    decorators = [
        dec
        for dec in (_langfuse_decorator(name, run_type), _langsmith_decorator(name, run_type))
        if dec is not None
    ]

    def _decorator(func: F) -> F:
        wrapped = func
        for dec in reversed(decorators):
            wrapped = dec(wrapped)
        return wrapped

    return _decorator


def _flush() -> None:
    if _langfuse_get_client is None:
        return
    try:
        _langfuse_get_client().flush()
    except Exception:  # noqa: BLE001
        LOGGER.debug("Langfuse flush failed", exc_info=True)


def configure_tracing(project_name: str = DEFAULT_PROJECT) -> None:
    """Set provider environment defaults without overriding explicit values."""
    global _FLUSH_REGISTERED

    if langsmith_enabled():
        os.environ.setdefault("LANGSMITH_TRACING", "true")
        os.environ.setdefault("LANGSMITH_PROJECT", project_name)
        if _langsmith_traceable is None:
            LOGGER.warning("LangSmith tracing enabled but the langsmith SDK is not installed")

    if langfuse_enabled():
        os.environ.setdefault("LANGFUSE_TRACING_ENABLED", "true")
        os.environ.setdefault("LANGFUSE_HOST", os.getenv("LANGFUSE_BASE_URL", "https://cloud.langfuse.com"))
        if _langfuse_observe is None:
            LOGGER.warning("Langfuse tracing enabled but the langfuse SDK is not installed")

    if not _FLUSH_REGISTERED:
        atexit.register(_flush)
        _FLUSH_REGISTERED = True
