from __future__ import annotations

"""Runtime configuration defaults and environment loading."""

import logging
import os
from dataclasses import dataclass, field


LOGGER = logging.getLogger(__name__)

RESET_MODES: tuple[str, ...] = ("rolling", "utc_midnight")


def _env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        LOGGER.warning("Ignoring non-numeric %s=%r", name, raw)
        return default


def parse_limit_overrides(raw: str) -> dict[str, int]:
    """Parse ``"upcitemdb.search=10, ebay.lookup=500"`` into a mapping.

    Malformed entries are skipped with a warning.
    """
    overrides: dict[str, int] = {}
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        name, sep, value = chunk.partition("=")
        source, dot, kind = name.strip().partition(".")
        if not sep or not dot or not source or not kind:
            LOGGER.warning("Ignoring malformed daily limit override: %r", chunk)
            continue
        try:
            limit = int(value.strip())
        except ValueError:
            LOGGER.warning("Ignoring malformed daily limit override: %r", chunk)
            continue
        overrides[f"{source.lower()}.{kind.lower()}"] = max(0, limit)
    return overrides


@dataclass(slots=True)
class RuntimeConfig:
    """Runtime settings for the product lookup resolver."""

    model_name: str = "gemini-2.0-flash"
    request_timeout_seconds: float = 10.0
    budget_reset_mode: str = "rolling"
    budget_state_path: str = ""
    daily_limit_overrides: dict[str, int] = field(default_factory=dict)
    upcitemdb_user_key: str = ""
    upcitemdb_key_type: str = "3scale"
    upc_database_api_key: str = ""
    ebay_app_id: str = ""
    ebay_cert_id: str = ""
    ebay_environment: str = "sandbox"
    ebay_marketplace_id: str = "EBAY_US"

    @classmethod
    def from_env(cls) -> RuntimeConfig:
        reset_mode = _env_str("UPC_BUDGET_RESET_MODE", "rolling").lower()
        if reset_mode not in RESET_MODES:
            LOGGER.warning("Unknown UPC_BUDGET_RESET_MODE=%r, using rolling", reset_mode)
            reset_mode = "rolling"
        environment = _env_str("EBAY_ENVIRONMENT", "sandbox").lower()
        return cls(
            model_name=_env_str("GEMINI_MODEL", "gemini-2.0-flash"),
            request_timeout_seconds=_env_float("UPC_REQUEST_TIMEOUT_SECONDS", 10.0),
            budget_reset_mode=reset_mode,
            budget_state_path=_env_str("UPC_BUDGET_STATE_PATH"),
            daily_limit_overrides=parse_limit_overrides(_env_str("UPC_DAILY_LIMIT_OVERRIDES")),
            upcitemdb_user_key=_env_str("UPCITEMDB_USER_KEY"),
            upcitemdb_key_type=_env_str("UPCITEMDB_KEY_TYPE", "3scale"),
            upc_database_api_key=_env_str("UPC_DATABASE_API_KEY"),
            ebay_app_id=_env_str("EBAY_APP_ID"),
            ebay_cert_id=_env_str("EBAY_CERT_ID"),
            ebay_environment="production" if environment == "production" else "sandbox",
            ebay_marketplace_id=_env_str("EBAY_MARKETPLACE_ID", "EBAY_US"),
        )


DEFAULT_CONFIG = RuntimeConfig()
