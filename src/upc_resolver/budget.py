from __future__ import annotations

"""Per-source daily call budgets.

Budgets are kept per ``(source, kind)`` pair. Windows roll over lazily: every
read or write first checks whether the pair's window has ended and, if so,
restores the full limit. State lives in memory; ``save``/``load`` exist for
operators who want budgets to survive a restart.
"""

import json
import logging
import os
import tempfile
import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path

from upc_resolver.config import RESET_MODES
from upc_resolver.models import RateBudget


LOGGER = logging.getLogger(__name__)
DAY = timedelta(hours=24)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RateBudgetTracker:
    def __init__(
        self,
        *,
        reset_mode: str = "rolling",
        window: timedelta = DAY,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if reset_mode not in RESET_MODES:
            raise ValueError(f"Unknown budget reset mode: {reset_mode!r}")
        self.reset_mode = reset_mode
        self.window = window
        self._clock = clock or _utc_now
        self._started_at = self._clock()
        self._budgets: dict[tuple[str, str], RateBudget] = {}
        self._lock = threading.Lock()

    def _next_boundary(self, now: datetime) -> datetime:
        if self.reset_mode == "utc_midnight":
            midnight = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
            return midnight + DAY
        elapsed = now - self._started_at
        windows = int(elapsed / self.window) + 1
        return self._started_at + self.window * windows

    def _roll_over(self, budget: RateBudget, now: datetime) -> None:
        if now < budget.window_reset_at:
            return
        budget.used = 0
        budget.remaining = budget.limit
        budget.window_reset_at = self._next_boundary(now)
        LOGGER.info("Budget window rolled over for %s/%s", budget.source, budget.kind)

    def _current(self, source: str, kind: str) -> RateBudget | None:
        budget = self._budgets.get((source, kind))
        if budget is not None:
            self._roll_over(budget, self._clock())
        return budget

    def register(self, source: str, kind: str, limit: int) -> RateBudget:
        """Create a full budget for the pair unless one already exists."""
        with self._lock:
            budget = self._budgets.get((source, kind))
            if budget is None:
                limit = max(0, int(limit))
                budget = RateBudget(
                    source=source,
                    kind=kind,
                    limit=limit,
                    used=0,
                    remaining=limit,
                    window_reset_at=self._next_boundary(self._clock()),
                )
                self._budgets[(source, kind)] = budget
            return budget.copy()

    def check_remaining(self, source: str, kind: str) -> int:
        budget = self._current(source, kind)
        return budget.remaining if budget is not None else 0

    def seconds_until_reset(self, source: str, kind: str) -> int:
        budget = self._current(source, kind)
        if budget is None:
            return 0
        return max(0, int((budget.window_reset_at - self._clock()).total_seconds()))

    def consume(self, source: str, kind: str) -> RateBudget:
        """Record one call against the pair. Never raises; clamps at zero."""
        with self._lock:
            budget = self._current(source, kind)
            if budget is None:
                LOGGER.warning("consume() on unregistered budget %s/%s", source, kind)
                return RateBudget(source, kind, 0, 0, 0, self._next_boundary(self._clock()))
            if budget.remaining > 0:
                budget.remaining -= 1
                budget.used += 1
            return budget.copy()

    def reset(self, source: str, kind: str) -> RateBudget | None:
        with self._lock:
            budget = self._budgets.get((source, kind))
            if budget is None:
                return None
            budget.used = 0
            budget.remaining = budget.limit
            budget.window_reset_at = self._next_boundary(self._clock())
            LOGGER.info("Budget reset for %s/%s", source, kind)
            return budget.copy()

    def reset_all(self) -> None:
        for source, kind in list(self._budgets):
            self.reset(source, kind)

    def apply_vendor_quota(
        self,
        source: str,
        kind: str,
        *,
        limit: int | None = None,
        remaining: int | None = None,
        reset_at: datetime | None = None,
    ) -> RateBudget | None:
        """Overwrite local counters with vendor-reported quota numbers."""
        with self._lock:
            budget = self._budgets.get((source, kind))
            if budget is None:
                return None
            if limit is not None:
                budget.limit = max(0, limit)
            if remaining is not None:
                budget.remaining = max(0, min(remaining, budget.limit))
            else:
                budget.remaining = min(budget.remaining, budget.limit)
            budget.used = budget.limit - budget.remaining
            if reset_at is not None:
                budget.window_reset_at = reset_at
            return budget.copy()

    def cap_remaining(self, source: str, kind: str, remaining: int) -> RateBudget | None:
        """Lower the pair's remaining count to a vendor figure; never raises it."""
        with self._lock:
            budget = self._current(source, kind)
            if budget is None:
                return None
            budget.remaining = max(0, min(budget.remaining, remaining))
            budget.used = budget.limit - budget.remaining
            return budget.copy()

    def get(self, source: str, kind: str) -> RateBudget | None:
        budget = self._current(source, kind)
        return budget.copy() if budget is not None else None

    def snapshot(self) -> dict[str, dict[str, RateBudget]]:
        out: dict[str, dict[str, RateBudget]] = {}
        with self._lock:
            for source, kind in sorted(self._budgets):
                budget = self._current(source, kind)
                if budget is not None:
                    out.setdefault(source, {})[kind] = budget.copy()
        return out

    def dump_state(self) -> list[dict]:
        with self._lock:
            return [self._budgets[k].to_dict() for k in sorted(self._budgets)]

    def restore_state(self, rows: list[dict]) -> int:
        """Restore counters for registered pairs; returns the number applied."""
        applied = 0
        for row in rows:
            if not isinstance(row, dict):
                continue
            key = (str(row.get("source", "")), str(row.get("kind", "")))
            budget = self._budgets.get(key)
            if budget is None:
                continue
            try:
                used = int(row["used"])
                reset_at = datetime.fromisoformat(str(row["window_reset_at"]))
            except (KeyError, TypeError, ValueError):
                LOGGER.warning("Skipping malformed budget state row: %r", row)
                continue
            if reset_at.tzinfo is None:
                reset_at = reset_at.replace(tzinfo=timezone.utc)
            budget.used = max(0, min(used, budget.limit))
            budget.remaining = budget.limit - budget.used
            budget.window_reset_at = reset_at
            self._roll_over(budget, self._clock())
            applied += 1
        return applied

    def save(self, path: str | Path) -> Path:
        out = Path(path)
        out.parent.mkdir(parents=True, exist_ok=True)
        content = json.dumps(self.dump_state(), indent=2)
        # Write beside the target and swap in, so readers never see a partial file.
        fd, tmp_name = tempfile.mkstemp(prefix=f".{out.name}.", suffix=".tmp", dir=out.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
            os.replace(tmp_name, out)
        except Exception:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return out

    def load(self, path: str | Path) -> int:
        src = Path(path)
        if not src.exists():
            return 0
        try:
            rows = json.loads(src.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            LOGGER.warning("Could not read budget state from %s: %s", src, exc)
            return 0
        return self.restore_state(rows if isinstance(rows, list) else [])
