from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest
from conftest import FakeClock

from upc_resolver.budget import RateBudgetTracker


def test_register_starts_full_and_is_idempotent(tracker: RateBudgetTracker) -> None:
    tracker.register("upcitemdb", "lookup", 100)
    tracker.consume("upcitemdb", "lookup")

    again = tracker.register("upcitemdb", "lookup", 500)

    assert again.limit == 100
    assert again.used == 1
    assert again.remaining == 99


def test_consume_decrements_by_exactly_one(tracker: RateBudgetTracker) -> None:
    tracker.register("upcitemdb", "search", 20)

    budget = tracker.consume("upcitemdb", "search")

    assert (budget.used, budget.remaining) == (1, 19)
    assert tracker.check_remaining("upcitemdb", "search") == 19
    assert tracker.check_remaining("upcitemdb", "lookup") == 0


def test_consume_clamps_at_zero(tracker: RateBudgetTracker) -> None:
    tracker.register("ebay", "search", 2)

    for _ in range(5):
        budget = tracker.consume("ebay", "search")

    assert budget.remaining == 0
    assert budget.used == 2


def test_consume_unknown_pair_does_not_raise(tracker: RateBudgetTracker) -> None:
    budget = tracker.consume("nobody", "lookup")

    assert budget.remaining == 0
    assert tracker.get("nobody", "lookup") is None
    assert tracker.snapshot() == {}


def test_reset_restores_full_limit(tracker: RateBudgetTracker) -> None:
    tracker.register("upcdatabase", "lookup", 100)
    for _ in range(3):
        tracker.consume("upcdatabase", "lookup")

    budget = tracker.reset("upcdatabase", "lookup")

    assert budget is not None
    assert budget.used == 0
    assert budget.remaining == budget.limit == 100
    assert tracker.reset("unknown", "lookup") is None


def test_reset_all_touches_every_pair(tracker: RateBudgetTracker) -> None:
    tracker.register("a", "lookup", 5)
    tracker.register("b", "search", 5)
    tracker.consume("a", "lookup")
    tracker.consume("b", "search")

    tracker.reset_all()

    assert tracker.check_remaining("a", "lookup") == 5
    assert tracker.check_remaining("b", "search") == 5


def test_vendor_quota_overrides_local_counters(tracker: RateBudgetTracker) -> None:
    tracker.register("upcitemdb", "lookup", 100)
    reset_at = datetime(2026, 3, 2, 0, 0, tzinfo=timezone.utc)

    budget = tracker.apply_vendor_quota("upcitemdb", "lookup", limit=100, remaining=42, reset_at=reset_at)

    assert budget is not None
    assert (budget.used, budget.remaining) == (58, 42)
    assert budget.window_reset_at == reset_at


def test_vendor_quota_clamps_remaining_to_limit(tracker: RateBudgetTracker) -> None:
    tracker.register("upcitemdb", "lookup", 100)

    budget = tracker.apply_vendor_quota("upcitemdb", "lookup", remaining=250)

    assert budget is not None
    assert budget.remaining == 100
    assert budget.used == 0


def test_rolling_window_rolls_over_after_a_day(clock: FakeClock, tracker: RateBudgetTracker) -> None:
    tracker.register("upcitemdb", "search", 20)
    for _ in range(20):
        tracker.consume("upcitemdb", "search")
    assert tracker.check_remaining("upcitemdb", "search") == 0

    clock.advance(hours=23, minutes=59)
    assert tracker.check_remaining("upcitemdb", "search") == 0

    clock.advance(minutes=1)
    budget = tracker.get("upcitemdb", "search")
    assert budget is not None
    assert (budget.used, budget.remaining) == (0, 20)
    assert budget.window_reset_at == datetime(2026, 3, 3, 15, 30, tzinfo=timezone.utc)


def test_utc_midnight_mode_resets_at_midnight(clock: FakeClock) -> None:
    tracker = RateBudgetTracker(reset_mode="utc_midnight", clock=clock)
    tracker.register("upcdatabase", "search", 25)
    tracker.consume("upcdatabase", "search")

    assert tracker.seconds_until_reset("upcdatabase", "search") == 8 * 3600 + 30 * 60

    clock.advance(hours=8, minutes=30)
    assert tracker.check_remaining("upcdatabase", "search") == 25


def test_unknown_reset_mode_is_rejected() -> None:
    with pytest.raises(ValueError):
        RateBudgetTracker(reset_mode="weekly")


def test_snapshot_groups_by_source(tracker: RateBudgetTracker) -> None:
    tracker.register("b", "search", 5)
    tracker.register("a", "lookup", 5)
    tracker.register("a", "search", 5)

    snapshot = tracker.snapshot()

    assert list(snapshot) == ["a", "b"]
    assert set(snapshot["a"]) == {"lookup", "search"}


def test_save_and_load_round_trip(tmp_path: Path, clock: FakeClock, tracker: RateBudgetTracker) -> None:
    tracker.register("upcitemdb", "lookup", 100)
    for _ in range(7):
        tracker.consume("upcitemdb", "lookup")
    path = tracker.save(tmp_path / "state" / "budgets.json")

    fresh = RateBudgetTracker(clock=clock)
    fresh.register("upcitemdb", "lookup", 100)
    applied = fresh.load(path)

    assert applied == 1
    assert fresh.check_remaining("upcitemdb", "lookup") == 93


def test_restore_rolls_over_stale_windows(clock: FakeClock, tracker: RateBudgetTracker) -> None:
    tracker.register("upcitemdb", "lookup", 100)
    rows: list[dict[str, Any]] = [
        {"source": "upcitemdb", "kind": "lookup", "used": 100, "window_reset_at": "2026-02-27T00:00:00+00:00"},
    ]

    assert tracker.restore_state(rows) == 1
    assert tracker.check_remaining("upcitemdb", "lookup") == 100


def test_restore_skips_unknown_and_malformed_rows(tracker: RateBudgetTracker) -> None:
    tracker.register("upcitemdb", "lookup", 100)
    rows: list[Any] = [
        "junk",
        {"source": "other", "kind": "lookup", "used": 5, "window_reset_at": "2026-03-02T00:00:00+00:00"},
        {"source": "upcitemdb", "kind": "lookup", "used": "many", "window_reset_at": "soon"},
    ]

    assert tracker.restore_state(rows) == 0
    assert tracker.check_remaining("upcitemdb", "lookup") == 100


def test_load_tolerates_missing_or_corrupt_file(tmp_path: Path, tracker: RateBudgetTracker) -> None:
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")

    assert tracker.load(tmp_path / "missing.json") == 0
    assert tracker.load(broken) == 0


def test_dump_state_is_json_serialisable(tracker: RateBudgetTracker) -> None:
    tracker.register("ebay", "search", 5000)

    rows = json.loads(json.dumps(tracker.dump_state()))

    assert rows[0]["source"] == "ebay"
    assert rows[0]["remaining"] == 5000


def test_cap_remaining_lowers_but_never_raises(tracker: RateBudgetTracker) -> None:
    tracker.register("upcitemdb", "search", 20)
    tracker.consume("upcitemdb", "search")

    raised = tracker.cap_remaining("upcitemdb", "search", 99)
    lowered = tracker.cap_remaining("upcitemdb", "search", 4)

    assert raised is not None and lowered is not None
    assert (raised.limit, raised.remaining) == (20, 19)
    assert (lowered.limit, lowered.used, lowered.remaining) == (20, 16, 4)
    assert tracker.cap_remaining("nobody", "search", 1) is None


def test_save_replaces_file_without_leftovers(tmp_path: Path, tracker: RateBudgetTracker) -> None:
    tracker.register("ebay", "lookup", 5000)
    target = tmp_path / "budgets.json"
    target.write_text("stale", encoding="utf-8")

    tracker.save(target)

    assert json.loads(target.read_text(encoding="utf-8"))[0]["source"] == "ebay"
    assert [p.name for p in tmp_path.iterdir()] == ["budgets.json"]


def test_concurrent_saves_leave_a_loadable_file(tmp_path: Path, clock: FakeClock, tracker: RateBudgetTracker) -> None:
    tracker.register("upcitemdb", "lookup", 100)
    target = tmp_path / "budgets.json"

    def worker() -> None:
        for _ in range(20):
            tracker.consume("upcitemdb", "lookup")
            tracker.save(target)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    fresh = RateBudgetTracker(clock=clock)
    fresh.register("upcitemdb", "lookup", 100)
    assert fresh.load(target) == 1
    assert [p.name for p in tmp_path.iterdir()] == ["budgets.json"]
