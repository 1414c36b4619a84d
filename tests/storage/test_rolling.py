"""Tests for rolling period windows."""

from __future__ import annotations

from datetime import UTC, datetime

from signal_leaderboard.storage.rolling import (
    PeriodStats,
    RollingWindow,
    daily_key,
    monthly_key,
    new_period_windows,
    period_windows_from_dict,
    period_windows_to_dict,
    weekly_key,
)


def ts(*args: int) -> int:
    return int(datetime(*args, tzinfo=UTC).timestamp() * 1000)


class TestPeriodKeys:
    """Tests for period key functions."""

    def test_keys(self) -> None:
        t = ts(2026, 1, 1, 8)
        assert daily_key(t) == "2026-01-01"
        assert weekly_key(t) == "2026-W01"
        assert monthly_key(t) == "2026-01"

    def test_iso_week_crosses_year(self) -> None:
        assert weekly_key(ts(2027, 1, 1)) == "2026-W53"


class TestRollingWindow:
    """Tests for bucket rollover."""

    def test_same_period_accumulates(self) -> None:
        window = RollingWindow(daily_key, PeriodStats, history_cap=3)
        window.observe(ts(2026, 3, 1, 1), lambda b: b.add_signal("A", 2))
        window.observe(ts(2026, 3, 1, 23), lambda b: b.add_signal("B", 1))
        assert window.current is not None
        assert window.current.signals == 2
        assert window.current.wallets == 3
        assert window.current.tokens == ["A", "B"]
        assert window.history == []

    def test_rollover_and_cap(self) -> None:
        window = RollingWindow(daily_key, PeriodStats, history_cap=2)
        for day in range(1, 5):
            window.observe(ts(2026, 3, day), lambda b: b.add_signal("A", 1))
        assert window.current_key == "2026-03-04"
        assert [b.key for b in window.history] == ["2026-03-03", "2026-03-02"]

    def test_older_timestamp_folds_into_current(self) -> None:
        window = RollingWindow(daily_key, PeriodStats, history_cap=2)
        window.roll(ts(2026, 3, 2))
        bucket = window.roll(ts(2026, 3, 1))
        assert bucket.key == "2026-03-02"
        assert window.history == []

    def test_best_multiplier(self) -> None:
        stats = PeriodStats(key="2026-03")
        stats.add_multiplier("A", 1.5)
        stats.add_multiplier("B", 3.0)
        stats.add_multiplier("A", 2.0)
        assert stats.best_token == "B"
        assert stats.best_multiplier == 3.0


class TestSerialization:
    """Tests for period window persistence."""

    def test_windows_survive_serialization(self) -> None:
        windows = new_period_windows()
        for window in windows.values():
            window.observe(ts(2026, 2, 27), lambda b: b.add_signal("A", 1))
            window.observe(ts(2026, 3, 2), lambda b: b.add_signal("B", 1))

        restored = period_windows_from_dict(period_windows_to_dict(windows))
        assert restored["daily"].current_key == "2026-03-02"
        assert restored["monthly"].current_key == "2026-03"
        assert restored["monthly"].history[0].tokens == ["A"]
        assert restored["weekly"].history_cap == 12

    def test_missing_periods_start_empty(self) -> None:
        restored = period_windows_from_dict(None)
        assert set(restored) == {"daily", "weekly", "monthly"}
        assert all(w.current is None for w in restored.values())
