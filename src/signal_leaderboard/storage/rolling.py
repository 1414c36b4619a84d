"""Rolling period aggregates (daily, weekly, monthly) with bounded history."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Generic, TypeVar

T = TypeVar("T")

DAILY = "daily"
WEEKLY = "weekly"
MONTHLY = "monthly"

DEFAULT_HISTORY_CAPS = {DAILY: 30, WEEKLY: 12, MONTHLY: 12}


def _as_datetime(ts_ms: int) -> datetime:
    return datetime.fromtimestamp(ts_ms / 1000, tz=UTC)


def daily_key(ts_ms: int) -> str:
    return _as_datetime(ts_ms).strftime("%Y-%m-%d")


def weekly_key(ts_ms: int) -> str:
    year, week, _ = _as_datetime(ts_ms).isocalendar()
    return f"{year}-W{week:02d}"


def monthly_key(ts_ms: int) -> str:
    return _as_datetime(ts_ms).strftime("%Y-%m")


PERIOD_KEY_FUNCTIONS: dict[str, Callable[[int], str]] = {
    DAILY: daily_key,
    WEEKLY: weekly_key,
    MONTHLY: monthly_key,
}


class RollingWindow(Generic[T]):
    """A current bucket plus a capped, newest-first history of closed buckets.

    The bucket a timestamp belongs to is decided by ``key_fn``. When a
    timestamp maps to a new key, the current bucket is pushed onto the
    history and a fresh one is created with ``factory(key)``.

    Example:
        >>> window = RollingWindow(daily_key, PeriodStats, history_cap=30)
        >>> window.roll(now_ms).signals += 1
    """

    def __init__(
        self,
        key_fn: Callable[[int], str],
        factory: Callable[[str], T],
        *,
        history_cap: int,
    ) -> None:
        if history_cap < 0:
            raise ValueError("history_cap must be >= 0")
        self._key_fn = key_fn
        self._factory = factory
        self.history_cap = history_cap
        self.current_key: str | None = None
        self.current: T | None = None
        self.history: list[T] = []

    def roll(self, ts_ms: int) -> T:
        """Return the bucket for ``ts_ms``, closing the current one if the period changed.

        Timestamps older than the current period are folded into the current
        bucket; the window never reopens a closed period.
        """
        key = self._key_fn(ts_ms)
        if self.current is None:
            self.current_key = key
            self.current = self._factory(key)
        elif self.current_key is not None and key > self.current_key:
            self.history.insert(0, self.current)
            del self.history[self.history_cap :]
            self.current_key = key
            self.current = self._factory(key)
        return self.current

    def observe(self, ts_ms: int, update: Callable[[T], None]) -> T:
        bucket = self.roll(ts_ms)
        update(bucket)
        return bucket

    def to_dict(self, encode: Callable[[T], Any]) -> dict[str, Any]:
        return {
            "key": self.current_key,
            "current": encode(self.current) if self.current is not None else None,
            "history": [encode(item) for item in self.history],
        }

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any] | None,
        key_fn: Callable[[int], str],
        factory: Callable[[str], T],
        decode: Callable[[Any], T],
        *,
        history_cap: int,
    ) -> RollingWindow[T]:
        window = cls(key_fn, factory, history_cap=history_cap)
        if not data:
            return window
        if data.get("current") is not None:
            window.current_key = data.get("key")
            window.current = decode(data["current"])
        window.history = [decode(item) for item in data.get("history") or []][:history_cap]
        return window


@dataclass
class PeriodStats:
    """Signal activity aggregated over one period."""

    key: str
    signals: int = 0
    tokens: list[str] = field(default_factory=list)
    wallets: int = 0
    best_token: str | None = None
    best_multiplier: float = 0.0

    def add_signal(self, token_address: str, wallet_count: int) -> None:
        self.signals += 1
        self.wallets += wallet_count
        if token_address not in self.tokens:
            self.tokens.append(token_address)

    def add_multiplier(self, token_address: str, multiplier: float) -> None:
        if multiplier > self.best_multiplier:
            self.best_multiplier = multiplier
            self.best_token = token_address

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "signals": self.signals,
            "tokens": list(self.tokens),
            "wallets": self.wallets,
            "bestToken": self.best_token,
            "bestMult": self.best_multiplier,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PeriodStats:
        return cls(
            key=str(data["key"]),
            signals=int(data.get("signals", 0)),
            tokens=list(data.get("tokens") or []),
            wallets=int(data.get("wallets", 0)),
            best_token=data.get("bestToken"),
            best_multiplier=float(data.get("bestMult", 0.0)),
        )


def new_period_windows() -> dict[str, RollingWindow[PeriodStats]]:
    return {
        name: RollingWindow(key_fn, PeriodStats, history_cap=DEFAULT_HISTORY_CAPS[name])
        for name, key_fn in PERIOD_KEY_FUNCTIONS.items()
    }


def period_windows_from_dict(data: dict[str, Any] | None) -> dict[str, RollingWindow[PeriodStats]]:
    data = data or {}
    return {
        name: RollingWindow.from_dict(
            data.get(name),
            key_fn,
            PeriodStats,
            PeriodStats.from_dict,
            history_cap=DEFAULT_HISTORY_CAPS[name],
        )
        for name, key_fn in PERIOD_KEY_FUNCTIONS.items()
    }


def period_windows_to_dict(windows: dict[str, RollingWindow[PeriodStats]]) -> dict[str, Any]:
    return {name: window.to_dict(PeriodStats.to_dict) for name, window in windows.items()}
