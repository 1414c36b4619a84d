"""Per-partition selections: top tokens, top wallets and hall-of-fame candidates."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from signal_leaderboard.ranking.scoring import (
    DEFAULT_STRATEGY,
    RankingStrategy,
    wallet_average_peak,
    wallet_stars,
    wallet_win_rate,
)
from signal_leaderboard.storage.models import DAY_MS, HOUR_MS, TokenRecord, WalletRecord

# Period aliases accepted by the gains views; values are canonical names.
PERIODS = {
    "1h": "1h",
    "6h": "6h",
    "12h": "12h",
    "24h": "24h",
    "2d": "2d",
    "3d": "3d",
    "7d": "7d",
    "1w": "7d",
    "2w": "2w",
    "4w": "4w",
}

_UNIT_MS = {"h": HOUR_MS, "d": DAY_MS, "w": 7 * DAY_MS}
_PERIOD_RE = re.compile(r"^(\d+)([hdw])$")

MIN_PEAK_MULTIPLIER = 1.0
WALLET_ACTIVE_DAYS = 7
HALL_OF_FAME_MULTIPLIER = 2.0
SUMMARY_SIZE = 25


def parse_period(period: str) -> int:
    """Convert a period name (``24h``, ``7d``, ``1w`` ...) to milliseconds.

    Raises:
        ValueError: If the period is not a known alias.
    """
    canonical = PERIODS.get(period.strip().lower())
    if canonical is None:
        raise ValueError(f"Unknown period {period!r}; expected one of {', '.join(PERIODS)}")
    match = _PERIOD_RE.match(canonical)
    if match is None:
        raise ValueError(f"Period alias {period!r} maps to unparseable {canonical!r}")
    return int(match.group(1)) * _UNIT_MS[match.group(2)]


@dataclass(frozen=True)
class TokenRow:
    """A ranked token in a leaderboard view."""

    partition: str
    address: str
    sym: str
    peak_multiplier: float
    multiplier: float
    scnt: int
    trend_score: float
    last_sig: int
    last_msg_id: int | None = None
    public_msg_id: int | None = None


@dataclass(frozen=True)
class WalletRow:
    """A ranked wallet in a leaderboard view."""

    partition: str
    address: str
    rank_score: float
    win_rate: int
    average_peak: float
    avg_scr: float
    scnt: int
    stars: int


def top_tokens(
    tokens: Mapping[str, TokenRecord],
    *,
    partition: str,
    now: int,
    period_ms: int,
    n: int = 10,
    strategy: RankingStrategy = DEFAULT_STRATEGY,
) -> list[TokenRow]:
    """Non-rugged tokens with peak >= 1.0 signalled within the period, by peak multiplier.

    ``n=0`` returns every matching token.
    """
    cutoff = now - period_ms
    rows = [
        TokenRow(
            partition=partition,
            address=addr,
            sym=token.sym,
            peak_multiplier=token.peak_multiplier,
            multiplier=token.multiplier,
            scnt=token.scnt,
            trend_score=strategy.token_score(token, now),
            last_sig=token.last_sig,
            last_msg_id=token.last_msg_id,
            public_msg_id=token.public_msg_id,
        )
        for addr, token in tokens.items()
        if not token.rugged
        and token.peak_multiplier >= MIN_PEAK_MULTIPLIER
        and token.last_sig >= cutoff
    ]
    rows.sort(key=lambda r: (r.peak_multiplier, r.trend_score), reverse=True)
    return rows[:n] if n else rows


def top_wallets(
    wallets: Mapping[str, WalletRecord],
    peaks: Mapping[str, float],
    *,
    partition: str,
    now: int,
    n: int = 10,
    strategy: RankingStrategy = DEFAULT_STRATEGY,
) -> list[WalletRow]:
    """Wallets active within 7 days, by rank score."""
    cutoff = now - WALLET_ACTIVE_DAYS * DAY_MS
    rows = [
        WalletRow(
            partition=partition,
            address=addr,
            rank_score=strategy.wallet_score(wallet, peaks),
            win_rate=round(wallet_win_rate(wallet, peaks, default=0.0) * 100),
            average_peak=wallet_average_peak(wallet, peaks),
            avg_scr=wallet.avg_scr,
            scnt=wallet.scnt,
            stars=wallet_stars(wallet, peaks, strategy),
        )
        for addr, wallet in wallets.items()
        if wallet.last_seen > cutoff
    ]
    rows.sort(key=lambda r: r.rank_score, reverse=True)
    return rows[:n] if n else rows


def merge_top_tokens(lists: Iterable[list[TokenRow]], limit: int = SUMMARY_SIZE) -> list[TokenRow]:
    """Merge per-partition lists, re-sort globally by peak multiplier and truncate."""
    merged = [row for rows in lists for row in rows]
    merged.sort(key=lambda r: r.peak_multiplier, reverse=True)
    return merged[:limit]


@dataclass
class HallOfFameEntry:
    """A token that once reached the hall-of-fame bar."""

    partition: str
    address: str
    sym: str
    peak_multiplier: float
    first_seen: int
    recorded_at: int

    @property
    def key(self) -> str:
        return f"{self.partition}:{self.address}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "partition": self.partition,
            "address": self.address,
            "sym": self.sym,
            "peakMult": self.peak_multiplier,
            "firstSeen": self.first_seen,
            "recordedAt": self.recorded_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HallOfFameEntry:
        return cls(
            partition=str(data["partition"]),
            address=str(data["address"]),
            sym=str(data.get("sym") or "???"),
            peak_multiplier=float(data["peakMult"]),
            first_seen=int(data.get("firstSeen") or 0),
            recorded_at=int(data.get("recordedAt") or 0),
        )


def hall_of_fame_candidates(
    tokens: Mapping[str, TokenRecord],
    *,
    partition: str,
    now: int,
    threshold: float = HALL_OF_FAME_MULTIPLIER,
) -> list[HallOfFameEntry]:
    """Tokens whose peak multiplier ever reached ``threshold``, regardless of age."""
    return [
        HallOfFameEntry(
            partition=partition,
            address=addr,
            sym=token.sym,
            peak_multiplier=token.peak_multiplier,
            first_seen=token.first_seen,
            recorded_at=now,
        )
        for addr, token in tokens.items()
        if token.peak_multiplier >= threshold
    ]


def merge_hall_of_fame(
    existing: Mapping[str, HallOfFameEntry],
    candidates: Iterable[HallOfFameEntry],
    *,
    size: int,
) -> dict[str, HallOfFameEntry]:
    """Fold candidates into the accumulated hall of fame, keeping each token's best peak."""
    merged = dict(existing)
    for entry in candidates:
        current = merged.get(entry.key)
        if current is None:
            merged[entry.key] = entry
        elif entry.peak_multiplier > current.peak_multiplier:
            current.peak_multiplier = entry.peak_multiplier
            current.sym = entry.sym
            current.recorded_at = entry.recorded_at
    ranked = sorted(merged.values(), key=lambda e: e.peak_multiplier, reverse=True)[:size]
    return {entry.key: entry for entry in ranked}
