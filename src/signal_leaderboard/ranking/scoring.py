"""Trending and rank scores derived from stored token and wallet attributes.

All functions are pure: they read records and a token peak map and never
touch storage. Scores are recomputed at materialization time and are never
the source of truth.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from signal_leaderboard.storage.models import TokenRecord, WalletRecord

HOUR_MS = 60 * 60 * 1000

# Token trending weights
RECENCY_WEIGHT = 0.30
MOMENTUM_WEIGHT = 0.25
PERFORMANCE_WEIGHT = 0.20
WALLET_INTEREST_WEIGHT = 0.15
QUALITY_WEIGHT = 0.10

RECENCY_DECAY_HOURS = 48.0
MOMENTUM_SIGNAL_CAP = 5
WALLET_INTEREST_CAP = 3
RUGGED_PENALTY = 0.1

# Wallet rank weights
ENTRY_SCORE_WEIGHT = 0.40
PARTICIPATION_WEIGHT = 0.20
WIN_RATE_WEIGHT = 0.25
CONSISTENCY_WEIGHT = 0.15

PARTICIPATION_CAP = 50
WIN_THRESHOLD = 1.25
DEFAULT_WIN_RATE = 0.5
DEFAULT_CONSISTENCY = 50.0
DEFAULT_AVERAGE_PEAK = 1.0

SCORE_MIN = -2.0
SCORE_MAX = 2.0


def normalize_score(score: float) -> float:
    """Map an entry-quality score from [-2, 2] to [0, 1]."""
    return (score - SCORE_MIN) / (SCORE_MAX - SCORE_MIN)


def token_trending_score(token: TokenRecord, now: int) -> float:
    """Weighted trending score of a token; rugged tokens are scaled by 0.1."""
    hours_since = (now - token.last_sig) / HOUR_MS
    recency = max(0.0, 1.0 - hours_since / RECENCY_DECAY_HOURS)
    momentum = min((token.scnt or 1) / MOMENTUM_SIGNAL_CAP, 1.0)

    mult = token.peak_multiplier
    performance = min(mult / 2, 1.0) if mult >= 1 else 0.5 * mult

    wallet_interest = min((len(token.wallets) or 1) / WALLET_INTEREST_CAP, 1.0)
    quality = normalize_score(token.avg_scr)

    score = (
        recency * RECENCY_WEIGHT
        + momentum * MOMENTUM_WEIGHT
        + performance * PERFORMANCE_WEIGHT
        + wallet_interest * WALLET_INTEREST_WEIGHT
        + quality * QUALITY_WEIGHT
    )
    if token.rugged:
        score *= RUGGED_PENALTY
    return score


def _known_peaks(wallet: WalletRecord, peaks: Mapping[str, float]) -> list[float]:
    return [peaks[addr] for addr in wallet.tokens if addr in peaks]


def wallet_win_rate(
    wallet: WalletRecord,
    peaks: Mapping[str, float],
    *,
    default: float = DEFAULT_WIN_RATE,
    threshold: float = WIN_THRESHOLD,
) -> float:
    """Share of the wallet's tokens whose peak multiplier reached ``threshold``."""
    known = _known_peaks(wallet, peaks)
    if not known:
        return default
    return sum(1 for peak in known if peak >= threshold) / len(known)


def wallet_average_peak(wallet: WalletRecord, peaks: Mapping[str, float]) -> float:
    known = _known_peaks(wallet, peaks)
    if not known:
        return DEFAULT_AVERAGE_PEAK
    return sum(known) / len(known)


class RankingStrategy(Protocol):
    """Ranks tokens and wallets for leaderboard materialization."""

    name: str

    def token_score(self, token: TokenRecord, now: int) -> float: ...

    def wallet_score(self, wallet: WalletRecord, peaks: Mapping[str, float]) -> float: ...


@dataclass(frozen=True)
class WeightedFactorsStrategy:
    """Weighted normalized factors: entry score, participation, win rate, consistency."""

    name: str = "weighted_factors"

    def token_score(self, token: TokenRecord, now: int) -> float:
        return token_trending_score(token, now)

    def wallet_score(self, wallet: WalletRecord, peaks: Mapping[str, float]) -> float:
        entry = normalize_score(wallet.avg_scr)
        participation = math.sqrt(min(wallet.scnt, PARTICIPATION_CAP)) / math.sqrt(
            PARTICIPATION_CAP
        )
        win_rate = wallet_win_rate(wallet, peaks)
        consistency = (
            wallet.consistency if wallet.consistency is not None else DEFAULT_CONSISTENCY
        ) / 100

        return (
            entry * ENTRY_SCORE_WEIGHT
            + participation * PARTICIPATION_WEIGHT
            + win_rate * WIN_RATE_WEIGHT
            + consistency * CONSISTENCY_WEIGHT
        )


DEFAULT_STRATEGY = WeightedFactorsStrategy()

_STRATEGIES: dict[str, RankingStrategy] = {DEFAULT_STRATEGY.name: DEFAULT_STRATEGY}


def get_strategy(name: str) -> RankingStrategy:
    """Look up a ranking strategy by name.

    Raises:
        ValueError: If no strategy has that name.
    """
    try:
        return _STRATEGIES[name]
    except KeyError:
        raise ValueError(f"Unknown ranking strategy: {name}") from None


def wallet_rank_score(
    wallet: WalletRecord,
    peaks: Mapping[str, float],
    strategy: RankingStrategy = DEFAULT_STRATEGY,
) -> float:
    return strategy.wallet_score(wallet, peaks)


def wallet_stars(
    wallet: WalletRecord,
    peaks: Mapping[str, float],
    strategy: RankingStrategy = DEFAULT_STRATEGY,
) -> int:
    """Star tier (0-3) from rank score, win rate and average peak."""
    score = strategy.wallet_score(wallet, peaks)
    win_rate = wallet_win_rate(wallet, peaks, default=0.0)
    average_peak = wallet_average_peak(wallet, peaks)

    if score > 0.7 and win_rate > 0.6 and average_peak > 1.5:
        return 3
    if score > 0.5 and win_rate > 0.5:
        return 2
    if score > 0.3 or win_rate > 0.4:
        return 1
    return 0
