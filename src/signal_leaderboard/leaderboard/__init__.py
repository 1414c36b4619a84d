"""Leaderboard materialization - selection, aggregation and view upserts."""

from signal_leaderboard.leaderboard.binding import BindingState, PointerBinding
from signal_leaderboard.leaderboard.materializer import (
    LeaderboardMaterializer,
    MaterializeResult,
    MaterializerConfig,
)
from signal_leaderboard.leaderboard.selection import (
    PERIODS,
    HallOfFameEntry,
    TokenRow,
    WalletRow,
    merge_top_tokens,
    parse_period,
    top_tokens,
    top_wallets,
)
from signal_leaderboard.leaderboard.stats import GainsStats, gain_sum

__all__ = [
    "PERIODS",
    "BindingState",
    "GainsStats",
    "HallOfFameEntry",
    "LeaderboardMaterializer",
    "MaterializeResult",
    "MaterializerConfig",
    "PointerBinding",
    "TokenRow",
    "WalletRow",
    "gain_sum",
    "merge_top_tokens",
    "parse_period",
    "top_tokens",
    "top_wallets",
]
