"""Ranking engine - trending scores, wallet rank scores and star tiers."""

from signal_leaderboard.ranking.scoring import (
    DEFAULT_STRATEGY,
    RankingStrategy,
    WeightedFactorsStrategy,
    get_strategy,
    token_trending_score,
    wallet_average_peak,
    wallet_rank_score,
    wallet_stars,
    wallet_win_rate,
)

__all__ = [
    "DEFAULT_STRATEGY",
    "RankingStrategy",
    "WeightedFactorsStrategy",
    "get_strategy",
    "token_trending_score",
    "wallet_average_peak",
    "wallet_rank_score",
    "wallet_stars",
    "wallet_win_rate",
]
