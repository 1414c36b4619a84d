"""Signal Leaderboard - pinned-document store and leaderboard materialization for trading signals."""

__version__ = "0.1.0"
