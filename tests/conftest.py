"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

import pytest

from signal_leaderboard.config import PartitionConfig
from signal_leaderboard.objectstore.memory import InMemoryObjectStore
from signal_leaderboard.storage.models import DAY_MS, SignalEvent, WalletParticipation

SOL_CHANNEL = "-1001000000001"
ETH_CHANNEL = "-1001000000002"
ARCHIVE_CHANNEL = "-1001000000009"
PRIVATE_CHANNEL = "-1001000000010"
PUBLIC_CHANNEL = "-1001000000011"

NOW_MS = int(datetime(2026, 3, 15, 12, 0, tzinfo=UTC).timestamp() * 1000)


class FakeClock:
    """Settable epoch-millisecond clock."""

    def __init__(self, now: int = NOW_MS) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, *, days: float = 0, ms: int = 0) -> None:
        self.now += int(days * DAY_MS) + ms


@pytest.fixture
def clock() -> FakeClock:
    """Clock fixed at 2026-03-15 12:00 UTC."""
    return FakeClock()


@pytest.fixture
def store() -> InMemoryObjectStore:
    """Fresh in-memory object store."""
    return InMemoryObjectStore()


@pytest.fixture
def partitions() -> PartitionConfig:
    """Two partitions plus archive and both view channels."""
    return PartitionConfig(
        partitions={"sol": SOL_CHANNEL, "eth": ETH_CHANNEL},
        archive_channel=ARCHIVE_CHANNEL,
        config_channel=ARCHIVE_CHANNEL,
        view_channels={"private": PRIVATE_CHANNEL, "public": PUBLIC_CHANNEL},
        hall_of_fame_channel=PUBLIC_CHANNEL,
    )


@pytest.fixture
def make_event(clock: FakeClock) -> Callable[..., SignalEvent]:
    """Factory for pre-scored signal events stamped with the fixture clock."""

    def factory(
        token: str = "TokenAddr1111111111111111111111111111111111",
        *,
        batch_id: str = "batch",
        index: int = 0,
        symbol: str = "TKN",
        price: float = 1.0,
        score: float = 1.0,
        wallets: tuple[str, ...] = ("WalletAaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa",),
        event_time: int | None = None,
        security: str | None = None,
    ) -> SignalEvent:
        return SignalEvent(
            batch_id=batch_id,
            batch_index=index,
            token_address=token,
            symbol=symbol,
            price=price,
            event_time=clock.now if event_time is None else event_time,
            average_score=score,
            wallets=tuple(WalletParticipation(address=w, entry_score=score) for w in wallets),
            security=security,
        )

    return factory
