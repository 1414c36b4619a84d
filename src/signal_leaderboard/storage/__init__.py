"""Storage layer - partition documents, migration, repository and retention."""

from signal_leaderboard.storage.document import PinnedDocument
from signal_leaderboard.storage.models import (
    SCHEMA_VERSION,
    ConcurrentModificationError,
    PartitionDocument,
    SchemaError,
    SignalEvent,
    SignalSummary,
    TokenRecord,
    WalletParticipation,
    WalletRecord,
    WalletTokenEntry,
)
from signal_leaderboard.storage.partition import PartitionDatabase
from signal_leaderboard.storage.repository import EntityRepository, PriceUpdate, WalletReputation
from signal_leaderboard.storage.retention import PruneResult, RetentionSweeper

__all__ = [
    "SCHEMA_VERSION",
    "ConcurrentModificationError",
    "EntityRepository",
    "PartitionDatabase",
    "PartitionDocument",
    "PinnedDocument",
    "PriceUpdate",
    "PruneResult",
    "RetentionSweeper",
    "SchemaError",
    "SignalEvent",
    "SignalSummary",
    "TokenRecord",
    "WalletParticipation",
    "WalletRecord",
    "WalletReputation",
    "WalletTokenEntry",
]
