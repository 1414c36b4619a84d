"""Object store backends: Telegram channels and an in-memory double."""

from signal_leaderboard.objectstore.base import ObjectStore
from signal_leaderboard.objectstore.errors import (
    ContentUnchangedError,
    ObjectStoreError,
    PointerStaleError,
    TransientIOError,
)
from signal_leaderboard.objectstore.memory import InMemoryObjectStore
from signal_leaderboard.objectstore.models import PinnedPointer, StoredBlob
from signal_leaderboard.objectstore.telegram import TelegramObjectStore

__all__ = [
    "ContentUnchangedError",
    "InMemoryObjectStore",
    "ObjectStore",
    "ObjectStoreError",
    "PinnedPointer",
    "PointerStaleError",
    "StoredBlob",
    "TelegramObjectStore",
    "TransientIOError",
]
