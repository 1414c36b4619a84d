"""Object store interface shared by every backend."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from signal_leaderboard.objectstore.models import PinnedPointer, StoredBlob


@runtime_checkable
class ObjectStore(Protocol):
    """Channel-based document backend.

    Every channel exposes at most one pinned pointer. Documents are stored
    as file attachments; rendered views are stored as text messages.
    ``pin`` and ``unpin`` are best-effort and report success as a bool.
    Every other operation raises an ``ObjectStoreError`` subclass.
    """

    async def get_pointer(self, channel: str) -> PinnedPointer | None: ...

    async def upload(
        self, channel: str, data: bytes, filename: str, caption: str = ""
    ) -> StoredBlob: ...

    async def replace(
        self,
        channel: str,
        pointer_id: int,
        data: bytes,
        filename: str,
        caption: str = "",
    ) -> StoredBlob: ...

    async def download(self, blob_ref: str) -> bytes: ...

    async def pin(self, channel: str, pointer_id: int) -> bool: ...

    async def unpin(self, channel: str, pointer_id: int) -> bool: ...

    async def send_text(self, channel: str, text: str) -> int: ...

    async def edit_text(self, channel: str, pointer_id: int, text: str) -> None: ...
