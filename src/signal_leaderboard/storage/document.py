"""A JSON document addressed by a channel's pinned pointer."""

from __future__ import annotations

import json
import logging
from typing import Any

from signal_leaderboard.objectstore.base import ObjectStore
from signal_leaderboard.objectstore.models import PinnedPointer, StoredBlob
from signal_leaderboard.storage.models import ConcurrentModificationError, SchemaError

logger = logging.getLogger(__name__)


class PinnedDocument:
    """Read and write one JSON document through an object store channel.

    The document lives in a file attached to the channel's pinned message.
    Writes replace that message in place when possible; when the backend
    hands back a different pointer the new message is pinned.

    Args:
        store: Object store backend.
        channel: Channel holding the document.
        filename: File name used for uploads.
        indent: JSON indentation (``None`` for compact output).
    """

    def __init__(
        self,
        store: ObjectStore,
        channel: str,
        filename: str,
        *,
        indent: int | None = None,
    ) -> None:
        self._store = store
        self.channel = channel
        self.filename = filename
        self._indent = indent
        self.pointer_id: int | None = None
        self.observed_pointer_id: int | None = None

    async def fetch(self) -> PinnedPointer | None:
        """Discover the pinned pointer and remember it."""
        pointer = await self._store.get_pointer(self.channel)
        self.pointer_id = pointer.pointer_id if pointer else None
        self.observed_pointer_id = self.pointer_id
        return pointer

    async def read_json(self, pointer: PinnedPointer) -> Any:
        """Download and decode the file attached to ``pointer``.

        Raises:
            SchemaError: If the pointer has no file or the file is not JSON.
            TransientIOError: If the download fails.
        """
        if pointer.file_ref is None:
            raise SchemaError(f"Pinned message {pointer.pointer_id} in {self.channel} has no file")
        raw = await self._store.download(pointer.file_ref)
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise SchemaError(f"{self.filename} is not valid JSON: {e}") from e

    def forget_pointer(self) -> None:
        """Force the next write to upload a new message instead of replacing."""
        self.pointer_id = None

    async def verify_pointer(self) -> None:
        """Fail if another writer re-pinned the channel since ``fetch``.

        Raises:
            ConcurrentModificationError: If the pinned pointer changed.
        """
        current = await self._store.get_pointer(self.channel)
        found = current.pointer_id if current else None
        if found != self.observed_pointer_id:
            raise ConcurrentModificationError(
                f"{self.channel}/{self.filename}", self.observed_pointer_id, found
            )

    def encode(self, data: Any) -> bytes:
        if self._indent is None:
            return json.dumps(data, separators=(",", ":")).encode("utf-8")
        return json.dumps(data, indent=self._indent).encode("utf-8")

    async def write_json(self, data: Any, *, caption: str = "") -> StoredBlob:
        """Persist ``data``, replacing the pinned copy or creating and pinning a new one."""
        payload = self.encode(data)
        pinned = True
        if self.pointer_id is not None:
            blob = await self._store.replace(
                self.channel, self.pointer_id, payload, self.filename, caption
            )
            if blob.pointer_id != self.pointer_id:
                logger.info(
                    "%s moved from message %d to %d, re-pinning",
                    self.filename,
                    self.pointer_id,
                    blob.pointer_id,
                )
                pinned = await self._store.pin(self.channel, blob.pointer_id)
        else:
            blob = await self._store.upload(self.channel, payload, self.filename, caption)
            pinned = await self._store.pin(self.channel, blob.pointer_id)
            logger.info("Created %s as message %d", self.filename, blob.pointer_id)

        self.pointer_id = blob.pointer_id
        if pinned:
            self.observed_pointer_id = blob.pointer_id
        return blob
