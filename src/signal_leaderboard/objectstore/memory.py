"""Deterministic in-memory object store for dry runs and tests."""

from __future__ import annotations

import logging
from collections import Counter, defaultdict, deque
from dataclasses import dataclass, field

from signal_leaderboard.objectstore.errors import (
    ContentUnchangedError,
    ObjectStoreError,
    PointerStaleError,
    TransientIOError,
)
from signal_leaderboard.objectstore.models import PinnedPointer, StoredBlob

logger = logging.getLogger(__name__)

WRITE_OPERATIONS = ("upload", "replace", "send_text", "edit_text")


@dataclass
class StoredMessage:
    """A message held by the in-memory backend."""

    message_id: int
    text: str | None = None
    file_ref: str | None = None
    file_name: str | None = None
    caption: str = ""


@dataclass
class _Channel:
    messages: dict[int, StoredMessage] = field(default_factory=dict)
    pinned: list[int] = field(default_factory=list)
    stale: set[int] = field(default_factory=set)


class InMemoryObjectStore:
    """Object store that keeps channels, messages and blobs in process memory.

    Mirrors the Telegram backend's semantics: ``replace`` on a stale message
    uploads a new copy, identical text edits raise ``ContentUnchangedError``,
    and the most recently pinned message is the channel's pointer.

    Faults can be injected with ``fail_next`` and ``mark_stale``; pins fail
    while ``fail_pins`` is set. ``calls`` counts every operation and
    ``write_count`` counts the ones that write.
    """

    def __init__(self, *, first_message_id: int = 100) -> None:
        self._channels: dict[str, _Channel] = defaultdict(_Channel)
        self._blobs: dict[str, bytes] = {}
        self._next_id = first_message_id
        self._next_blob = 1
        self._faults: dict[str, deque[ObjectStoreError]] = defaultdict(deque)
        self.fail_pins = False
        self.calls: Counter[str] = Counter()

    @property
    def write_count(self) -> int:
        return sum(self.calls[op] for op in WRITE_OPERATIONS)

    def reset_counters(self) -> None:
        self.calls.clear()

    def fail_next(self, operation: str, error: ObjectStoreError | None = None) -> None:
        """Make the next call to ``operation`` raise ``error``."""
        self._faults[operation].append(error or TransientIOError(f"{operation}: injected failure"))

    def mark_stale(self, channel: str, pointer_id: int) -> None:
        """Make ``pointer_id`` refuse further edits."""
        self._channels[channel].stale.add(pointer_id)

    def message(self, channel: str, pointer_id: int) -> StoredMessage | None:
        return self._channels[channel].messages.get(pointer_id)

    def messages(self, channel: str) -> list[StoredMessage]:
        return list(self._channels[channel].messages.values())

    def pinned_ids(self, channel: str) -> list[int]:
        return list(self._channels[channel].pinned)

    def seed_text(self, channel: str, text: str) -> int:
        """Create a pinned inline-text message, as older schemas stored documents."""
        message_id = self._new_message(channel, text=text)
        self._channels[channel].pinned.append(message_id)
        return message_id

    def seed_document(self, channel: str, data: bytes, filename: str) -> int:
        """Create a pinned document message."""
        message_id = self._new_message(channel, file_ref=self._store_blob(data), file_name=filename)
        self._channels[channel].pinned.append(message_id)
        return message_id

    def blob_for(self, channel: str, pointer_id: int) -> bytes | None:
        message = self.message(channel, pointer_id)
        if message is None or message.file_ref is None:
            return None
        return self._blobs[message.file_ref]

    def _check_fault(self, operation: str) -> None:
        self.calls[operation] += 1
        queue = self._faults.get(operation)
        if queue:
            raise queue.popleft()

    def _store_blob(self, data: bytes) -> str:
        ref = f"blob-{self._next_blob}"
        self._next_blob += 1
        self._blobs[ref] = bytes(data)
        return ref

    def _new_message(
        self,
        channel: str,
        *,
        text: str | None = None,
        file_ref: str | None = None,
        file_name: str | None = None,
        caption: str = "",
    ) -> int:
        message_id = self._next_id
        self._next_id += 1
        self._channels[channel].messages[message_id] = StoredMessage(
            message_id=message_id,
            text=text,
            file_ref=file_ref,
            file_name=file_name,
            caption=caption,
        )
        return message_id

    def _editable(self, channel: str, pointer_id: int) -> StoredMessage:
        ch = self._channels[channel]
        message = ch.messages.get(pointer_id)
        if message is None or pointer_id in ch.stale:
            raise PointerStaleError(f"message {pointer_id} can't be edited")
        return message

    async def get_pointer(self, channel: str) -> PinnedPointer | None:
        self._check_fault("get_pointer")
        ch = self._channels[channel]
        if not ch.pinned:
            return None
        message = ch.messages[ch.pinned[-1]]
        return PinnedPointer(
            pointer_id=message.message_id,
            file_ref=message.file_ref,
            file_name=message.file_name,
            text=message.text,
        )

    async def upload(
        self, channel: str, data: bytes, filename: str, caption: str = ""
    ) -> StoredBlob:
        self._check_fault("upload")
        ref = self._store_blob(data)
        message_id = self._new_message(channel, file_ref=ref, file_name=filename, caption=caption)
        return StoredBlob(pointer_id=message_id, blob_ref=ref)

    async def replace(
        self,
        channel: str,
        pointer_id: int,
        data: bytes,
        filename: str,
        caption: str = "",
    ) -> StoredBlob:
        self._check_fault("replace")
        try:
            message = self._editable(channel, pointer_id)
        except PointerStaleError:
            logger.warning("Message %d in %s is stale, uploading a new copy", pointer_id, channel)
            return await self.upload(channel, data, filename, caption)
        ref = self._store_blob(data)
        message.file_ref = ref
        message.file_name = filename
        message.caption = caption
        message.text = None
        return StoredBlob(pointer_id=pointer_id, blob_ref=ref)

    async def download(self, blob_ref: str) -> bytes:
        self._check_fault("download")
        try:
            return self._blobs[blob_ref]
        except KeyError:
            raise TransientIOError(f"download: unknown blob {blob_ref}") from None

    async def pin(self, channel: str, pointer_id: int) -> bool:
        self.calls["pin"] += 1
        ch = self._channels[channel]
        if self.fail_pins or pointer_id not in ch.messages:
            logger.warning("Pin of message %d in %s failed (non-fatal)", pointer_id, channel)
            return False
        if pointer_id in ch.pinned:
            ch.pinned.remove(pointer_id)
        ch.pinned.append(pointer_id)
        return True

    async def unpin(self, channel: str, pointer_id: int) -> bool:
        self.calls["unpin"] += 1
        ch = self._channels[channel]
        if self.fail_pins or pointer_id not in ch.pinned:
            logger.warning("Unpin of message %d in %s failed (non-fatal)", pointer_id, channel)
            return False
        ch.pinned.remove(pointer_id)
        return True

    async def send_text(self, channel: str, text: str) -> int:
        self._check_fault("send_text")
        return self._new_message(channel, text=text)

    async def edit_text(self, channel: str, pointer_id: int, text: str) -> None:
        self._check_fault("edit_text")
        message = self._editable(channel, pointer_id)
        if message.text == text:
            raise ContentUnchangedError("message is not modified")
        message.text = text
