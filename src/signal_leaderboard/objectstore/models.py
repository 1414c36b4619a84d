"""Data models for object store pointers and blobs."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class StoredBlob:
    """Result of an upload or replace.

    Attributes:
        pointer_id: Id of the message now holding the document.
        blob_ref: Backend reference usable with ``download``.
    """

    pointer_id: int
    blob_ref: str | None = None


@dataclass(frozen=True)
class PinnedPointer:
    """The pinned message of a channel.

    The payload is either an attached file (``file_ref``) or inline text.
    """

    pointer_id: int
    file_ref: str | None = None
    file_name: str | None = None
    text: str | None = None

    @property
    def has_file(self) -> bool:
        return self.file_ref is not None

    @property
    def has_text(self) -> bool:
        return self.file_ref is None and bool(self.text)
