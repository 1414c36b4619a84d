"""Exceptions raised by object store backends."""

from __future__ import annotations


class ObjectStoreError(Exception):
    """Base exception for object store errors."""


class TransientIOError(ObjectStoreError):
    """Raised for network or backend failures on upload/replace/download/send/edit."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PointerStaleError(ObjectStoreError):
    """Raised when the target message can no longer be edited (too old, deleted)."""


class ContentUnchangedError(ObjectStoreError):
    """Raised when an edit is refused because the content is identical."""
