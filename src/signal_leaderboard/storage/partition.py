"""Partition database: load/save lifecycle of one partition document."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from signal_leaderboard.objectstore.base import ObjectStore
from signal_leaderboard.objectstore.errors import ObjectStoreError
from signal_leaderboard.objectstore.models import PinnedPointer
from signal_leaderboard.storage.document import PinnedDocument
from signal_leaderboard.storage.migration import migrate_document, parse_legacy_text
from signal_leaderboard.storage.models import (
    SCHEMA_VERSION,
    ConcurrentModificationError,
    PartitionDocument,
    SchemaError,
    now_ms,
)

logger = logging.getLogger(__name__)


class PartitionDatabase:
    """One partition's document, cached in memory for the duration of a job.

    ``load()`` is memoized and never raises: it parses the current schema,
    migrates legacy layouts (writing the upgraded copy back once), or starts
    from an empty document. ``save()`` writes only when the document is
    dirty or ``force`` is set, and propagates backend failures.

    Args:
        store: Object store backend.
        partition: Partition id (e.g. ``sol``).
        channel: Channel holding the partition document.
        verify_pointer: Refuse to save if the pinned pointer changed since load.
        clock: Returns the current time in epoch milliseconds.

    Example:
        ```python
        db = PartitionDatabase(store, "sol", "-1001234567890")
        await db.load()
        repo = EntityRepository(db)
        repo.add_seen_signal("batch_0")
        await db.save()
        ```
    """

    def __init__(
        self,
        store: ObjectStore,
        partition: str,
        channel: str,
        *,
        verify_pointer: bool = False,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.partition = partition
        self.clock = clock
        self._pinned = PinnedDocument(store, channel, f"{partition}-db.json")
        self._verify_pointer = verify_pointer
        self._doc: PartitionDocument | None = None
        self._dirty = False
        self.degraded = False
        self.migrated = False

    @property
    def loaded(self) -> bool:
        return self._doc is not None

    @property
    def document(self) -> PartitionDocument:
        if self._doc is None:
            raise RuntimeError(f"Partition {self.partition} is not loaded")
        return self._doc

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def pointer_id(self) -> int | None:
        return self._pinned.pointer_id

    def mark_dirty(self) -> None:
        self._dirty = True

    async def load(self) -> PartitionDocument:
        """Load the partition document, migrating or creating it as needed."""
        if self._doc is not None:
            return self._doc

        logger.info("Loading %s partition", self.partition)
        try:
            pointer = await self._pinned.fetch()
        except ObjectStoreError as e:
            logger.error("Could not read pointer for %s, starting empty: %s", self.partition, e)
            self.degraded = True
            self._doc = PartitionDocument.empty(self.partition)
            return self._doc

        upgrade = False
        if pointer is None:
            logger.info("No existing %s document, starting fresh", self.partition)
            self._doc = PartitionDocument.empty(self.partition)
        elif pointer.has_file:
            self._doc, upgrade = await self._load_file(pointer)
        elif pointer.has_text:
            self._doc, upgrade = self._load_text(pointer)
        else:
            logger.warning(
                "Pinned message %d of %s carries no document, starting fresh",
                pointer.pointer_id,
                self.partition,
            )
            self._pinned.forget_pointer()
            self._doc = PartitionDocument.empty(self.partition)

        if upgrade:
            self.migrated = True
            self._dirty = True
            try:
                await self.save(force=True)
            except (ObjectStoreError, ConcurrentModificationError) as e:
                logger.warning(
                    "Write-back of migrated %s document failed, will retry on next save: %s",
                    self.partition,
                    e,
                )

        logger.info(
            "Loaded %s: %d tokens, %d wallets",
            self.partition,
            len(self._doc.tokens),
            len(self._doc.wallets),
        )
        return self._doc

    async def _load_file(self, pointer: PinnedPointer) -> tuple[PartitionDocument, bool]:
        try:
            raw: Any = await self._pinned.read_json(pointer)
        except SchemaError as e:
            logger.warning("Unreadable %s document, starting fresh: %s", self.partition, e)
            return PartitionDocument.empty(self.partition), False
        except ObjectStoreError as e:
            logger.error("Could not download %s document, starting empty: %s", self.partition, e)
            self.degraded = True
            return PartitionDocument.empty(self.partition), False

        if isinstance(raw, dict) and raw.get("schemaVersion") == SCHEMA_VERSION:
            try:
                return PartitionDocument.from_dict(raw, partition=self.partition), False
            except SchemaError as e:
                logger.warning("Malformed %s document, starting fresh: %s", self.partition, e)
                return PartitionDocument.empty(self.partition), False

        if not isinstance(raw, dict):
            logger.warning("Unrecognized %s document, starting fresh", self.partition)
            return PartitionDocument.empty(self.partition), False

        logger.info(
            "Found %s document without schema marker (version=%r), migrating",
            self.partition,
            raw.get("version", raw.get("schemaVersion")),
        )
        return self._migrate(raw)

    def _load_text(self, pointer: PinnedPointer) -> tuple[PartitionDocument, bool]:
        # Text messages cannot carry a file, so the upgraded copy is a new message.
        self._pinned.forget_pointer()
        try:
            raw = parse_legacy_text(pointer.text or "")
        except SchemaError as e:
            logger.warning("Unreadable legacy %s text, starting fresh: %s", self.partition, e)
            return PartitionDocument.empty(self.partition), False
        logger.info("Found legacy inline %s document, migrating", self.partition)
        return self._migrate(raw)

    def _migrate(self, raw: dict[str, Any]) -> tuple[PartitionDocument, bool]:
        try:
            return migrate_document(raw, partition=self.partition, now=self.clock()), True
        except Exception as e:
            logger.warning(
                "Legacy %s document could not be migrated, starting fresh: %s",
                self.partition,
                e,
            )
            return PartitionDocument.empty(self.partition), False

    async def save(self, force: bool = False) -> bool:
        """Persist the document if it is dirty (or ``force`` is set).

        Returns:
            True if a write was issued.

        Raises:
            ObjectStoreError: If the backend write fails; the document stays dirty.
            ConcurrentModificationError: If pointer verification is enabled and fails.
        """
        if self._doc is None:
            return False
        if not force and not self._dirty:
            return False

        if self._verify_pointer:
            await self._pinned.verify_pointer()

        self._doc.updated_at = self.clock()
        stamp = datetime.fromtimestamp(self._doc.updated_at / 1000, tz=UTC).isoformat()
        caption = f"{self.partition.upper()} DB | v{SCHEMA_VERSION} | {stamp}"
        await self._pinned.write_json(self._doc.to_dict(), caption=caption)
        self._dirty = False
        logger.info("Saved %s: %d tokens", self.partition, len(self._doc.tokens))
        return True
