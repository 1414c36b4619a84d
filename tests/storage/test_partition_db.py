"""Tests for the partition database load/save lifecycle."""

from __future__ import annotations

import json

import pytest

from signal_leaderboard.objectstore.errors import TransientIOError
from signal_leaderboard.objectstore.memory import InMemoryObjectStore
from signal_leaderboard.storage.document import PinnedDocument
from signal_leaderboard.storage.models import (
    SCHEMA_VERSION,
    ConcurrentModificationError,
    PartitionDocument,
    TokenRecord,
)
from signal_leaderboard.storage.partition import PartitionDatabase
from signal_leaderboard.storage.repository import EntityRepository

CHANNEL = "-1001000000001"


def make_db(store: InMemoryObjectStore, clock, **kwargs) -> PartitionDatabase:
    return PartitionDatabase(store, "sol", CHANNEL, clock=clock, **kwargs)


class TestLoad:
    """Tests for loading and migration."""

    @pytest.mark.asyncio
    async def test_fresh_channel_starts_empty(self, store, clock) -> None:
        db = make_db(store, clock)
        doc = await db.load()
        assert doc.tokens == {}
        assert not db.dirty
        assert not db.degraded
        assert store.write_count == 0

    @pytest.mark.asyncio
    async def test_load_is_memoized(self, store, clock) -> None:
        db = make_db(store, clock)
        first = await db.load()
        second = await db.load()
        assert first is second
        assert store.calls["get_pointer"] == 1

    @pytest.mark.asyncio
    async def test_current_schema_round_trip(self, store, clock) -> None:
        doc = PartitionDocument.empty("sol")
        doc.tokens["TokenA"] = TokenRecord(sym="AAA", p0=1.0, p_now=2.0, p_peak=2.0)
        store.seed_document(CHANNEL, json.dumps(doc.to_dict()).encode(), "sol-db.json")

        db = make_db(store, clock)
        loaded = await db.load()
        assert loaded.tokens["TokenA"].sym == "AAA"
        assert not db.migrated
        assert store.write_count == 0

    @pytest.mark.asyncio
    async def test_load_and_save_without_changes_writes_nothing(self, store, clock) -> None:
        doc = PartitionDocument.empty("sol")
        store.seed_document(CHANNEL, json.dumps(doc.to_dict()).encode(), "sol-db.json")

        db = make_db(store, clock)
        await db.load()
        assert await db.save() is False
        assert store.write_count == 0

    @pytest.mark.asyncio
    async def test_legacy_file_is_migrated_and_written_back(self, store, clock) -> None:
        legacy = {"version": 4, "tokens": {"TokenA": {"symbol": "AAA", "p0": 1.0}}}
        pointer = store.seed_document(CHANNEL, json.dumps(legacy).encode(), "sol-db.json")

        db = make_db(store, clock)
        doc = await db.load()
        assert db.migrated
        assert doc.tokens["TokenA"].sym == "AAA"
        assert store.calls["replace"] == 1
        assert not db.dirty

        written = json.loads(store.blob_for(CHANNEL, pointer))
        assert written["schemaVersion"] == SCHEMA_VERSION

    @pytest.mark.asyncio
    async def test_legacy_text_migrates_to_new_pinned_file(self, store, clock) -> None:
        text_id = store.seed_text(CHANNEL, '#sol abc\n{"tokens": {"TokenA": {"sym": "AAA"}}}')

        db = make_db(store, clock)
        await db.load()

        pointer = await store.get_pointer(CHANNEL)
        assert pointer is not None
        assert pointer.pointer_id != text_id
        assert pointer.has_file
        assert db.pointer_id == pointer.pointer_id

    @pytest.mark.asyncio
    async def test_failed_write_back_keeps_document_dirty(self, store, clock) -> None:
        legacy = {"tokens": {"TokenA": {"sym": "AAA"}}}
        store.seed_document(CHANNEL, json.dumps(legacy).encode(), "sol-db.json")
        store.fail_next("replace")

        db = make_db(store, clock)
        doc = await db.load()
        assert "TokenA" in doc.tokens
        assert db.dirty

    @pytest.mark.asyncio
    async def test_unreadable_file_starts_fresh(self, store, clock) -> None:
        store.seed_document(CHANNEL, b"not json", "sol-db.json")
        db = make_db(store, clock)
        doc = await db.load()
        assert doc.tokens == {}
        assert not db.degraded

    @pytest.mark.asyncio
    async def test_bad_legacy_container_still_loads(self, store, clock) -> None:
        legacy = {"version": 4, "tokens": {}, "recentSignals": 5}
        store.seed_document(CHANNEL, json.dumps(legacy).encode(), "sol-db.json")

        db = make_db(store, clock)
        doc = await db.load()
        assert doc.recent_signals == []
        assert not db.degraded

    @pytest.mark.asyncio
    async def test_migration_failure_starts_fresh(self, store, clock, monkeypatch) -> None:
        def broken(*args, **kwargs):
            raise RuntimeError("unexpected layout")

        monkeypatch.setattr("signal_leaderboard.storage.partition.migrate_document", broken)
        store.seed_text(CHANNEL, '#sol abc\n{"tokens": {"TokenA": {"sym": "AAA"}}}')

        db = make_db(store, clock)
        doc = await db.load()
        assert doc.tokens == {}
        assert not db.migrated
        assert store.write_count == 0

    @pytest.mark.asyncio
    async def test_backend_failure_marks_degraded(self, store, clock) -> None:
        store.fail_next("get_pointer")
        db = make_db(store, clock)
        doc = await db.load()
        assert doc.tokens == {}
        assert db.degraded

    @pytest.mark.asyncio
    async def test_document_requires_load(self, store, clock) -> None:
        with pytest.raises(RuntimeError):
            _ = make_db(store, clock).document


class TestSave:
    """Tests for saving."""

    @pytest.mark.asyncio
    async def test_first_save_uploads_and_pins(self, store, clock) -> None:
        db = make_db(store, clock)
        await db.load()
        EntityRepository(db).add_seen_signal("batch_0")
        assert await db.save() is True

        pointer = await store.get_pointer(CHANNEL)
        assert pointer is not None
        assert pointer.file_name == "sol-db.json"
        message = store.message(CHANNEL, pointer.pointer_id)
        assert message is not None
        assert message.caption.startswith(f"SOL DB | v{SCHEMA_VERSION} | 2026-03-15")

    @pytest.mark.asyncio
    async def test_save_failure_propagates_and_stays_dirty(self, store, clock) -> None:
        db = make_db(store, clock)
        await db.load()
        db.mark_dirty()
        store.fail_next("upload")
        with pytest.raises(TransientIOError):
            await db.save()
        assert db.dirty

    @pytest.mark.asyncio
    async def test_stale_pointer_is_repinned(self, store, clock) -> None:
        db = make_db(store, clock)
        await db.load()
        db.mark_dirty()
        await db.save()
        old = db.pointer_id
        assert old is not None

        store.mark_stale(CHANNEL, old)
        db.mark_dirty()
        await db.save()

        pointer = await store.get_pointer(CHANNEL)
        assert pointer is not None
        assert pointer.pointer_id == db.pointer_id
        assert pointer.pointer_id != old

    @pytest.mark.asyncio
    async def test_verify_pointer_detects_concurrent_writer(self, store, clock) -> None:
        db = make_db(store, clock, verify_pointer=True)
        await db.load()
        db.mark_dirty()
        await db.save()

        # Another writer re-pins the channel
        other = PinnedDocument(store, CHANNEL, "sol-db.json")
        await other.write_json({"schemaVersion": SCHEMA_VERSION})

        db.mark_dirty()
        with pytest.raises(ConcurrentModificationError):
            await db.save()
