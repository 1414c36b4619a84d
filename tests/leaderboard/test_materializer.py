"""Tests for leaderboard materialization."""

from __future__ import annotations

import json

import pytest

from signal_leaderboard.config import PartitionConfig
from signal_leaderboard.leaderboard.materializer import (
    CONFIG_FILENAME,
    LeaderboardMaterializer,
    MaterializerConfig,
)
from signal_leaderboard.objectstore.errors import TransientIOError
from signal_leaderboard.objectstore.memory import InMemoryObjectStore
from signal_leaderboard.storage.partition import PartitionDatabase
from signal_leaderboard.storage.repository import EntityRepository

SOL_TOKEN = "SolToken11111111111111111111111111111111111"
ETH_TOKEN = "0xeth000000000000000000000000000000000000"


@pytest.fixture
async def dbs(store, clock, partitions: PartitionConfig, make_event) -> dict[str, PartitionDatabase]:
    """Loaded sol and eth partitions with one winning token each."""
    loaded = {}
    for partition, address, peak in (("sol", SOL_TOKEN, 3.0), ("eth", ETH_TOKEN, 1.5)):
        db = PartitionDatabase(store, partition, partitions.channel_for(partition), clock=clock)
        await db.load()
        repo = EntityRepository(db)
        repo.record_signal(make_event(address, symbol=partition.upper(), price=1.0))
        repo.apply_price(address, peak)
        loaded[partition] = db
    return loaded


def make_materializer(store, partitions, clock) -> LeaderboardMaterializer:
    return LeaderboardMaterializer(store, partitions, clock=clock)


class TestUpdateAll:
    """Tests for a full materialization pass."""

    @pytest.mark.asyncio
    async def test_publishes_every_view(self, store, partitions, clock, dbs) -> None:
        result = await make_materializer(store, partitions, clock).update_all(dbs)

        assert result.failed == []
        assert len(result.published) == 11
        assert "sol/private/tokens" in result.published
        assert "summary/public" in result.published
        assert "hall_of_fame" in result.published
        assert [row.partition for row in result.summary] == ["sol", "eth"]
        assert result.stats.total == 2
        assert [e.address for e in result.hall_of_fame] == [SOL_TOKEN]

        config_pointer = await store.get_pointer(partitions.config_channel)
        assert config_pointer is not None
        assert config_pointer.file_name == CONFIG_FILENAME
        saved = json.loads(store.blob_for(partitions.config_channel, config_pointer.pointer_id))
        assert set(saved["perPartition"]) == {"sol", "eth"}
        assert f"sol:{SOL_TOKEN}" in saved["hallOfFame"]

    @pytest.mark.asyncio
    async def test_second_pass_is_idempotent(self, store, partitions, clock, dbs) -> None:
        await make_materializer(store, partitions, clock).update_all(dbs)
        private_views = len(store.messages(partitions.view_channels["private"]))
        store.reset_counters()

        second = make_materializer(store, partitions, clock)
        await second.update_all(dbs)

        assert store.calls["send_text"] == 0
        assert len(store.messages(partitions.view_channels["private"])) == private_views

    @pytest.mark.asyncio
    async def test_views_link_to_partition_messages(self, store, partitions, clock, dbs) -> None:
        materializer = make_materializer(store, partitions, clock)
        await materializer.update_all(dbs)
        pointer = materializer.config.summary_pointers["private"]
        summary = store.message(partitions.view_channels["private"], pointer).text
        token_view = materializer.config.view_pointer("sol", "private", "tokens")
        assert f"https://t.me/c/1000000010/{token_view}" in summary

    @pytest.mark.asyncio
    async def test_view_failure_is_isolated(self, store, partitions, clock, dbs) -> None:
        store.fail_next("send_text")
        result = await make_materializer(store, partitions, clock).update_all(dbs)
        assert len(result.failed) == 1
        assert len(result.published) == 10

    @pytest.mark.asyncio
    async def test_stale_view_is_resent_and_pinned(self, store, partitions, clock, dbs) -> None:
        materializer = make_materializer(store, partitions, clock)
        await materializer.update_all(dbs)
        channel = partitions.hall_of_fame_channel
        old = materializer.config.hall_of_fame_pointer
        store.mark_stale(channel, old)

        dbs["sol"].document.tokens[SOL_TOKEN].p_peak = 4.0
        again = make_materializer(store, partitions, clock)
        await again.update_all(dbs)

        assert again.config.hall_of_fame_pointer != old
        assert again.config.hall_of_fame_pointer in store.pinned_ids(channel)


class TestConfig:
    """Tests for the config document."""

    @pytest.mark.asyncio
    async def test_foreign_pinned_file_is_left_alone(self, store, partitions, clock, dbs) -> None:
        foreign = store.seed_document(partitions.config_channel, b"{}", "sol-archive-2026-03.json")
        materializer = make_materializer(store, partitions, clock)
        config = await materializer.load_config()
        assert config.per_partition == {}

        await materializer.update_all(dbs)
        assert store.blob_for(partitions.config_channel, foreign) == b"{}"

    @pytest.mark.asyncio
    async def test_reset_unpins_views(self, store, partitions, clock, dbs) -> None:
        first = make_materializer(store, partitions, clock)
        await first.update_all(dbs)
        old_summary = first.config.summary_pointers["public"]

        second = make_materializer(store, partitions, clock)
        await second.reset()
        assert second.config.per_partition == {}
        assert second.config.hall_of_fame
        assert old_summary not in store.pinned_ids(partitions.view_channels["public"])

        await second.update_all(dbs)
        assert second.config.summary_pointers["public"] != old_summary

    @pytest.mark.asyncio
    async def test_unreadable_config_publishes_nothing(self, store, partitions, clock, dbs) -> None:
        first = make_materializer(store, partitions, clock)
        await first.update_all(dbs)
        hall_of_fame_pointer = first.config.hall_of_fame_pointer
        store.reset_counters()

        store.fail_next("get_pointer")
        with pytest.raises(TransientIOError):
            await make_materializer(store, partitions, clock).update_all(dbs)
        assert store.write_count == 0

        config = await make_materializer(store, partitions, clock).load_config()
        assert f"sol:{SOL_TOKEN}" in config.hall_of_fame
        assert config.hall_of_fame_pointer == hall_of_fame_pointer

    @pytest.mark.asyncio
    async def test_malformed_config_starts_fresh(self, store, partitions, clock) -> None:
        store.seed_document(partitions.config_channel, b"not json", CONFIG_FILENAME)
        config = await make_materializer(store, partitions, clock).load_config()
        assert config.hall_of_fame == {}

    def test_legacy_config_layout(self) -> None:
        config = MaterializerConfig.from_dict(
            {"leaderboards": {"sol": {"private": {"tokens": 5}}}, "summaries": {"private": 9}}
        )
        assert config.view_pointer("sol", "private", "tokens") == 5
        assert config.summary_pointers == {"private": 9}

    def test_requires_config_channel(self, store) -> None:
        with pytest.raises(ValueError):
            LeaderboardMaterializer(store, PartitionConfig(partitions={"sol": "-1"}))


@pytest.fixture
def store() -> InMemoryObjectStore:
    """Store numbering messages from 1000 so view links are easy to spot."""
    return InMemoryObjectStore(first_message_id=1000)
