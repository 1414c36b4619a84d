"""Tests for upsert-by-pointer view bindings."""

from __future__ import annotations

import pytest

from signal_leaderboard.leaderboard.binding import BindingState, PointerBinding
from signal_leaderboard.objectstore.errors import TransientIOError
from signal_leaderboard.objectstore.memory import InMemoryObjectStore

CHANNEL = "-1001000000010"


class TestPointerBinding:
    """Tests for PointerBinding.upsert."""

    @pytest.mark.asyncio
    async def test_unbound_sends_and_pins(self, store: InMemoryObjectStore) -> None:
        binding = PointerBinding()
        assert binding.state is BindingState.UNBOUND

        pointer = await binding.upsert(store, CHANNEL, "view v1")

        assert binding.state is BindingState.BOUND
        assert binding.pointer_id == pointer
        assert store.pinned_ids(CHANNEL) == [pointer]

    @pytest.mark.asyncio
    async def test_bound_edits_in_place(self, store: InMemoryObjectStore) -> None:
        binding = PointerBinding()
        pointer = await binding.upsert(store, CHANNEL, "view v1")
        assert await binding.upsert(store, CHANNEL, "view v2") == pointer
        assert store.message(CHANNEL, pointer).text == "view v2"
        assert store.calls["send_text"] == 1

    @pytest.mark.asyncio
    async def test_identical_content_is_idempotent(self, store: InMemoryObjectStore) -> None:
        binding = PointerBinding()
        pointer = await binding.upsert(store, CHANNEL, "same")
        store.reset_counters()

        assert await binding.upsert(store, CHANNEL, "same") == pointer
        assert store.calls["send_text"] == 0
        assert len(store.messages(CHANNEL)) == 1

    @pytest.mark.asyncio
    async def test_stale_pointer_is_replaced(self, store: InMemoryObjectStore) -> None:
        binding = PointerBinding()
        old = await binding.upsert(store, CHANNEL, "view v1")
        store.mark_stale(CHANNEL, old)

        new = await binding.upsert(store, CHANNEL, "view v2")

        assert new != old
        pointer = await store.get_pointer(CHANNEL)
        assert pointer is not None
        assert pointer.pointer_id == new

    @pytest.mark.asyncio
    async def test_failed_send_leaves_binding_untouched(self, store: InMemoryObjectStore) -> None:
        binding = PointerBinding()
        old = await binding.upsert(store, CHANNEL, "view v1")
        store.mark_stale(CHANNEL, old)
        store.fail_next("send_text")

        with pytest.raises(TransientIOError):
            await binding.upsert(store, CHANNEL, "view v2")
        assert binding.pointer_id == old

    @pytest.mark.asyncio
    async def test_pin_failure_still_binds(self, store: InMemoryObjectStore) -> None:
        store.fail_pins = True
        binding = PointerBinding()
        pointer = await binding.upsert(store, CHANNEL, "view")
        assert binding.pointer_id == pointer
        assert store.pinned_ids(CHANNEL) == []

    @pytest.mark.asyncio
    async def test_without_pin(self, store: InMemoryObjectStore) -> None:
        binding = PointerBinding(pin=False)
        await binding.upsert(store, CHANNEL, "view")
        assert store.calls["pin"] == 0
