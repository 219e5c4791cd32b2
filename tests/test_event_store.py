"""Tests for the per-user event history"""

import asyncio
from datetime import timedelta

import pytest

from threatguard.services.event_store import EventStore


@pytest.fixture
def store(clock):
    return EventStore(max_size=3, clock=clock)


class TestEventStore:

    @pytest.mark.asyncio
    async def test_eviction_keeps_most_recent_in_order(self, store, make_event):
        """Test eviction keeps most recent in order"""
        for i in range(5):
            await store.record(make_event(resource=f"r{i}"))

        history = await store.all("tenant-a", "user-1")
        assert [e.event.resource for e in history] == ["r2", "r3", "r4"]

    @pytest.mark.asyncio
    async def test_unknown_key_is_empty(self, store):
        """Test unknown key is empty"""
        assert await store.all("tenant-x", "nobody") == []
        assert await store.window("tenant-x", "nobody", timedelta(minutes=5)) == []

    @pytest.mark.asyncio
    async def test_window_only_returns_recent_entries(self, clock, make_event):
        """Test window only returns recent entries"""
        store = EventStore(max_size=10, clock=clock)
        await store.record(make_event(resource="old"))
        clock.advance(minutes=10)
        await store.record(make_event(resource="new"))

        window = await store.window("tenant-a", "user-1", timedelta(minutes=5))
        assert [e.event.resource for e in window] == ["new"]

    @pytest.mark.asyncio
    async def test_keys_are_isolated(self, store, make_event):
        """Test keys are isolated"""
        await store.record(make_event(tenant_id="tenant-a", user_id="user-1"))
        await store.record(make_event(tenant_id="tenant-b", user_id="user-1"))
        await store.record(make_event(tenant_id="tenant-a", user_id="user-2"))

        assert len(await store.all("tenant-a", "user-1")) == 1
        assert set(store.keys()) == {
            ("tenant-a", "user-1"),
            ("tenant-b", "user-1"),
            ("tenant-a", "user-2"),
        }

    @pytest.mark.asyncio
    async def test_concurrent_appends_are_not_lost(self, clock, make_event):
        """Test concurrent appends are not lost"""
        store = EventStore(max_size=100, clock=clock)
        await asyncio.gather(*(store.record(make_event(resource=f"r{i}")) for i in range(50)))

        history = await store.all("tenant-a", "user-1")
        assert len(history) == 50
        assert {e.event.resource for e in history} == {f"r{i}" for i in range(50)}

    @pytest.mark.asyncio
    async def test_snapshot_is_not_affected_by_later_appends(self, store, make_event):
        """Test snapshot is not affected by later appends"""
        await store.record(make_event(resource="r0"))
        snapshot = await store.all("tenant-a", "user-1")
        await store.record(make_event(resource="r1"))

        assert len(snapshot) == 1

    @pytest.mark.asyncio
    async def test_clear(self, store, make_event):
        """Test clear"""
        await store.record(make_event())
        await store.record(make_event())

        assert await store.clear("tenant-a", "user-1") == 2
        assert await store.all("tenant-a", "user-1") == []
        assert store.keys() == []
        assert ("tenant-a", "user-1") not in store._locks
