"""Tests for the bounded in-memory dedup tier."""

from __future__ import annotations

import asyncio

import pytest

from noticewatch.dedup.memory import MemoryDedupStore


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


class TestCapacity:
    """Inserting at capacity evicts the oldest first-seen entry."""

    def test_evicts_oldest(self) -> None:
        clock = FakeClock()
        store = MemoryDedupStore(capacity=3, time_fn=clock)
        for key in ("a", "b", "c"):
            store.add(key)
            clock.now += 1
        store.add("d")
        assert len(store) == 3
        assert "a" not in store
        assert all(k in store for k in ("b", "c", "d"))
        assert store.metrics.evictions == 1

    def test_tie_evicts_earliest_inserted(self) -> None:
        store = MemoryDedupStore(capacity=2, time_fn=FakeClock())
        store.add("first")
        store.add("second")
        store.add("third")
        assert "first" not in store
        assert "second" in store

    def test_re_marking_keeps_first_seen(self) -> None:
        clock = FakeClock()
        store = MemoryDedupStore(capacity=2, time_fn=clock)
        store.add("a")
        clock.now += 10
        store.add("b")
        clock.now += 10
        store.add("a")
        assert store.first_seen("a") == 1_000.0
        store.add("c")
        # "a" is still the oldest, so it goes
        assert "a" not in store
        assert "b" in store

    def test_invalid_capacity(self) -> None:
        with pytest.raises(ValueError):
            MemoryDedupStore(capacity=0)


class TestAge:
    """Entries older than max_age_s are invisible and swept."""

    def test_expired_not_reported(self) -> None:
        clock = FakeClock()
        store = MemoryDedupStore(max_age_s=60, time_fn=clock)
        store.add("a")
        clock.now += 61
        assert not store.contains("a")

    def test_expired_key_re_added_fresh(self) -> None:
        clock = FakeClock()
        store = MemoryDedupStore(max_age_s=60, time_fn=clock)
        store.add("a")
        clock.now += 61
        store.add("a")
        assert store.contains("a")
        assert store.first_seen("a") == clock.now

    def test_sweep(self) -> None:
        clock = FakeClock()
        store = MemoryDedupStore(max_age_s=60, time_fn=clock)
        store.add("old")
        clock.now += 30
        store.add("new")
        clock.now += 31
        assert store.sweep() == 1
        assert len(store) == 1
        assert store.metrics.expired == 1


class TestProtocol:
    """Async DedupStore interface."""

    @pytest.mark.asyncio
    async def test_mark_and_exists(self) -> None:
        store = MemoryDedupStore()
        await store.mark_sent_many(["a", "b"])
        assert await store.exists("a")
        assert await store.exists_many(["a", "x"]) == {"a": True, "x": False}

    @pytest.mark.asyncio
    async def test_stats_and_clear(self) -> None:
        store = MemoryDedupStore(capacity=10, time_fn=FakeClock(5.0))
        await store.mark_sent("a")
        stats = await store.stats()
        assert stats["size"] == 1
        assert stats["capacity"] == 10
        assert stats["oldest_timestamp"] == 5.0
        await store.clear()
        assert (await store.stats())["size"] == 0

    @pytest.mark.asyncio
    async def test_sweeper_runs_periodically(self) -> None:
        clock = FakeClock()
        store = MemoryDedupStore(max_age_s=1, time_fn=clock)
        store.add("a")
        clock.now += 5
        store.start_sweeper(interval_s=0.01)
        await asyncio.sleep(0.05)
        await store.stop_sweeper()
        assert len(store) == 0
