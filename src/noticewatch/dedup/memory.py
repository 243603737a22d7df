"""
Process-local dedup tier.

Bounded ordered map of key -> first-seen time. Two independent bounds:
- Capacity: inserting a new key at capacity evicts the entry with the
  smallest first-seen time (insertion-time LRU, not access LRU)
- Age: entries older than max_age_s are swept periodically and are never
  reported as present
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections import OrderedDict
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 1000
DEFAULT_MAX_AGE_S = 7 * 24 * 3600.0
DEFAULT_SWEEP_INTERVAL_S = 3600.0


@dataclass
class MemoryStoreMetrics:
    """Counters for memory tier housekeeping."""

    inserts: int = 0
    evictions: int = 0
    expired: int = 0


class MemoryDedupStore:
    """Bounded in-memory dedup store."""

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        max_age_s: float = DEFAULT_MAX_AGE_S,
        time_fn: Callable[[], float] | None = None,
    ) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        if max_age_s <= 0:
            raise ValueError(f"max_age_s must be > 0, got {max_age_s}")
        self._capacity = capacity
        self._max_age_s = max_age_s
        self._time_fn = time_fn or time.time
        self._entries: OrderedDict[str, float] = OrderedDict()
        self._metrics = MemoryStoreMetrics()
        self._sweeper: asyncio.Task[None] | None = None

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def metrics(self) -> MemoryStoreMetrics:
        return self._metrics

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.contains(key)

    def contains(self, key: str) -> bool:
        first_seen = self._entries.get(key)
        if first_seen is None:
            return False
        return self._time_fn() - first_seen <= self._max_age_s

    def first_seen(self, key: str) -> float | None:
        return self._entries.get(key)

    def add(self, key: str) -> None:
        """Insert key, keeping its original first-seen time if present."""
        if key in self._entries:
            if self.contains(key):
                return
            del self._entries[key]
        if len(self._entries) >= self._capacity:
            self._evict_oldest()
        self._entries[key] = self._time_fn()
        self._metrics.inserts += 1

    def _evict_oldest(self) -> None:
        if not self._entries:
            return
        # min() returns the earliest-inserted entry among equal timestamps
        oldest_key = min(self._entries.items(), key=lambda item: item[1])[0]
        del self._entries[oldest_key]
        self._metrics.evictions += 1
        logger.debug("Evicted oldest dedup entry", extra={"size": len(self._entries)})

    def sweep(self) -> int:
        """Remove entries older than max_age_s. Returns the number removed."""
        now = self._time_fn()
        expired = [k for k, ts in self._entries.items() if now - ts > self._max_age_s]
        for key in expired:
            del self._entries[key]
        if expired:
            self._metrics.expired += len(expired)
            logger.info("Swept expired dedup entries", extra={"removed": len(expired)})
        return len(expired)

    # DedupStore protocol

    async def exists(self, key: str) -> bool:
        return self.contains(key)

    async def exists_many(self, keys: Sequence[str]) -> dict[str, bool]:
        return {key: self.contains(key) for key in keys}

    async def mark_sent(self, key: str) -> None:
        self.add(key)

    async def mark_sent_many(self, keys: Sequence[str]) -> None:
        for key in keys:
            self.add(key)

    async def stats(self) -> dict[str, Any]:
        oldest = min(self._entries.values()) if self._entries else None
        return {
            "size": len(self._entries),
            "capacity": self._capacity,
            "oldest_timestamp": oldest,
            "evictions": self._metrics.evictions,
            "expired": self._metrics.expired,
        }

    async def clear(self) -> None:
        self._entries.clear()
        logger.info("Memory dedup store cleared")

    # Background sweep

    def start_sweeper(self, interval_s: float = DEFAULT_SWEEP_INTERVAL_S) -> None:
        """Run sweep() every interval_s on the running event loop."""
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.create_task(self._sweep_loop(interval_s))

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None

    async def _sweep_loop(self, interval_s: float) -> None:
        while True:
            await asyncio.sleep(interval_s)
            self.sweep()
