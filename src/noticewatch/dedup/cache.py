"""
Two-tier deduplication cache.

Durable tier (Redis) is preferred while its health probe succeeds; the
memory tier is always written so a key marked sent stays visible in this
process even after the durable tier drops out. Callers never see which
tier answered.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from noticewatch.contracts.errors import CacheUnavailable
from noticewatch.contracts.records import Record
from noticewatch.dedup.durable import RedisDedupStore
from noticewatch.dedup.keys import dedup_key
from noticewatch.dedup.memory import MemoryDedupStore

logger = logging.getLogger(__name__)

DEFAULT_HEALTH_CHECK_INTERVAL_S = 30.0


@dataclass
class CacheMetrics:
    """Counters for tier selection and failures."""

    durable_hits: int = 0
    memory_hits: int = 0
    fallbacks: int = 0
    durable_write_failures: int = 0
    batch_duplicates: int = 0


class DedupCache:
    """Durable-first dedup cache with bounded memory fallback."""

    def __init__(
        self,
        memory: MemoryDedupStore,
        durable: RedisDedupStore | None = None,
        health_check_interval_s: float = DEFAULT_HEALTH_CHECK_INTERVAL_S,
        time_fn: Callable[[], float] | None = None,
    ) -> None:
        self._memory = memory
        self._durable = durable
        self._health_check_interval_s = health_check_interval_s
        self._time_fn = time_fn or time.monotonic
        self._durable_healthy = False
        self._last_probe: float | None = None
        self._metrics = CacheMetrics()

    @property
    def memory(self) -> MemoryDedupStore:
        return self._memory

    @property
    def durable(self) -> RedisDedupStore | None:
        return self._durable

    @property
    def metrics(self) -> CacheMetrics:
        return self._metrics

    @property
    def durable_healthy(self) -> bool:
        """Last known durable health (no probe)."""
        return self._durable is not None and self._durable_healthy

    async def _use_durable(self) -> bool:
        if self._durable is None:
            return False
        now = self._time_fn()
        stale = (
            self._last_probe is None
            or self._health_check_interval_s <= 0
            or now - self._last_probe >= self._health_check_interval_s
        )
        if stale:
            healthy = await self._durable.ping()
            self._last_probe = now
            if healthy != self._durable_healthy:
                logger.warning(
                    "Durable dedup tier health changed",
                    extra={"healthy": healthy},
                )
            self._durable_healthy = healthy
        if not self._durable_healthy:
            self._metrics.fallbacks += 1
        return self._durable_healthy

    def _mark_unhealthy(self, error: CacheUnavailable) -> None:
        self._durable_healthy = False
        self._last_probe = self._time_fn()
        self._metrics.fallbacks += 1
        logger.warning(
            "Durable dedup tier unavailable, using memory",
            extra={"error": str(error)},
        )

    async def exists(self, key: str) -> bool:
        result = await self.exists_many([key])
        return result[key]

    async def exists_many(self, keys: Sequence[str]) -> dict[str, bool]:
        """Map each key to whether it was already sent."""
        found = await self._memory.exists_many(keys)
        self._metrics.memory_hits += sum(found.values())
        if await self._use_durable():
            assert self._durable is not None
            try:
                durable_found = await self._durable.exists_many(keys)
            except CacheUnavailable as e:
                self._mark_unhealthy(e)
            else:
                for key, present in durable_found.items():
                    if present and not found.get(key):
                        found[key] = True
                        self._metrics.durable_hits += 1
        return found

    async def mark_sent(self, key: str) -> None:
        await self.mark_sent_many([key])

    async def mark_sent_many(self, keys: Sequence[str]) -> None:
        """Record keys as sent in memory and, when healthy, in the durable tier."""
        if not keys:
            return
        await self._memory.mark_sent_many(keys)
        if await self._use_durable():
            assert self._durable is not None
            try:
                await self._durable.mark_sent_many(keys)
            except CacheUnavailable as e:
                self._metrics.durable_write_failures += 1
                self._mark_unhealthy(e)

    def dedupe_batch(self, records: Sequence[Record]) -> list[Record]:
        """Drop records whose dedup key already appeared earlier in the batch."""
        seen: set[str] = set()
        unique: list[Record] = []
        for record in records:
            key = dedup_key(record)
            if key in seen:
                self._metrics.batch_duplicates += 1
                logger.debug("Dropped in-batch duplicate", extra={"record_id": record.id})
                continue
            seen.add(key)
            unique.append(record)
        return unique

    async def filter_new(self, records: Sequence[Record]) -> list[Record]:
        """Return records not sent before, after intra-batch dedup."""
        unique = self.dedupe_batch(records)
        if not unique:
            return []
        sent = await self.exists_many([dedup_key(r) for r in unique])
        new_records = [r for r in unique if not sent[dedup_key(r)]]
        logger.info(
            "Dedup complete",
            extra={
                "input": len(records),
                "unique": len(unique),
                "new": len(new_records),
            },
        )
        return new_records

    async def stats(self) -> dict[str, Any]:
        memory_stats = await self._memory.stats()
        use_durable = await self._use_durable()
        stats: dict[str, Any] = {
            "tier": "redis" if use_durable else "memory",
            "durable_configured": self._durable is not None,
            "durable_healthy": use_durable,
            "memory_size": memory_stats["size"],
            "memory_capacity": memory_stats["capacity"],
            "oldest_timestamp": memory_stats["oldest_timestamp"],
            "fallbacks": self._metrics.fallbacks,
        }
        if use_durable:
            assert self._durable is not None
            try:
                durable_stats = await self._durable.stats()
            except CacheUnavailable as e:
                self._mark_unhealthy(e)
                stats["tier"] = "memory"
                stats["durable_healthy"] = False
            else:
                stats["durable_size"] = durable_stats["size"]
        return stats

    async def clear(self) -> None:
        """Forget every key in both tiers."""
        await self._memory.clear()
        if self._durable is not None:
            try:
                await self._durable.clear()
            except CacheUnavailable as e:
                self._mark_unhealthy(e)

    def start(self, sweep_interval_s: float | None = None) -> None:
        """Start the memory tier sweeper."""
        if sweep_interval_s is None:
            self._memory.start_sweeper()
        else:
            self._memory.start_sweeper(sweep_interval_s)

    async def close(self) -> None:
        await self._memory.stop_sweeper()
        if self._durable is not None:
            await self._durable.close()
