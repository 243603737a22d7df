"""
Redis-backed dedup tier.

Keys survive process restarts and expire after ttl_s. Every operation is
bounded by timeout_s; an unreachable or failing server surfaces as
CacheUnavailable (ping() returns False instead) so the two-tier cache can
fall back to memory.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from collections.abc import Awaitable, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from noticewatch.contracts.errors import CacheUnavailable, ConfigError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TTL_S = 7 * 24 * 3600


@dataclass
class RedisStoreConfig:
    """Durable tier configuration."""

    enabled: bool = False
    url: str = "redis://localhost:6379/0"
    key_prefix: str = "noticewatch:"
    ttl_s: int = DEFAULT_TTL_S
    timeout_s: float = 3.0

    def __post_init__(self) -> None:
        if self.ttl_s <= 0:
            raise ConfigError(f"ttl_s must be > 0, got {self.ttl_s}")
        if self.timeout_s <= 0:
            raise ConfigError(f"timeout_s must be > 0, got {self.timeout_s}")
        if self.enabled and not self.url:
            raise ConfigError("REDIS_URL required when Redis is enabled")


class RedisDedupStore:
    """Durable dedup store on redis.asyncio."""

    def __init__(self, config: RedisStoreConfig, client: aioredis.Redis | None = None) -> None:
        self._config = config
        self._client = client or aioredis.from_url(
            config.url,
            socket_timeout=config.timeout_s,
            socket_connect_timeout=config.timeout_s,
            decode_responses=True,
        )

    @property
    def ttl_s(self) -> int:
        return self._config.ttl_s

    def storage_key(self, key: str) -> str:
        """Redis key for a dedup key (hashed to keep key length bounded)."""
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return f"{self._config.key_prefix}sent:{digest}"

    async def _call(self, op: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._config.timeout_s)
        except (RedisError, OSError, TimeoutError) as e:
            logger.warning("Redis operation failed", extra={"op": op, "error": str(e)})
            raise CacheUnavailable(f"redis {op} failed: {e}", {"op": op}) from e

    async def ping(self) -> bool:
        """Liveness probe. Never raises."""
        try:
            return bool(await self._call("ping", self._client.ping()))
        except CacheUnavailable:
            return False

    async def exists(self, key: str) -> bool:
        count = await self._call("exists", self._client.exists(self.storage_key(key)))
        return bool(count)

    async def exists_many(self, keys: Sequence[str]) -> dict[str, bool]:
        if not keys:
            return {}
        storage_keys = [self.storage_key(k) for k in keys]
        values = await self._call("mget", self._client.mget(storage_keys))
        return {key: value is not None for key, value in zip(keys, values, strict=True)}

    async def mark_sent(self, key: str) -> None:
        await self._call(
            "set", self._client.set(self.storage_key(key), "1", ex=self._config.ttl_s)
        )

    async def mark_sent_many(self, keys: Sequence[str]) -> None:
        if not keys:
            return
        pipe = self._client.pipeline(transaction=False)
        for key in keys:
            pipe.set(self.storage_key(key), "1", ex=self._config.ttl_s)
        await self._call("pipeline_set", pipe.execute())
        logger.info("Marked keys as sent in Redis", extra={"count": len(keys)})

    async def _scan_keys(self) -> list[str]:
        pattern = f"{self._config.key_prefix}sent:*"
        return [key async for key in self._client.scan_iter(match=pattern, count=500)]

    async def stats(self) -> dict[str, Any]:
        keys = await self._call("scan", self._scan_keys())
        return {"size": len(keys), "ttl_s": self._config.ttl_s}

    async def clear(self) -> None:
        keys = await self._call("scan", self._scan_keys())
        if keys:
            await self._call("delete", self._client.delete(*keys))
        logger.info("Redis dedup store cleared", extra={"removed": len(keys)})

    async def close(self) -> None:
        try:
            await self._client.aclose()
        except (RedisError, OSError) as e:
            logger.warning("Error closing Redis client", extra={"error": str(e)})
