"""Deduplication: key derivation and the two-tier sent-record cache."""

from noticewatch.dedup.base import DedupStore
from noticewatch.dedup.cache import CacheMetrics, DedupCache
from noticewatch.dedup.durable import RedisDedupStore, RedisStoreConfig
from noticewatch.dedup.keys import dedup_key, normalize_title, normalize_url_path
from noticewatch.dedup.memory import MemoryDedupStore

__all__ = [
    "CacheMetrics",
    "DedupCache",
    "DedupStore",
    "MemoryDedupStore",
    "RedisDedupStore",
    "RedisStoreConfig",
    "dedup_key",
    "normalize_title",
    "normalize_url_path",
]
