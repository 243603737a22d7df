"""Record sources."""

from noticewatch.source.base import SourceProvider, StaticSource
from noticewatch.source.http_feed import JsonFeedSource, SourceConfig, extract_items

__all__ = [
    "JsonFeedSource",
    "SourceConfig",
    "SourceProvider",
    "StaticSource",
    "extract_items",
]
