"""Data contracts and error taxonomy shared by all pipeline stages."""

from noticewatch.contracts.errors import (
    CacheUnavailable,
    ChannelDeliveryError,
    ConfigError,
    FetchError,
    FilterParseError,
    NoticeWatchError,
    RecordValidationError,
)
from noticewatch.contracts.records import (
    CategoryRule,
    DeliveryOutcome,
    Record,
    RunResult,
    RunStatus,
    record_id_for_url,
)

__all__ = [
    "CacheUnavailable",
    "CategoryRule",
    "ChannelDeliveryError",
    "ConfigError",
    "DeliveryOutcome",
    "FetchError",
    "FilterParseError",
    "NoticeWatchError",
    "Record",
    "RecordValidationError",
    "RunResult",
    "RunStatus",
    "record_id_for_url",
]
