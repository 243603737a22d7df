"""Record validation and temporal/keyword filtering."""

from noticewatch.filtering.record_filter import (
    FilterConfig,
    FilterResult,
    RecordFilter,
    parse_publish_date,
)
from noticewatch.filtering.validator import RecordValidator, ValidatorStats

__all__ = [
    "FilterConfig",
    "FilterResult",
    "RecordFilter",
    "RecordValidator",
    "ValidatorStats",
    "parse_publish_date",
]
