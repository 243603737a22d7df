"""
Temporal and keyword filtering.

Three independent predicates, AND-combined:
1. Freshness: published within the last `day_range` days (fail-open on
   unparseable dates so upstream format drift never loses notices)
2. Include keywords: at least one must match when any are configured
3. Exclude keywords: none may match

Matching is a case-insensitive substring test over title + summary.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from noticewatch.contracts.errors import ConfigError, FilterParseError
from noticewatch.contracts.records import Record

logger = logging.getLogger(__name__)

_DIGITS_RE = re.compile(r"^\d{9,13}$")
_SEPARATED_DATE_RE = re.compile(
    r"^(\d{4}|\d{2})[-/.](\d{1,2})[-/.](\d{1,2})(?:[ T](\d{1,2}):(\d{2})(?::(\d{2}))?)?$"
)
_CJK_DATE_MARKS = str.maketrans({"年": "-", "月": "-", "日": None})
# Epoch values above this are milliseconds
_EPOCH_MS_THRESHOLD = 10**11


def parse_publish_date(value: str) -> datetime:
    """
    Interpret a raw publish timestamp as an aware UTC datetime.

    Accepts ISO-8601 (naive values are taken as UTC), YYYY-M-D with "-",
    "/" or "." separators and an optional H:MM[:SS] time, YYYY年M月D日,
    two-digit years (20YY), and epoch seconds or milliseconds.

    Raises:
        FilterParseError: If the value cannot be interpreted.
    """
    text = (value or "").strip()
    if not text:
        raise FilterParseError("empty publish date", {"value": value})

    if _DIGITS_RE.match(text):
        epoch = int(text)
        if epoch >= _EPOCH_MS_THRESHOLD:
            epoch //= 1000
        return datetime.fromtimestamp(epoch, tz=UTC)

    normalized = text.translate(_CJK_DATE_MARKS).strip()
    parsed: datetime | None = None
    match = _SEPARATED_DATE_RE.match(normalized)
    try:
        if match:
            year, month, day, hour, minute, second = match.groups()
            parsed = datetime(
                int(year) + 2000 if len(year) == 2 else int(year),
                int(month),
                int(day),
                int(hour or 0),
                int(minute or 0),
                int(second or 0),
            )
        else:
            parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise FilterParseError(f"unparseable publish date: {text!r}", {"value": text}) from e

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass
class FilterConfig:
    """Freshness window and keyword policy."""

    day_range: int = 7
    include_keywords: list[str] = field(default_factory=list)
    exclude_keywords: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.day_range <= 0:
            raise ConfigError(f"day_range must be > 0, got {self.day_range}")
        self.include_keywords = [k.strip() for k in self.include_keywords if k.strip()]
        self.exclude_keywords = [k.strip() for k in self.exclude_keywords if k.strip()]


@dataclass
class FilterResult:
    """Surviving records plus per-stage diagnostic counts."""

    records: list[Record]
    total: int = 0
    after_date: int = 0
    after_include: int = 0
    after_exclude: int = 0
    date_parse_failures: int = 0


class RecordFilter:
    """Applies the freshness window and keyword policy to validated records."""

    def __init__(
        self,
        config: FilterConfig,
        time_fn: Callable[[], float] | None = None,
    ) -> None:
        self._config = config
        self._include = [k.lower() for k in config.include_keywords]
        self._exclude = [k.lower() for k in config.exclude_keywords]
        self._time_fn = time_fn or time.time

    @property
    def config(self) -> FilterConfig:
        return self._config

    def cutoff(self) -> datetime:
        """Oldest publish time still considered fresh."""
        now = datetime.fromtimestamp(self._time_fn(), tz=UTC)
        return now - timedelta(days=self._config.day_range)

    def apply(self, records: Iterable[Record]) -> FilterResult:
        """Filter records, preserving input order."""
        records = list(records)
        result = FilterResult(records=[], total=len(records))
        cutoff = self.cutoff()

        fresh: list[Record] = []
        for record in records:
            try:
                published = parse_publish_date(record.publish_date)
            except FilterParseError:
                result.date_parse_failures += 1
                logger.warning(
                    "Publish date unparseable, keeping record",
                    extra={"record_id": record.id, "publish_date": record.publish_date},
                )
                fresh.append(record)
                continue
            if published >= cutoff:
                fresh.append(record)
        result.after_date = len(fresh)

        included = [r for r in fresh if self.matches_include(r)]
        result.after_include = len(included)

        kept = [r for r in included if not self.matches_exclude(r)]
        result.after_exclude = len(kept)

        result.records = kept
        logger.info(
            "Filter applied",
            extra={
                "total": result.total,
                "after_date": result.after_date,
                "after_include": result.after_include,
                "after_exclude": result.after_exclude,
                "date_parse_failures": result.date_parse_failures,
            },
        )
        return result

    def matches_include(self, record: Record) -> bool:
        if not self._include:
            return True
        text = record.search_text
        return any(keyword in text for keyword in self._include)

    def matches_exclude(self, record: Record) -> bool:
        text = record.search_text
        return any(keyword in text for keyword in self._exclude)
