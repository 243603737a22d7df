"""
Record validation.

Turns raw candidate records into Record contracts. Malformed input is
dropped and counted, never raised: a partially broken page still yields
its good records.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from urllib.parse import urlsplit

from pydantic import ValidationError

from noticewatch.contracts.errors import RecordValidationError
from noticewatch.contracts.records import Record

logger = logging.getLogger(__name__)

DEFAULT_MIN_TITLE_LENGTH = 5
DEFAULT_MAX_TITLE_LENGTH = 200

_WHITESPACE_RE = re.compile(r"\s+")
_DATE_KEYS = ("publish_date", "publishDate", "published_at", "publishTimestamp")


def normalize_text(text: str) -> str:
    """Replace control characters with spaces and collapse whitespace runs."""
    cleaned = "".join(
        " " if unicodedata.category(ch).startswith("C") else ch for ch in text
    )
    return _WHITESPACE_RE.sub(" ", cleaned).strip()


def is_absolute_url(url: str) -> bool:
    """Check that url is an absolute http(s) URL with a host."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.netloc)


def _coerce_publish_date(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bool):
        return ""
    if isinstance(value, (int, float)):
        return str(int(value))
    return str(value).strip()


@dataclass
class ValidatorStats:
    """Counters for validation decisions."""

    total_received: int = 0
    total_passed: int = 0
    rejected: dict[str, int] = field(default_factory=dict)

    def record_rejection(self, reason: str) -> None:
        self.rejected[reason] = self.rejected.get(reason, 0) + 1


class RecordValidator:
    """
    Normalizes and rejects malformed candidate records.

    A record passes when id, title and url are non-empty, url is an absolute
    http(s) URL and the normalized title length is within bounds.
    """

    def __init__(
        self,
        min_title_length: int = DEFAULT_MIN_TITLE_LENGTH,
        max_title_length: int = DEFAULT_MAX_TITLE_LENGTH,
    ) -> None:
        if min_title_length < 1 or max_title_length < min_title_length:
            raise ValueError(
                f"invalid title bounds: {min_title_length}..{max_title_length}"
            )
        self._min_title_length = min_title_length
        self._max_title_length = max_title_length
        self._stats = ValidatorStats()

    @property
    def stats(self) -> ValidatorStats:
        return self._stats

    def validate(self, raw_records: Iterable[Mapping[str, Any] | Record]) -> list[Record]:
        """Return the valid records, normalized, in input order."""
        valid: list[Record] = []
        for raw in raw_records:
            self._stats.total_received += 1
            try:
                record = self.validate_one(raw)
            except RecordValidationError as e:
                self._stats.record_rejection(e.details.get("reason", "invalid"))
                logger.warning(
                    "Dropping malformed record",
                    extra={"reason": str(e), "record_title": e.details.get("title", "")},
                )
                continue
            valid.append(record)
            self._stats.total_passed += 1
        return valid

    def validate_one(self, raw: Mapping[str, Any] | Record) -> Record:
        """
        Validate and normalize a single raw record.

        Raises:
            RecordValidationError: If the record violates any rule.
        """
        if isinstance(raw, Record):
            raw = raw.model_dump()
        if not isinstance(raw, Mapping):
            raise RecordValidationError(
                "record is not a mapping", {"reason": "not_a_mapping"}
            )

        record_id = str(raw.get("id") or "").strip()
        raw_title = str(raw.get("title") or "")
        url = str(raw.get("url") or "").strip()
        title = normalize_text(raw_title)

        if not record_id or not title or not url:
            raise RecordValidationError(
                "missing id, title or url",
                {"reason": "missing_field", "title": title},
            )

        if not is_absolute_url(url):
            raise RecordValidationError(
                "url is not absolute", {"reason": "invalid_url", "title": title}
            )

        if not self._min_title_length <= len(title) <= self._max_title_length:
            raise RecordValidationError(
                f"title length {len(title)} outside "
                f"{self._min_title_length}..{self._max_title_length}",
                {"reason": "title_length", "title": title[:50]},
            )

        publish_value = next((raw[k] for k in _DATE_KEYS if raw.get(k) is not None), None)
        summary_raw = raw.get("summary")
        summary = normalize_text(str(summary_raw)) if summary_raw else None

        try:
            return Record(
                id=record_id,
                title=title,
                url=url,
                publish_date=_coerce_publish_date(publish_value),
                summary=summary or None,
                category=raw.get("category") or None,
            )
        except ValidationError as e:
            raise RecordValidationError(
                f"schema violation: {e.error_count()} error(s)",
                {"reason": "schema", "title": title},
            ) from e
