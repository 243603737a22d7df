"""
Error taxonomy for the notice pipeline.

Only FetchError aborts a run. Every other error is absorbed by the stage that
detects it and surfaces through RunResult counters and delivery outcomes.
"""

from __future__ import annotations

from typing import Any


class NoticeWatchError(Exception):
    """Base class for all pipeline errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details = details or {}


class RecordValidationError(NoticeWatchError):
    """A raw record is malformed. Recovered by dropping the record."""


class FilterParseError(NoticeWatchError):
    """A publish date could not be interpreted. Recovered by keeping the record."""


class FetchError(NoticeWatchError):
    """The source produced nothing usable. Aborts the run."""


class CacheUnavailable(NoticeWatchError):
    """The durable cache tier cannot serve a request. Recovered by tier fallback."""


class ChannelDeliveryError(NoticeWatchError):
    """A channel rejected or failed a delivery attempt."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, details)
        self.status_code = status_code


class ConfigError(NoticeWatchError, ValueError):
    """Invalid configuration. Fatal at startup."""
