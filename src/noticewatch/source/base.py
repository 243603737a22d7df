"""
Source provider interface.

A provider returns raw record mappings; validation happens downstream.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any, Protocol


class SourceProvider(Protocol):
    """Produces one batch of raw candidate records per call."""

    async def fetch(self) -> list[Mapping[str, Any]]:
        """
        Fetch one batch.

        Raises:
            FetchError: If nothing usable could be fetched.
        """
        ...


class StaticSource:
    """Returns the same fixed batch on every fetch."""

    def __init__(self, records: Iterable[Mapping[str, Any]] = ()) -> None:
        self._records = [dict(r) for r in records]
        self.fetch_count = 0

    async def fetch(self) -> list[Mapping[str, Any]]:
        self.fetch_count += 1
        return [dict(r) for r in self._records]
