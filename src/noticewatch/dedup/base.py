"""
Dedup store interface.

Both cache tiers implement this protocol so the two-tier cache can treat
them interchangeably.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol


class DedupStore(Protocol):
    """Storage operations for sent-record keys."""

    async def exists(self, key: str) -> bool:
        """Check whether key was marked sent."""
        ...

    async def exists_many(self, keys: Sequence[str]) -> dict[str, bool]:
        """Check several keys at once."""
        ...

    async def mark_sent(self, key: str) -> None:
        """Record key as sent."""
        ...

    async def mark_sent_many(self, keys: Sequence[str]) -> None:
        """Record several keys as sent."""
        ...

    async def stats(self) -> dict[str, Any]:
        """Return store statistics."""
        ...

    async def clear(self) -> None:
        """Forget every key."""
        ...
