"""
Base channel interface.

A channel makes exactly one delivery attempt per send(); retry and
fallback policy belongs to the dispatch coordinator.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from noticewatch.delivery.formatter import Payload


@dataclass
class ChannelResult:
    """Result of a single delivery attempt."""

    success: bool
    message: str = ""
    status_code: int | None = None


class NotificationChannel(ABC):
    """Abstract base class for delivery channels."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique name for this channel."""
        ...

    @abstractmethod
    async def send(self, payload: Payload) -> ChannelResult:
        """
        Deliver a payload once.

        Args:
            payload: Rendered payload

        Returns:
            ChannelResult indicating success or failure

        Raises:
            aiohttp.ClientError: On transport failure
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close any resources held by this channel."""
        ...

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"
