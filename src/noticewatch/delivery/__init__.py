"""
Notification delivery.

Renders new records into payloads and delivers them through ordered
channels with retry and fallback.
"""

from noticewatch.delivery.channels import (
    BotApiChannel,
    ChannelResult,
    NotificationChannel,
    WebhookChannel,
)
from noticewatch.delivery.config import (
    BotApiChannelConfig,
    DispatchConfig,
    WebhookChannelConfig,
)
from noticewatch.delivery.coordinator import (
    DispatchCoordinator,
    DispatchReport,
    PayloadReport,
)
from noticewatch.delivery.formatter import DispatchMode, Payload, PayloadRenderer

__all__ = [
    "BotApiChannel",
    "BotApiChannelConfig",
    "ChannelResult",
    "DispatchConfig",
    "DispatchCoordinator",
    "DispatchMode",
    "DispatchReport",
    "NotificationChannel",
    "Payload",
    "PayloadRenderer",
    "PayloadReport",
    "WebhookChannel",
    "WebhookChannelConfig",
]
