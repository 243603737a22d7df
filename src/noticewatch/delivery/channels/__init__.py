"""Delivery channels."""

from noticewatch.delivery.channels.base import ChannelResult, NotificationChannel
from noticewatch.delivery.channels.bot_api import BotApiChannel
from noticewatch.delivery.channels.webhook import WebhookChannel, sign_webhook

__all__ = [
    "BotApiChannel",
    "ChannelResult",
    "NotificationChannel",
    "WebhookChannel",
    "sign_webhook",
]
