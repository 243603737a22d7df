"""
Delivery configuration.

Channel credentials and the dispatch retry policy.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from noticewatch.contracts.errors import ConfigError
from noticewatch.delivery.formatter import DispatchMode

CHANNEL_NAMES = ("bot_api", "webhook")


@dataclass
class WebhookChannelConfig:
    """Signed webhook channel configuration."""

    enabled: bool = False
    url: str = ""  # From WEBHOOK_URL env var
    secret: str = ""  # From WEBHOOK_SECRET env var, signing disabled when empty
    timeout_s: float = 10.0

    def __post_init__(self) -> None:
        if self.enabled:
            if not self.url:
                self.url = os.environ.get("WEBHOOK_URL", "")
            if not self.secret:
                self.secret = os.environ.get("WEBHOOK_SECRET", "")
            if not self.url:
                raise ConfigError("WEBHOOK_URL required when webhook channel enabled")
        if self.timeout_s <= 0:
            raise ConfigError(f"timeout_s must be > 0, got {self.timeout_s}")


@dataclass
class BotApiChannelConfig:
    """Authenticated bot API channel configuration."""

    enabled: bool = False
    app_id: str = ""  # From BOT_APP_ID env var
    app_secret: str = ""  # From BOT_APP_SECRET env var
    chat_id: str = ""  # From BOT_CHAT_ID env var
    base_url: str = "https://open.feishu.cn"
    timeout_s: float = 10.0
    # Refresh the cached token this long before it expires
    token_refresh_margin_s: float = 300.0

    def __post_init__(self) -> None:
        if self.enabled:
            if not self.app_id:
                self.app_id = os.environ.get("BOT_APP_ID", "")
            if not self.app_secret:
                self.app_secret = os.environ.get("BOT_APP_SECRET", "")
            if not self.chat_id:
                self.chat_id = os.environ.get("BOT_CHAT_ID", "")
            missing = [
                name
                for name, value in (
                    ("BOT_APP_ID", self.app_id),
                    ("BOT_APP_SECRET", self.app_secret),
                    ("BOT_CHAT_ID", self.chat_id),
                )
                if not value
            ]
            if missing:
                raise ConfigError(
                    f"{', '.join(missing)} required when bot API channel enabled"
                )
        self.base_url = self.base_url.rstrip("/")
        if self.timeout_s <= 0:
            raise ConfigError(f"timeout_s must be > 0, got {self.timeout_s}")


@dataclass
class DispatchConfig:
    """Retry and fallback policy for the dispatch coordinator."""

    mode: DispatchMode = DispatchMode.GROUPED
    max_attempts: int = 3
    base_delay_s: float = 1.0
    max_delay_s: float = 30.0
    attempt_timeout_s: float = 10.0
    channel_order: tuple[str, ...] = CHANNEL_NAMES
    # Dry run mode: render and log but don't send
    dry_run: bool = False
    webhook: WebhookChannelConfig = field(default_factory=WebhookChannelConfig)
    bot_api: BotApiChannelConfig = field(default_factory=BotApiChannelConfig)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay_s < 0:
            raise ConfigError(f"base_delay_s must be >= 0, got {self.base_delay_s}")
        if self.max_delay_s < self.base_delay_s:
            raise ConfigError(
                f"max_delay_s ({self.max_delay_s}) must be >= base_delay_s ({self.base_delay_s})"
            )
        if self.attempt_timeout_s <= 0:
            raise ConfigError(f"attempt_timeout_s must be > 0, got {self.attempt_timeout_s}")
        unknown = [name for name in self.channel_order if name not in CHANNEL_NAMES]
        if unknown:
            raise ConfigError(f"Unknown channels in channel_order: {unknown}")
        if len(set(self.channel_order)) != len(self.channel_order):
            raise ConfigError(f"Duplicate channels in channel_order: {list(self.channel_order)}")

    def any_enabled(self) -> bool:
        """Check if any channel is enabled."""
        return self.webhook.enabled or self.bot_api.enabled
