"""
Service configuration.

AppConfig collects every setting from environment variables; each section
validates itself in __post_init__ and raises ConfigError on bad values.
build_orchestrator() wires the full object graph from an AppConfig.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from noticewatch.classify.classifier import DEFAULT_RULES, CategoryClassifier
from noticewatch.contracts.errors import ConfigError
from noticewatch.contracts.records import CategoryRule
from noticewatch.dedup.cache import DEFAULT_HEALTH_CHECK_INTERVAL_S, DedupCache
from noticewatch.dedup.durable import RedisDedupStore, RedisStoreConfig
from noticewatch.dedup.memory import MemoryDedupStore
from noticewatch.delivery.channels.base import NotificationChannel
from noticewatch.delivery.channels.bot_api import BotApiChannel
from noticewatch.delivery.channels.webhook import WebhookChannel
from noticewatch.delivery.config import (
    CHANNEL_NAMES,
    BotApiChannelConfig,
    DispatchConfig,
    WebhookChannelConfig,
)
from noticewatch.delivery.coordinator import DispatchCoordinator
from noticewatch.delivery.formatter import DispatchMode, PayloadRenderer
from noticewatch.filtering.record_filter import FilterConfig, RecordFilter
from noticewatch.filtering.validator import (
    DEFAULT_MAX_TITLE_LENGTH,
    DEFAULT_MIN_TITLE_LENGTH,
    RecordValidator,
)
from noticewatch.monitoring.exporter import PipelineExporter
from noticewatch.pipeline.orchestrator import RunOrchestrator
from noticewatch.source.base import SourceProvider, StaticSource
from noticewatch.source.http_feed import JsonFeedSource, SourceConfig

logger = logging.getLogger(__name__)

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off", ""})


def _env_str(env: Mapping[str, str], key: str, default: str = "") -> str:
    return env.get(key, default).strip()


def _env_bool(env: Mapping[str, str], key: str, default: bool = False) -> bool:
    raw = env.get(key)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigError(f"{key} must be a boolean, got {raw!r}")


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from e


def _env_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{key} must be a number, got {raw!r}") from e


def _env_list(env: Mapping[str, str], key: str, default: Sequence[str] = ()) -> list[str]:
    raw = env.get(key)
    if raw is None:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def load_rules_file(path: str | Path) -> list[CategoryRule]:
    """
    Load category rules from YAML.

    Expected shape: a list of {name, keywords, priority} mappings, or a
    mapping with that list under "rules".

    Raises:
        ConfigError: If the file is missing, malformed or a rule is invalid.
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data: Any = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"cannot read rules file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in rules file {path}: {e}") from e

    if isinstance(data, Mapping):
        data = data.get("rules")
    if not isinstance(data, list):
        raise ConfigError(f"rules file {path} must contain a list of rules")

    rules: list[CategoryRule] = []
    for index, item in enumerate(data, start=1):
        if not isinstance(item, Mapping):
            raise ConfigError(f"rule {index} in {path} is not a mapping")
        keywords = item.get("keywords") or []
        if not isinstance(keywords, list):
            raise ConfigError(f"rule {index} in {path}: keywords must be a list, got {keywords!r}")
        try:
            rules.append(
                CategoryRule(
                    name=str(item.get("name", "")),
                    keywords=tuple(str(k) for k in keywords),
                    priority=item.get("priority"),
                )
            )
        except ValueError as e:
            raise ConfigError(f"rule {index} in {path} is invalid: {e}") from e
    return rules


@dataclass
class ScheduleConfig:
    """Periodic trigger settings."""

    interval_s: float = 3600.0
    run_once: bool = False
    graceful_timeout_s: float = 60.0

    def __post_init__(self) -> None:
        if self.interval_s <= 0:
            raise ConfigError(f"interval_s must be > 0, got {self.interval_s}")
        if self.graceful_timeout_s <= 0:
            raise ConfigError(f"graceful_timeout_s must be > 0, got {self.graceful_timeout_s}")


@dataclass
class CacheConfig:
    """Two-tier dedup cache settings."""

    memory_capacity: int = 1000
    health_check_interval_s: float = DEFAULT_HEALTH_CHECK_INTERVAL_S
    redis: RedisStoreConfig = field(default_factory=RedisStoreConfig)

    def __post_init__(self) -> None:
        if self.memory_capacity < 1:
            raise ConfigError(f"memory_capacity must be >= 1, got {self.memory_capacity}")
        if self.health_check_interval_s < 0:
            raise ConfigError(
                f"health_check_interval_s must be >= 0, got {self.health_check_interval_s}"
            )


@dataclass
class AppConfig:
    """Complete service configuration."""

    source: SourceConfig = field(default_factory=SourceConfig)
    filter: FilterConfig = field(default_factory=FilterConfig)
    min_title_length: int = DEFAULT_MIN_TITLE_LENGTH
    max_title_length: int = DEFAULT_MAX_TITLE_LENGTH
    rules: tuple[CategoryRule, ...] = DEFAULT_RULES
    cache: CacheConfig = field(default_factory=CacheConfig)
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    notify_title: str = "Notice Board Updates"
    notify_timezone: str = "UTC"
    log_level: str = "INFO"
    log_json: bool = False
    metrics_port: int = 0  # 0 disables the metrics server

    def __post_init__(self) -> None:
        if self.min_title_length < 1 or self.max_title_length < self.min_title_length:
            raise ConfigError(
                f"invalid title bounds: {self.min_title_length}..{self.max_title_length}"
            )
        if not 0 <= self.metrics_port <= 65535:
            raise ConfigError(f"metrics_port out of range: {self.metrics_port}")
        self.log_level = self.log_level.upper()
        if self.log_level not in logging.getLevelNamesMapping():
            raise ConfigError(f"unknown log level {self.log_level!r}")
        try:
            ZoneInfo(self.notify_timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigError(f"unknown timezone {self.notify_timezone!r}") from e

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> AppConfig:
        """Build configuration from environment variables."""
        env = os.environ if environ is None else environ

        rules_file = _env_str(env, "RULES_FILE")
        rules = tuple(load_rules_file(rules_file)) if rules_file else DEFAULT_RULES

        mode_raw = _env_str(env, "DISPATCH_MODE", DispatchMode.GROUPED.value)
        try:
            mode = DispatchMode(mode_raw)
        except ValueError as e:
            valid = ", ".join(m.value for m in DispatchMode)
            raise ConfigError(f"DISPATCH_MODE must be one of {valid}, got {mode_raw!r}") from e

        webhook_url = _env_str(env, "WEBHOOK_URL")
        bot_app_id = _env_str(env, "BOT_APP_ID")

        return cls(
            source=SourceConfig(
                url=_env_str(env, "SOURCE_URL"),
                pages=_env_int(env, "SOURCE_PAGES", 1),
                timeout_s=_env_float(env, "SOURCE_TIMEOUT_S", 30.0),
                retries=_env_int(env, "SOURCE_RETRIES", 3),
            ),
            filter=FilterConfig(
                day_range=_env_int(env, "FILTER_DAY_RANGE", 7),
                include_keywords=_env_list(env, "FILTER_KEYWORDS"),
                exclude_keywords=_env_list(env, "FILTER_EXCLUDE_KEYWORDS"),
            ),
            min_title_length=_env_int(env, "TITLE_MIN_LENGTH", DEFAULT_MIN_TITLE_LENGTH),
            max_title_length=_env_int(env, "TITLE_MAX_LENGTH", DEFAULT_MAX_TITLE_LENGTH),
            rules=rules,
            cache=CacheConfig(
                memory_capacity=_env_int(env, "FILTER_CACHE_SIZE", 1000),
                health_check_interval_s=_env_float(
                    env, "CACHE_HEALTH_CHECK_S", DEFAULT_HEALTH_CHECK_INTERVAL_S
                ),
                redis=RedisStoreConfig(
                    enabled=_env_bool(env, "REDIS_ENABLED"),
                    url=_env_str(env, "REDIS_URL", "redis://localhost:6379/0"),
                    key_prefix=_env_str(env, "REDIS_KEY_PREFIX", "noticewatch:"),
                    ttl_s=_env_int(env, "REDIS_TTL_S", 7 * 24 * 3600),
                    timeout_s=_env_float(env, "REDIS_TIMEOUT_S", 3.0),
                ),
            ),
            dispatch=DispatchConfig(
                mode=mode,
                max_attempts=_env_int(env, "DISPATCH_MAX_ATTEMPTS", 3),
                base_delay_s=_env_float(env, "DISPATCH_BASE_DELAY_S", 1.0),
                max_delay_s=_env_float(env, "DISPATCH_MAX_DELAY_S", 30.0),
                attempt_timeout_s=_env_float(env, "DISPATCH_TIMEOUT_S", 10.0),
                channel_order=tuple(_env_list(env, "CHANNEL_ORDER", CHANNEL_NAMES)),
                dry_run=_env_bool(env, "DISPATCH_DRY_RUN"),
                webhook=WebhookChannelConfig(
                    enabled=bool(webhook_url),
                    url=webhook_url,
                    secret=_env_str(env, "WEBHOOK_SECRET"),
                ),
                bot_api=BotApiChannelConfig(
                    enabled=bool(bot_app_id),
                    app_id=bot_app_id,
                    app_secret=_env_str(env, "BOT_APP_SECRET"),
                    chat_id=_env_str(env, "BOT_CHAT_ID"),
                    base_url=_env_str(env, "BOT_BASE_URL", "https://open.feishu.cn"),
                ),
            ),
            schedule=ScheduleConfig(
                interval_s=_env_float(env, "SCHEDULE_INTERVAL_S", 3600.0),
                run_once=_env_bool(env, "RUN_ONCE"),
            ),
            notify_title=_env_str(env, "NOTIFY_TITLE", "Notice Board Updates"),
            notify_timezone=_env_str(env, "NOTIFY_TIMEZONE", "UTC"),
            log_level=_env_str(env, "LOG_LEVEL", "INFO"),
            log_json=_env_bool(env, "LOG_JSON"),
            metrics_port=_env_int(env, "METRICS_PORT", 0),
        )


def build_channels(config: DispatchConfig) -> list[NotificationChannel]:
    """Instantiate enabled channels in configured order."""
    channels: list[NotificationChannel] = []
    for name in config.channel_order:
        if name == "bot_api" and config.bot_api.enabled:
            channels.append(BotApiChannel(config.bot_api))
            logger.info("Bot API channel enabled")
        elif name == "webhook" and config.webhook.enabled:
            channels.append(WebhookChannel(config.webhook))
            logger.info("Webhook channel enabled")
    if not channels:
        logger.warning("No delivery channels enabled")
    return channels


def build_cache(config: CacheConfig) -> DedupCache:
    durable = RedisDedupStore(config.redis) if config.redis.enabled else None
    return DedupCache(
        memory=MemoryDedupStore(capacity=config.memory_capacity),
        durable=durable,
        health_check_interval_s=config.health_check_interval_s,
    )


def build_orchestrator(
    config: AppConfig,
    *,
    source: SourceProvider | None = None,
    channels: Sequence[NotificationChannel] | None = None,
    exporter: PipelineExporter | None = None,
    require_source: bool = True,
) -> RunOrchestrator:
    """
    Wire the pipeline object graph from config.

    With require_source=False and no SOURCE_URL, an empty StaticSource is
    used (for commands that never fetch, such as the connection check).
    """
    if source is None:
        if config.source.url or require_source:
            source = JsonFeedSource(config.source)
        else:
            source = StaticSource()
    if channels is None:
        channels = build_channels(config.dispatch)

    classifier = CategoryClassifier(config.rules)
    renderer = PayloadRenderer(title=config.notify_title, timezone=config.notify_timezone)
    coordinator = DispatchCoordinator(channels, renderer, config.dispatch)

    return RunOrchestrator(
        source=source,
        validator=RecordValidator(config.min_title_length, config.max_title_length),
        record_filter=RecordFilter(config.filter),
        classifier=classifier,
        cache=build_cache(config.cache),
        coordinator=coordinator,
        mode=config.dispatch.mode,
        exporter=exporter,
    )
