"""
Dispatch coordinator.

Renders new records into payloads for the configured mode and delivers each
payload through the configured channels in order:
1. Each channel gets up to max_attempts attempts, each bounded by a timeout
2. Attempts are separated by capped exponential backoff
3. The first channel that succeeds stops the fallback chain
4. A payload whose channels all fail is reported failed; others continue
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import aiohttp

from noticewatch.backoff import compute_backoff_delay
from noticewatch.contracts.errors import ChannelDeliveryError
from noticewatch.contracts.records import DeliveryOutcome, Record
from noticewatch.delivery.channels.base import NotificationChannel
from noticewatch.delivery.config import DispatchConfig
from noticewatch.delivery.formatter import DispatchMode, Payload, PayloadRenderer

logger = logging.getLogger(__name__)

DRY_RUN_CHANNEL = "dry_run"
NO_CHANNELS_MESSAGE = "no channels configured"


def _utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class DispatchMetrics:
    """Metrics for dispatch operations."""

    payloads_total: int = 0
    payloads_delivered: int = 0
    payloads_failed: int = 0
    attempts_total: int = 0
    channel_successes: dict[str, int] = field(default_factory=dict)
    channel_failures: dict[str, int] = field(default_factory=dict)


@dataclass
class PayloadReport:
    """Delivery result for one payload."""

    payload: Payload
    delivered: bool
    outcomes: list[DeliveryOutcome] = field(default_factory=list)


@dataclass
class DispatchReport:
    """Delivery results for one dispatch call."""

    payloads: list[PayloadReport] = field(default_factory=list)

    @property
    def outcomes(self) -> list[DeliveryOutcome]:
        return [o for report in self.payloads for o in report.outcomes]

    @property
    def delivered_records(self) -> list[Record]:
        """Records carried by payloads that some channel accepted."""
        return [r for report in self.payloads if report.delivered for r in report.payload.records]

    @property
    def all_delivered(self) -> bool:
        return all(report.delivered for report in self.payloads)


class DispatchCoordinator:
    """
    Delivers payloads with bounded retry and ordered channel fallback.

    Channels are tried in the order given; the list order is the precedence.
    """

    def __init__(
        self,
        channels: Sequence[NotificationChannel],
        renderer: PayloadRenderer,
        config: DispatchConfig,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._channels = list(channels)
        self._renderer = renderer
        self._config = config
        self._sleep = sleep
        self._metrics = DispatchMetrics()
        self._closed = False

        if not self._channels and not config.dry_run:
            logger.warning("No delivery channels enabled")

    @property
    def channels(self) -> list[NotificationChannel]:
        return list(self._channels)

    @property
    def renderer(self) -> PayloadRenderer:
        return self._renderer

    @property
    def metrics(self) -> DispatchMetrics:
        """Get current dispatch metrics."""
        return self._metrics

    @property
    def dry_run(self) -> bool:
        return self._config.dry_run

    async def dispatch(
        self,
        records: Sequence[Record],
        mode: DispatchMode | None = None,
        category_order: Sequence[str] = (),
    ) -> DispatchReport:
        """Render records for mode and deliver every payload."""
        mode = mode or self._config.mode
        payloads = self._renderer.render(records, mode, category_order)
        report = DispatchReport()
        for payload in payloads:
            report.payloads.append(await self.deliver(payload))
        logger.info(
            "Dispatch complete",
            extra={
                "mode": mode.value,
                "payloads": len(payloads),
                "delivered": sum(1 for p in report.payloads if p.delivered),
            },
        )
        return report

    async def deliver(self, payload: Payload) -> PayloadReport:
        """Deliver one payload through the channel chain."""
        self._metrics.payloads_total += 1

        if self._config.dry_run:
            logger.info(
                "Dry run delivery",
                extra={"label": payload.label, "records": len(payload.records), "text": payload.text[:200]},
            )
            outcome = DeliveryOutcome(
                channel=DRY_RUN_CHANNEL,
                success=True,
                message="dry run, not sent",
                timestamp=_utc_now_iso(),
                attempts=0,
                payload_label=payload.label,
            )
            self._metrics.payloads_delivered += 1
            return PayloadReport(payload=payload, delivered=True, outcomes=[outcome])

        if self._closed or not self._channels:
            message = "coordinator closed" if self._closed else NO_CHANNELS_MESSAGE
            logger.error("Payload not delivered", extra={"label": payload.label, "error": message})
            self._metrics.payloads_failed += 1
            outcome = DeliveryOutcome(
                channel="none",
                success=False,
                message=message,
                timestamp=_utc_now_iso(),
                attempts=0,
                payload_label=payload.label,
            )
            return PayloadReport(payload=payload, delivered=False, outcomes=[outcome])

        outcomes: list[DeliveryOutcome] = []
        for channel in self._channels:
            outcome = await self._deliver_via(channel, payload)
            outcomes.append(outcome)
            if outcome.success:
                self._metrics.payloads_delivered += 1
                return PayloadReport(payload=payload, delivered=True, outcomes=outcomes)
            logger.warning(
                "Channel exhausted, falling back",
                extra={"channel": channel.name, "label": payload.label},
            )

        self._metrics.payloads_failed += 1
        logger.error(
            "All channels failed for payload",
            extra={"label": payload.label, "channels": [c.name for c in self._channels]},
        )
        return PayloadReport(payload=payload, delivered=False, outcomes=outcomes)

    async def _deliver_via(self, channel: NotificationChannel, payload: Payload) -> DeliveryOutcome:
        """Up to max_attempts attempts on one channel."""
        message = ""
        for attempt in range(1, self._config.max_attempts + 1):
            self._metrics.attempts_total += 1
            try:
                result = await asyncio.wait_for(
                    channel.send(payload), timeout=self._config.attempt_timeout_s
                )
            except TimeoutError:
                message = f"timed out after {self._config.attempt_timeout_s}s"
            except (aiohttp.ClientError, ChannelDeliveryError) as e:
                message = f"{type(e).__name__}: {e}"
            except Exception as e:
                logger.error(
                    "Channel send error",
                    extra={"channel": channel.name, "error": str(e)},
                )
                message = f"{type(e).__name__}: {e}"
            else:
                if result.success:
                    self._count(self._metrics.channel_successes, channel.name)
                    return DeliveryOutcome(
                        channel=channel.name,
                        success=True,
                        message=result.message or "delivered",
                        timestamp=_utc_now_iso(),
                        attempts=attempt,
                        payload_label=payload.label,
                    )
                message = result.message

            logger.warning(
                "Delivery attempt failed",
                extra={
                    "channel": channel.name,
                    "label": payload.label,
                    "attempt": attempt,
                    "error": message,
                },
            )
            if attempt < self._config.max_attempts:
                await self._sleep(
                    compute_backoff_delay(
                        attempt, self._config.base_delay_s, self._config.max_delay_s
                    )
                )

        self._count(self._metrics.channel_failures, channel.name)
        return DeliveryOutcome(
            channel=channel.name,
            success=False,
            message=message,
            timestamp=_utc_now_iso(),
            attempts=self._config.max_attempts,
            payload_label=payload.label,
        )

    @staticmethod
    def _count(counter: dict[str, int], name: str) -> None:
        counter[name] = counter.get(name, 0) + 1

    async def notify_error(self, message: str, details: dict[str, Any] | None = None) -> PayloadReport:
        """Deliver a pipeline failure notice."""
        return await self.deliver(self._renderer.render_error(message, details))

    async def notify_status(self, status: dict[str, Any]) -> PayloadReport:
        """Deliver a service status summary."""
        return await self.deliver(self._renderer.render_status(status))

    async def test_connection(self) -> dict[str, bool]:
        """Send a test message through every channel independently."""
        payload = self._renderer.render_test()
        results: dict[str, bool] = {}
        for channel in self._channels:
            outcome = await self._deliver_via(channel, payload)
            results[channel.name] = outcome.success
            logger.info(
                "Connection test",
                extra={"channel": channel.name, "ok": outcome.success, "error": outcome.message},
            )
        return results

    async def close(self) -> None:
        """Close all channels and release resources."""
        self._closed = True
        for channel in self._channels:
            try:
                await channel.close()
            except Exception as e:
                logger.error(
                    "Error closing channel",
                    extra={"channel": channel.name, "error": str(e)},
                )
