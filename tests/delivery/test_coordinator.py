"""
Tests for the dispatch coordinator: bounded retry, channel fallback,
dry run and service notifications.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import aiohttp
import pytest

from noticewatch.contracts import ChannelDeliveryError, Record
from noticewatch.delivery.channels.base import ChannelResult, NotificationChannel
from noticewatch.delivery.config import DispatchConfig
from noticewatch.delivery.coordinator import (
    DRY_RUN_CHANNEL,
    NO_CHANNELS_MESSAGE,
    DispatchCoordinator,
)
from noticewatch.delivery.formatter import DispatchMode, Payload, PayloadRenderer

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=UTC)


class ScriptedChannel(NotificationChannel):
    """Channel that replays a script of results or exceptions, then repeats the last."""

    def __init__(self, name: str, script: list[ChannelResult | Exception] | None = None) -> None:
        self._name = name
        self._script = script or [ChannelResult(success=True, message="delivered")]
        self.sent: list[Payload] = []
        self.closed = False

    @property
    def name(self) -> str:
        return self._name

    async def send(self, payload: Payload) -> ChannelResult:
        self.sent.append(payload)
        step = self._script[min(len(self.sent), len(self._script)) - 1]
        if isinstance(step, Exception):
            raise step
        return step

    async def close(self) -> None:
        self.closed = True


class HangingChannel(ScriptedChannel):
    async def send(self, payload: Payload) -> ChannelResult:
        self.sent.append(payload)
        await asyncio.sleep(10)
        return ChannelResult(success=True)


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


FAIL = ChannelResult(success=False, message="HTTP 500, code=None: oops", status_code=500)
OK = ChannelResult(success=True, message="delivered", status_code=200)


def rec(rid: str, category: str = "Housing") -> Record:
    return Record(
        id=rid,
        title=f"Notice {rid}",
        url=f"https://example.org/n/{rid}",
        publish_date="2024-06-14",
        category=category,
    )


def make_coordinator(
    channels: list[NotificationChannel], **config_kwargs: object
) -> tuple[DispatchCoordinator, SleepRecorder]:
    sleep = SleepRecorder()
    coordinator = DispatchCoordinator(
        channels,
        PayloadRenderer(time_fn=lambda: NOW.timestamp()),
        DispatchConfig(**config_kwargs),  # type: ignore[arg-type]
        sleep=sleep,
    )
    return coordinator, sleep


class TestRetry:
    """Each channel gets exactly max_attempts attempts."""

    @pytest.mark.asyncio
    async def test_exact_attempt_bound_and_delays(self) -> None:
        """Three failing attempts, separated by 1s then 2s."""
        channel = ScriptedChannel("webhook", [FAIL])
        coordinator, sleep = make_coordinator([channel], max_attempts=3, base_delay_s=1.0)

        report = await coordinator.dispatch([rec("1")])

        assert len(channel.sent) == 3
        assert sleep.delays == [1.0, 2.0]
        [outcome] = report.outcomes
        assert outcome.success is False
        assert outcome.attempts == 3
        assert outcome.message == FAIL.message
        assert report.delivered_records == []
        assert coordinator.metrics.payloads_failed == 1

    @pytest.mark.asyncio
    async def test_delay_capped(self) -> None:
        channel = ScriptedChannel("webhook", [FAIL])
        coordinator, sleep = make_coordinator(
            [channel], max_attempts=5, base_delay_s=2.0, max_delay_s=5.0
        )
        await coordinator.dispatch([rec("1")])
        assert sleep.delays == [2.0, 4.0, 5.0, 5.0]

    @pytest.mark.asyncio
    async def test_success_after_retry(self) -> None:
        channel = ScriptedChannel("webhook", [FAIL, OK])
        coordinator, sleep = make_coordinator([channel])

        report = await coordinator.dispatch([rec("1")])

        [outcome] = report.outcomes
        assert outcome.success is True
        assert outcome.attempts == 2
        assert sleep.delays == [1.0]
        assert [r.id for r in report.delivered_records] == ["1"]

    @pytest.mark.asyncio
    async def test_exceptions_are_attempts(self) -> None:
        channel = ScriptedChannel(
            "bot_api",
            [
                aiohttp.ClientConnectionError("refused"),
                ChannelDeliveryError("token request failed"),
                RuntimeError("unexpected"),
            ],
        )
        coordinator, _ = make_coordinator([channel])

        report = await coordinator.dispatch([rec("1")])

        assert len(channel.sent) == 3
        assert "RuntimeError" in report.outcomes[0].message

    @pytest.mark.asyncio
    async def test_attempt_timeout(self) -> None:
        channel = HangingChannel("webhook")
        coordinator, _ = make_coordinator([channel], max_attempts=2, attempt_timeout_s=0.01)

        report = await coordinator.dispatch([rec("1")])

        assert len(channel.sent) == 2
        assert "timed out" in report.outcomes[0].message


class TestFallback:
    """Channels are tried in order until one succeeds."""

    @pytest.mark.asyncio
    async def test_second_channel_after_first_exhausted(self) -> None:
        primary = ScriptedChannel("bot_api", [FAIL])
        secondary = ScriptedChannel("webhook", [OK])
        coordinator, _ = make_coordinator([primary, secondary])

        report = await coordinator.dispatch([rec("1")])

        assert [o.channel for o in report.outcomes] == ["bot_api", "webhook"]
        assert [o.success for o in report.outcomes] == [False, True]
        assert report.all_delivered
        assert coordinator.metrics.channel_failures == {"bot_api": 1}
        assert coordinator.metrics.channel_successes == {"webhook": 1}

    @pytest.mark.asyncio
    async def test_first_success_stops_chain(self) -> None:
        primary = ScriptedChannel("bot_api", [OK])
        secondary = ScriptedChannel("webhook", [OK])
        coordinator, _ = make_coordinator([primary, secondary])

        await coordinator.dispatch([rec("1")])

        assert secondary.sent == []

    @pytest.mark.asyncio
    async def test_failed_payload_does_not_block_others(self) -> None:
        """Per-category: one category failing leaves the others delivered."""

        class FailHousing(ScriptedChannel):
            async def send(self, payload: Payload) -> ChannelResult:
                self.sent.append(payload)
                return FAIL if payload.label == "Housing" else OK

        channel = FailHousing("webhook")
        coordinator, _ = make_coordinator([channel], max_attempts=1)

        report = await coordinator.dispatch(
            [rec("1", "Housing"), rec("2", "Procurement"), rec("3", "Procurement")],
            mode=DispatchMode.PER_CATEGORY,
            category_order=["Housing", "Procurement"],
        )

        assert [p.delivered for p in report.payloads] == [False, True]
        assert [r.id for r in report.delivered_records] == ["2", "3"]
        assert not report.all_delivered


class TestModesAndEdges:
    @pytest.mark.asyncio
    async def test_default_mode_from_config(self) -> None:
        channel = ScriptedChannel("webhook")
        coordinator, _ = make_coordinator([channel], mode=DispatchMode.SINGLE)
        await coordinator.dispatch([rec("1"), rec("2", "Procurement")])
        assert [p.label for p in channel.sent] == ["all"]

    @pytest.mark.asyncio
    async def test_no_records_no_delivery(self) -> None:
        channel = ScriptedChannel("webhook")
        coordinator, _ = make_coordinator([channel])
        report = await coordinator.dispatch([])
        assert report.payloads == []
        assert channel.sent == []

    @pytest.mark.asyncio
    async def test_dry_run_sends_nothing(self) -> None:
        channel = ScriptedChannel("webhook")
        coordinator, _ = make_coordinator([channel], dry_run=True)

        report = await coordinator.dispatch([rec("1")])

        assert channel.sent == []
        [outcome] = report.outcomes
        assert outcome.channel == DRY_RUN_CHANNEL
        assert outcome.success is True
        assert outcome.attempts == 0

    @pytest.mark.asyncio
    async def test_no_channels(self) -> None:
        coordinator, _ = make_coordinator([])

        report = await coordinator.dispatch([rec("1")])

        [outcome] = report.outcomes
        assert outcome.success is False
        assert outcome.message == NO_CHANNELS_MESSAGE
        assert report.delivered_records == []

    @pytest.mark.asyncio
    async def test_closed_coordinator_delivers_nothing(self) -> None:
        channel = ScriptedChannel("webhook")
        coordinator, _ = make_coordinator([channel])
        await coordinator.close()

        report = await coordinator.dispatch([rec("1")])

        assert channel.closed
        assert channel.sent == []
        assert not report.all_delivered


class TestServiceMessages:
    @pytest.mark.asyncio
    async def test_notify_error(self) -> None:
        channel = ScriptedChannel("webhook")
        coordinator, _ = make_coordinator([channel])

        report = await coordinator.notify_error("fetch failed", {"stage": "fetch"})

        assert report.delivered
        assert channel.sent[0].label == "error"

    @pytest.mark.asyncio
    async def test_notify_status(self) -> None:
        channel = ScriptedChannel("webhook")
        coordinator, _ = make_coordinator([channel])
        await coordinator.notify_status({"state": "idle"})
        assert channel.sent[0].label == "status"

    @pytest.mark.asyncio
    async def test_connection_test_tries_every_channel(self) -> None:
        """Unlike delivery, the connection test does not stop at the first success."""
        good = ScriptedChannel("bot_api", [OK])
        bad = ScriptedChannel("webhook", [FAIL])
        coordinator, _ = make_coordinator([good, bad], max_attempts=1)

        assert await coordinator.test_connection() == {"bot_api": True, "webhook": False}
        assert good.sent[0].msg_type == "text"
