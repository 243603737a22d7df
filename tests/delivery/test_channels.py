"""
Tests for delivery channels.

HTTP is mocked at the aiohttp session level.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import orjson
import pytest

from noticewatch.contracts import ChannelDeliveryError
from noticewatch.delivery.channels.bot_api import MESSAGE_PATH, TOKEN_PATH, BotApiChannel
from noticewatch.delivery.channels.webhook import (
    WebhookChannel,
    parse_response_code,
    sign_webhook,
)
from noticewatch.delivery.config import BotApiChannelConfig, WebhookChannelConfig
from noticewatch.delivery.formatter import Payload


@pytest.fixture
def card_payload() -> Payload:
    """Create a sample interactive payload for testing."""
    return Payload(
        label="grouped",
        msg_type="interactive",
        content={"header": {"title": {"tag": "plain_text", "content": "Updates"}}, "elements": []},
        text="Updates: 1 new",
    )


@pytest.fixture
def text_payload() -> Payload:
    return Payload(label="test", msg_type="text", content={"text": "ping"}, text="ping")


def mock_response(status: int, body: Any) -> AsyncMock:
    response = AsyncMock()
    response.status = status
    response.text = AsyncMock(return_value=body if isinstance(body, str) else orjson.dumps(body).decode())
    response.__aenter__ = AsyncMock(return_value=response)
    response.__aexit__ = AsyncMock(return_value=None)
    return response


def mock_session(*responses: AsyncMock) -> AsyncMock:
    session = AsyncMock()
    session.post = MagicMock(side_effect=list(responses))
    session.closed = False
    return session


def posted_json(session: AsyncMock, call_index: int = 0) -> dict[str, Any]:
    return orjson.loads(session.post.call_args_list[call_index].kwargs["data"])


class TestSignature:
    """HMAC-SHA256 over an empty message keyed by timestamp and secret."""

    def test_matches_reference_computation(self) -> None:
        key = b"1700000000\nsecret-value"
        expected = base64.b64encode(hmac.new(key, b"", hashlib.sha256).digest()).decode()
        assert sign_webhook(1700000000, "secret-value") == expected

    def test_depends_on_timestamp(self) -> None:
        assert sign_webhook(1, "s") != sign_webhook(2, "s")


class TestParseResponseCode:
    def test_code_and_msg(self) -> None:
        assert parse_response_code('{"code": 0, "msg": "success"}') == (0, "success")

    def test_status_code_alias(self) -> None:
        assert parse_response_code('{"StatusCode": 0, "StatusMessage": "ok"}') == (0, "ok")

    def test_not_json(self) -> None:
        assert parse_response_code("<html>bad gateway</html>") == (None, "<html>bad gateway</html>")


class TestWebhookChannel:
    """Tests for the signed webhook channel."""

    def test_body_interactive_unsigned(self, card_payload: Payload) -> None:
        channel = WebhookChannel(WebhookChannelConfig(enabled=True, url="https://hooks.example/x"))
        body = channel.build_body(card_payload)
        assert body == {"msg_type": "interactive", "card": card_payload.content}

    def test_body_text_signed(self, text_payload: Payload) -> None:
        config = WebhookChannelConfig(enabled=True, url="https://hooks.example/x", secret="s3")
        channel = WebhookChannel(config, time_fn=lambda: 1700000000.7)
        body = channel.build_body(text_payload)
        assert body["content"] == {"text": "ping"}
        assert body["timestamp"] == "1700000000"
        assert body["sign"] == sign_webhook(1700000000, "s3")

    @pytest.mark.asyncio
    async def test_send_disabled(self, card_payload: Payload) -> None:
        """Send returns failure when the channel is disabled."""
        channel = WebhookChannel(WebhookChannelConfig(enabled=False))
        result = await channel.send(card_payload)
        assert result.success is False
        assert "not enabled" in result.message.lower()

    @pytest.mark.asyncio
    async def test_send_success(self, card_payload: Payload) -> None:
        """Send succeeds on HTTP 200 with code 0."""
        channel = WebhookChannel(WebhookChannelConfig(enabled=True, url="https://hooks.example/x"))
        session = mock_session(mock_response(200, {"code": 0, "msg": "success"}))
        channel._session = session

        result = await channel.send(card_payload)

        assert result.success is True
        assert result.status_code == 200
        assert session.post.call_args.args[0] == "https://hooks.example/x"
        assert posted_json(session)["card"] == card_payload.content
        await channel.close()

    @pytest.mark.asyncio
    async def test_send_rejected_code(self, card_payload: Payload) -> None:
        """HTTP 200 with a nonzero code is a failure."""
        channel = WebhookChannel(WebhookChannelConfig(enabled=True, url="https://hooks.example/x"))
        channel._session = mock_session(mock_response(200, {"code": 19021, "msg": "sign match fail"}))

        result = await channel.send(card_payload)

        assert result.success is False
        assert "19021" in result.message
        assert "sign match fail" in result.message

    @pytest.mark.asyncio
    async def test_send_server_error(self, card_payload: Payload) -> None:
        channel = WebhookChannel(WebhookChannelConfig(enabled=True, url="https://hooks.example/x"))
        channel._session = mock_session(mock_response(502, "bad gateway"))

        result = await channel.send(card_payload)

        assert result.success is False
        assert result.status_code == 502

    def test_name_hides_url(self) -> None:
        channel = WebhookChannel(WebhookChannelConfig(enabled=True, url="https://hooks.example/x"))
        assert channel.name == "webhook"
        assert "hooks.example" not in repr(channel)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def bot_channel(clock: FakeClock | None = None) -> BotApiChannel:
    config = BotApiChannelConfig(
        enabled=True,
        app_id="cli_app",
        app_secret="app-secret",
        chat_id="oc_chat",
        base_url="https://bot.example/",
    )
    return BotApiChannel(config, time_fn=clock or FakeClock())


TOKEN_OK = {"code": 0, "msg": "ok", "tenant_access_token": "t-123", "expire": 7200}


class TestBotApiChannel:
    """Tests for the token-authenticated bot API channel."""

    def test_body_content_is_json_string(self, card_payload: Payload) -> None:
        body = bot_channel().build_body(card_payload)
        assert body["receive_id"] == "oc_chat"
        assert body["msg_type"] == "interactive"
        assert orjson.loads(body["content"]) == card_payload.content

    @pytest.mark.asyncio
    async def test_send_fetches_token_then_posts(self, card_payload: Payload) -> None:
        """First send exchanges credentials, then posts with bearer auth."""
        channel = bot_channel()
        session = mock_session(mock_response(200, TOKEN_OK), mock_response(200, {"code": 0}))
        channel._session = session

        result = await channel.send(card_payload)

        assert result.success is True
        token_call, message_call = session.post.call_args_list
        assert token_call.args[0] == f"https://bot.example{TOKEN_PATH}"
        assert posted_json(session, 0) == {"app_id": "cli_app", "app_secret": "app-secret"}
        assert message_call.args[0] == f"https://bot.example{MESSAGE_PATH}"
        assert message_call.kwargs["params"] == {"receive_id_type": "chat_id"}
        assert message_call.kwargs["headers"]["Authorization"] == "Bearer t-123"
        assert channel.has_valid_token

    @pytest.mark.asyncio
    async def test_token_cached_until_refresh_margin(self, card_payload: Payload) -> None:
        clock = FakeClock()
        channel = bot_channel(clock)
        session = mock_session(
            mock_response(200, TOKEN_OK),
            mock_response(200, {"code": 0}),
            mock_response(200, {"code": 0}),
            mock_response(200, {**TOKEN_OK, "tenant_access_token": "t-456"}),
            mock_response(200, {"code": 0}),
        )
        channel._session = session

        await channel.send(card_payload)
        clock.now = 6000.0
        await channel.send(card_payload)
        assert session.post.call_count == 3

        # Past expire minus the 300s margin
        clock.now = 6901.0
        await channel.send(card_payload)
        assert session.post.call_count == 5
        assert session.post.call_args.kwargs["headers"]["Authorization"] == "Bearer t-456"

    @pytest.mark.asyncio
    async def test_rejected_token_invalidated(self, card_payload: Payload) -> None:
        """A token-rejected error code forces a fresh token next time."""
        channel = bot_channel()
        channel._session = mock_session(
            mock_response(200, TOKEN_OK),
            mock_response(400, {"code": 99991663, "msg": "token invalid"}),
        )

        result = await channel.send(card_payload)

        assert result.success is False
        assert not channel.has_valid_token

    @pytest.mark.asyncio
    async def test_other_failure_keeps_token(self, card_payload: Payload) -> None:
        channel = bot_channel()
        channel._session = mock_session(
            mock_response(200, TOKEN_OK),
            mock_response(400, {"code": 230002, "msg": "bot not in chat"}),
        )

        result = await channel.send(card_payload)

        assert result.success is False
        assert "230002" in result.message
        assert channel.has_valid_token

    @pytest.mark.asyncio
    async def test_token_failure_raises(self, card_payload: Payload) -> None:
        channel = bot_channel()
        channel._session = mock_session(mock_response(200, {"code": 10003, "msg": "invalid app_id"}))

        with pytest.raises(ChannelDeliveryError) as exc_info:
            await channel.send(card_payload)
        assert exc_info.value.status_code == 200

    @pytest.mark.asyncio
    async def test_token_non_json_raises(self, card_payload: Payload) -> None:
        channel = bot_channel()
        channel._session = mock_session(mock_response(503, "service unavailable"))

        with pytest.raises(ChannelDeliveryError):
            await channel.send(card_payload)

    @pytest.mark.asyncio
    async def test_close(self) -> None:
        channel = bot_channel()
        session = mock_session()
        channel._session = session
        await channel.close()
        session.close.assert_awaited_once()
