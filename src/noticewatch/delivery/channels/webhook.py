"""
Signed webhook channel.

Posts interactive-card or text messages to a group webhook. When a secret
is configured, each request carries a timestamp and an HMAC-SHA256
signature the receiver uses to authenticate the sender.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import aiohttp
import orjson

from noticewatch.delivery.channels.base import ChannelResult, NotificationChannel

if TYPE_CHECKING:
    from noticewatch.delivery.config import WebhookChannelConfig
    from noticewatch.delivery.formatter import Payload

logger = logging.getLogger(__name__)


def sign_webhook(timestamp: int, secret: str) -> str:
    """
    Compute the webhook signature.

    The key is "<timestamp>\\n<secret>" and the signed message is empty.
    """
    string_to_sign = f"{timestamp}\n{secret}".encode()
    digest = hmac.new(string_to_sign, b"", digestmod=hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def parse_response_code(body: str) -> tuple[int | None, str]:
    """Extract (code, msg) from a JSON response body."""
    try:
        data = orjson.loads(body)
    except orjson.JSONDecodeError:
        return None, body[:200]
    if not isinstance(data, dict):
        return None, body[:200]
    code = data.get("code", data.get("StatusCode"))
    msg = data.get("msg", data.get("StatusMessage", ""))
    return (code if isinstance(code, int) else None), str(msg)


class WebhookChannel(NotificationChannel):
    """Group webhook delivery channel."""

    def __init__(
        self,
        config: WebhookChannelConfig,
        time_fn: Callable[[], float] | None = None,
    ) -> None:
        self._config = config
        self._time_fn = time_fn or time.time
        self._session: aiohttp.ClientSession | None = None

    @property
    def name(self) -> str:
        # Don't expose webhook URL in name
        return "webhook"

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._config.timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    def build_body(self, payload: Payload) -> dict[str, Any]:
        """Request body for payload, signed when a secret is configured."""
        body: dict[str, Any] = {"msg_type": payload.msg_type}
        if payload.msg_type == "interactive":
            body["card"] = payload.content
        else:
            body["content"] = payload.content
        if self._config.secret:
            timestamp = int(self._time_fn())
            body["timestamp"] = str(timestamp)
            body["sign"] = sign_webhook(timestamp, self._config.secret)
        return body

    async def send(self, payload: Payload) -> ChannelResult:
        """Post payload to the webhook once."""
        if not self._config.enabled:
            return ChannelResult(success=False, message="Webhook channel not enabled")

        session = await self._get_session()
        async with session.post(
            self._config.url,
            data=orjson.dumps(self.build_body(payload)),
            headers={"Content-Type": "application/json"},
        ) as resp:
            status = resp.status
            text = await resp.text()

        code, msg = parse_response_code(text)
        if status == 200 and code == 0:
            return ChannelResult(success=True, message="delivered", status_code=status)

        logger.warning(
            "Webhook rejected payload",
            extra={"status": status, "code": code, "label": payload.label},
        )
        return ChannelResult(
            success=False,
            message=f"HTTP {status}, code={code}: {msg}",
            status_code=status,
        )

    async def close(self) -> None:
        """Close aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
