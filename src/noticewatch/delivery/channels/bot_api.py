"""
Authenticated bot API channel.

Two-step flow: exchange app credentials for a tenant access token (cached
until shortly before it expires), then post the message to a chat with
bearer auth.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import aiohttp
import orjson

from noticewatch.contracts.errors import ChannelDeliveryError
from noticewatch.delivery.channels.base import ChannelResult, NotificationChannel
from noticewatch.delivery.channels.webhook import parse_response_code

if TYPE_CHECKING:
    from noticewatch.delivery.config import BotApiChannelConfig
    from noticewatch.delivery.formatter import Payload

logger = logging.getLogger(__name__)

TOKEN_PATH = "/open-apis/auth/v3/tenant_access_token/internal"
MESSAGE_PATH = "/open-apis/im/v1/messages"

# Error codes meaning the access token is invalid or expired
TOKEN_REJECTED_CODES = frozenset({99991661, 99991663, 99991668})


class BotApiChannel(NotificationChannel):
    """Bot API delivery channel."""

    def __init__(
        self,
        config: BotApiChannelConfig,
        time_fn: Callable[[], float] | None = None,
    ) -> None:
        self._config = config
        self._time_fn = time_fn or time.monotonic
        self._session: aiohttp.ClientSession | None = None
        self._token: str | None = None
        self._token_expires_at = 0.0

    @property
    def name(self) -> str:
        return "bot_api"

    @property
    def has_valid_token(self) -> bool:
        return self._token is not None and self._time_fn() < self._token_expires_at

    def invalidate_token(self) -> None:
        self._token = None
        self._token_expires_at = 0.0

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._config.timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def _access_token(self) -> str:
        if self._token is not None and self.has_valid_token:
            return self._token

        session = await self._get_session()
        async with session.post(
            f"{self._config.base_url}{TOKEN_PATH}",
            data=orjson.dumps(
                {"app_id": self._config.app_id, "app_secret": self._config.app_secret}
            ),
            headers={"Content-Type": "application/json"},
        ) as resp:
            status = resp.status
            text = await resp.text()

        try:
            data = orjson.loads(text)
        except orjson.JSONDecodeError as e:
            raise ChannelDeliveryError(
                f"token request returned non-JSON body (HTTP {status})", status_code=status
            ) from e

        if not isinstance(data, dict):
            data = {}
        token = data.get("tenant_access_token")
        if status != 200 or data.get("code") != 0 or not token:
            raise ChannelDeliveryError(
                f"token request failed: HTTP {status}, code={data.get('code')}",
                {"msg": data.get("msg", "")},
                status_code=status,
            )

        expire_s = float(data.get("expire", 7200))
        self._token = token
        self._token_expires_at = (
            self._time_fn() + max(expire_s - self._config.token_refresh_margin_s, 0.0)
        )
        logger.info("Obtained bot API access token", extra={"expire_s": expire_s})
        return token

    def build_body(self, payload: Payload) -> dict[str, Any]:
        """Message body; content is the JSON-encoded card or text."""
        return {
            "receive_id": self._config.chat_id,
            "msg_type": payload.msg_type,
            "content": orjson.dumps(payload.content).decode(),
        }

    async def send(self, payload: Payload) -> ChannelResult:
        """Post payload to the configured chat once."""
        if not self._config.enabled:
            return ChannelResult(success=False, message="Bot API channel not enabled")

        token = await self._access_token()
        session = await self._get_session()
        async with session.post(
            f"{self._config.base_url}{MESSAGE_PATH}",
            params={"receive_id_type": "chat_id"},
            data=orjson.dumps(self.build_body(payload)),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {token}",
            },
        ) as resp:
            status = resp.status
            text = await resp.text()

        code, msg = parse_response_code(text)
        if code == 0:
            return ChannelResult(success=True, message="delivered", status_code=status)

        if status == 401 or code in TOKEN_REJECTED_CODES:
            self.invalidate_token()
        logger.warning(
            "Bot API rejected payload",
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
