"""
JSON feed source.

Fetches one or more pages of a JSON listing endpoint with aiohttp. Each
page is retried with exponential backoff; a page that keeps failing is
logged and skipped. Only a batch with no records at all is a FetchError.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

import aiohttp
import orjson

from noticewatch.backoff import compute_backoff_delay
from noticewatch.contracts.errors import ConfigError, FetchError
from noticewatch.contracts.records import record_id_for_url

logger = logging.getLogger(__name__)

ITEM_LIST_KEYS = ("items", "data", "records")


@dataclass
class SourceConfig:
    """JSON feed configuration."""

    url: str = ""  # May contain a {page} placeholder
    pages: int = 1
    timeout_s: float = 30.0
    retries: int = 3
    base_delay_s: float = 1.0
    max_delay_s: float = 10.0

    def __post_init__(self) -> None:
        if self.pages < 1:
            raise ConfigError(f"pages must be >= 1, got {self.pages}")
        if self.pages > 1 and "{page}" not in self.url:
            raise ConfigError("SOURCE_URL needs a {page} placeholder when SOURCE_PAGES > 1")
        if self.timeout_s <= 0:
            raise ConfigError(f"timeout_s must be > 0, got {self.timeout_s}")
        if self.retries < 0:
            raise ConfigError(f"retries must be >= 0, got {self.retries}")

    def page_url(self, page: int) -> str:
        return self.url.replace("{page}", str(page))


def extract_items(document: Any) -> list[Mapping[str, Any]]:
    """
    Find the record list in a decoded JSON document.

    Accepts a top-level list or an object holding the list under one of
    ITEM_LIST_KEYS (one level of nesting under "data" is also searched).
    """
    if isinstance(document, list):
        return [item for item in document if isinstance(item, Mapping)]
    if isinstance(document, Mapping):
        for key in ITEM_LIST_KEYS:
            value = document.get(key)
            if isinstance(value, list):
                return [item for item in value if isinstance(item, Mapping)]
            if isinstance(value, Mapping):
                nested = extract_items(value)
                if nested:
                    return nested
    return []


def _with_id(item: Mapping[str, Any]) -> dict[str, Any]:
    record = dict(item)
    if not record.get("id") and isinstance(record.get("url"), str):
        record["id"] = record_id_for_url(record["url"])
    return record


class JsonFeedSource:
    """Paged JSON listing provider."""

    def __init__(
        self,
        config: SourceConfig,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if not config.url:
            raise ConfigError("SOURCE_URL is required for the JSON feed source")
        self._config = config
        self._sleep = sleep
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._config.timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def _fetch_page(self, page: int) -> list[Mapping[str, Any]]:
        url = self._config.page_url(page)
        attempts = self._config.retries + 1
        last_error = ""
        for attempt in range(1, attempts + 1):
            try:
                session = await self._get_session()
                async with session.get(url, headers={"Accept": "application/json"}) as resp:
                    status = resp.status
                    body = await resp.read()
                if status != 200:
                    last_error = f"HTTP {status}"
                else:
                    return extract_items(orjson.loads(body))
            except orjson.JSONDecodeError as e:
                # Malformed body will not improve on retry
                raise FetchError(f"page {page}: invalid JSON", {"page": page}) from e
            except (aiohttp.ClientError, TimeoutError) as e:
                last_error = f"{type(e).__name__}: {e}"

            logger.warning(
                "Source page fetch failed",
                extra={"url": url, "page": page, "attempt": attempt, "error": last_error},
            )
            if attempt < attempts:
                await self._sleep(
                    compute_backoff_delay(
                        attempt, self._config.base_delay_s, self._config.max_delay_s
                    )
                )
        raise FetchError(f"page {page}: {last_error}", {"page": page})

    async def fetch(self) -> list[Mapping[str, Any]]:
        """Fetch every configured page. Raises FetchError when nothing was found."""
        records: list[Mapping[str, Any]] = []
        failed_pages = 0
        for page in range(1, self._config.pages + 1):
            try:
                items = await self._fetch_page(page)
            except FetchError as e:
                failed_pages += 1
                logger.error("Skipping source page", extra={"page": page, "error": str(e)})
                continue
            records.extend(_with_id(item) for item in items)

        logger.info(
            "Source fetch complete",
            extra={"pages": self._config.pages, "failed_pages": failed_pages, "records": len(records)},
        )
        if not records:
            raise FetchError(
                "source returned no records",
                {"pages": self._config.pages, "failed_pages": failed_pages},
            )
        return records

    async def close(self) -> None:
        """Close aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
