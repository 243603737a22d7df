"""
Tests for the JSON feed source.

HTTP is mocked at the aiohttp session level.
"""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import orjson
import pytest

from noticewatch.contracts import ConfigError, FetchError
from noticewatch.contracts.records import record_id_for_url
from noticewatch.source import JsonFeedSource, SourceConfig, StaticSource, extract_items


def mock_response(status: int, body: Any) -> AsyncMock:
    response = AsyncMock()
    response.status = status
    response.read = AsyncMock(return_value=body if isinstance(body, bytes) else orjson.dumps(body))
    response.__aenter__ = AsyncMock(return_value=response)
    response.__aexit__ = AsyncMock(return_value=None)
    return response


def mock_session(by_url: dict[str, list[Any]]) -> AsyncMock:
    """Session whose get() replays a per-URL list of responses or exceptions."""

    def _get(url: str, **_: Any) -> AsyncMock:
        step = by_url[url].pop(0)
        if isinstance(step, Exception):
            raise step
        return step

    session = AsyncMock()
    session.get = MagicMock(side_effect=_get)
    session.closed = False
    return session


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


ITEM = {"id": "n1", "title": "Housing policy update", "url": "https://example.org/n/1"}


def make_source(session: AsyncMock, **kwargs: Any) -> tuple[JsonFeedSource, SleepRecorder]:
    kwargs.setdefault("url", "https://example.org/api/list")
    sleep = SleepRecorder()
    source = JsonFeedSource(SourceConfig(**kwargs), sleep=sleep)
    source._session = session
    return source, sleep


class TestSourceConfig:
    def test_paging_needs_placeholder(self) -> None:
        with pytest.raises(ConfigError):
            SourceConfig(url="https://example.org/list", pages=2)

    def test_page_url(self) -> None:
        config = SourceConfig(url="https://example.org/list?page={page}", pages=3)
        assert config.page_url(2) == "https://example.org/list?page=2"

    def test_url_required(self) -> None:
        with pytest.raises(ConfigError):
            JsonFeedSource(SourceConfig())


class TestExtractItems:
    def test_top_level_list(self) -> None:
        assert extract_items([ITEM, "junk"]) == [ITEM]

    @pytest.mark.parametrize("key", ["items", "data", "records"])
    def test_wrapped(self, key: str) -> None:
        assert extract_items({key: [ITEM]}) == [ITEM]

    def test_nested_under_data(self) -> None:
        assert extract_items({"code": 0, "data": {"records": [ITEM]}}) == [ITEM]

    def test_nothing_found(self) -> None:
        assert extract_items({"code": 0}) == []
        assert extract_items("text") == []


class TestJsonFeedSource:
    """Paged fetching with retry and page skipping."""

    @pytest.mark.asyncio
    async def test_fetch_single_page(self) -> None:
        url = "https://example.org/api/list"
        session = mock_session({url: [mock_response(200, {"data": [ITEM]})]})
        source, sleep = make_source(session)

        assert await source.fetch() == [ITEM]
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_missing_id_derived_from_url(self) -> None:
        url = "https://example.org/api/list"
        item = {"title": "Housing policy update", "url": "https://example.org/n/9"}
        session = mock_session({url: [mock_response(200, [item])]})
        source, _ = make_source(session)

        [record] = await source.fetch()

        assert record["id"] == record_id_for_url("https://example.org/n/9")

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self) -> None:
        url = "https://example.org/api/list"
        session = mock_session(
            {
                url: [
                    mock_response(503, b"busy"),
                    aiohttp.ClientConnectionError("reset"),
                    mock_response(200, [ITEM]),
                ]
            }
        )
        source, sleep = make_source(session, retries=3)

        assert await source.fetch() == [ITEM]
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_failed_page_skipped(self) -> None:
        """A page that exhausts its retries is skipped; other pages still count."""
        template = "https://example.org/api/list?page={page}"
        session = mock_session(
            {
                "https://example.org/api/list?page=1": [mock_response(500, b"")] * 2,
                "https://example.org/api/list?page=2": [mock_response(200, {"items": [ITEM]})],
            }
        )
        source, _ = make_source(session, url=template, pages=2, retries=1)

        assert await source.fetch() == [ITEM]

    @pytest.mark.asyncio
    async def test_invalid_json_not_retried(self) -> None:
        url = "https://example.org/api/list"
        session = mock_session({url: [mock_response(200, b"<html>")]})
        source, _ = make_source(session)

        with pytest.raises(FetchError):
            await source.fetch()
        assert session.get.call_count == 1

    @pytest.mark.asyncio
    async def test_empty_batch_is_fetch_error(self) -> None:
        url = "https://example.org/api/list"
        session = mock_session({url: [mock_response(200, {"data": []})]})
        source, _ = make_source(session)

        with pytest.raises(FetchError) as exc_info:
            await source.fetch()
        assert exc_info.value.details["failed_pages"] == 0

    @pytest.mark.asyncio
    async def test_close(self) -> None:
        session = mock_session({})
        source, _ = make_source(session)
        await source.close()
        session.close.assert_awaited_once()


class TestStaticSource:
    @pytest.mark.asyncio
    async def test_returns_copies(self) -> None:
        source = StaticSource([ITEM])
        first = await source.fetch()
        first[0]["title"] = "changed"
        assert (await source.fetch())[0]["title"] == ITEM["title"]
        assert source.fetch_count == 2
