"""Tests for dedup key derivation."""

from __future__ import annotations

from noticewatch.contracts import Record
from noticewatch.dedup.keys import dedup_key, normalize_title, normalize_url_path


class TestNormalizeTitle:
    def test_lowercase_and_whitespace(self) -> None:
        assert normalize_title("  Housing   POLICY\tUpdate ") == "housing policy update"

    def test_brackets_removed(self) -> None:
        assert normalize_title("[Notice] 【Housing】 (2024)") == "notice housing 2024"


class TestNormalizeUrlPath:
    def test_query_and_fragment_dropped(self) -> None:
        assert normalize_url_path("https://Example.org/News/1.HTML?x=1#top") == "/news/1.html"

    def test_empty_path(self) -> None:
        assert normalize_url_path("https://example.org") == "/"


class TestDedupKey:
    """Distinct ids, same notice."""

    def test_same_notice_different_ids(self) -> None:
        a = Record(id="a", title="[Notice] Housing lottery", url="https://example.org/n/1?src=rss")
        b = Record(id="b", title="notice  housing LOTTERY", url="http://mirror.example.org/n/1")
        assert dedup_key(a) == dedup_key(b) == "notice housing lottery|/n/1"

    def test_different_paths_differ(self) -> None:
        a = Record(id="a", title="Housing lottery", url="https://example.org/n/1")
        b = Record(id="a", title="Housing lottery", url="https://example.org/n/2")
        assert dedup_key(a) != dedup_key(b)
