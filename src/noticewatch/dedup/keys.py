"""Dedup key derivation."""

from __future__ import annotations

import re
from urllib.parse import urlsplit

from noticewatch.contracts.records import Record

_WHITESPACE_RE = re.compile(r"\s+")
_BRACKETS_RE = re.compile(r"[\[\]【】()（）{}〔〕《》<>]")


def normalize_title(title: str) -> str:
    """Lower-case, strip brackets and collapse whitespace."""
    stripped = _BRACKETS_RE.sub("", title.lower())
    return _WHITESPACE_RE.sub(" ", stripped).strip()


def normalize_url_path(url: str) -> str:
    """Keep only the lower-cased path component of url."""
    try:
        path = urlsplit(url.strip()).path
    except ValueError:
        return url.strip().lower()
    return path.lower() or "/"


def dedup_key(record: Record) -> str:
    """
    Identity of the real-world notice behind a record.

    Two records with different ids but the same normalized title and URL
    path are the same notice.
    """
    return f"{normalize_title(record.title)}|{normalize_url_path(record.url)}"
