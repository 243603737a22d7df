"""
Payload rendering.

Deterministic template-based rendering of records into interactive-card
payloads, one layout per dispatch mode, plus a plain-text rendition of
every payload for channels and logs that cannot show cards.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, tzinfo
from enum import Enum
from typing import Any
from zoneinfo import ZoneInfo

from noticewatch.classify.classifier import group_by_category
from noticewatch.contracts.errors import FilterParseError
from noticewatch.contracts.records import Record
from noticewatch.filtering.record_filter import parse_publish_date

ICON_BELL = "\U0001f514"
ICON_BOARD = "\U0001f4cb"
ICON_NEW = "\U0001f195"
ICON_CALENDAR = "\U0001f4c5"
ICON_MEMO = "\U0001f4dd"
ICON_CHART = "\U0001f4ca"
ICON_CLOCK = "\U0001f550"
ICON_CHECK = "✅"
ICON_ERROR = "❌"

SUMMARY_PREVIEW_CHARS = 50


class DispatchMode(str, Enum):
    """How new records are packed into payloads."""

    SINGLE = "single"
    GROUPED = "grouped"
    PER_CATEGORY = "per-category"


@dataclass(frozen=True)
class Payload:
    """Rendered message ready for delivery."""

    label: str
    msg_type: str  # "interactive" or "text"
    content: dict[str, Any]
    text: str
    records: tuple[Record, ...] = field(default=())


def _text_element(content: str) -> dict[str, Any]:
    return {"tag": "div", "text": {"tag": "lark_md", "content": content}}


def _divider() -> dict[str, Any]:
    return {"tag": "hr"}


def _link_button(url: str, label: str = "Open") -> dict[str, Any]:
    return {
        "tag": "action",
        "actions": [
            {
                "tag": "button",
                "text": {"tag": "plain_text", "content": label},
                "type": "default",
                "url": url,
            }
        ],
    }


def _header(title: str, template: str = "blue") -> dict[str, Any]:
    return {"title": {"tag": "plain_text", "content": title}, "template": template}


class PayloadRenderer:
    """
    Renders records and service messages into payloads.

    Layout:
    - single: one card, detailed layout for one record, list layout otherwise
    - grouped: one card with a section per category
    - per-category: one card per category
    """

    def __init__(
        self,
        title: str = "Notice Board Updates",
        timezone: str | tzinfo = UTC,
        time_fn: Callable[[], float] | None = None,
    ) -> None:
        self._title = title
        self._tz = ZoneInfo(timezone) if isinstance(timezone, str) else timezone
        self._time_fn = time_fn or time.time

    @property
    def title(self) -> str:
        return self._title

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._time_fn(), tz=self._tz)

    def _published(self, record: Record) -> datetime | None:
        try:
            return parse_publish_date(record.publish_date).astimezone(self._tz)
        except FilterParseError:
            return None

    def _is_today(self, record: Record) -> bool:
        published = self._published(record)
        return published is not None and published.date() == self._now().date()

    def _time_tag(self, record: Record) -> str:
        if self._is_today(record):
            return "today"
        published = self._published(record)
        if published is None:
            return record.publish_date or "unknown date"
        return published.strftime("%Y-%m-%d %H:%M")

    def _timestamp_element(self) -> dict[str, Any]:
        return _text_element(f"{ICON_CLOCK} {self._now().strftime('%Y-%m-%d %H:%M')}")

    def _record_line(self, record: Record, index: int | None = None) -> str:
        prefix = f"{ICON_NEW} " if self._is_today(record) else ""
        number = f"{index + 1}. " if index is not None else ""
        return f"**{prefix}{number}{record.title}** {ICON_CALENDAR} {self._time_tag(record)}"

    def _detail_elements(self, record: Record) -> list[dict[str, Any]]:
        meta = f"{ICON_CALENDAR} {self._time_tag(record)}"
        if record.category:
            meta += f" | {record.category}"
        elements = [_text_element(f"**{record.title}**"), _text_element(meta)]
        if record.summary:
            elements.append(_text_element(f"> {record.summary}"))
        elements.append(_link_button(record.url))
        return elements

    def _list_elements(self, records: Sequence[Record]) -> list[dict[str, Any]]:
        elements = [_text_element(self._count_line(records)), _divider()]
        for index, record in enumerate(records):
            elements.append(_text_element(self._record_line(record, index)))
            if record.summary:
                summary = record.summary
                if len(summary) > SUMMARY_PREVIEW_CHARS:
                    summary = summary[:SUMMARY_PREVIEW_CHARS] + "..."
                elements.append(_text_element(f"{ICON_MEMO} {summary}"))
            elements.append(_link_button(record.url))
            if index < len(records) - 1:
                elements.append(_divider())
        return elements

    def _count_line(self, records: Sequence[Record]) -> str:
        today = sum(1 for r in records if self._is_today(r))
        line = f"{ICON_CHART} {len(records)} notices"
        if today:
            line += f", {today} published today"
        return line

    def _text_lines(self, records: Sequence[Record]) -> list[str]:
        lines = []
        for index, record in enumerate(records):
            lines.append(f"{index + 1}. {record.title} ({self._time_tag(record)})")
            lines.append(f"   {record.url}")
        return lines

    def _card(
        self,
        label: str,
        header: str,
        elements: list[dict[str, Any]],
        text: str,
        records: Sequence[Record] = (),
        template: str = "blue",
    ) -> Payload:
        content = {
            "header": _header(header, template),
            "elements": [self._timestamp_element(), _divider(), *elements],
        }
        return Payload(
            label=label,
            msg_type="interactive",
            content=content,
            text=text,
            records=tuple(records),
        )

    def render(
        self,
        records: Sequence[Record],
        mode: DispatchMode,
        category_order: Sequence[str] = (),
    ) -> list[Payload]:
        """Render records into payloads for mode. No records, no payloads."""
        if not records:
            return []
        if mode == DispatchMode.SINGLE:
            return [self._render_records("all", records)]
        grouped = group_by_category(records, category_order)
        if mode == DispatchMode.GROUPED:
            return [self._render_grouped(grouped)]
        return [
            self._render_records(category, members, header_suffix=category)
            for category, members in grouped.items()
        ]

    def _render_records(
        self, label: str, records: Sequence[Record], header_suffix: str | None = None
    ) -> Payload:
        if len(records) == 1:
            header = f"{ICON_BELL} {records[0].title}"
            elements = self._detail_elements(records[0])
        else:
            header = f"{ICON_BOARD} {self._title}"
            elements = self._list_elements(records)
        if header_suffix is not None:
            header = f"{ICON_BELL} {header_suffix} ({len(records)})"
        text_header = header_suffix or self._title
        text = "\n".join([f"{text_header}: {len(records)} new", *self._text_lines(records)])
        return self._card(label, header, elements, text, records)

    def _render_grouped(self, grouped: dict[str, list[Record]]) -> Payload:
        all_records = [r for members in grouped.values() for r in members]
        elements = [
            _text_element(f"{self._count_line(all_records)} in {len(grouped)} categories"),
            _text_element(
                "\n".join(f"- **{name}**: {len(members)}" for name, members in grouped.items())
            ),
            _divider(),
        ]
        text_lines = [f"{self._title}: {len(all_records)} new"]
        for cat_index, (name, members) in enumerate(grouped.items()):
            elements.append(_text_element(f"**[{name}]**"))
            text_lines.append(f"[{name}]")
            for record in members:
                elements.append(_text_element(f"- {self._record_line(record)}"))
                elements.append(_link_button(record.url))
            text_lines.extend(self._text_lines(members))
            if cat_index < len(grouped) - 1:
                elements.append(_divider())
        header = f"{ICON_BOARD} {self._title} ({len(grouped)} categories)"
        return self._card("grouped", header, elements, "\n".join(text_lines), all_records)

    def render_error(self, message: str, details: dict[str, Any] | None = None) -> Payload:
        """Render a pipeline failure notice."""
        lines = [f"{ICON_ERROR} {message}"]
        for key, value in (details or {}).items():
            lines.append(f"- {key}: {value}")
        body = "\n".join(lines)
        return self._card(
            "error",
            f"{ICON_ERROR} {self._title}: run failed",
            [_text_element(body)],
            body,
            template="red",
        )

    def render_status(self, status: dict[str, Any]) -> Payload:
        """Render a service status summary."""
        lines = [f"- {key}: {value}" for key, value in status.items()]
        body = "\n".join(lines)
        return self._card(
            "status",
            f"{ICON_CHART} {self._title}: status",
            [_text_element(body)],
            body,
            template="green",
        )

    def render_test(self) -> Payload:
        """Render a connection-test message."""
        body = f"{ICON_CHECK} Connection test from {self._title}"
        return Payload(
            label="test",
            msg_type="text",
            content={"text": body},
            text=body,
        )
