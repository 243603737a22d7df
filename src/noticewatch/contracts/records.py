"""
Data contracts for the notice pipeline.

These are the canonical schemas passed between stages:
Record flows through validation, filtering, classification and dedup;
DeliveryOutcome and RunResult describe what one invocation did.
"""

from __future__ import annotations

import hashlib
from enum import Enum

import orjson
from pydantic import BaseModel, ConfigDict, Field


def record_id_for_url(url: str) -> str:
    """Derive a stable record id from its source URL."""
    return hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]


class Record(BaseModel):
    """
    One candidate announcement.

    Attributes:
        id: Stable identity derived from the source URL.
        title: Normalized title.
        url: Absolute http(s) URL of the announcement.
        publish_date: Publish timestamp as provided by the source (may be empty).
        summary: Optional normalized summary.
        category: Category assigned by the classifier.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., min_length=1, description="Stable record identity")
    title: str = Field(..., min_length=1, description="Announcement title")
    url: str = Field(..., min_length=1, description="Absolute announcement URL")
    publish_date: str = Field(default="", description="Raw publish timestamp")
    summary: str | None = Field(default=None, description="Short summary")
    category: str | None = Field(default=None, description="Assigned category")

    @property
    def search_text(self) -> str:
        """Lower-cased text used for keyword matching."""
        return f"{self.title} {self.summary or ''}".lower()

    def to_json(self) -> bytes:
        """Serialize to JSON bytes using orjson."""
        return orjson.dumps(self.model_dump(mode="json"))

    @classmethod
    def from_json(cls, data: bytes | str) -> Record:
        """Deserialize from JSON."""
        if isinstance(data, str):
            data = data.encode()
        return cls.model_validate(orjson.loads(data))


class CategoryRule(BaseModel):
    """
    Classification rule.

    An empty keyword tuple marks the catch-all rule. Lower priority values
    are evaluated first.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1, description="Category name")
    keywords: tuple[str, ...] = Field(default=(), description="Ordered match keywords")
    priority: int = Field(..., description="Ascending evaluation order")

    @property
    def is_catch_all(self) -> bool:
        return len(self.keywords) == 0


class RunStatus(str, Enum):
    """Terminal status of one invocation."""

    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class DeliveryOutcome(BaseModel):
    """Result of delivering one payload through one channel."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    channel: str = Field(..., description="Channel name")
    success: bool = Field(..., description="Whether the channel accepted the payload")
    message: str = Field(default="", description="Human-readable result")
    timestamp: str = Field(..., description="ISO-8601 UTC completion time")
    attempts: int = Field(default=0, ge=0, description="Attempts made on this channel")
    payload_label: str = Field(default="", description="Payload identity (mode or category)")


class RunResult(BaseModel):
    """
    Aggregate result of one pipeline invocation.

    Created once when the invocation reaches Reporting and never mutated.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    status: RunStatus = Field(..., description="Terminal status")
    total_fetched: int = Field(default=0, ge=0, description="Raw records fetched")
    after_filter: int = Field(default=0, ge=0, description="Records surviving filters")
    new_count: int = Field(default=0, ge=0, description="Records not seen before")
    marked_sent: int = Field(default=0, ge=0, description="Records recorded as sent")
    outcomes: tuple[DeliveryOutcome, ...] = Field(default=(), description="Per-channel outcomes")
    error: str | None = Field(default=None, description="Failure reason for failed runs")
    started_at: str = Field(default="", description="ISO-8601 UTC start time")
    finished_at: str = Field(default="", description="ISO-8601 UTC finish time")
    duration_ms: int = Field(default=0, ge=0, description="Wall time in milliseconds")

    @property
    def success(self) -> bool:
        return self.status == RunStatus.COMPLETED

    @property
    def failed_outcomes(self) -> list[DeliveryOutcome]:
        return [o for o in self.outcomes if not o.success]

    def to_json(self) -> bytes:
        """Serialize to JSON bytes using orjson."""
        return orjson.dumps(self.model_dump(mode="json"))
