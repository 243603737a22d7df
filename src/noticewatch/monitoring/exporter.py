"""
Prometheus metrics exporter for the notice pipeline.

Exports low-cardinality metrics only. Labels are restricted to fixed enums
(run status, delivery result); never record ids, titles, URLs or channel
credentials.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from prometheus_client import Counter, Gauge
from prometheus_client.registry import CollectorRegistry

if TYPE_CHECKING:
    from noticewatch.contracts.records import RunResult


# Forbidden labels that would cause cardinality explosion
FORBIDDEN_LABELS = frozenset(
    {
        "record_id",
        "title",
        "url",
        "path",
        "category",
        "chat_id",
        "token",
    }
)


class PipelineExporter:
    """
    Prometheus metrics for pipeline runs.

    Usage:
        registry = CollectorRegistry()
        exporter = PipelineExporter(registry=registry)
        exporter.record_run(result)
        # generate_latest(registry) -> bytes for /metrics endpoint
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._registry = registry or CollectorRegistry()

        self._runs = Counter(
            "noticewatch_runs",
            "Pipeline invocations by terminal status",
            ["status"],
            registry=self._registry,
        )
        self._records_fetched = Counter(
            "noticewatch_records_fetched",
            "Raw records fetched from the source",
            registry=self._registry,
        )
        self._records_new = Counter(
            "noticewatch_records_new",
            "Records that passed filters and were not sent before",
            registry=self._registry,
        )
        self._records_marked_sent = Counter(
            "noticewatch_records_marked_sent",
            "Records recorded as sent in the dedup cache",
            registry=self._registry,
        )
        self._deliveries = Counter(
            "noticewatch_deliveries",
            "Per-channel delivery outcomes",
            ["result"],
            registry=self._registry,
        )
        self._last_run_duration_ms = Gauge(
            "noticewatch_last_run_duration_ms",
            "Wall time of the most recent non-skipped run in milliseconds",
            registry=self._registry,
        )
        self._cache_durable_healthy = Gauge(
            "noticewatch_cache_durable_healthy",
            "1 when the durable dedup tier is serving, 0 when on memory fallback",
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        """Get the Prometheus CollectorRegistry."""
        return self._registry

    def record_run(self, result: RunResult) -> None:
        """Fold one RunResult into the metrics."""
        self._runs.labels(status=result.status.value).inc()
        if result.status.value == "skipped":
            return
        self._records_fetched.inc(result.total_fetched)
        self._records_new.inc(result.new_count)
        self._records_marked_sent.inc(result.marked_sent)
        for outcome in result.outcomes:
            self._deliveries.labels(result="success" if outcome.success else "failure").inc()
        self._last_run_duration_ms.set(result.duration_ms)

    def set_durable_healthy(self, healthy: bool) -> None:
        self._cache_durable_healthy.set(1 if healthy else 0)


# Counters are exported with _total suffix by prometheus_client
REQUIRED_METRIC_NAMES: frozenset[str] = frozenset(
    {
        "noticewatch_runs_total",
        "noticewatch_records_fetched_total",
        "noticewatch_records_new_total",
        "noticewatch_records_marked_sent_total",
        "noticewatch_deliveries_total",
        "noticewatch_last_run_duration_ms",
        "noticewatch_cache_durable_healthy",
    }
)
