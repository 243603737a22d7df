"""
Run orchestrator.

Drives one pipeline invocation through its states:

    idle -> fetching -> validating -> filtering -> classifying
         -> deduplicating -> dispatching -> reporting -> idle

Any failure from fetching through deduplicating short-circuits to
reporting with a failed RunResult and a best-effort error notification.
Dispatch failures never short-circuit: only records carried by delivered
payloads are marked sent.

At most one invocation is in flight; a trigger that arrives while a run is
in progress (or after shutdown was requested) returns a skipped result
immediately instead of queueing.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from noticewatch.contracts.errors import FetchError
from noticewatch.contracts.records import DeliveryOutcome, RunResult, RunStatus
from noticewatch.dedup.keys import dedup_key

if TYPE_CHECKING:
    from noticewatch.classify.classifier import CategoryClassifier
    from noticewatch.dedup.cache import DedupCache
    from noticewatch.delivery.coordinator import DispatchCoordinator, PayloadReport
    from noticewatch.delivery.formatter import DispatchMode
    from noticewatch.filtering.record_filter import RecordFilter
    from noticewatch.filtering.validator import RecordValidator
    from noticewatch.monitoring.exporter import PipelineExporter
    from noticewatch.source.base import SourceProvider

logger = logging.getLogger(__name__)

DEFAULT_SHUTDOWN_TIMEOUT_S = 60.0


class RunState(str, Enum):
    """Pipeline invocation state."""

    IDLE = "idle"
    FETCHING = "fetching"
    VALIDATING = "validating"
    FILTERING = "filtering"
    CLASSIFYING = "classifying"
    DEDUPLICATING = "deduplicating"
    DISPATCHING = "dispatching"
    REPORTING = "reporting"


@dataclass
class RunCounters:
    """Lifetime invocation counters."""

    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    skipped_runs: int = 0


def _utc_iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=UTC).isoformat()


class RunOrchestrator:
    """
    Sequences one pipeline invocation and owns shutdown.

    All collaborators are injected; the orchestrator holds no module-level
    state.
    """

    def __init__(
        self,
        source: SourceProvider,
        validator: RecordValidator,
        record_filter: RecordFilter,
        classifier: CategoryClassifier,
        cache: DedupCache,
        coordinator: DispatchCoordinator,
        mode: DispatchMode | None = None,
        exporter: PipelineExporter | None = None,
        time_fn: Callable[[], float] | None = None,
    ) -> None:
        self._source = source
        self._validator = validator
        self._filter = record_filter
        self._classifier = classifier
        self._cache = cache
        self._coordinator = coordinator
        self._mode = mode
        self._exporter = exporter
        self._time_fn = time_fn or time.time

        self._state = RunState.IDLE
        self._running = False
        self._shutdown_requested = False
        self._closed = False
        self._idle = asyncio.Event()
        self._idle.set()
        self._counters = RunCounters()
        self._last_result: RunResult | None = None
        self._last_error: str | None = None

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def last_result(self) -> RunResult | None:
        return self._last_result

    @property
    def total_runs(self) -> int:
        return self._counters.total_runs

    @property
    def counters(self) -> RunCounters:
        return self._counters

    @property
    def cache(self) -> DedupCache:
        return self._cache

    @property
    def coordinator(self) -> DispatchCoordinator:
        return self._coordinator

    def start(self) -> None:
        """Start background housekeeping (memory cache sweep). Needs a running loop."""
        self._cache.start()

    def _transition(self, state: RunState) -> None:
        logger.debug("Run state", extra={"from_state": self._state.value, "to_state": state.value})
        self._state = state

    async def run_once(self) -> RunResult:
        """Execute one invocation, or return a skipped result if one is in flight."""
        # Check-and-set must not be separated by an await
        if self._shutdown_requested:
            return self._skipped("shutdown requested")
        if self._running:
            return self._skipped("run already in progress")
        self._running = True
        self._idle.clear()
        try:
            result = await self._execute()
        finally:
            self._state = RunState.IDLE
            self._running = False
            self._idle.set()

        self._counters.total_runs += 1
        if result.success:
            self._counters.successful_runs += 1
        else:
            self._counters.failed_runs += 1
            self._last_error = result.error
        self._last_result = result
        if self._exporter is not None:
            self._exporter.record_run(result)
            self._exporter.set_durable_healthy(self._cache.durable_healthy)
        return result

    def _skipped(self, reason: str) -> RunResult:
        self._counters.skipped_runs += 1
        now = _utc_iso(self._time_fn())
        logger.warning("Run skipped", extra={"reason": reason})
        result = RunResult(
            status=RunStatus.SKIPPED,
            error=reason,
            started_at=now,
            finished_at=now,
        )
        if self._exporter is not None:
            self._exporter.record_run(result)
        return result

    async def _execute(self) -> RunResult:
        started = self._time_fn()
        stage_counts = {"total_fetched": 0, "after_filter": 0, "new_count": 0}
        logger.info("Run started")

        try:
            self._transition(RunState.FETCHING)
            raw = await self._source.fetch()
            if not raw:
                raise FetchError("source returned no records")
            stage_counts["total_fetched"] = len(raw)

            self._transition(RunState.VALIDATING)
            valid = self._validator.validate(raw)

            self._transition(RunState.FILTERING)
            filtered = self._filter.apply(valid).records
            stage_counts["after_filter"] = len(filtered)

            self._transition(RunState.CLASSIFYING)
            classified = self._classifier.classify_all(filtered)

            self._transition(RunState.DEDUPLICATING)
            new_records = await self._cache.filter_new(classified)
            stage_counts["new_count"] = len(new_records)
        except Exception as e:
            failed_stage = self._state
            self._transition(RunState.REPORTING)
            logger.error(
                "Run failed",
                extra={"stage": failed_stage.value, "error": str(e), "error_type": type(e).__name__},
            )
            await self._notify_error(e, failed_stage)
            return self._build_result(
                RunStatus.FAILED, started, error=f"{type(e).__name__}: {e}", **stage_counts
            )

        outcomes: list[DeliveryOutcome] = []
        marked = 0
        if new_records:
            self._transition(RunState.DISPATCHING)
            try:
                report = await self._coordinator.dispatch(
                    new_records, self._mode, self._classifier.category_order
                )
            except Exception as e:
                self._transition(RunState.REPORTING)
                logger.error("Dispatch raised", extra={"error": str(e)})
                return self._build_result(
                    RunStatus.FAILED, started, error=f"{type(e).__name__}: {e}", **stage_counts
                )
            outcomes = report.outcomes
            delivered = report.delivered_records
            if delivered and not self._coordinator.dry_run:
                await self._cache.mark_sent_many([dedup_key(r) for r in delivered])
                marked = len(delivered)
        else:
            logger.info("No new records, nothing to dispatch")

        self._transition(RunState.REPORTING)
        result = self._build_result(
            RunStatus.COMPLETED, started, outcomes=outcomes, marked_sent=marked, **stage_counts
        )
        logger.info(
            "Run completed",
            extra={
                "total_fetched": result.total_fetched,
                "after_filter": result.after_filter,
                "new_count": result.new_count,
                "marked_sent": result.marked_sent,
                "failed_outcomes": len(result.failed_outcomes),
                "duration_ms": result.duration_ms,
            },
        )
        return result

    def _build_result(
        self,
        status: RunStatus,
        started: float,
        *,
        outcomes: list[DeliveryOutcome] | None = None,
        marked_sent: int = 0,
        error: str | None = None,
        total_fetched: int = 0,
        after_filter: int = 0,
        new_count: int = 0,
    ) -> RunResult:
        finished = self._time_fn()
        return RunResult(
            status=status,
            total_fetched=total_fetched,
            after_filter=after_filter,
            new_count=new_count,
            marked_sent=marked_sent,
            outcomes=tuple(outcomes or ()),
            error=error,
            started_at=_utc_iso(started),
            finished_at=_utc_iso(finished),
            duration_ms=max(int((finished - started) * 1000), 0),
        )

    async def _notify_error(self, error: Exception, stage: RunState) -> None:
        """Best-effort failure notification. Never raises."""
        try:
            await self._coordinator.notify_error(
                f"Pipeline run failed: {error}",
                {"stage": stage.value, "error_type": type(error).__name__},
            )
        except Exception as e:
            logger.error("Error notification failed", extra={"error": str(e)})

    def status(self) -> dict[str, Any]:
        """Service health snapshot."""
        last = self._last_result
        return {
            "state": self._state.value,
            "is_running": self._running,
            "shutdown_requested": self._shutdown_requested,
            "total_runs": self._counters.total_runs,
            "successful_runs": self._counters.successful_runs,
            "failed_runs": self._counters.failed_runs,
            "skipped_runs": self._counters.skipped_runs,
            "last_run_status": last.status.value if last else None,
            "last_run_at": last.finished_at if last else None,
            "last_error": self._last_error,
            "cache_tier": "redis" if self._cache.durable_healthy else "memory",
        }

    async def push_status(self) -> PayloadReport:
        """Send the service status summary through the delivery channels."""
        status = self.status()
        cache_stats = await self._cache.stats()
        status["cache_tier"] = cache_stats["tier"]
        status["cache_memory_size"] = cache_stats["memory_size"]
        if "durable_size" in cache_stats:
            status["cache_durable_size"] = cache_stats["durable_size"]
        return await self._coordinator.notify_status(status)

    async def shutdown(self, timeout_s: float = DEFAULT_SHUTDOWN_TIMEOUT_S) -> bool:
        """
        Stop accepting runs, wait for the in-flight run, release resources.

        Returns:
            False if the in-flight run did not finish within timeout_s.
        """
        self._shutdown_requested = True
        completed = True
        if self._running:
            logger.info("Waiting for in-flight run", extra={"timeout_s": timeout_s})
            try:
                await asyncio.wait_for(self._idle.wait(), timeout=timeout_s)
            except TimeoutError:
                completed = False
                logger.warning("In-flight run did not finish before shutdown timeout")

        if not self._closed:
            self._closed = True
            await self._coordinator.close()
            await self._cache.close()
            close_source = getattr(self._source, "close", None)
            if close_source is not None:
                await close_source()
        logger.info("Orchestrator shut down", extra={"clean": completed})
        return completed
