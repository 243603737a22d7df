"""Pipeline orchestration."""

from noticewatch.pipeline.orchestrator import RunCounters, RunOrchestrator, RunState

__all__ = [
    "RunCounters",
    "RunOrchestrator",
    "RunState",
]
