"""Prometheus metrics and the /metrics, /healthz HTTP endpoint."""

from noticewatch.monitoring.exporter import REQUIRED_METRIC_NAMES, PipelineExporter
from noticewatch.monitoring.server import MonitoringServer, health_problems

__all__ = [
    "REQUIRED_METRIC_NAMES",
    "MonitoringServer",
    "PipelineExporter",
    "health_problems",
]
