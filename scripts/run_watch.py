#!/usr/bin/env python3
"""
Notice watcher service.

Periodically fetches announcements, keeps the fresh, relevant and unseen
ones, and pushes them to the configured channels.

Usage:
    python -m scripts.run_watch                  # run every SCHEDULE_INTERVAL_S
    python -m scripts.run_watch --once           # single run, then exit
    python -m scripts.run_watch --check          # send a test message per channel
    python -m scripts.run_watch --status         # push a status summary
    python -m scripts.run_watch --clear-cache    # forget every sent record
    python -m scripts.run_watch --dry-run --once # render and log, send nothing

All other settings come from environment variables (see noticewatch.config).
SIGINT/SIGTERM request shutdown: the in-flight run gets --graceful-timeout-s
to finish before resources are released.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import TYPE_CHECKING

from noticewatch.config import AppConfig, build_orchestrator
from noticewatch.contracts.errors import ConfigError
from noticewatch.logging_config import setup_logging
from noticewatch.monitoring.exporter import PipelineExporter
from noticewatch.monitoring.server import MonitoringServer

if TYPE_CHECKING:
    from noticewatch.pipeline.orchestrator import RunOrchestrator

logger = logging.getLogger(__name__)


def setup_signal_handlers(stop_event: asyncio.Event) -> None:
    """
    Setup signal handlers for graceful shutdown.

    The handler only sets the stop event; the main loop exits on its own
    and calls shutdown() exactly once.
    """
    loop = asyncio.get_running_loop()

    def signal_handler(sig: int, frame: object) -> None:
        logger.info("Received signal %s, initiating shutdown", signal.Signals(sig).name)
        loop.call_soon_threadsafe(stop_event.set)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


async def run_schedule(
    orchestrator: RunOrchestrator,
    stop_event: asyncio.Event,
    *,
    interval_s: float,
    once: bool,
) -> int:
    """
    Trigger run_once() every interval_s until stop_event is set.

    Returns:
        Exit code (0 = last run succeeded).
    """
    exit_code = 0
    while not stop_event.is_set():
        run_task = asyncio.create_task(orchestrator.run_once())
        stop_task = asyncio.create_task(stop_event.wait())
        done, _ = await asyncio.wait({run_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        if run_task not in done:
            # Stop requested mid-run; shutdown() waits for run_task
            return exit_code
        stop_task.cancel()

        result = run_task.result()
        exit_code = 0 if result.success else 1
        logger.info(
            "Run finished",
            extra={"status": result.status.value, "new_count": result.new_count},
        )
        if once:
            break
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_s)
        except TimeoutError:
            pass
    return exit_code


async def run_service(config: AppConfig, args: argparse.Namespace) -> int:
    """
    Build the pipeline and execute the requested command.

    Returns:
        Exit code (0 = success).
    """
    exporter: PipelineExporter | None = None
    monitoring: MonitoringServer | None = None
    if config.metrics_port > 0:
        exporter = PipelineExporter()

    try:
        orchestrator = build_orchestrator(
            config,
            exporter=exporter,
            require_source=not (args.check or args.status or args.clear_cache),
        )
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        return 2

    if not config.dispatch.any_enabled() and not config.dispatch.dry_run:
        logger.warning("No delivery channels enabled; every payload will be reported failed")

    stop_event = asyncio.Event()
    setup_signal_handlers(stop_event)

    try:
        if exporter is not None:
            monitoring = MonitoringServer(
                exporter.registry, orchestrator.status, port=config.metrics_port
            )
            await monitoring.start()

        if args.check:
            results = await orchestrator.coordinator.test_connection()
            for name, ok in results.items():
                logger.info("Channel %s: %s", name, "OK" if ok else "FAILED")
            return 0 if results and all(results.values()) else 1

        if args.status:
            report = await orchestrator.push_status()
            return 0 if report.delivered else 1

        if args.clear_cache:
            await orchestrator.cache.clear()
            logger.info("Dedup cache cleared")
            return 0

        orchestrator.start()
        return await run_schedule(
            orchestrator,
            stop_event,
            interval_s=config.schedule.interval_s,
            once=config.schedule.run_once,
        )
    except Exception as e:
        logger.exception("Service failed: %s", e)
        return 1
    finally:
        clean = await orchestrator.shutdown(config.schedule.graceful_timeout_s)
        if not clean:
            logger.warning("Shutdown timed out with a run still in flight")
        if monitoring is not None:
            await monitoring.stop()


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Watch an announcement feed and push new notices.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    command = parser.add_mutually_exclusive_group()
    command.add_argument(
        "--check",
        action="store_true",
        help="Send a test message through every channel and exit",
    )
    command.add_argument(
        "--status",
        action="store_true",
        help="Push a status summary and exit",
    )
    command.add_argument(
        "--clear-cache",
        action="store_true",
        help="Clear both dedup cache tiers and exit",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run the pipeline once and exit (default: RUN_ONCE)",
    )
    parser.add_argument(
        "--interval-s",
        type=float,
        default=None,
        help="Seconds between runs (default: SCHEDULE_INTERVAL_S or 3600)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Render and log payloads without sending or marking them sent",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Prometheus /metrics port (0 to disable, default: METRICS_PORT or 0)",
    )
    parser.add_argument(
        "--graceful-timeout-s",
        type=float,
        default=60.0,
        help="Graceful shutdown timeout in seconds (default: 60)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    try:
        config = AppConfig.from_env()
        if args.once:
            config.schedule.run_once = True
        if args.interval_s is not None:
            config.schedule.interval_s = args.interval_s
        if args.metrics_port is not None:
            config.metrics_port = args.metrics_port
        if args.dry_run:
            config.dispatch.dry_run = True
        config.schedule.graceful_timeout_s = args.graceful_timeout_s
        # Re-run validation after CLI overrides
        config.schedule.__post_init__()
        config.__post_init__()
    except ConfigError as e:
        setup_logging(level="ERROR", json_format=False)
        logger.error("Invalid configuration: %s", e)
        return 2

    setup_logging(
        level="DEBUG" if args.verbose else config.log_level,
        json_format=config.log_json,
    )

    logger.info("Starting notice watcher")
    logger.info("  Mode: %s", config.dispatch.mode.value)
    logger.info(
        "  Schedule: %s",
        "once" if config.schedule.run_once else f"every {config.schedule.interval_s}s",
    )
    logger.info("  Dry run: %s", "yes" if config.dispatch.dry_run else "no")

    return asyncio.run(run_service(config, args))


if __name__ == "__main__":
    sys.exit(main())
