#!/usr/bin/env python3
import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Optional, Sequence

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import psycopg
from pydantic import ValidationError

from requeue.config import RequeueTaskSettings, load_task_settings
from requeue.db import PostgresFailedEventStore, close_pool
from requeue.engine import EXIT_STORE_ERROR, exit_code_for, run_requeue
from requeue.observability import configure_logging
from requeue.prom_metrics import set_failed_log_backlog_metrics, start_metrics_http_server
from requeue.schemas import (
    STATUS_DEADLINE,
    STATUS_INVALID_SCOPE,
    RunConfig,
    RunReport,
    ScopeFilter,
)


logger = logging.getLogger("requeue-scheduler")


def build_run_config(settings: RequeueTaskSettings) -> RunConfig:
    return RunConfig(
        scope=ScopeFilter(
            error_types=list(settings.error_types),
            event_names=list(settings.event_names),
            date_from=settings.date_from,
            date_to=settings.date_to,
        ),
        batch_size=settings.batch_size,
        max_runtime_sec=settings.max_runtime_sec,
        dry_run=False,
        destination=settings.destination,
        trigger="scheduled",
    )


def next_delay_sec(report: Optional[RunReport], settings: RequeueTaskSettings) -> int:
    """Translate a run outcome into the wait before the next scheduled run."""
    if report is None:
        return settings.error_backoff_sec
    if report.status == STATUS_DEADLINE:
        # Work is left over; pick it up again soon.
        return settings.continue_delay_sec
    if report.status == STATUS_INVALID_SCOPE:
        logger.error(
            "Scheduled requeue scope is invalid (%s); fix REQUEUE_TASK_DATE_FROM/REQUEUE_TASK_DATE_TO",
            report.error,
        )
    return settings.interval_sec


class RequeueScheduler:
    def __init__(self, settings: Optional[RequeueTaskSettings] = None, store=None):
        self.settings = settings or load_task_settings()
        self.store = store or PostgresFailedEventStore()
        self._stop_event = asyncio.Event()

    def request_stop(self) -> None:
        self._stop_event.set()

    def run_once(self) -> Optional[RunReport]:
        try:
            config = build_run_config(self.settings)
        except ValidationError as exc:
            logger.error("Scheduled requeue settings are invalid: %s", exc)
            return None
        logger.info(
            "Starting scheduled requeue run with configuration %s",
            json.dumps(self.settings.snapshot(), ensure_ascii=True, sort_keys=True),
        )
        try:
            report = run_requeue(self.store, config, component="requeue-scheduler")
        except (psycopg.Error, RuntimeError):
            logger.exception("Scheduled requeue run aborted by a store error")
            return None
        logger.info(
            "Scheduled requeue run finished (run_id=%s status=%s matched=%s succeeded=%s failed=%s elapsed_sec=%s)",
            report.run_id,
            report.status,
            report.total_matched,
            report.total_succeeded,
            report.total_failed,
            report.elapsed_sec,
        )
        return report

    async def _publish_backlog_metrics(self) -> None:
        try:
            snapshot = await asyncio.to_thread(self.store.snapshot)
            set_failed_log_backlog_metrics(snapshot)
        except (psycopg.Error, RuntimeError):
            logger.exception("Failed to publish failed log backlog metrics")

    async def _sleep_or_stop(self, duration_sec: float) -> None:
        if duration_sec <= 0:
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=duration_sec)
        except asyncio.TimeoutError:
            return

    async def run(self) -> int:
        logger.info(
            "Requeue scheduler started (interval_sec=%s max_runtime_sec=%s batch_size=%s)",
            self.settings.interval_sec,
            self.settings.max_runtime_sec,
            self.settings.batch_size,
        )
        try:
            while not self._stop_event.is_set():
                # Runs never overlap: the next one starts only after this one returns.
                report = await asyncio.to_thread(self.run_once)
                await self._publish_backlog_metrics()
                await self._sleep_or_stop(next_delay_sec(report, self.settings))
        finally:
            close_pool()
            logger.info("Requeue scheduler stopped")
        return 0


def _install_signal_handlers(scheduler: RequeueScheduler) -> None:
    loop = asyncio.get_running_loop()

    def _stop() -> None:
        logger.info("Requeue scheduler stop requested")
        scheduler.request_stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _stop)
        except NotImplementedError:  # pragma: no cover - windows fallback
            signal.signal(sig, lambda *_args: _stop())


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Periodically requeue failed events using persisted settings.")
    parser.add_argument("--once", action="store_true", help="Run a single requeue pass and exit.")
    return parser.parse_args(argv)


async def _main_async() -> int:
    start_metrics_http_server()
    scheduler = RequeueScheduler()
    _install_signal_handlers(scheduler)
    return await scheduler.run()


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(component="requeue-scheduler")
    if args.once:
        scheduler = RequeueScheduler()
        try:
            report = scheduler.run_once()
        finally:
            close_pool()
        return EXIT_STORE_ERROR if report is None else exit_code_for(report)
    return asyncio.run(_main_async())


if __name__ == "__main__":
    raise SystemExit(main())
