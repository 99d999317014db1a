import logging
import os

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)

if __package__:
    from .runtime_utils import env_bool, positive_int_env
else:  # pragma: no cover - fallback for direct script execution
    from runtime_utils import env_bool, positive_int_env

logger = logging.getLogger(__name__)


_RUN_DURATION_BUCKETS_SEC = (
    0.1,
    0.5,
    1,
    5,
    15,
    30,
    60,
    300,
    900,
    1800,
    3600,
    7200,
)


REQUEUE_RUNS_TOTAL = Counter(
    "requeue_runs_total",
    "Requeue engine runs grouped by trigger and terminal status.",
    labelnames=("trigger", "status"),
)

REQUEUE_RUN_DURATION_SEC = Histogram(
    "requeue_run_duration_sec",
    "Wall-clock duration of requeue engine runs.",
    labelnames=("trigger",),
    buckets=_RUN_DURATION_BUCKETS_SEC,
)

REQUEUE_BATCHES_TOTAL = Counter(
    "requeue_batches_total",
    "Requeue batches by outcome (moved, failed, dry_run).",
    labelnames=("outcome",),
)

REQUEUE_RECORDS_TOTAL = Counter(
    "requeue_records_total",
    "Failed records processed by the requeue engine by outcome.",
    labelnames=("outcome",),
)

FAILED_LOG_BACKLOG_EVENTS = Gauge(
    "requeue_failed_log_backlog_events",
    "Number of records waiting in the failed event log.",
)

FAILED_LOG_OLDEST_AGE_SEC = Gauge(
    "requeue_failed_log_oldest_age_sec",
    "Age of the oldest record in the failed event log.",
)

API_CHECK_STATUS = Gauge(
    "requeue_api_check_status",
    "Health/readiness check result (1 ok, 0 failed).",
    labelnames=("scope", "check"),
)


def observe_requeue_batch(outcome: str, size: int) -> None:
    REQUEUE_BATCHES_TOTAL.labels(outcome=outcome).inc()
    REQUEUE_RECORDS_TOTAL.labels(outcome=outcome).inc(max(int(size), 0))


def observe_requeue_run(trigger: str, status: str, duration_sec: float) -> None:
    REQUEUE_RUNS_TOTAL.labels(trigger=trigger, status=status).inc()
    REQUEUE_RUN_DURATION_SEC.labels(trigger=trigger).observe(max(float(duration_sec), 0.0))


def set_failed_log_backlog_metrics(snapshot: dict) -> None:
    FAILED_LOG_BACKLOG_EVENTS.set(float(snapshot.get("total", 0) or 0))
    FAILED_LOG_OLDEST_AGE_SEC.set(float(snapshot.get("oldest_age_sec", 0) or 0))


def set_api_check_status(scope: str, check: str, ok: bool) -> None:
    API_CHECK_STATUS.labels(scope=scope, check=check).set(1.0 if ok else 0.0)


def prometheus_payload() -> bytes:
    return generate_latest()


def prometheus_content_type() -> str:
    return CONTENT_TYPE_LATEST


def start_metrics_http_server() -> bool:
    if not env_bool("PROMETHEUS_METRICS_ENABLED", True):
        logger.info("Prometheus metrics server is disabled by config")
        return False

    host = os.getenv("METRICS_HOST", "0.0.0.0")
    port = positive_int_env("METRICS_PORT", 9118)
    try:
        start_http_server(port=port, addr=host)
    except Exception as exc:
        logger.warning("Failed to start metrics server (%s: %s)", exc.__class__.__name__, exc)
        return False
    logger.info("Metrics server started at http://%s:%s/metrics", host, port)
    return True
