import asyncio
import logging
import re
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

import psycopg
from fastapi import FastAPI, HTTPException, Request, Response

if __package__:
    from .db import PostgresFailedEventStore, close_pool, init_db, ping_db
    from .engine import run_requeue
    from .observability import configure_logging, log_context
    from .prom_metrics import (
        prometheus_content_type,
        prometheus_payload,
        set_api_check_status,
        set_failed_log_backlog_metrics,
        start_metrics_http_server,
    )
    from .runtime_utils import env_bool
    from .schemas import STATUS_INVALID_SCOPE, RequeueRunRequest, RunReport
else:  # pragma: no cover - fallback for direct script execution
    from db import PostgresFailedEventStore, close_pool, init_db, ping_db
    from engine import run_requeue
    from observability import configure_logging, log_context
    from prom_metrics import (
        prometheus_content_type,
        prometheus_payload,
        set_api_check_status,
        set_failed_log_backlog_metrics,
        start_metrics_http_server,
    )
    from runtime_utils import env_bool
    from schemas import STATUS_INVALID_SCOPE, RequeueRunRequest, RunReport


APP_NAME = "Failed Event Requeue Admin"

configure_logging(component="api")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    await startup()
    try:
        yield
    finally:
        await shutdown()


app = FastAPI(title=APP_NAME, lifespan=lifespan)

DB_INIT_ON_STARTUP = env_bool("DB_INIT_ON_STARTUP", True)
_SAFE_HEADER_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:-]{8,128}$")

store = PostgresFailedEventStore()


def _normalized_header_id(raw_value: Optional[str]) -> Optional[str]:
    if raw_value is None:
        return None
    value = raw_value.strip()[:128]
    if not value:
        return None
    if _SAFE_HEADER_ID_PATTERN.match(value) is None:
        return None
    return value


async def startup():
    start_metrics_http_server()

    if not DB_INIT_ON_STARTUP:
        logger.info("DB init on startup is disabled; set DB_INIT_ON_STARTUP=true to auto-apply migrations")
        return
    try:
        await asyncio.to_thread(init_db)
    except (psycopg.Error, RuntimeError) as exc:
        logger.warning(
            "Postgres is unavailable at startup; requeue endpoints may fail until DB is restored (%s: %s)",
            exc.__class__.__name__,
            exc,
        )


async def shutdown():
    close_pool()


@app.middleware("http")
async def bind_request_context(request: Request, call_next):
    request_id = _normalized_header_id(request.headers.get("x-request-id")) or uuid.uuid4().hex
    started_at = time.perf_counter()
    with log_context(run_id="-", correlation_id=request_id, component="api"):
        response = await call_next(request)
        latency_ms = (time.perf_counter() - started_at) * 1000.0
        logger.info(
            "http_request method=%s path=%s status_code=%s latency_ms=%.3f",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
        )
    response.headers["X-Request-ID"] = request_id
    return response


def _safe_snapshot() -> Optional[dict]:
    try:
        snapshot = store.snapshot()
    except (psycopg.Error, RuntimeError):
        logger.exception("Failed to read failed log snapshot")
        return None
    set_failed_log_backlog_metrics(snapshot)
    return snapshot


@app.get("/healthz")
def healthcheck():
    db_ok = ping_db()
    set_api_check_status(scope="healthz", check="db", ok=db_ok)
    return {
        "status": "ok",
        "checks": {"db": db_ok},
        "failed_log": _safe_snapshot() if db_ok else None,
    }


@app.get("/failed-log/snapshot")
def failed_log_snapshot():
    snapshot = _safe_snapshot()
    if snapshot is None:
        raise HTTPException(status_code=503, detail="failed log snapshot is unavailable")
    return snapshot


@app.get("/metrics/prometheus")
def prometheus_metrics():
    return Response(content=prometheus_payload(), media_type=prometheus_content_type())


@app.post("/requeue/runs", response_model=RunReport)
async def create_requeue_run(payload: RequeueRunRequest):
    config = payload.to_run_config()
    try:
        report = await asyncio.to_thread(run_requeue, store, config, component="api")
    except (psycopg.Error, RuntimeError) as exc:
        logger.exception("Requeue run aborted by a store error")
        raise HTTPException(status_code=503, detail=f"store error: {exc.__class__.__name__}") from exc

    if report.status == STATUS_INVALID_SCOPE:
        raise HTTPException(status_code=400, detail=report.model_dump(mode="json"))
    return report
