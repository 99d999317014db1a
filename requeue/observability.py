import contextlib
import contextvars
import datetime as dt
import json
import logging
import os
from typing import Optional

if __package__:
    from .runtime_utils import sanitize_identifier
else:  # pragma: no cover - fallback for direct script execution
    from runtime_utils import sanitize_identifier


_run_id_ctx: contextvars.ContextVar[str] = contextvars.ContextVar("run_id", default="-")
_correlation_id_ctx: contextvars.ContextVar[str] = contextvars.ContextVar("correlation_id", default="-")
_component_ctx: contextvars.ContextVar[str] = contextvars.ContextVar("component", default="requeue")
_logging_configured = False


class _RunContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = _run_id_ctx.get()
        record.correlation_id = _correlation_id_ctx.get()
        record.component = _component_ctx.get()
        return True


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        timestamp = dt.datetime.now(dt.timezone.utc).isoformat(timespec="milliseconds")
        payload = {
            "ts": timestamp.replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "component": getattr(record, "component", _component_ctx.get()),
            "run_id": getattr(record, "run_id", _run_id_ctx.get()),
            "correlation_id": getattr(record, "correlation_id", _correlation_id_ctx.get()),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, separators=(",", ":"))


def configure_logging(component: str = "requeue") -> None:
    global _logging_configured

    root = logging.getLogger()
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    text_format = (
        "%(asctime)s %(levelname)s %(name)s [component=%(component)s run_id=%(run_id)s "
        "correlation_id=%(correlation_id)s] %(message)s"
    )

    if not _logging_configured:
        handler = logging.StreamHandler()
        if os.getenv("LOG_FORMAT", "json").strip().lower() == "json":
            handler.setFormatter(_JsonFormatter())
        else:
            handler.setFormatter(logging.Formatter(text_format))
        root.handlers = [handler]
        _logging_configured = True

    for handler in root.handlers:
        if not any(isinstance(log_filter, _RunContextFilter) for log_filter in handler.filters):
            handler.addFilter(_RunContextFilter())

    root.setLevel(getattr(logging, level, logging.INFO))
    _component_ctx.set(sanitize_identifier(component, fallback="requeue"))


@contextlib.contextmanager
def log_context(
    *,
    run_id: str,
    correlation_id: Optional[str] = None,
    component: Optional[str] = None,
):
    run_token = _run_id_ctx.set(sanitize_identifier(run_id, fallback="-"))
    correlation_token = _correlation_id_ctx.set(sanitize_identifier(correlation_id or run_id, fallback="-"))
    component_token = None
    if component is not None:
        component_token = _component_ctx.set(sanitize_identifier(component, fallback="requeue"))
    try:
        yield
    finally:
        _run_id_ctx.reset(run_token)
        _correlation_id_ctx.reset(correlation_token)
        if component_token is not None:
            _component_ctx.reset(component_token)


def current_log_context() -> dict[str, str]:
    return {
        "run_id": _run_id_ctx.get(),
        "correlation_id": _correlation_id_ctx.get(),
        "component": _component_ctx.get(),
    }
