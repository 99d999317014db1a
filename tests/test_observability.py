import json
import logging

from requeue.observability import _JsonFormatter, _RunContextFilter, current_log_context, log_context


def test_log_context_is_scoped_to_the_block():
    before = current_log_context()

    with log_context(run_id="run-123", component="requeue-cli"):
        inside = current_log_context()

    assert inside == {"run_id": "run-123", "correlation_id": "run-123", "component": "requeue-cli"}
    assert current_log_context() == before


def test_log_context_replaces_unsafe_identifiers():
    with log_context(run_id="run id with spaces", correlation_id="corr-1"):
        context = current_log_context()

    assert context["run_id"] == "-"
    assert context["correlation_id"] == "corr-1"


def test_json_formatter_carries_run_context():
    record = logging.LogRecord("requeue.engine", logging.INFO, __file__, 1, "read %s records", (10,), None)

    with log_context(run_id="run-9", component="requeue-scheduler"):
        _RunContextFilter().filter(record)

    payload = json.loads(_JsonFormatter().format(record))
    assert payload["message"] == "read 10 records"
    assert payload["run_id"] == "run-9"
    assert payload["component"] == "requeue-scheduler"
    assert payload["ts"].endswith("Z")
