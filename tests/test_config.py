from requeue.config import DEFAULT_BATCH_SIZE, load_task_settings


_TASK_ENV = (
    "REQUEUE_TASK_ERROR_TYPES",
    "REQUEUE_TASK_EVENT_NAMES",
    "REQUEUE_TASK_DATE_FROM",
    "REQUEUE_TASK_DATE_TO",
    "REQUEUE_TASK_MAX_RUNTIME_SEC",
    "REQUEUE_TASK_BATCH_SIZE",
    "REQUEUE_TASK_INTERVAL_SEC",
    "REQUEUE_TASK_DESTINATION",
)


def _clear_task_env(monkeypatch):
    for name in _TASK_ENV:
        monkeypatch.delenv(name, raising=False)


def test_task_settings_defaults(monkeypatch):
    _clear_task_env(monkeypatch)

    settings = load_task_settings()

    assert settings.error_types == ()
    assert settings.event_names == ()
    assert settings.date_from is None
    assert settings.date_to is None
    assert settings.max_runtime_sec == 1800
    assert settings.batch_size == DEFAULT_BATCH_SIZE
    assert settings.interval_sec == 3600
    assert settings.destination == "error"


def test_task_settings_read_scope_from_environment(monkeypatch):
    _clear_task_env(monkeypatch)
    monkeypatch.setenv("REQUEUE_TASK_ERROR_TYPES", "401, 403")
    monkeypatch.setenv("REQUEUE_TASK_EVENT_NAMES", "\\core\\event\\course_viewed")
    monkeypatch.setenv("REQUEUE_TASK_DATE_FROM", "1698982800")
    monkeypatch.setenv("REQUEUE_TASK_DATE_TO", "0")
    monkeypatch.setenv("REQUEUE_TASK_MAX_RUNTIME_SEC", "0")
    monkeypatch.setenv("REQUEUE_TASK_BATCH_SIZE", "-5")

    settings = load_task_settings()

    assert settings.error_types == ("401", "403")
    assert settings.event_names == ("\\core\\event\\course_viewed",)
    assert settings.date_from == 1698982800
    assert settings.date_to is None
    assert settings.max_runtime_sec == 0
    assert settings.batch_size == DEFAULT_BATCH_SIZE
    assert settings.snapshot()["error_types"] == ["401", "403"]
