import os
from dataclasses import dataclass
from typing import Optional

if __package__:
    from .runtime_utils import (
        non_negative_int_env,
        optional_positive_int_env,
        positive_int_env,
        split_csv,
    )
else:  # pragma: no cover - fallback for direct script execution
    from runtime_utils import (
        non_negative_int_env,
        optional_positive_int_env,
        positive_int_env,
        split_csv,
    )


DEFAULT_BATCH_SIZE = 12500
DEFAULT_DESTINATION = "error"
DEFAULT_TASK_MAX_RUNTIME_SEC = 1800
DEFAULT_TASK_INTERVAL_SEC = 3600


@dataclass(frozen=True)
class RequeueTaskSettings:
    """Persisted settings for the scheduled requeue task.

    Values come from the environment (or the project ``.env``) so the worker
    can be reconfigured without code changes. Empty filters mean "everything".
    """

    error_types: tuple[str, ...]
    event_names: tuple[str, ...]
    date_from: Optional[int]
    date_to: Optional[int]
    max_runtime_sec: int
    batch_size: int
    interval_sec: int
    continue_delay_sec: int
    error_backoff_sec: int
    destination: str

    def snapshot(self) -> dict:
        return {
            "error_types": list(self.error_types),
            "event_names": list(self.event_names),
            "date_from": self.date_from,
            "date_to": self.date_to,
            "max_runtime_sec": self.max_runtime_sec,
            "batch_size": self.batch_size,
            "interval_sec": self.interval_sec,
            "destination": self.destination,
        }


def load_task_settings() -> RequeueTaskSettings:
    return RequeueTaskSettings(
        error_types=tuple(split_csv(os.getenv("REQUEUE_TASK_ERROR_TYPES"))),
        event_names=tuple(split_csv(os.getenv("REQUEUE_TASK_EVENT_NAMES"))),
        date_from=optional_positive_int_env("REQUEUE_TASK_DATE_FROM"),
        date_to=optional_positive_int_env("REQUEUE_TASK_DATE_TO"),
        max_runtime_sec=non_negative_int_env("REQUEUE_TASK_MAX_RUNTIME_SEC", DEFAULT_TASK_MAX_RUNTIME_SEC),
        batch_size=positive_int_env("REQUEUE_TASK_BATCH_SIZE", DEFAULT_BATCH_SIZE),
        interval_sec=positive_int_env("REQUEUE_TASK_INTERVAL_SEC", DEFAULT_TASK_INTERVAL_SEC),
        continue_delay_sec=non_negative_int_env("REQUEUE_TASK_CONTINUE_DELAY_SEC", 5),
        error_backoff_sec=positive_int_env("REQUEUE_TASK_ERROR_BACKOFF_SEC", 60),
        destination=(os.getenv("REQUEUE_TASK_DESTINATION") or DEFAULT_DESTINATION).strip() or DEFAULT_DESTINATION,
    )
