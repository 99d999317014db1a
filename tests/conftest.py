from typing import Iterable, Optional

import pytest


COURSE_VIEWED = "\\core\\event\\course_viewed"
USER_LOGGEDIN = "\\core\\event\\user_loggedin"


def sample_records(count: int, *, start_id: int = 1, base_ts: int = 1_700_000_000) -> list[dict]:
    records = []
    for offset in range(count):
        record_id = start_id + offset
        records.append(
            {
                "id": record_id,
                "error_type": 401 if record_id % 2 else 500,
                "event_name": COURSE_VIEWED if record_id % 3 else USER_LOGGEDIN,
                "time_created": base_ts + record_id,
            }
        )
    return records


class InMemoryFailedEventStore:
    """Failed/primary partitions held in dicts, with call recording for assertions."""

    def __init__(self, records: Iterable[dict] = (), move_outcomes: Optional[Iterable[bool]] = None):
        self.failed = {int(record["id"]): dict(record) for record in records}
        self.primary: dict[int, dict] = {}
        self.fetch_calls: list[tuple[int, int]] = []
        self.move_calls: list[list[int]] = []
        self._move_outcomes = list(move_outcomes) if move_outcomes is not None else None

    @staticmethod
    def _matches(record: dict, params: dict) -> bool:
        if "error_types" in params and record["error_type"] not in params["error_types"]:
            return False
        if "event_names" in params and record["event_name"] not in params["event_names"]:
            return False
        if "date_from" in params and record["time_created"] < params["date_from"]:
            return False
        if "date_to" in params and record["time_created"] > params["date_to"]:
            return False
        return True

    def fetch_page(self, query, *, offset: int, limit: int) -> list[int]:
        self.fetch_calls.append((offset, limit))
        matching = sorted(
            record_id for record_id, record in self.failed.items() if self._matches(record, query.params)
        )
        return matching[offset : offset + limit]

    def move_batch(self, event_ids, *, destination: str) -> bool:
        self.move_calls.append(list(event_ids))
        if self._move_outcomes is not None:
            outcome = self._move_outcomes.pop(0) if self._move_outcomes else True
        else:
            outcome = True
        if not outcome:
            return False
        for event_id in event_ids:
            record = self.failed.pop(event_id)
            self.primary[event_id] = dict(record, requeue_source=destination)
        return True

    def snapshot(self) -> dict:
        by_error_type: dict[str, int] = {}
        for record in self.failed.values():
            key = str(record["error_type"])
            by_error_type[key] = by_error_type.get(key, 0) + 1
        oldest = min((record["time_created"] for record in self.failed.values()), default=None)
        return {
            "total": len(self.failed),
            "oldest_time_created": oldest,
            "oldest_age_sec": 0,
            "by_error_type": by_error_type,
        }


class FailingMoveStore(InMemoryFailedEventStore):
    def move_batch(self, event_ids, *, destination: str) -> bool:
        self.move_calls.append(list(event_ids))
        return False


@pytest.fixture
def make_store():
    def _make(count: int = 0, *, records: Optional[Iterable[dict]] = None, fail_moves: bool = False, move_outcomes=None):
        rows = list(records) if records is not None else sample_records(count)
        if fail_moves:
            return FailingMoveStore(rows)
        return InMemoryFailedEventStore(rows, move_outcomes=move_outcomes)

    return _make


class UnconfiguredStore(InMemoryFailedEventStore):
    def fetch_page(self, query, *, offset: int, limit: int) -> list[int]:
        raise RuntimeError("DATABASE_URL is not configured")

    def snapshot(self) -> dict:
        raise RuntimeError("DATABASE_URL is not configured")


@pytest.fixture
def unconfigured_store():
    return UnconfiguredStore()
