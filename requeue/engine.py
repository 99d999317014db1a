"""Batch requeue engine.

Moves failed event records back into the primary event log in bounded,
id-ordered batches. The engine is synchronous and strictly sequential: one
fetch, one move decision, one tally per iteration. Both the on-demand CLI and
the scheduled worker drive the same :class:`RunController`.

Cursor rule: the offset only advances when a batch stays in the failed log
(move failure or dry run). A successful move removes the batch from the
filtered set, so re-reading the same offset surfaces the next unseen records.
This assumes moves are the only way matched records leave the set during a run.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Sequence

if __package__:
    from .filters import InvalidScope, ScopeQuery, build_scope_query
    from .observability import log_context
    from .prom_metrics import observe_requeue_batch, observe_requeue_run
    from .schemas import (
        STATUS_DEADLINE,
        STATUS_EXHAUSTED,
        STATUS_INVALID_SCOPE,
        RunConfig,
        RunReport,
    )
else:  # pragma: no cover - fallback for direct script execution
    from filters import InvalidScope, ScopeQuery, build_scope_query
    from observability import log_context
    from prom_metrics import observe_requeue_batch, observe_requeue_run
    from schemas import (
        STATUS_DEADLINE,
        STATUS_EXHAUSTED,
        STATUS_INVALID_SCOPE,
        RunConfig,
        RunReport,
    )

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
ProgressSink = Callable[[str], None]


class FailedEventStore(Protocol):
    def fetch_page(self, query: ScopeQuery, *, offset: int, limit: int) -> list[int]:
        ...

    def move_batch(self, event_ids: Sequence[int], *, destination: str) -> bool:
        ...


@dataclass
class RunCounters:
    total_matched: int = 0
    total_succeeded: int = 0
    total_failed: int = 0
    batches: int = 0


class RuntimeGovernor:
    """Wall-clock budget for one run. ``max_runtime_sec`` of 0/None never trips."""

    def __init__(self, max_runtime_sec: Optional[int], clock: Clock = time.monotonic):
        self.max_runtime_sec = int(max_runtime_sec or 0)
        self._clock = clock
        self._started_at = clock()

    @property
    def bounded(self) -> bool:
        return self.max_runtime_sec > 0

    def elapsed_sec(self) -> float:
        return max(self._clock() - self._started_at, 0.0)

    def expired(self) -> bool:
        if not self.bounded:
            return False
        return self.elapsed_sec() >= self.max_runtime_sec


class Paginator:
    def __init__(self, store: FailedEventStore, query: ScopeQuery, batch_size: int):
        self._store = store
        self._query = query
        self.batch_size = int(batch_size)

    def fetch(self, offset: int) -> list[int]:
        return list(self._store.fetch_page(self._query, offset=offset, limit=self.batch_size))


class BatchMover:
    def __init__(self, store: FailedEventStore, destination: str):
        self._store = store
        self.destination = destination

    def move(self, event_ids: Sequence[int]) -> bool:
        if not event_ids:
            raise ValueError("BatchMover.move requires a non-empty batch")
        # A store failure of any kind is a failed batch, never a failed run.
        try:
            return bool(self._store.move_batch(event_ids, destination=self.destination))
        except Exception:
            logger.exception(
                "Unexpected error while moving batch (size=%s first_id=%s)",
                len(event_ids),
                event_ids[0],
            )
            return False


class RunController:
    def __init__(
        self,
        store: FailedEventStore,
        config: RunConfig,
        *,
        progress: Optional[ProgressSink] = None,
        clock: Clock = time.monotonic,
        governor: Optional[RuntimeGovernor] = None,
        run_id: Optional[str] = None,
    ):
        self.store = store
        self.config = config
        self.run_id = run_id or uuid.uuid4().hex
        self._progress = progress
        self._clock = clock
        self._governor = governor
        self.counters = RunCounters()
        self.offset = 0

    def _emit(self, message: str) -> None:
        logger.info(message)
        if self._progress is not None:
            self._progress(message)

    def _report(self, status: str, started_at: float, notes: Sequence[str], error: Optional[str] = None) -> RunReport:
        elapsed = max(self._clock() - started_at, 0.0)
        self._emit(f"Total of {self.counters.total_matched} records matched the scope.")
        self._emit(f"Total of {self.counters.total_succeeded} events successfully sent for reprocessing.")
        self._emit(f"Total of {self.counters.total_failed} events failed to send for reprocessing.")
        observe_requeue_run(trigger=self.config.trigger, status=status, duration_sec=elapsed)
        return RunReport(
            run_id=self.run_id,
            trigger=self.config.trigger,
            status=status,
            dry_run=self.config.dry_run,
            total_matched=self.counters.total_matched,
            total_succeeded=self.counters.total_succeeded,
            total_failed=self.counters.total_failed,
            batches=self.counters.batches,
            final_offset=self.offset,
            elapsed_sec=round(elapsed, 3),
            scope_notes=list(notes),
            error=error,
        )

    def run(self) -> RunReport:
        started_at = self._clock()
        config = self.config

        try:
            query = build_scope_query(config.scope)
        except InvalidScope as exc:
            logger.error("Rejected requeue scope: %s", exc)
            if self._progress is not None:
                self._progress(f"Invalid scope: {exc}")
            return self._report(STATUS_INVALID_SCOPE, started_at, notes=(), error=str(exc))

        if config.dry_run:
            self._emit(
                "NOTICE: running in dry-run mode, no records will be moved. "
                "Disable dry-run to send records for reprocessing."
            )
        governor = self._governor or RuntimeGovernor(config.max_runtime_sec, clock=self._clock)
        if governor.bounded:
            self._emit(f"Program will stop after {governor.max_runtime_sec} seconds have passed ...")
        self._emit(f"Program will run in batches of {config.batch_size} records ...")
        for note in query.notes:
            self._emit(note)

        paginator = Paginator(self.store, query, config.batch_size)
        mover = BatchMover(self.store, config.destination)

        while True:
            if governor.expired():
                self._emit(
                    f"Stopping the program, the maximum runtime has been exceeded "
                    f"({governor.max_runtime_sec} seconds)."
                )
                return self._report(STATUS_DEADLINE, started_at, notes=query.notes)

            event_ids = paginator.fetch(self.offset)
            count = len(event_ids)
            self._emit(f"Reading at offset {self.offset} ... read {count} records.")
            if count == 0:
                return self._report(STATUS_EXHAUSTED, started_at, notes=query.notes)

            self.counters.batches += 1
            self.counters.total_matched += count

            if config.dry_run:
                self.offset += count
                observe_requeue_batch("dry_run", count)
                self._emit(f"{count} events matched (dry run), next offset will be {self.offset}.")
                continue

            if mover.move(event_ids):
                self.counters.total_succeeded += count
                observe_requeue_batch("moved", count)
                self._emit(
                    f"{count} events successfully sent for reprocessing. "
                    "Not increasing the offset (records were moved)."
                )
            else:
                self.offset += count
                self.counters.total_failed += count
                observe_requeue_batch("failed", count)
                self._emit(
                    f"{count} events failed to send for reprocessing. "
                    f"Increasing the offset by {count} (records were not moved)."
                )


EXIT_OK = 0
EXIT_STORE_ERROR = 1
EXIT_INVALID_SCOPE = 3
EXIT_DEADLINE = 4

_EXIT_CODES = {
    STATUS_EXHAUSTED: EXIT_OK,
    STATUS_INVALID_SCOPE: EXIT_INVALID_SCOPE,
    STATUS_DEADLINE: EXIT_DEADLINE,
}


def exit_code_for(report: RunReport) -> int:
    return _EXIT_CODES[report.status]


def run_requeue(
    store: FailedEventStore,
    config: RunConfig,
    *,
    progress: Optional[ProgressSink] = None,
    component: Optional[str] = None,
) -> RunReport:
    controller = RunController(store, config, progress=progress)
    with log_context(run_id=controller.run_id, component=component):
        return controller.run()
