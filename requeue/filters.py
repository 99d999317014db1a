from dataclasses import dataclass, field
from typing import Any

if __package__:
    from .schemas import ScopeFilter
else:  # pragma: no cover - fallback for direct script execution
    from schemas import ScopeFilter


MATCH_ALL_PREDICATE = "1 = 1"


class InvalidScope(ValueError):
    """Raised when a scope cannot be turned into a predicate (date_from > date_to)."""


@dataclass(frozen=True)
class ScopeQuery:
    where_sql: str
    params: dict[str, Any] = field(default_factory=dict)
    notes: tuple[str, ...] = ()

    @property
    def matches_everything(self) -> bool:
        return self.where_sql == MATCH_ALL_PREDICATE


def validate_scope(scope: ScopeFilter) -> None:
    if scope.date_from is not None and scope.date_to is not None and scope.date_from > scope.date_to:
        raise InvalidScope(
            f"date_from ({scope.date_from}) must be less than or equal to date_to ({scope.date_to})"
        )


def build_scope_query(scope: ScopeFilter) -> ScopeQuery:
    """Translate a scope into a WHERE predicate over the failed event log alias ``x``.

    Each active filter contributes one conjunct with named psycopg bindings and
    one operator-facing note. An empty scope yields an explicit always-true
    predicate so that "no filter" never turns into a malformed query.
    """
    validate_scope(scope)

    where: list[str] = []
    params: dict[str, Any] = {}
    notes: list[str] = []

    if scope.error_types:
        where.append("x.error_type = ANY(%(error_types)s)")
        params["error_types"] = [int(value) for value in scope.error_types]
        notes.append(f"Applied scope for error_type {params['error_types']} ...")

    if scope.event_names:
        where.append("x.event_name = ANY(%(event_names)s)")
        params["event_names"] = [str(value) for value in scope.event_names]
        notes.append(f"Applied scope for event_name {params['event_names']} ...")

    if scope.date_from is not None:
        where.append("x.time_created >= %(date_from)s")
        params["date_from"] = int(scope.date_from)
        notes.append(f"Applied scope for date_from >= {params['date_from']} ...")

    if scope.date_to is not None:
        where.append("x.time_created <= %(date_to)s")
        params["date_to"] = int(scope.date_to)
        notes.append(f"Applied scope for date_to <= {params['date_to']} ...")

    if not where:
        return ScopeQuery(
            where_sql=MATCH_ALL_PREDICATE,
            params={},
            notes=("No scope applied, moving all records ...",),
        )

    return ScopeQuery(where_sql=" AND ".join(where), params=params, notes=tuple(notes))
