from typing import Any, Sequence

if __package__:
    from .filters import ScopeQuery
else:  # pragma: no cover - fallback for direct script execution
    from filters import ScopeQuery


class FailedEventRepository:
    _SELECT_PAGE_IDS_SQL = """
        SELECT x.id
        FROM failed_event_log x
        WHERE {where}
        ORDER BY x.id
        LIMIT %(limit)s
        OFFSET %(offset)s
    """

    # Delete and re-insert in one statement so a batch is moved whole or not at all.
    _MOVE_TO_PRIMARY_SQL = """
        WITH moved AS (
            DELETE FROM failed_event_log
            WHERE id = ANY(%s)
            RETURNING id, event_name, error_type, time_created, payload
        )
        INSERT INTO event_log (
            id,
            event_name,
            time_created,
            payload,
            requeue_source,
            requeued_error_type,
            requeued_at
        )
        SELECT id, event_name, time_created, payload, %s, error_type, now()
        FROM moved
        RETURNING id
    """

    _SELECT_BACKLOG_SQL = """
        SELECT
            COUNT(*) AS total,
            MIN(time_created) AS oldest_time_created,
            CAST(EXTRACT(EPOCH FROM now()) AS BIGINT) - MIN(time_created) AS oldest_age_sec
        FROM failed_event_log
    """

    _SELECT_BACKLOG_BY_ERROR_TYPE_SQL = """
        SELECT error_type, COUNT(*) AS cnt
        FROM failed_event_log
        GROUP BY error_type
        ORDER BY error_type
    """

    def select_page_ids(self, cur, query: ScopeQuery, *, offset: int, limit: int) -> list[int]:
        params: dict[str, Any] = dict(query.params)
        params["limit"] = max(int(limit), 1)
        params["offset"] = max(int(offset), 0)
        cur.execute(self._SELECT_PAGE_IDS_SQL.format(where=query.where_sql), params)
        return [int(row["id"]) for row in cur.fetchall()]

    def move_to_primary(self, cur, event_ids: Sequence[int], *, destination: str) -> int:
        cur.execute(self._MOVE_TO_PRIMARY_SQL, ([int(event_id) for event_id in event_ids], destination))
        return len(cur.fetchall())

    def fetch_backlog(self, cur) -> dict:
        cur.execute(self._SELECT_BACKLOG_SQL)
        totals = cur.fetchone() or {}
        cur.execute(self._SELECT_BACKLOG_BY_ERROR_TYPE_SQL)
        by_error_type = {str(row["error_type"]): int(row["cnt"]) for row in cur.fetchall()}
        oldest = totals.get("oldest_time_created")
        return {
            "total": int(totals.get("total") or 0),
            "oldest_time_created": int(oldest) if oldest is not None else None,
            "oldest_age_sec": max(int(totals.get("oldest_age_sec") or 0), 0),
            "by_error_type": by_error_type,
        }
