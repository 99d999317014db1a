import os
import hashlib
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Sequence

from dotenv import load_dotenv

import psycopg
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

if __package__:
    from .filters import ScopeQuery
    from .repositories import FailedEventRepository
    from .runtime_utils import positive_float_env, positive_int_env
else:  # pragma: no cover - fallback for direct script execution
    from filters import ScopeQuery
    from repositories import FailedEventRepository
    from runtime_utils import positive_float_env, positive_int_env

MIGRATIONS_DIR = Path(__file__).resolve().parents[1] / "sql" / "migrations"
MIGRATIONS_TABLE = "schema_migrations"

_pool = None
logger = logging.getLogger(__name__)


failed_event_repository = FailedEventRepository()

DB_CONNECT_TIMEOUT_SEC = positive_float_env("DB_CONNECT_TIMEOUT_SEC", 2.0)
DB_POOL_OPEN_TIMEOUT_SEC = positive_float_env("DB_POOL_OPEN_TIMEOUT_SEC", 5.0)
# Moving a 12.5k batch is a single statement; give it more room than an API read.
DB_STATEMENT_TIMEOUT_MS = positive_int_env("DB_STATEMENT_TIMEOUT_MS", 60000)
DB_LOCK_TIMEOUT_MS = positive_int_env("DB_LOCK_TIMEOUT_MS", 5000)


class BatchMoveFailure(RuntimeError):
    """A batch could not be moved as one unit; the transaction is rolled back."""


def _database_url() -> str:
    value = os.getenv("DATABASE_URL", "").strip()
    if value:
        return value

    project_env = Path(__file__).resolve().parents[1] / ".env"
    load_dotenv(dotenv_path=project_env, override=False)
    load_dotenv(override=False)
    value = os.getenv("DATABASE_URL", "").strip()
    if value:
        return value
    raise RuntimeError("DATABASE_URL is not configured")


def _get_pool() -> ConnectionPool:
    global _pool
    if _pool is None:
        min_size = positive_int_env("DB_POOL_MIN_SIZE", 1)
        max_size = max(positive_int_env("DB_POOL_MAX_SIZE", 4), min_size)
        _pool = ConnectionPool(
            conninfo=_database_url(),
            min_size=min_size,
            max_size=max_size,
            kwargs=_connection_kwargs(),
            timeout=DB_POOL_OPEN_TIMEOUT_SEC,
            open=True,
        )
    return _pool


def _connection_kwargs() -> dict[str, Any]:
    kwargs: dict[str, Any] = {
        "row_factory": dict_row,
        "connect_timeout": max(int(DB_CONNECT_TIMEOUT_SEC), 1),
    }

    options: list[str] = []
    if DB_STATEMENT_TIMEOUT_MS > 0:
        options.append(f"-c statement_timeout={int(DB_STATEMENT_TIMEOUT_MS)}")
    if DB_LOCK_TIMEOUT_MS > 0:
        options.append(f"-c lock_timeout={int(DB_LOCK_TIMEOUT_MS)}")
    if options:
        kwargs["options"] = " ".join(options)
    return kwargs


@contextmanager
def get_conn():
    pool = _get_pool()
    try:
        with pool.connection() as conn:
            yield conn
    except psycopg.OperationalError:
        logger.exception("Database pool connection acquisition failed")
        raise


@contextmanager
def transaction():
    with get_conn() as conn:
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise


def _migration_files(migrations_dir: Path) -> list[Path]:
    if not migrations_dir.exists():
        return []
    return sorted(path for path in migrations_dir.iterdir() if path.is_file() and path.suffix == ".sql")


def _migration_checksum(ddl: str) -> str:
    return hashlib.sha256(ddl.encode("utf-8")).hexdigest()


def _ensure_migrations_table(cur) -> None:
    cur.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {MIGRATIONS_TABLE} (
            version TEXT PRIMARY KEY,
            checksum TEXT NOT NULL,
            applied_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """
    )


def _fetch_applied_migrations(cur) -> dict[str, str]:
    cur.execute(f"SELECT version, checksum FROM {MIGRATIONS_TABLE}")
    rows = cur.fetchall()
    return {str(row["version"]): str(row["checksum"]) for row in rows}


def _apply_migration(cur, version: str, ddl: str, applied: dict[str, str]) -> bool:
    checksum = _migration_checksum(ddl)
    existing = applied.get(version)
    if existing is not None:
        if existing != checksum:
            raise RuntimeError(
                f"Migration checksum mismatch for {version}: stored={existing}, local={checksum}"
            )
        return False

    cur.execute(ddl)
    cur.execute(
        f"INSERT INTO {MIGRATIONS_TABLE} (version, checksum) VALUES (%s, %s)",
        (version, checksum),
    )
    applied[version] = checksum
    return True


def init_db(migrations_dir: Path = MIGRATIONS_DIR) -> list[str]:
    applied_now: list[str] = []
    with transaction() as conn:
        with conn.cursor() as cur:
            _ensure_migrations_table(cur)
            applied = _fetch_applied_migrations(cur)
            for migration_path in _migration_files(migrations_dir):
                version = migration_path.name
                ddl = migration_path.read_text(encoding="utf-8")
                if _apply_migration(cur, version=version, ddl=ddl, applied=applied):
                    applied_now.append(version)
    if applied_now:
        logger.info("Applied migrations: %s", ", ".join(applied_now))
    return applied_now


def close_pool():
    global _pool
    if _pool is not None:
        try:
            _pool.close(timeout=1.0)
        except Exception:
            logger.exception("Failed to close database pool cleanly")
        _pool = None


def ping_db() -> bool:
    try:
        with psycopg.connect(_database_url(), **_connection_kwargs()) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1 AS ok")
                row = cur.fetchone()
    except (psycopg.Error, RuntimeError):
        return False
    return bool(row and int(row.get("ok", 0)) == 1)


def fetch_failed_event_ids(query: ScopeQuery, *, offset: int, limit: int) -> list[int]:
    with get_conn() as conn:
        with conn.cursor() as cur:
            return failed_event_repository.select_page_ids(cur, query, offset=offset, limit=limit)


def move_failed_events(event_ids: Sequence[int], *, destination: str) -> bool:
    ids = [int(event_id) for event_id in event_ids]
    if not ids:
        raise ValueError("move_failed_events requires at least one event id")

    try:
        with transaction() as conn:
            with conn.cursor() as cur:
                moved = failed_event_repository.move_to_primary(cur, ids, destination=destination)
                if moved != len(ids):
                    raise BatchMoveFailure(
                        f"moved {moved} of {len(ids)} records; the rest left the failed log during the move"
                    )
    except (psycopg.Error, BatchMoveFailure) as exc:
        logger.warning(
            "Batch move rolled back (size=%s first_id=%s last_id=%s destination=%s error=%s)",
            len(ids),
            ids[0],
            ids[-1],
            destination,
            f"{exc.__class__.__name__}: {exc}",
        )
        return False
    return True


def get_failed_log_snapshot() -> dict:
    with get_conn() as conn:
        with conn.cursor() as cur:
            return failed_event_repository.fetch_backlog(cur)


class PostgresFailedEventStore:
    """Failed event store backed by the ``failed_event_log``/``event_log`` tables."""

    def fetch_page(self, query: ScopeQuery, *, offset: int, limit: int) -> list[int]:
        return fetch_failed_event_ids(query, offset=offset, limit=limit)

    def move_batch(self, event_ids: Sequence[int], *, destination: str) -> bool:
        return move_failed_events(event_ids, destination=destination)

    def snapshot(self) -> dict:
        return get_failed_log_snapshot()
