import contextlib

from requeue import db as db_module
from requeue.db import MIGRATIONS_DIR, _migration_checksum, _migration_files


def test_migration_files_returns_sorted_sql_only(tmp_path):
    (tmp_path / "0002_second.sql").write_text("SELECT 2;", encoding="utf-8")
    (tmp_path / "0001_first.sql").write_text("SELECT 1;", encoding="utf-8")
    (tmp_path / "notes.txt").write_text("not a migration", encoding="utf-8")

    files = _migration_files(tmp_path)

    assert [path.name for path in files] == ["0001_first.sql", "0002_second.sql"]


def test_shipped_migrations_create_both_partitions():
    ddl = "\n".join(path.read_text(encoding="utf-8") for path in _migration_files(MIGRATIONS_DIR))

    assert "CREATE TABLE IF NOT EXISTS failed_event_log" in ddl
    assert "CREATE TABLE IF NOT EXISTS event_log" in ddl


def test_init_db_applies_only_new_migrations(monkeypatch, tmp_path):
    (tmp_path / "0001_first.sql").write_text("SELECT 1;", encoding="utf-8")
    (tmp_path / "0002_second.sql").write_text("SELECT 2;", encoding="utf-8")
    executed: list[str] = []

    class _FakeCursor:
        def execute(self, sql, params=None):
            executed.append(sql)

        def fetchall(self):
            return [{"version": "0001_first.sql", "checksum": _migration_checksum("SELECT 1;")}]

    class _FakeConn:
        @contextlib.contextmanager
        def cursor(self):
            yield _FakeCursor()

    @contextlib.contextmanager
    def _fake_transaction():
        yield _FakeConn()

    monkeypatch.setattr(db_module, "transaction", _fake_transaction)

    applied = db_module.init_db(migrations_dir=tmp_path)

    assert applied == ["0002_second.sql"]
    assert "SELECT 2;" in executed
    assert "SELECT 1;" not in executed
