"""Unit tests for db_migrate helpers."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from apps.backend import db_migrate


def test_split_sql_handles_single_quotes() -> None:
    sql = "INSERT INTO t VALUES ('a;b', 'it''s; fine'); SELECT 1;"
    stmts = db_migrate._split_sql(sql)  # pylint: disable=protected-access
    assert len(stmts) == 2
    assert "'it''s; fine'" in stmts[0]
    assert stmts[1] == "SELECT 1"


def test_split_sql_ignores_semicolons_in_comments() -> None:
    sql = "-- first; still a comment\nSELECT 1; /* block; comment */ SELECT 2;"
    stmts = db_migrate._split_sql(sql)  # pylint: disable=protected-access
    assert len(stmts) == 2
    assert stmts[0].endswith("SELECT 1")
    assert stmts[1].endswith("SELECT 2")


def test_split_sql_handles_dollar_quoting() -> None:
    sql = """
    CREATE OR REPLACE FUNCTION foo() RETURNS trigger AS $$
    BEGIN
      PERFORM 1;
      RETURN NULL;
    END;
    $$ LANGUAGE plpgsql;
    CREATE TABLE t(x int);
    """
    stmts = db_migrate._split_sql(sql)  # pylint: disable=protected-access
    assert len(stmts) == 2
    assert "FUNCTION foo" in stmts[0]
    assert stmts[0].endswith("LANGUAGE plpgsql")
    assert "CREATE TABLE t" in stmts[1]


def test_split_sql_handles_tagged_dollar_quoting() -> None:
    sql = "DO $body$ BEGIN PERFORM 1; END; $body$; SELECT 1;"
    stmts = db_migrate._split_sql(sql)  # pylint: disable=protected-access
    assert stmts == ["DO $body$ BEGIN PERFORM 1; END; $body$", "SELECT 1"]


def test_shipped_trigger_migration_splits_cleanly() -> None:
    path = db_migrate.DEFAULT_MIGRATIONS_DIR / "002_change_notify_triggers.sql"
    stmts = db_migrate._split_sql(path.read_text(encoding="utf-8"))  # pylint: disable=protected-access

    assert len(stmts) == 7
    assert "notify_capacity_change()" in stmts[0]
    assert "pg_notify" in stmts[0]
    assert sum("CREATE TRIGGER" in s for s in stmts) == 3


def test_shipped_migrations_are_ordered() -> None:
    names = [p.name for p in db_migrate._iter_migration_files(db_migrate.DEFAULT_MIGRATIONS_DIR)]
    assert names == ["001_capacity_schema.sql", "002_change_notify_triggers.sql"]


def test_pending_migration_versions_returns_only_pending(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(db_migrate, "_ensure_migrations_table", lambda _conn: None)
    monkeypatch.setattr(db_migrate, "_applied_versions", lambda _conn: {"001_capacity_schema"})
    monkeypatch.setattr(
        db_migrate,
        "_iter_migration_files",
        lambda _migrations_dir: [
            Path("001_capacity_schema.sql"),
            Path("002_change_notify_triggers.sql"),
            Path("003_more.py"),
        ],
    )

    pending = db_migrate.pending_migration_versions(object(), migrations_dir=Path("migrations"))
    assert pending == ["002_change_notify_triggers", "003_more"]


class _DummyCtx:
    def __init__(self, conn: Any) -> None:
        self._conn = conn

    def __enter__(self) -> Any:
        return self._conn

    def __exit__(self, exc_type, exc, tb) -> bool:  # type: ignore[no-untyped-def]
        return False


def test_ensure_schema_current_raises_on_pending_migrations(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(db_migrate, "db_conn", lambda: _DummyCtx(object()))
    monkeypatch.setattr(
        db_migrate,
        "pending_migration_versions",
        lambda _conn, migrations_dir: ["002_change_notify_triggers"],
    )

    with pytest.raises(RuntimeError, match="002_change_notify_triggers"):
        db_migrate.ensure_schema_current(migrations_dir=Path("migrations"))


class _RecordingCursor:
    def __init__(self, conn: _RecordingConn) -> None:
        self._conn = conn

    def __enter__(self) -> _RecordingCursor:
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:  # type: ignore[no-untyped-def]
        return False

    def execute(self, sql: str, params: Any = None) -> None:
        if self._conn.fail_on and self._conn.fail_on in sql:
            raise RuntimeError("syntax error")
        self._conn.executed.append((sql, params))


class _RecordingConn:
    def __init__(self, *, fail_on: str | None = None) -> None:
        self.executed: list[tuple[str, Any]] = []
        self.commits = 0
        self.rollbacks = 0
        self.fail_on = fail_on

    def cursor(self) -> _RecordingCursor:
        return _RecordingCursor(self)

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1


def _migrations(tmp_path: Path) -> Path:
    (tmp_path / "001_first.sql").write_text("CREATE TABLE a(x int); CREATE TABLE b(y int);", encoding="utf-8")
    (tmp_path / "002_second.py").write_text(
        "def upgrade(conn):\n    with conn.cursor() as cur:\n        cur.execute('ALTER TABLE a ADD z int')\n",
        encoding="utf-8",
    )
    (tmp_path / "README.md").write_text("not a migration", encoding="utf-8")
    return tmp_path


def test_run_migrations_applies_and_records(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    conn = _RecordingConn()
    monkeypatch.setattr(db_migrate, "db_conn", lambda: _DummyCtx(conn))
    monkeypatch.setattr(db_migrate, "pending_migration_versions", lambda _c, migrations_dir: ["001_first", "002_second"])

    applied = db_migrate.run_migrations(migrations_dir=_migrations(tmp_path))

    assert applied == ["001_first", "002_second"]
    sqls = [sql for sql, _ in conn.executed]
    assert sqls[:2] == ["CREATE TABLE a(x int)", "CREATE TABLE b(y int)"]
    assert "ALTER TABLE a ADD z int" in sqls
    recorded = [params for sql, params in conn.executed if sql.startswith("INSERT INTO schema_migrations")]
    assert recorded == [("001_first",), ("002_second",)]
    assert conn.commits == 2


def test_run_migrations_rolls_back_failed_migration(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    conn = _RecordingConn(fail_on="CREATE TABLE b")
    monkeypatch.setattr(db_migrate, "db_conn", lambda: _DummyCtx(conn))
    monkeypatch.setattr(db_migrate, "pending_migration_versions", lambda _c, migrations_dir: ["001_first", "002_second"])

    with pytest.raises(RuntimeError, match="syntax error"):
        db_migrate.run_migrations(migrations_dir=_migrations(tmp_path))

    assert conn.rollbacks == 1
    assert conn.commits == 0


def test_run_migrations_dry_run_applies_nothing(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: Any) -> None:
    conn = _RecordingConn()
    monkeypatch.setattr(db_migrate, "db_conn", lambda: _DummyCtx(conn))
    monkeypatch.setattr(db_migrate, "pending_migration_versions", lambda _c, migrations_dir: ["002_second"])

    assert db_migrate.run_migrations(migrations_dir=_migrations(tmp_path), dry_run=True) == ["002_second"]
    assert conn.executed == []
    assert "PENDING: 002_second.py" in capsys.readouterr().out
