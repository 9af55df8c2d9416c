"""
Migration runner for the capacity schema.

Usage:
  python -m apps.backend.db_migrate
  python -m apps.backend.db_migrate --dry-run
  python -m apps.backend.db_migrate --migrations-dir migrations

Migrations are ``NNN_name.sql`` or ``NNN_name.py`` (exposing ``upgrade(conn)``)
files applied in name order and recorded in ``schema_migrations``.
"""

from __future__ import annotations

import argparse
import importlib.util
import logging
from collections.abc import Iterable
from pathlib import Path

from apps.backend.db import db_conn

_LOGGER = logging.getLogger(__name__)

DEFAULT_MIGRATIONS_DIR = Path(__file__).resolve().parents[2] / "migrations"


def _ensure_migrations_table(conn) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
              version TEXT PRIMARY KEY,
              applied_at TIMESTAMPTZ NOT NULL DEFAULT now()
            )
            """
        )
    conn.commit()


def _applied_versions(conn) -> set[str]:
    with conn.cursor() as cur:
        cur.execute("SELECT version FROM schema_migrations")
        rows = cur.fetchall() or []
    return {str(r[0]) for r in rows if r and r[0]}


def _dollar_tag_at(sql: str, i: int) -> str | None:
    """Return the ``$tag$`` opening at index i, or None."""
    j = i + 1
    while j < len(sql) and (sql[j].isalnum() or sql[j] == "_"):
        j += 1
    if j < len(sql) and sql[j] == "$":
        return sql[i : j + 1]
    return None


def _split_sql(sql: str) -> list[str]:
    """Split a SQL script into statements.

    Semicolons inside single quotes, ``--``/``/* */`` comments and
    dollar-quoted bodies (trigger functions) do not end a statement.
    """
    statements: list[str] = []
    buf: list[str] = []
    i = 0
    n = len(sql)

    def _flush() -> None:
        stmt = "".join(buf).strip()
        if stmt:
            statements.append(stmt)
        buf.clear()

    while i < n:
        ch = sql[i]
        pair = sql[i : i + 2]

        if pair == "--":
            end = sql.find("\n", i)
            end = n if end == -1 else end + 1
            buf.append(sql[i:end])
            i = end
            continue
        if pair == "/*":
            end = sql.find("*/", i + 2)
            end = n if end == -1 else end + 2
            buf.append(sql[i:end])
            i = end
            continue
        if ch == "'":
            j = i + 1
            while j < n:
                if sql[j] == "'":
                    if j + 1 < n and sql[j + 1] == "'":
                        j += 2
                        continue
                    break
                j += 1
            buf.append(sql[i : j + 1])
            i = j + 1
            continue
        if ch == "$":
            tag = _dollar_tag_at(sql, i)
            if tag is not None:
                end = sql.find(tag, i + len(tag))
                end = n if end == -1 else end + len(tag)
                buf.append(sql[i:end])
                i = end
                continue
        if ch == ";":
            _flush()
            i += 1
            continue

        buf.append(ch)
        i += 1

    _flush()
    return statements


def _apply_sql_migration(conn, path: Path) -> None:
    for stmt in _split_sql(path.read_text(encoding="utf-8")):
        with conn.cursor() as cur:
            cur.execute(stmt)


def _apply_py_migration(conn, path: Path) -> None:
    """Apply a .py migration module with upgrade(conn)."""
    spec = importlib.util.spec_from_file_location(f"migration_{path.stem}", str(path))
    if spec is None or spec.loader is None:
        raise RuntimeError(f"Failed to load migration module: {path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)  # type: ignore[call-arg]
    if not hasattr(module, "upgrade"):
        raise RuntimeError(f"Migration module missing upgrade(): {path}")
    module.upgrade(conn)


def _iter_migration_files(migrations_dir: Path) -> Iterable[Path]:
    if not migrations_dir.exists():
        return []
    files = [p for p in migrations_dir.iterdir() if p.is_file() and p.suffix in {".sql", ".py"}]
    return sorted(files, key=lambda p: p.name)


def pending_migration_versions(conn, *, migrations_dir: Path) -> list[str]:
    """Return pending migration versions for the provided connection."""
    _ensure_migrations_table(conn)
    applied = _applied_versions(conn)
    return [p.stem for p in _iter_migration_files(migrations_dir) if p.stem not in applied]


def ensure_schema_current(*, migrations_dir: Path = DEFAULT_MIGRATIONS_DIR) -> None:
    """Fail fast when the database schema is behind local migrations."""
    with db_conn() as conn:
        pending = pending_migration_versions(conn, migrations_dir=migrations_dir)
    if pending:
        raise RuntimeError(
            f"Database schema is out of date. Pending migrations: {', '.join(pending)}. "
            "Run `python -m apps.backend.db_migrate` before starting the API."
        )


def run_migrations(*, migrations_dir: Path = DEFAULT_MIGRATIONS_DIR, dry_run: bool = False) -> list[str]:
    """Apply pending migrations (or only report them in dry-run); return their versions."""
    with db_conn() as conn:
        pending_versions = set(pending_migration_versions(conn, migrations_dir=migrations_dir))
        pending = [p for p in _iter_migration_files(migrations_dir) if p.stem in pending_versions]

        if dry_run:
            for p in pending:
                print(f"PENDING: {p.name}")
            if not pending:
                print("No pending migrations.")
            return [p.stem for p in pending]

        for path in pending:
            _LOGGER.info("migration_applying version=%s", path.stem)
            try:
                if path.suffix == ".sql":
                    _apply_sql_migration(conn, path)
                else:
                    _apply_py_migration(conn, path)
                with conn.cursor() as cur:
                    cur.execute("INSERT INTO schema_migrations (version) VALUES (%s)", (path.stem,))
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            print(f"Applied {path.stem}")
        return [p.stem for p in pending]


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint."""
    parser = argparse.ArgumentParser(description="Apply database migrations.")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show pending migrations without applying.",
    )
    parser.add_argument(
        "--migrations-dir",
        default=str(DEFAULT_MIGRATIONS_DIR),
        help="Path to migrations directory (default: ./migrations).",
    )
    args = parser.parse_args(argv)
    run_migrations(migrations_dir=Path(args.migrations_dir), dry_run=bool(args.dry_run))


if __name__ == "__main__":
    main()
