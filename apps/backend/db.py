"""
db.py

Small PostgreSQL helper module (psycopg2) with connection pooling.

The REST API and the live feed share these primitives:

- ``db_conn()`` checks a connection out of a process-global
  ``SimpleConnectionPool`` and always rolls back before returning it.
- ``*_conn`` helpers run one statement on an existing connection so a request
  handler can issue several queries over a single checkout.

Environment
-----------
- DB_URL (or DB_HOST/DB_NAME/DB_USER/DB_PASSWORD/DB_PORT), see infra.config
- DB_POOL_MAXCONN (default 10)
- DB_CONNECT_TIMEOUT (default 5 seconds)
"""

from __future__ import annotations

import atexit
import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Sequence

from apps.backend.db_metrics import measure_query
from contracts.errors import UpstreamUnavailableError
from infra.config import get_settings

_LOGGER = logging.getLogger(__name__)


def db_url() -> str:
    url = str(get_settings().db.url or "").strip()
    if not url:
        raise RuntimeError("DB_URL is not set")
    return url


_POOL = None
_POOL_DSN: Optional[str] = None


def _get_pool():
    """Return a process-global psycopg2 pool, creating it on first use."""
    global _POOL, _POOL_DSN

    dsn = db_url()
    if _POOL is not None and _POOL_DSN == dsn:
        return _POOL

    import psycopg2  # type: ignore
    from psycopg2.pool import SimpleConnectionPool  # type: ignore

    cfg = get_settings().db
    try:
        _POOL = SimpleConnectionPool(
            minconn=1,
            maxconn=cfg.pool_maxconn,
            dsn=dsn,
            connect_timeout=cfg.connect_timeout,
        )
    except psycopg2.OperationalError as exc:
        raise UpstreamUnavailableError(f"database unavailable: {exc}") from exc
    _POOL_DSN = dsn
    return _POOL


def close_pool() -> None:
    """Close all pooled connections (process exit, relay shutdown)."""
    global _POOL, _POOL_DSN
    pool = _POOL
    _POOL = None
    _POOL_DSN = None
    if pool is None:
        return
    try:
        pool.closeall()
    except Exception as exc:  # pragma: no cover - best-effort cleanup
        _LOGGER.debug("pool close failed: %s", exc)


atexit.register(close_pool)


@contextmanager
def db_conn() -> Iterator[Any]:
    """Yield a pooled psycopg2 connection.

    Callers must not close the connection; it goes back to the pool. Any open
    transaction is rolled back first so pooled connections never carry a stale
    snapshot into the next request.
    """
    pool = _get_pool()
    conn = pool.getconn()
    try:
        yield conn
    finally:
        try:
            conn.rollback()
        except Exception as exc:
            _LOGGER.debug("rollback before putconn failed: %s", exc)
        try:
            pool.putconn(conn)
        except Exception:
            try:
                conn.close()
            except Exception as exc:
                _LOGGER.debug("close after failed putconn failed: %s", exc)


# ---------------------------
# Low-level *_conn primitives
# ---------------------------

def _query_name(sql: str, *, operation: str) -> str:
    """Return a stable query label (``operation:first_keyword``) for metrics."""
    text = " ".join(str(sql or "").strip().split())
    if not text:
        return operation
    return f"{operation}:{text.split(' ', 1)[0].lower()}"


def execute_conn(conn: Any, sql: str, params: Optional[Sequence[Any]] = None) -> int:
    """Execute a statement on an existing connection; return the affected row count."""
    with conn.cursor() as cur:
        with measure_query(_query_name(sql, operation="execute_conn")):
            cur.execute(sql, params or ())
        return int(getattr(cur, "rowcount", 0) or 0)


def _cols_from_description(desc: Any) -> list[str]:
    """Extract column names from cursor.description."""
    if not desc:
        return []
    cols: list[str] = []
    for i, d in enumerate(desc):
        name = d[0] if d else None
        cols.append(str(name) if name else f"col_{i}")
    return cols


def fetch_one_dict_conn(conn: Any, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[dict[str, Any]]:
    """Execute a query and return one row as a dict (or None)."""
    with conn.cursor() as cur:
        with measure_query(_query_name(sql, operation="fetch_one_dict_conn")):
            cur.execute(sql, params or ())
        row = cur.fetchone()
        if row is None:
            return None
        cols = _cols_from_description(getattr(cur, "description", None))
        return dict(zip(cols, row, strict=False))


def fetch_all_dict_conn(conn: Any, sql: str, params: Optional[Sequence[Any]] = None) -> list[dict[str, Any]]:
    """Execute a query and return all rows as dicts."""
    with conn.cursor() as cur:
        with measure_query(_query_name(sql, operation="fetch_all_dict_conn")):
            cur.execute(sql, params or ())
        rows = cur.fetchall()
        cols = _cols_from_description(getattr(cur, "description", None))
        if not cols:
            return []
        return [dict(zip(cols, r, strict=False)) for r in rows]
