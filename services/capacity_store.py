"""Postgres-backed reads and writes for storage systems, pipelines and usage history.

All SQL lives here; the engine and the relay only see domain records or
JSON-ready dicts. The connection factory is injectable so request handlers can
pass an already checked-out connection and tests can pass fakes.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from apps.backend.db import db_conn, fetch_all_dict_conn, fetch_one_dict_conn
from contracts.capacity import Pipeline, PipelineStatus, StorageSystem, UsageSample
from contracts.errors import NotFoundError, ValidationError

ConnFactory = Callable[[], AbstractContextManager[Any]]

_SYSTEM_COLUMNS = "id, name, total_capacity_gb, used_capacity_gb, updated_at"
_PIPELINE_COLUMNS = (
    "id, name, status, impact_rate_gb_per_day, description, storage_system_id, updated_at"
)
_HISTORY_COLUMNS = "storage_system_id, recorded_at, used_capacity_gb"


def jsonable_row(row: dict[str, Any]) -> dict[str, Any]:
    """Convert NUMERIC and timestamp columns to JSON-native values."""
    out: dict[str, Any] = {}
    for key, value in row.items():
        if isinstance(value, Decimal):
            out[key] = float(value)
        elif isinstance(value, (datetime, date)):
            out[key] = value.isoformat()
        else:
            out[key] = value
    return out


class CapacityStore:
    """Query interface to the capacity tables."""

    def __init__(self, conn_factory: ConnFactory | None = None) -> None:
        self._conn_factory: ConnFactory = conn_factory or db_conn

    @classmethod
    def for_connection(cls, conn: Any) -> CapacityStore:
        """Store bound to one existing connection (one checkout per request)."""

        @contextmanager
        def _borrowed() -> Iterator[Any]:
            yield conn

        return cls(_borrowed)

    # ---------------------------
    # Storage systems
    # ---------------------------

    def _system_rows(self) -> list[dict[str, Any]]:
        with self._conn_factory() as conn:
            return fetch_all_dict_conn(
                conn, f"SELECT {_SYSTEM_COLUMNS} FROM storage_systems ORDER BY id"
            )

    def list_storage_systems(self) -> list[StorageSystem]:
        return [StorageSystem.from_row(r) for r in self._system_rows()]

    def get_storage_system(self, system_id: int) -> StorageSystem:
        with self._conn_factory() as conn:
            row = fetch_one_dict_conn(
                conn,
                f"SELECT {_SYSTEM_COLUMNS} FROM storage_systems WHERE id = %s",
                (system_id,),
            )
        if row is None:
            raise NotFoundError("storage system", system_id)
        return StorageSystem.from_row(row)

    def first_storage_system(self) -> StorageSystem:
        """Lowest-id system; used when a dashboard request names none."""
        with self._conn_factory() as conn:
            row = fetch_one_dict_conn(
                conn, f"SELECT {_SYSTEM_COLUMNS} FROM storage_systems ORDER BY id LIMIT 1"
            )
        if row is None:
            raise NotFoundError("storage system", "any")
        return StorageSystem.from_row(row)

    # ---------------------------
    # Pipelines
    # ---------------------------

    def _pipeline_rows(
        self,
        *,
        status: PipelineStatus | None = None,
        storage_system_id: int | None = None,
    ) -> list[dict[str, Any]]:
        where: list[str] = []
        params: list[Any] = []
        if status is not None:
            where.append("status = %s")
            params.append(status.value)
        if storage_system_id is not None:
            where.append("(storage_system_id = %s OR storage_system_id IS NULL)")
            params.append(storage_system_id)
        where_sql = f"WHERE {' AND '.join(where)}" if where else ""
        with self._conn_factory() as conn:
            return fetch_all_dict_conn(
                conn,
                f"SELECT {_PIPELINE_COLUMNS} FROM pipelines {where_sql} ORDER BY id",
                params,
            )

    def list_pipelines(
        self,
        *,
        status: PipelineStatus | None = None,
        storage_system_id: int | None = None,
    ) -> list[Pipeline]:
        rows = self._pipeline_rows(status=status, storage_system_id=storage_system_id)
        return [Pipeline.from_row(r) for r in rows]

    def get_pipeline(self, pipeline_id: int) -> Pipeline:
        with self._conn_factory() as conn:
            row = fetch_one_dict_conn(
                conn,
                f"SELECT {_PIPELINE_COLUMNS} FROM pipelines WHERE id = %s",
                (pipeline_id,),
            )
        if row is None:
            raise NotFoundError("pipeline", pipeline_id)
        return Pipeline.from_row(row)

    def update_pipeline_status(self, pipeline_id: int, status: Any) -> Pipeline:
        """Set a pipeline's status. The value is validated before any SQL runs."""
        parsed = PipelineStatus.parse(status)
        with self._conn_factory() as conn:
            row = fetch_one_dict_conn(
                conn,
                f"""
                UPDATE pipelines
                SET status = %s, updated_at = now()
                WHERE id = %s
                RETURNING {_PIPELINE_COLUMNS}
                """,
                (parsed.value, pipeline_id),
            )
            if row is None:
                conn.rollback()
                raise NotFoundError("pipeline", pipeline_id)
            conn.commit()
        return Pipeline.from_row(row)

    # ---------------------------
    # Usage history
    # ---------------------------

    def _history_rows(
        self,
        *,
        storage_system_id: int | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        if start is not None and end is not None and start > end:
            raise ValidationError("start must be <= end")
        where: list[str] = []
        params: list[Any] = []
        if storage_system_id is not None:
            where.append("storage_system_id = %s")
            params.append(storage_system_id)
        if start is not None:
            where.append("recorded_at >= %s")
            params.append(start)
        if end is not None:
            where.append("recorded_at <= %s")
            params.append(end)
        where_sql = f"WHERE {' AND '.join(where)}" if where else ""
        limit_sql = ""
        if limit is not None:
            limit_sql = "LIMIT %s"
            params.append(int(limit))
        with self._conn_factory() as conn:
            return fetch_all_dict_conn(
                conn,
                f"""
                SELECT {_HISTORY_COLUMNS}
                FROM storage_usage_history
                {where_sql}
                ORDER BY recorded_at ASC, id ASC
                {limit_sql}
                """,
                params,
            )

    def list_usage_history(
        self,
        *,
        storage_system_id: int | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[UsageSample]:
        rows = self._history_rows(storage_system_id=storage_system_id, start=start, end=end, limit=limit)
        return [UsageSample.from_row(r) for r in rows]

    def recent_usage_samples(self, storage_system_id: int, window: int) -> list[UsageSample]:
        """The ``window`` most recent samples for a system, oldest first."""
        with self._conn_factory() as conn:
            rows = fetch_all_dict_conn(
                conn,
                f"""
                SELECT {_HISTORY_COLUMNS}
                FROM (
                  SELECT id, {_HISTORY_COLUMNS}
                  FROM storage_usage_history
                  WHERE storage_system_id = %s
                  ORDER BY recorded_at DESC, id DESC
                  LIMIT %s
                ) AS recent
                ORDER BY recorded_at ASC, id ASC
                """,
                (storage_system_id, int(window)),
            )
        return [UsageSample.from_row(r) for r in rows]

    # ---------------------------
    # Relay snapshots
    # ---------------------------

    def storage_systems_snapshot(self) -> list[dict[str, Any]]:
        return [jsonable_row(r) for r in self._system_rows()]

    def pipelines_snapshot(self) -> list[dict[str, Any]]:
        return [jsonable_row(r) for r in self._pipeline_rows()]

    def usage_history_snapshot(self) -> list[dict[str, Any]]:
        return [jsonable_row(r) for r in self._history_rows()]
