"""Storage Blueprint.

Storage systems, usage history, and the runway/forecast views computed by
``services.runway`` from the current snapshot and pipeline set.
"""

from typing import Any

from flask import Blueprint

from apps.backend.db import db_conn
from apps.flask_api.utils import (
    _ok,
    _parse_int,
    _parse_iso8601_dt,
    _parse_optional_id,
    _q,
)
from infra.config import get_settings
from services import runway
from services.capacity_store import CapacityStore

storage_bp = Blueprint("storage", __name__)

_HISTORY_MAX_LIMIT = 100_000


def _runway_payload(store: CapacityStore, system_id: int) -> dict[str, Any]:
    cfg = get_settings().forecast
    system = store.get_storage_system(system_id)
    pipelines = store.list_pipelines(storage_system_id=system.id)
    estimate = runway.estimate_runway(
        system, pipelines, critical_days=cfg.critical_days, warning_days=cfg.warning_days
    )
    scenarios = runway.what_if_scenarios(
        system, pipelines, critical_days=cfg.critical_days, warning_days=cfg.warning_days
    )
    return {
        "storage_system": system.to_dict(),
        "runway": estimate.to_dict(),
        "scenarios": [s.to_dict() for s in scenarios],
        "pipelines": [p.to_dict() for p in pipelines],
    }


@storage_bp.route("/api/storage/systems", methods=["GET"])
def api_storage_systems() -> Any:
    """List storage systems with their current runway.

    Returns:
        JSON with ``items``: one entry per system including ``runway``
    """
    cfg = get_settings().forecast
    with db_conn() as conn:
        store = CapacityStore.for_connection(conn)
        systems = store.list_storage_systems()
        pipelines = store.list_pipelines()

    items = []
    for system in systems:
        relevant = runway.pipelines_for_system(system.id, pipelines)
        estimate = runway.estimate_runway(
            system, relevant, critical_days=cfg.critical_days, warning_days=cfg.warning_days
        )
        items.append({**system.to_dict(), "runway": estimate.to_dict()})
    return _ok({"items": items})


@storage_bp.route("/api/storage/systems/<int:system_id>", methods=["GET"])
def api_storage_system(system_id: int) -> Any:
    """Get one storage system. 404 when absent."""
    with db_conn() as conn:
        system = CapacityStore.for_connection(conn).get_storage_system(system_id)
    return _ok({"storage_system": system.to_dict()})


@storage_bp.route("/api/storage/history", methods=["GET"])
def api_storage_history() -> Any:
    """Usage history ordered oldest first.

    Query params:
        system_id (optional): Restrict to one storage system
        start, end (optional): ISO-8601 bounds, inclusive
        limit (optional): Maximum number of samples
    """
    system_id = _parse_optional_id(_q("system_id"), field_name="system_id")
    start = _parse_iso8601_dt(_q("start"), field_name="start")
    end = _parse_iso8601_dt(_q("end"), field_name="end")
    limit_raw = _q("limit")
    limit = None
    if limit_raw is not None:
        limit = _parse_int(limit_raw, default=0, min_v=1, max_v=_HISTORY_MAX_LIMIT, field_name="limit")

    with db_conn() as conn:
        store = CapacityStore.for_connection(conn)
        if system_id is not None:
            store.get_storage_system(system_id)
        samples = store.list_usage_history(storage_system_id=system_id, start=start, end=end, limit=limit)
    return _ok({"items": [s.to_dict() for s in samples]})


@storage_bp.route("/api/storage/systems/<int:system_id>/runway", methods=["GET"])
def api_storage_runway(system_id: int) -> Any:
    """Runway estimate plus one independent what-if scenario per pipeline."""
    with db_conn() as conn:
        payload = _runway_payload(CapacityStore.for_connection(conn), system_id)
    return _ok(payload)


@storage_bp.route("/api/storage/systems/<int:system_id>/forecast", methods=["GET"])
def api_storage_forecast(system_id: int) -> Any:
    """Day-indexed forecast with per-pipeline what-if series.

    Query params:
        horizon (optional): Days to project (default from settings)
    """
    cfg = get_settings().forecast
    horizon = _parse_int(
        _q("horizon"),
        default=cfg.default_horizon_days,
        min_v=1,
        max_v=cfg.max_horizon_days,
        field_name="horizon",
    )
    with db_conn() as conn:
        store = CapacityStore.for_connection(conn)
        system = store.get_storage_system(system_id)
        pipelines = store.list_pipelines(storage_system_id=system.id)

    points = runway.forecast(system, pipelines, horizon_days=horizon)
    return _ok(
        {
            "storage_system": system.to_dict(),
            "horizon_days": horizon,
            "net_rate_gb_per_day": runway.net_rate(pipelines),
            "pipelines": [p.to_dict() for p in pipelines],
            "points": [p.to_dict() for p in points],
        }
    )


@storage_bp.route("/api/storage/metrics", methods=["GET"])
def api_storage_metrics() -> Any:
    """Dashboard headline numbers for one system.

    Query params:
        system_id (optional): Storage system; defaults to the first one

    Returns:
        Current usage, capacity, remaining, pipeline net rate, observed
        daily growth from recent history, runway and warning level
    """
    cfg = get_settings().forecast
    system_id = _parse_optional_id(_q("system_id"), field_name="system_id")
    with db_conn() as conn:
        store = CapacityStore.for_connection(conn)
        if system_id is None:
            system = store.first_storage_system()
        else:
            system = store.get_storage_system(system_id)
        pipelines = store.list_pipelines(storage_system_id=system.id)
        samples = store.recent_usage_samples(system.id, cfg.growth_window)

    estimate = runway.estimate_runway(
        system, pipelines, critical_days=cfg.critical_days, warning_days=cfg.warning_days
    )
    return _ok(
        {
            "storage_system_id": system.id,
            "name": system.name,
            "current_usage_gb": estimate.used_capacity_gb,
            "total_capacity_gb": estimate.total_capacity_gb,
            "remaining_capacity_gb": estimate.remaining_capacity_gb,
            "net_rate_gb_per_day": estimate.net_rate_gb_per_day,
            "observed_daily_growth_gb": runway.observed_daily_growth(samples, window=cfg.growth_window),
            "runway_days": estimate.runway_days,
            "runway_unbounded": estimate.unbounded,
            "warning_level": estimate.warning_level.value,
            "data_quality_warnings": list(estimate.data_quality_warnings),
        }
    )
