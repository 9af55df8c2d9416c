"""Pipelines Blueprint.

Pipeline listing and the administrative status change. Status changes fire
the ``pipeline_change`` trigger, so connected dashboards receive the refreshed
pipeline list over the live feed; clients do not need to re-poll.
"""

from typing import Any

from flask import Blueprint

from apps.backend.db import db_conn
from apps.flask_api.utils import _json_body, _ok, _parse_optional_id, _parse_status, _q
from infra.logging_config import StructuredLogger
from services.capacity_store import CapacityStore

pipelines_bp = Blueprint("pipelines", __name__)

_LOG = StructuredLogger(__name__)


@pipelines_bp.route("/api/pipelines", methods=["GET"])
def api_pipelines() -> Any:
    """List pipelines.

    Query params:
        status (optional): active | failed | paused
        system_id (optional): Pipelines writing to this system (plus unattached ones)
    """
    status = _parse_status(_q("status"), required=False)
    system_id = _parse_optional_id(_q("system_id"), field_name="system_id")
    with db_conn() as conn:
        pipelines = CapacityStore.for_connection(conn).list_pipelines(
            status=status, storage_system_id=system_id
        )
    return _ok({"items": [p.to_dict() for p in pipelines]})


@pipelines_bp.route("/api/pipelines/<int:pipeline_id>", methods=["GET"])
def api_pipeline(pipeline_id: int) -> Any:
    """Get one pipeline. 404 when absent."""
    with db_conn() as conn:
        pipeline = CapacityStore.for_connection(conn).get_pipeline(pipeline_id)
    return _ok({"pipeline": pipeline.to_dict()})


@pipelines_bp.route("/api/pipelines/<int:pipeline_id>/status", methods=["PATCH", "PUT"])
def api_pipeline_status(pipeline_id: int) -> Any:
    """Set a pipeline's status.

    Body:
        {"status": "active" | "failed" | "paused"}

    Invalid status values are rejected with 400 before the database is
    touched; unknown pipeline ids return 404.
    """
    status = _parse_status(_json_body().get("status"), required=True)
    with db_conn() as conn:
        pipeline = CapacityStore.for_connection(conn).update_pipeline_status(pipeline_id, status)
    _LOG.info("pipeline_status_changed", pipeline_id=pipeline.id, status=pipeline.status.value)
    return _ok({"pipeline": pipeline.to_dict()})
