"""Health and metadata endpoints Blueprint."""

from typing import Any

from flask import Blueprint, jsonify

from apps.backend.db import db_conn, fetch_one_dict_conn
from apps.flask_api.utils import _json, _ok
from version import APP_NAME, APP_VERSION

health_bp = Blueprint("health", __name__)

# Set from flask_app at import time
_API_VERSION: str = "v1"


def init_blueprint(api_version: str) -> None:
    global _API_VERSION
    _API_VERSION = api_version


@health_bp.route("/health", methods=["GET"])
def health() -> Any:
    """Liveness check; does not touch the database."""
    return jsonify({"ok": True})


@health_bp.route("/api/health/db", methods=["GET"])
def api_health_db() -> Any:
    """Database health check endpoint."""
    with db_conn() as conn:
        row = fetch_one_dict_conn(conn, "SELECT 1 AS ok")
    return _ok({"db": bool(row and row.get("ok") == 1)})


@health_bp.route("/api/version", methods=["GET"])
def api_version() -> Any:
    """Application and API version metadata."""
    return _json(
        {
            "app": APP_NAME,
            "app_version": APP_VERSION,
            "api_version": _API_VERSION,
        }
    )
