"""flask_app.py

REST API for the storage runway dashboard.

Postgres is the source of truth; every response is computed from the current
rows (no server-side caching). Runway and forecast numbers come from
``services.runway`` so the dashboard never does capacity arithmetic itself.

Env
---
- DB_URL (required) used by apps.backend.db
- API_DEBUG_ERRORS=1 includes exception detail in 500 responses
- API_CORS_ORIGIN (default ``*``) for the dashboard frontend

Run
---
FLASK_APP=apps.flask_api.flask_app flask run --host=0.0.0.0 --port=5000
"""

from __future__ import annotations

import threading
import time
import traceback
from typing import Any, Optional

from flask import Flask, Response, request
from werkzeug.exceptions import HTTPException

from apps.flask_api.blueprints import health_bp, pipelines_bp, storage_bp
from apps.flask_api.blueprints.health import init_blueprint as _init_health
from apps.flask_api.utils import _capacity_error, _err
from apps.flask_api.utils.responses import set_debug_mode
from contracts.errors import CapacityError
from infra.config import get_settings
from infra.logging_config import StructuredLogger, clear_log_context, set_log_context, setup_logging
from version import APP_NAME, APP_VERSION

_settings = get_settings()
_API_DEBUG_ERRORS = _settings.api.debug_errors
_API_CORS_ORIGIN = _settings.api.cors_origin

setup_logging(level=_settings.api.log_level)
_LOG = StructuredLogger("apps.flask_api")

app = Flask(__name__)
app.register_blueprint(health_bp)
app.register_blueprint(storage_bp)
app.register_blueprint(pipelines_bp)
_init_health(_settings.api.version)
set_debug_mode(_API_DEBUG_ERRORS)
_LOG.info("api_configured", app=APP_NAME, version=APP_VERSION, api_version=_settings.api.version)


# --------------------
# Request lifecycle
# --------------------

@app.before_request
def _start_timer() -> None:
    clear_log_context()
    set_log_context(method=request.method, path=request.path)
    request.environ["_runway_t0"] = time.monotonic()


@app.after_request
def _finish_request(resp: Response) -> Response:
    t0 = float(request.environ.get("_runway_t0") or 0.0)
    ms = int(max(0.0, (time.monotonic() - t0) * 1000.0)) if t0 else None
    _LOG.info(
        "http_request",
        method=request.method,
        path=request.path,
        status=int(resp.status_code or 0),
        ms=ms,
    )

    # Capacity numbers must never be served stale from intermediary caches.
    if (request.path or "").startswith("/api/"):
        resp.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
        resp.headers["Pragma"] = "no-cache"
    if _API_CORS_ORIGIN:
        resp.headers["Access-Control-Allow-Origin"] = _API_CORS_ORIGIN
        resp.headers["Access-Control-Allow-Methods"] = "GET, PATCH, PUT, OPTIONS"
        resp.headers["Access-Control-Allow-Headers"] = "Content-Type"
    return resp


# --------------------
# Schema gate
# --------------------

_schema_gate_lock = threading.Lock()
_schema_gate_checked = False
_schema_gate_enabled = _settings.api.enforce_schema_gate


def _ensure_schema_gate() -> None:
    """Run the DB schema check once per process."""
    global _schema_gate_checked
    if not _schema_gate_enabled or _schema_gate_checked:
        return
    with _schema_gate_lock:
        if _schema_gate_checked:
            return
        from apps.backend.db_migrate import ensure_schema_current

        ensure_schema_current()
        _schema_gate_checked = True


@app.before_request
def _enforce_schema_gate() -> Optional[Any]:
    """Return 503 if the DB schema is behind local code migrations."""
    path = request.path or ""
    if not path.startswith("/api/") or path == "/api/health/db" or request.method == "OPTIONS":
        return None
    try:
        _ensure_schema_gate()
    except RuntimeError as exc:
        _LOG.error("schema_gate_failed", detail=str(exc))
        return _err("schema_mismatch", str(exc), status=503)
    except CapacityError as exc:
        _LOG.error("schema_gate_failed", detail=str(exc))
        return _capacity_error(exc)
    return None


# --------------------
# Error handlers
# --------------------

@app.errorhandler(CapacityError)
def _err_capacity(exc: CapacityError) -> Any:
    if exc.http_status >= 500:
        _LOG.error("request_failed", code=exc.code, detail=str(exc))
    return _capacity_error(exc)


@app.errorhandler(HTTPException)
def _err_http(exc: HTTPException) -> Any:
    code = (exc.name or "error").lower().replace(" ", "_")
    return _err(code, exc.description or exc.name or "error", status=exc.code or 500)


@app.errorhandler(Exception)
def _err_500(exc: Exception) -> Any:
    if _API_DEBUG_ERRORS:
        tb = traceback.format_exc()
        _LOG.error("unhandled_exception", path=request.path, detail=str(exc), traceback=tb)
        return _err("internal_error", "internal error", status=500, extra={"detail": str(exc), "traceback": tb})
    _LOG.error("unhandled_exception", path=request.path, detail=str(exc))
    return _err("internal_error", "internal error", status=500)


if __name__ == "__main__":
    app.run(host=_settings.api.host, port=_settings.api.port)
