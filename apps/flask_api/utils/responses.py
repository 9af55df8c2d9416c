"""Response helpers for Flask API.

Every JSON body carries ``ok``; errors add a stable ``error`` code and a
human-readable ``message``.
"""

from typing import Any, Dict, Optional

from flask import jsonify

from contracts.errors import CapacityError

# Set from flask_app at import time
_API_DEBUG_ERRORS: bool = False


def set_debug_mode(enabled: bool) -> None:
    """Include exception detail in 500 responses when enabled."""
    global _API_DEBUG_ERRORS
    _API_DEBUG_ERRORS = enabled


def _ok(data: Optional[Dict[str, Any]] = None, *, status: int = 200) -> Any:
    """Create a successful JSON response.

    Args:
        data: Optional dictionary merged into the response body
        status: HTTP status code (default 200)

    Returns:
        Flask response tuple (json, status)
    """
    payload: Dict[str, Any] = {"ok": True}
    if data:
        payload.update(data)
    return jsonify(payload), status


def _err(
    code: str,
    message: str,
    *,
    status: int,
    extra: Optional[Dict[str, Any]] = None,
) -> Any:
    """Create an error JSON response.

    Args:
        code: Error code (e.g., 'bad_request', 'not_found')
        message: Human-readable error message
        status: HTTP status code
        extra: Optional additional data to include

    Returns:
        Flask response tuple (json, status)
    """
    payload: Dict[str, Any] = {"ok": False, "error": code, "message": message}
    if extra:
        payload.update(extra)
    return jsonify(payload), status


def _json(payload: Dict[str, Any], *, status: int = 200) -> Any:
    """Generic JSON response; ``ok`` is inferred from status when missing."""
    if "ok" not in payload:
        payload = dict(payload)
        payload["ok"] = status < 400
    return jsonify(payload), status


def _capacity_error(exc: CapacityError) -> Any:
    """Map a classified domain error to its response envelope."""
    return _err(exc.code, str(exc), status=exc.http_status)
