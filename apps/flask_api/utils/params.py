"""Query and payload parameter parsing helpers for Flask API.

Parsing failures raise ``contracts.errors.ValidationError`` which the app's
error handler turns into a 400 response.
"""

from datetime import UTC, datetime
from typing import Any

from flask import request

from contracts.capacity import PipelineStatus
from contracts.errors import ValidationError


def _q(name: str, default: str | None = None) -> str | None:
    """Get a query parameter value with optional default.

    Args:
        name: Parameter name
        default: Default value if not present

    Returns:
        Parameter value or default
    """
    v = request.args.get(name)
    if v is None or v.strip() == "":
        return default
    return v.strip()


def _parse_int(
    value: str | None, *, default: int, min_v: int, max_v: int, field_name: str = "value"
) -> int:
    """Parse an integer query parameter with bounds checking.

    Raises:
        ValidationError: If value is not a valid integer or out of bounds
    """
    if value is None or value == "":
        return default
    try:
        n = int(value)
    except ValueError as exc:
        raise ValidationError(f"{field_name} must be an integer (got {value!r})") from exc
    if n < min_v or n > max_v:
        raise ValidationError(f"{field_name} {n} out of range [{min_v}, {max_v}]")
    return n


def _parse_optional_id(value: str | None, *, field_name: str) -> int | None:
    """Parse an optional positive integer identifier."""
    if value is None or value == "":
        return None
    try:
        n = int(value)
    except ValueError as exc:
        raise ValidationError(f"{field_name} must be an integer (got {value!r})") from exc
    if n <= 0:
        raise ValidationError(f"{field_name} must be > 0")
    return n


def _parse_iso8601_dt(
    value: str | None, *, field_name: str = "timestamp"
) -> datetime | None:
    """Parse an ISO-8601 timestamp into a UTC-aware datetime.

    Accepts timestamps with or without timezone, and trailing 'Z'. Naive
    values are taken as UTC.
    """
    if value is None:
        return None
    s = str(value).strip()
    if not s:
        return None
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValidationError(f"Invalid {field_name} (expected ISO-8601): {s!r}") from exc
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def _parse_status(value: Any, *, required: bool) -> PipelineStatus | None:
    """Parse a pipeline status from query or payload input."""
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError("status is required")
        return None
    return PipelineStatus.parse(value)


def _json_body() -> dict[str, Any]:
    """Return the request JSON object, or raise ValidationError."""
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("request body must be a JSON object")
    return payload
