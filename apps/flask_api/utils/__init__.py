"""Flask API utilities package.

- responses: Standardized HTTP response helpers
- params: Query and payload parameter parsing
"""

from apps.flask_api.utils.params import (
    _json_body,
    _parse_int,
    _parse_iso8601_dt,
    _parse_optional_id,
    _parse_status,
    _q,
)
from apps.flask_api.utils.responses import _capacity_error, _err, _json, _ok

__all__ = [
    # responses
    "_ok",
    "_err",
    "_json",
    "_capacity_error",
    # params
    "_q",
    "_parse_int",
    "_parse_optional_id",
    "_parse_iso8601_dt",
    "_parse_status",
    "_json_body",
]
