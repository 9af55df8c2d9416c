"""Error taxonomy shared by the store layer, the engine callers and the API.

Each error carries a stable ``code`` used in API error envelopes and logs.
"""

from __future__ import annotations


class CapacityError(Exception):
    """Base class for expected, classified failures."""

    code = "capacity_error"
    http_status = 500


class NotFoundError(CapacityError):
    """A requested storage system or pipeline does not exist."""

    code = "not_found"
    http_status = 404

    def __init__(self, kind: str, identifier: object) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} {identifier!r} not found")


class ValidationError(CapacityError):
    """Input rejected before any store mutation."""

    code = "bad_request"
    http_status = 400


class UpstreamUnavailableError(CapacityError):
    """The data store or the change notifier could not be reached."""

    code = "upstream_unavailable"
    http_status = 503


class MalformedNotificationError(CapacityError):
    """A change notification payload is not valid JSON.

    Only raised inside the live relay, where it is logged and dropped.
    """

    code = "malformed_notification"

    def __init__(self, channel: str, detail: str) -> None:
        self.channel = channel
        self.detail = detail
        super().__init__(f"malformed notification on {channel}: {detail}")


__all__ = [
    "CapacityError",
    "MalformedNotificationError",
    "NotFoundError",
    "UpstreamUnavailableError",
    "ValidationError",
]
