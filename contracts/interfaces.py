"""
Protocol definitions for dependency injection.

The live relay depends on these seams rather than on psycopg2 or a web
framework, so tests can drive it with in-memory fakes:

- ``SnapshotStoreProtocol``: the reads the relay needs from the data store.
- ``NotifierProtocol``: the upstream change-notification subscription.
- ``ObserverProtocol``: one connected dashboard (a WebSocket in production).
  An observer may also expose a ``closed`` attribute; the relay drops closed
  observers from its fan-out set.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

NotificationCallback = Callable[[str, str], None]


@runtime_checkable
class SnapshotStoreProtocol(Protocol):
    """Full-collection reads used for initial and refresh snapshots."""

    def storage_systems_snapshot(self) -> list[dict[str, Any]]:
        """Return all storage systems as JSON-ready dicts."""
        ...

    def pipelines_snapshot(self) -> list[dict[str, Any]]:
        """Return all pipelines as JSON-ready dicts."""
        ...

    def usage_history_snapshot(self) -> list[dict[str, Any]]:
        """Return the full usage history ordered by recorded_at."""
        ...


@runtime_checkable
class NotifierProtocol(Protocol):
    """Upstream change notifier (Postgres LISTEN in production)."""

    def start(self, callback: NotificationCallback) -> None:
        """Begin delivering ``(channel, payload_text)`` to callback."""
        ...

    def stop(self) -> None:
        """Stop delivering notifications and release the connection."""
        ...


@runtime_checkable
class ObserverProtocol(Protocol):
    """A connected consumer of relay messages."""

    def send(self, message: str) -> None:
        """Deliver one serialized message; raise if the observer is gone."""
        ...
