"""Live update relay: fan out store-change notifications to connected observers.

Message shapes (JSON text frames)
---------------------------------
- ``{"channel": "storage_change" | "pipeline_change", "payload": <parsed JSON>}``
  for every notification, forwarded verbatim.
- ``{"type": "initial_storage" | "initial_pipelines" | "initial_history", "data": [...]}``
  snapshots: three on connect, plus a fresh ``initial_pipelines`` after every
  ``pipeline_change`` so dashboards never merge deltas themselves.

Delivery is best-effort and at-most-once. A single lock serializes connect
snapshots and fan-out, which gives every observer its own in-order stream and
guarantees the three snapshots arrive before any live message.
"""

from __future__ import annotations

import json
import threading
from typing import Any

from contracts.errors import MalformedNotificationError
from contracts.interfaces import NotifierProtocol, ObserverProtocol, SnapshotStoreProtocol
from infra.logging_config import StructuredLogger

STORAGE_CHANGE = "storage_change"
PIPELINE_CHANGE = "pipeline_change"

INITIAL_STORAGE = "initial_storage"
INITIAL_PIPELINES = "initial_pipelines"
INITIAL_HISTORY = "initial_history"

_LOG = StructuredLogger(__name__)


def _is_closed(observer: ObserverProtocol) -> bool:
    """Observers may expose ``closed``; a closed observer never joins or receives."""
    return bool(getattr(observer, "closed", False))


def encode_message(message: dict[str, Any]) -> str:
    return json.dumps(message, ensure_ascii=False, separators=(",", ":"), default=str)


def parse_payload(channel: str, payload: str) -> Any:
    """Parse a notification payload, raising MalformedNotificationError."""
    try:
        return json.loads(payload)
    except (TypeError, ValueError) as exc:
        raise MalformedNotificationError(channel, str(exc)) from exc


class LiveUpdateRelay:
    """Process-scoped relay between one notifier and N observers."""

    def __init__(
        self,
        store: SnapshotStoreProtocol,
        notifier: NotifierProtocol | None = None,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._observers: list[ObserverProtocol] = []
        self._lock = threading.RLock()
        self._running = False

    # ---------------------------
    # Lifecycle
    # ---------------------------

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Subscribe to the notifier. Calling start twice is a no-op."""
        with self._lock:
            if self._running:
                return
            self._running = True
        if self._notifier is not None:
            self._notifier.start(self.handle_notification)
        _LOG.info("relay_started", notifier=type(self._notifier).__name__ if self._notifier else None)

    def stop(self) -> None:
        """Unsubscribe and forget all observers."""
        with self._lock:
            if not self._running:
                return
            self._running = False
            self._observers.clear()
        if self._notifier is not None:
            self._notifier.stop()
        _LOG.info("relay_stopped")

    # ---------------------------
    # Observers
    # ---------------------------

    @property
    def observer_count(self) -> int:
        with self._lock:
            return len(self._observers)

    def add_observer(self, observer: ObserverProtocol) -> None:
        """Send the three initial snapshots, then join the fan-out set.

        The lock is held across both steps so no live message can reach the
        observer before its snapshots. A snapshot that cannot be fetched is
        skipped (and logged); the observer still joins unless it was closed
        while the snapshots were being sent.
        """
        with self._lock:
            for message_type, fetch in (
                (INITIAL_STORAGE, self._store.storage_systems_snapshot),
                (INITIAL_PIPELINES, self._store.pipelines_snapshot),
                (INITIAL_HISTORY, self._store.usage_history_snapshot),
            ):
                data = self._fetch_snapshot(message_type, fetch)
                if data is None:
                    continue
                if not self._deliver(observer, encode_message({"type": message_type, "data": data})):
                    return
            if _is_closed(observer):
                return
            self._observers.append(observer)
            count = len(self._observers)
        _LOG.info("observer_connected", observers=count)

    def remove_observer(self, observer: ObserverProtocol) -> None:
        with self._lock:
            try:
                self._observers.remove(observer)
            except ValueError:
                return
            count = len(self._observers)
        _LOG.info("observer_disconnected", observers=count)

    # ---------------------------
    # Notifications
    # ---------------------------

    def handle_notification(self, channel: str, payload: str) -> None:
        """Entry point for the notifier thread. Never raises."""
        try:
            parsed = parse_payload(channel, payload)
        except MalformedNotificationError as exc:
            _LOG.warning("malformed_notification", channel=exc.channel, detail=exc.detail)
            return

        with self._lock:
            self.broadcast({"channel": channel, "payload": parsed})
            if channel == PIPELINE_CHANGE:
                data = self._fetch_snapshot(INITIAL_PIPELINES, self._store.pipelines_snapshot)
                if data is not None:
                    self.broadcast({"type": INITIAL_PIPELINES, "data": data})

    def broadcast(self, message: dict[str, Any]) -> int:
        """Send one message to every observer; return how many accepted it."""
        text = encode_message(message)
        with self._lock:
            closed = [o for o in self._observers if _is_closed(o)]
            for observer in closed:
                self._observers.remove(observer)
            if closed:
                _LOG.info("observers_pruned", pruned=len(closed), observers=len(self._observers))
            delivered = 0
            for observer in list(self._observers):
                if self._deliver(observer, text):
                    delivered += 1
        return delivered

    # ---------------------------
    # Internals
    # ---------------------------

    def _fetch_snapshot(self, message_type: str, fetch: Any) -> list[dict[str, Any]] | None:
        try:
            return list(fetch())
        except Exception as exc:  # logged, never raised
            _LOG.error("upstream_unavailable", snapshot=message_type, detail=str(exc))
            return None

    def _deliver(self, observer: ObserverProtocol, text: str) -> bool:
        try:
            observer.send(text)
        except Exception as exc:
            _LOG.warning("observer_send_failed", observer=repr(observer), detail=str(exc))
            return False
        return True
