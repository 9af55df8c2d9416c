"""Postgres LISTEN/NOTIFY subscription running on a background thread.

One dedicated autocommit connection issues ``LISTEN`` for each channel, then
the thread waits on the socket with ``select()`` and drains
``conn.notifies`` after each ``poll()``. The callback runs on this thread, in
arrival order.

A lost connection is logged and ends the listener. There is no automatic
reconnect: the relay keeps serving already-connected observers and new
connections still receive fresh snapshots from the pooled store.
"""

from __future__ import annotations

import select
import threading
from collections.abc import Callable, Sequence
from typing import Any

from contracts.errors import UpstreamUnavailableError
from contracts.interfaces import NotificationCallback
from infra.logging_config import StructuredLogger

_LOG = StructuredLogger(__name__)


def _default_connect(dsn: str, connect_timeout: int) -> Any:
    import psycopg2  # type: ignore

    try:
        conn = psycopg2.connect(dsn=dsn, connect_timeout=connect_timeout)
    except psycopg2.OperationalError as exc:
        raise UpstreamUnavailableError(f"notifier connection failed: {exc}") from exc
    conn.autocommit = True
    return conn


def _quote_channel(channel: str) -> str:
    """Quote a channel name as a Postgres identifier."""
    return '"' + channel.replace('"', '""') + '"'


class PgNotifier:
    """Change notifier backed by a psycopg2 ``LISTEN`` session."""

    def __init__(
        self,
        dsn: str,
        channels: Sequence[str],
        *,
        poll_timeout_s: float = 5.0,
        connect_timeout: int = 5,
        connect: Callable[[str, int], Any] | None = None,
        wait: Callable[[Any, float], bool] | None = None,
    ) -> None:
        if not channels:
            raise ValueError("at least one channel is required")
        self._dsn = dsn
        self._channels = list(channels)
        self._poll_timeout_s = poll_timeout_s
        self._connect_timeout = connect_timeout
        self._connect = connect or _default_connect
        self._wait = wait or _wait_readable
        self._conn: Any = None
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()

    @property
    def channels(self) -> list[str]:
        return list(self._channels)

    @property
    def alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, callback: NotificationCallback) -> None:
        """Open the LISTEN session and start the listener thread.

        Connection failures are logged, not raised: the relay must come up
        even when the notifier cannot.
        """
        if self.alive:
            return
        self._stop.clear()
        try:
            self._conn = self._connect(self._dsn, self._connect_timeout)
            with self._conn.cursor() as cur:
                for channel in self._channels:
                    cur.execute(f"LISTEN {_quote_channel(channel)}")
        except Exception as exc:
            _LOG.error("upstream_unavailable", component="notifier", detail=str(exc))
            self._close()
            return

        _LOG.info("notifier_listening", channels=",".join(self._channels))
        self._thread = threading.Thread(
            target=self._run, args=(callback,), name="pg-notifier", daemon=True
        )
        self._thread.start()

    def stop(self, *, join_timeout_s: float | None = None) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(join_timeout_s if join_timeout_s is not None else self._poll_timeout_s + 1.0)
        self._thread = None
        self._close()

    def _close(self) -> None:
        conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            conn.close()
        except Exception as exc:
            _LOG.debug("notifier_close_failed", detail=str(exc))

    def _run(self, callback: NotificationCallback) -> None:
        conn = self._conn
        while not self._stop.is_set() and conn is not None:
            try:
                if not self._wait(conn, self._poll_timeout_s):
                    continue
                conn.poll()
            except Exception as exc:
                if not self._stop.is_set():
                    _LOG.error("upstream_unavailable", component="notifier", detail=str(exc))
                break
            while conn.notifies:
                notify = conn.notifies.pop(0)
                try:
                    callback(notify.channel, notify.payload)
                except Exception:
                    _LOG.exception("notification_callback_failed", channel=notify.channel)
        _LOG.info("notifier_stopped")


def _wait_readable(conn: Any, timeout_s: float) -> bool:
    """Block until the connection socket is readable or the timeout elapses."""
    readable, _, _ = select.select([conn], [], [], timeout_s)
    return bool(readable)
