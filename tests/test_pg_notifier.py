"""Tests for the Postgres LISTEN/NOTIFY notifier using fake connections."""

from __future__ import annotations

import threading
from collections import namedtuple
from typing import Any

import pytest

from contracts.errors import UpstreamUnavailableError
from services.pg_notifier import PgNotifier, _quote_channel

_Notify = namedtuple("_Notify", ["channel", "payload"])


class _FakeCursor:
    def __init__(self, conn: _FakeConn) -> None:
        self._conn = conn

    def __enter__(self) -> _FakeCursor:
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:  # type: ignore[no-untyped-def]
        return False

    def execute(self, sql: str) -> None:
        self._conn.executed.append(sql)


class _FakeConn:
    """Connection whose poll() moves queued notifications into ``notifies``."""

    def __init__(self) -> None:
        self.executed: list[str] = []
        self.notifies: list[_Notify] = []
        self.pending: list[_Notify] = []
        self.closed = False
        self.poll_error: Exception | None = None

    def cursor(self) -> _FakeCursor:
        return _FakeCursor(self)

    def poll(self) -> None:
        if self.poll_error is not None:
            raise self.poll_error
        self.notifies.extend(self.pending)
        self.pending.clear()

    def close(self) -> None:
        self.closed = True


class _Delivered:
    """Callback collecting notifications and signalling after ``expected`` of them."""

    def __init__(self, expected: int) -> None:
        self.items: list[tuple[str, str]] = []
        self._expected = expected
        self.done = threading.Event()

    def __call__(self, channel: str, payload: str) -> None:
        self.items.append((channel, payload))
        if len(self.items) >= self._expected:
            self.done.set()


def _notifier(conn: _FakeConn, **kwargs: Any) -> PgNotifier:
    return PgNotifier(
        "postgresql://example",
        ["storage_change", "pipeline_change"],
        poll_timeout_s=0.01,
        connect=lambda dsn, timeout: conn,
        wait=lambda c, t: True,
        **kwargs,
    )


def test_start_listens_on_each_channel_and_delivers_in_order() -> None:
    conn = _FakeConn()
    conn.pending = [
        _Notify("storage_change", '{"n":1}'),
        _Notify("pipeline_change", '{"n":2}'),
        _Notify("storage_change", '{"n":3}'),
    ]
    delivered = _Delivered(3)
    notifier = _notifier(conn)

    notifier.start(delivered)
    try:
        assert delivered.done.wait(2.0)
    finally:
        notifier.stop(join_timeout_s=2.0)

    assert conn.executed == ['LISTEN "storage_change"', 'LISTEN "pipeline_change"']
    assert delivered.items == [
        ("storage_change", '{"n":1}'),
        ("pipeline_change", '{"n":2}'),
        ("storage_change", '{"n":3}'),
    ]
    assert conn.closed is True
    assert notifier.alive is False


def test_callback_errors_do_not_stop_listener(caplog: pytest.LogCaptureFixture) -> None:
    conn = _FakeConn()
    conn.pending = [_Notify("storage_change", "first"), _Notify("storage_change", "second")]
    seen: list[str] = []
    done = threading.Event()

    def _callback(channel: str, payload: str) -> None:
        seen.append(payload)
        if payload == "first":
            raise RuntimeError("boom")
        done.set()

    caplog.set_level("ERROR")
    notifier = _notifier(conn)
    notifier.start(_callback)
    try:
        assert done.wait(2.0)
    finally:
        notifier.stop(join_timeout_s=2.0)

    assert seen == ["first", "second"]
    assert any("notification_callback_failed" in r.getMessage() for r in caplog.records)


def test_connect_failure_is_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    def _refuse(dsn: str, timeout: int) -> Any:
        raise UpstreamUnavailableError("notifier connection failed: refused")

    caplog.set_level("ERROR")
    notifier = PgNotifier("postgresql://example", ["storage_change"], connect=_refuse)
    notifier.start(lambda channel, payload: None)

    assert notifier.alive is False
    assert any("upstream_unavailable" in r.getMessage() for r in caplog.records)
    notifier.stop()


def test_lost_connection_ends_listener(caplog: pytest.LogCaptureFixture) -> None:
    conn = _FakeConn()
    conn.poll_error = OSError("server closed the connection unexpectedly")
    caplog.set_level("ERROR")

    notifier = _notifier(conn)
    notifier.start(lambda channel, payload: None)
    thread = notifier._thread
    assert thread is not None
    thread.join(2.0)

    assert notifier.alive is False
    assert any("upstream_unavailable" in r.getMessage() for r in caplog.records)
    notifier.stop()


def test_requires_at_least_one_channel() -> None:
    with pytest.raises(ValueError):
        PgNotifier("postgresql://example", [])


def test_channel_names_are_quoted() -> None:
    assert _quote_channel("storage_change") == '"storage_change"'
    assert _quote_channel('we"ird') == '"we""ird"'
