"""ws_app.py

Live update feed for dashboards (server push only).

Each WebSocket connection becomes a relay observer. The relay calls
``observer.send()`` from the notifier thread; the observer hands the frame to
the connection's event loop through a per-connection queue, so frames leave in
exactly the order the relay produced them. Client messages are read only to
detect disconnects and are otherwise ignored.

Run
---
python -m apps.live_api.ws_app
uvicorn apps.live_api.ws_app:app --host 0.0.0.0 --port 5001
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from typing import Optional

from fastapi import APIRouter, FastAPI, WebSocket
from fastapi.concurrency import run_in_threadpool

from contracts.interfaces import NotifierProtocol, SnapshotStoreProtocol
from infra.config import Settings, get_settings
from infra.logging_config import StructuredLogger, setup_logging
from services.capacity_store import CapacityStore
from services.live_relay import LiveUpdateRelay
from services.pg_notifier import PgNotifier
from version import APP_NAME, APP_VERSION

router = APIRouter()
_LOG = StructuredLogger(__name__)

_CLOSED = None


class QueueObserver:
    """Relay observer that forwards frames into a bounded asyncio queue.

    ``send`` runs on the notifier thread and only schedules the put; the put
    itself runs on the event loop. When the queue is full (a stalled client)
    the frame is dropped and logged.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, queue: asyncio.Queue) -> None:
        self._loop = loop
        self._queue = queue
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        with suppress(RuntimeError):
            self._loop.call_soon_threadsafe(self._offer, _CLOSED)

    def send(self, message: str) -> None:
        if self._closed:
            raise ConnectionError("observer closed")
        # Raises RuntimeError once the loop is closed; the relay logs it.
        self._loop.call_soon_threadsafe(self._offer, message)

    def _offer(self, frame: Optional[str]) -> None:
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull:
            if frame is _CLOSED:
                # The pump is cancelled by the handler anyway.
                return
            self.dropped += 1
            _LOG.warning(
                "observer_frame_dropped",
                queued=self._queue.qsize(),
                dropped=self.dropped,
            )


async def _pump(websocket: WebSocket, queue: asyncio.Queue) -> None:
    while True:
        frame = await queue.get()
        if frame is _CLOSED:
            return
        await websocket.send_text(frame)


@router.websocket("/ws")
async def live_feed(websocket: WebSocket) -> None:
    relay: LiveUpdateRelay = websocket.app.state.relay
    await websocket.accept()

    queue: asyncio.Queue = asyncio.Queue(maxsize=websocket.app.state.queue_max_frames)
    observer = QueueObserver(asyncio.get_running_loop(), queue)
    pump = asyncio.create_task(_pump(websocket, queue))
    try:
        # Initial snapshots hit the database; keep them off the event loop.
        await run_in_threadpool(relay.add_observer, observer)
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            if pump.done():
                break
    except Exception as exc:
        _LOG.warning("websocket_error", detail=str(exc))
    finally:
        # Close first so an add_observer still running in the threadpool
        # cannot register this observer after it is removed.
        observer.close()
        pump.cancel()
        await run_in_threadpool(relay.remove_observer, observer)
        with suppress(asyncio.CancelledError, Exception):
            await pump


@router.get("/health")
async def health() -> dict:
    return {"ok": True, "app": APP_NAME, "version": APP_VERSION}


def build_relay(settings: Settings) -> LiveUpdateRelay:
    """Production wiring: pooled store for snapshots, Postgres LISTEN for changes."""
    notifier = PgNotifier(
        str(settings.db.url or ""),
        settings.live.channels,
        poll_timeout_s=settings.live.poll_timeout_s,
        connect_timeout=settings.db.connect_timeout,
    )
    return LiveUpdateRelay(CapacityStore(), notifier)


def create_app(
    *,
    relay: Optional[LiveUpdateRelay] = None,
    store: Optional[SnapshotStoreProtocol] = None,
    notifier: Optional[NotifierProtocol] = None,
    queue_max_frames: Optional[int] = None,
) -> FastAPI:
    """Build the live-feed app.

    Pass ``relay`` (or ``store``/``notifier``) to inject collaborators;
    otherwise the relay is wired from settings at startup. ``queue_max_frames``
    bounds each connection's outgoing buffer (default ``live.queue_max_frames``).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        active = relay
        if active is None:
            if store is not None:
                active = LiveUpdateRelay(store, notifier)
            else:
                active = build_relay(get_settings())
        app.state.relay = active
        app.state.queue_max_frames = (
            queue_max_frames if queue_max_frames is not None else get_settings().live.queue_max_frames
        )
        await run_in_threadpool(active.start)
        try:
            yield
        finally:
            await run_in_threadpool(active.stop)

    app = FastAPI(title=f"{APP_NAME} live feed", version=APP_VERSION, lifespan=lifespan)
    app.include_router(router)
    return app


app = create_app()


def main() -> None:
    import uvicorn

    settings = get_settings()
    setup_logging()
    uvicorn.run(app, host=settings.live.host, port=settings.live.port, log_config=None)


if __name__ == "__main__":
    main()
