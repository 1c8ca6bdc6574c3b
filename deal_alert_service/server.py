"""HTTP and WebSocket front end.

Use: create_app(engine, source) and serve it with uvicorn (see main.py).

Each WebSocket connection gets a `WebSocketChannel`.  The dispatcher thread
calls `send`, which hands the frame to the connection's event loop; a writer
task on that loop drains the queue onto the socket.  Frames are JSON objects
`{"event": ..., "data": ...}` in both directions.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from starlette.concurrency import run_in_threadpool

from .engine import DistributionEngine
from .models import SettingsError, SettingsUpdate
from .protocol import Connection, MessageHandler

logger = logging.getLogger(__name__)


class ChannelClosed(Exception):
    """Send on a channel whose connection has gone away."""


class WebSocketChannel:
    def __init__(self, websocket: WebSocket, loop: asyncio.AbstractEventLoop):
        self.websocket = websocket
        self._loop = loop
        self._queue: "asyncio.Queue[Optional[dict]]" = asyncio.Queue()
        self.closed = False

    def send(self, event: str, data: Any) -> None:
        """Thread-safe; called from the dispatcher."""
        if self.closed:
            raise ChannelClosed(event)
        self._loop.call_soon_threadsafe(self._queue.put_nowait, {"event": event, "data": data})

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._loop.call_soon_threadsafe(self._queue.put_nowait, None)

    async def pump(self) -> None:
        """Writer task: forward queued frames until closed."""
        while True:
            frame = await self._queue.get()
            if frame is None:
                return
            try:
                await self.websocket.send_json(frame)
            except Exception as e:
                logger.debug("Writer stopped: %s", e)
                self.closed = True
                return


def _decode_frame(text: str) -> tuple[Any, Any]:
    msg = json.loads(text)
    if not isinstance(msg, dict):
        raise ValueError("frame must be a JSON object")
    return msg.get("event"), msg.get("data")


def create_app(
    engine: DistributionEngine,
    source,
    *,
    handler: Optional[MessageHandler] = None,
    run_dispatcher: bool = True,
) -> FastAPI:
    """Build the FastAPI app around an engine."""
    app = FastAPI(title="Deal Alert Service", version="1.0.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    handler = handler or MessageHandler(engine, source)
    app.state.engine = engine
    app.state.handler = handler
    stop = threading.Event()

    @app.on_event("startup")
    def start_dispatcher() -> None:
        if not run_dispatcher:
            return
        stop.clear()
        t = threading.Thread(target=engine.dispatcher.run, args=(stop,), name="dispatcher", daemon=True)
        t.start()
        app.state.dispatcher_thread = t

    @app.on_event("shutdown")
    def stop_dispatcher() -> None:
        stop.set()
        t = getattr(app.state, "dispatcher_thread", None)
        if t is not None:
            t.join(timeout=5)

    @app.get("/health")
    def health() -> dict:
        return {
            "status": "ok",
            "crawling": engine.is_crawling,
            "sessions": len(engine.registry),
        }

    @app.get("/api/products")
    def products() -> dict:
        return engine.snapshot_payload()

    @app.get("/api/settings")
    def get_settings() -> dict:
        return engine.settings.to_dict()

    @app.post("/api/settings")
    def post_settings(update: SettingsUpdate) -> dict:
        try:
            settings = engine.update_settings(update.model_dump(exclude_unset=True))
        except SettingsError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return settings.to_dict()

    @app.get("/api/stats")
    def stats() -> dict:
        return engine.stats()

    @app.get("/api/sessions")
    def sessions() -> dict:
        return engine.session_stats()

    @app.websocket("/ws")
    async def ws(websocket: WebSocket) -> None:
        await websocket.accept()
        channel = WebSocketChannel(websocket, asyncio.get_running_loop())
        conn = Connection(channel)
        writer = asyncio.create_task(channel.pump())
        try:
            while True:
                text = await websocket.receive_text()
                try:
                    event, data = _decode_frame(text)
                except ValueError as e:
                    logger.warning("Ignoring malformed frame: %s", e)
                    continue
                try:
                    await run_in_threadpool(handler.handle, conn, event, data)
                except Exception:
                    logger.exception("Error handling %r for session %s", event, conn.session_id)
        except WebSocketDisconnect:
            logger.info("Client disconnected (session %s)", conn.session_id)
        finally:
            await run_in_threadpool(handler.disconnect, conn)
            channel.close()
            await writer

    return app


__all__ = ["create_app", "WebSocketChannel", "ChannelClosed"]
