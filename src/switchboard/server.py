"""Relay server — FastAPI + WebSocket host for the channel router."""

from __future__ import annotations

import asyncio
import contextlib
import errno
import logging
import socket
import uuid
from contextlib import asynccontextmanager

import httpx
import uvicorn
from fastapi import APIRouter, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from starlette.websockets import WebSocketState

from switchboard.config import Settings, settings
from switchboard.relay import ChannelRouter, Closed, Opened, Received, RelayError, RelayLifecycle, deliver

log = logging.getLogger(__name__)

RUNNING_TEXT = "WebSocket relay server running"


class RelayStartupError(RelayError):
    """The relay could not start listening."""


class WebSocketConnection:
    """Relay-side handle for one accepted WebSocket.

    Outbound frames go through a bounded outbox drained by ``pump()``, so
    ``send`` never waits on the peer. ``send`` may be called from any thread.
    """

    def __init__(self, ws: WebSocket, queue_size: int = 1024) -> None:
        self.id = uuid.uuid4().hex[:8]
        self._ws = ws
        self._loop = asyncio.get_running_loop()
        self._outbox: asyncio.Queue[str] = asyncio.Queue(maxsize=queue_size)
        self._closed = False

    def __repr__(self) -> str:
        return f"<WebSocketConnection {self.id}>"

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self._ws.client_state == WebSocketState.CONNECTED
            and self._ws.application_state == WebSocketState.CONNECTED
        )

    def send(self, text: str) -> None:
        if self._closed:
            return
        self._loop.call_soon_threadsafe(self._enqueue, text)

    def _enqueue(self, text: str) -> None:
        if self._closed:
            return
        try:
            self._outbox.put_nowait(text)
        except asyncio.QueueFull:
            log.warning("Outbox full for %s, dropping frame", self.id)

    def close(self) -> None:
        self._closed = True

    async def pump(self) -> None:
        """Write queued frames to the socket until it fails or is cancelled."""
        while True:
            text = await self._outbox.get()
            try:
                await self._ws.send_text(text)
            except (WebSocketDisconnect, RuntimeError, OSError) as exc:
                log.info("Write to %s failed, closing outbox: %r", self.id, exc)
                self._closed = True
                return


@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("Relay started")
    yield
    log.info("Relay stopped (%d channels)", app.state.router.stats()["channels"])


routes = APIRouter()


@routes.get("/", response_class=PlainTextResponse)
async def index():
    return RUNNING_TEXT


@routes.get("/health")
async def health():
    return {"status": "ok"}


@routes.get("/stats")
async def stats(request: Request):
    return request.app.state.router.stats()


@routes.websocket("/")
async def relay_endpoint(ws: WebSocket):
    await ws.accept()
    lifecycle: RelayLifecycle = ws.app.state.lifecycle
    conn = WebSocketConnection(ws, queue_size=ws.app.state.settings.send_queue_size)
    writer = asyncio.create_task(conn.pump(), name=f"relay-writer-{conn.id}")
    deliver(lifecycle.handle(Opened(conn)))

    try:
        while True:
            message = await ws.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            deliver(lifecycle.handle(Received(conn, raw)))
    finally:
        conn.close()
        deliver(lifecycle.handle(Closed(conn)))
        writer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await writer


def create_app(router: ChannelRouter | None = None, config: Settings = settings) -> FastAPI:
    """Build the relay application around its own channel table."""
    if router is None:
        router = ChannelRouter()

    app = FastAPI(title="Switchboard", lifespan=lifespan)
    app.state.settings = config
    app.state.router = router
    app.state.lifecycle = RelayLifecycle(router)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_allow_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    app.include_router(routes)
    return app


def bind_listener(host: str, port: int) -> socket.socket:
    """Bind and listen on ``host:port``; port 0 picks a free port."""
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
        sock.listen()
    except OSError as exc:
        sock.close()
        if exc.errno == errno.EADDRINUSE:
            raise RelayStartupError(f"Port {port} is already in use") from exc
        raise RelayStartupError(f"Cannot listen on {host}:{port}: {exc}") from exc
    return sock


async def run_relay_server(config: Settings = settings) -> None:
    """Serve the relay until shutdown.

    Raises:
        RelayStartupError: the listener could not be bound.
    """
    sock = bind_listener(config.host, config.port)
    port = sock.getsockname()[1]
    log.info("WebSocket relay server running on port %d", port)

    server = uvicorn.Server(uvicorn.Config(create_app(config=config), log_level=config.log_level))
    try:
        await server.serve(sockets=[sock])
    finally:
        sock.close()


async def is_relay_running(
    port: int | None = None,
    host: str = "localhost",
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    """Return True if a relay answers the liveness probe on ``host:port``."""
    if port is None:
        port = settings.port
    try:
        async with httpx.AsyncClient(transport=transport) as client:
            resp = await client.get(f"http://{host}:{port}/", timeout=2)
    except httpx.HTTPError:
        return False
    return resp.is_success
