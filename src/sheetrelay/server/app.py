"""FastAPI applications for the WebSocket relay and the gateway, and the serve loop."""

from __future__ import annotations

import asyncio
import logging
import socket
from typing import Any

import uvicorn
from fastapi import FastAPI, WebSocket

import sheetrelay
from sheetrelay.config import RelaySettings
from sheetrelay.server.broker import Broker
from sheetrelay.server.gateway import create_gateway_router, health_status

logger = logging.getLogger(__name__)

WEBSOCKET_PATHS = ("/", "/ws")


class BindError(OSError):
    """Raised when a listening socket cannot be bound."""

    def __init__(self, host: str, port: int, cause: OSError) -> None:
        super().__init__(f"Cannot bind {host}:{port}: {cause.strerror or cause}")
        self.host = host
        self.port = port


def create_broker(settings: RelaySettings) -> Broker:
    return Broker(
        max_connections=settings.max_connections,
        send_timeout=settings.send_timeout,
        mirror=settings.mirror,
    )


async def relay_socket(websocket: WebSocket) -> None:
    """Receive loop for one relay connection."""
    broker: Broker = websocket.app.state.broker
    await websocket.accept()
    session = await broker.accept(websocket)
    if session is None:
        return
    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break
            raw = frame.get("text")
            if raw is None:
                raw = frame.get("bytes") or b""
            await broker.handle(session, raw)
    finally:
        await broker.release(session)


def create_app(
    broker: Broker | None = None,
    *,
    websocket: bool = True,
    gateway: bool = True,
) -> FastAPI:
    """Build an app serving the relay socket, the gateway, or both."""
    broker = broker or Broker()
    app = FastAPI(title="sheetrelay", version=sheetrelay.__version__)
    app.state.broker = broker

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return health_status(broker)

    if websocket:
        for path in WEBSOCKET_PATHS:
            app.add_api_websocket_route(path, relay_socket)
    if gateway:
        app.include_router(create_gateway_router(broker))
    return app


def bind_socket(host: str, port: int) -> socket.socket:
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
    except OSError as e:
        sock.close()
        raise BindError(host, port, e) from e
    sock.set_inheritable(True)
    return sock


def _server(app: FastAPI, settings: RelaySettings) -> uvicorn.Server:
    log_level = "critical" if settings.log_level == "silent" else "warning"
    config = uvicorn.Config(app, log_level=log_level, lifespan="off", log_config=None)
    return uvicorn.Server(config)


async def serve(settings: RelaySettings, broker: Broker | None = None) -> None:
    """Run the relay on ``port`` and the gateway on ``mcp_port`` until cancelled.

    Both sockets are bound before either server starts, so a bind failure
    raises BindError without leaving a half-started relay.
    """
    broker = broker or create_broker(settings)
    if settings.port == settings.mcp_port:
        plan = [(create_app(broker), settings.port)]
    else:
        plan = [
            (create_app(broker, gateway=False), settings.port),
            (create_app(broker, websocket=False), settings.mcp_port),
        ]
    sockets: list[socket.socket] = []
    try:
        for _, port in plan:
            sockets.append(bind_socket(settings.host, port))
    except BindError:
        for sock in sockets:
            sock.close()
        raise

    logger.info(
        "Relay listening on ws://%s:%d, gateway on http://%s:%d (max %d clients)",
        settings.host, settings.port, settings.host, settings.mcp_port, settings.max_connections,
    )
    servers = [_server(app, settings) for app, _ in plan]
    try:
        await asyncio.gather(*(srv.serve(sockets=[sock]) for srv, sock in zip(servers, sockets)))
    finally:
        for sock in sockets:
            sock.close()
