"""Shared test fixtures."""

from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient
from websockets.exceptions import ConnectionClosed
from websockets.frames import Close

from sheetrelay.engine.context import SheetContext
from sheetrelay.engine.editor import SheetEditor
from sheetrelay.engine.registry import CommandRegistry
from sheetrelay.server.app import create_app
from sheetrelay.server.broker import Broker


@pytest.fixture()
def ctx() -> SheetContext:
    """Two-sheet context with a small block of data on Sheet1."""
    context = SheetContext(["Sheet1", "Sheet2"])
    registry = CommandRegistry(context)
    registry.execute("setProcessedData", {
        "startRow": 0, "startCol": 0,
        "values": [["Region", "Sales"], ["North", 10], ["South", 20]],
    })
    yield context
    context.close()


@pytest.fixture()
def registry(ctx: SheetContext) -> CommandRegistry:
    return CommandRegistry(ctx)


@pytest.fixture()
def editor() -> SheetEditor:
    return SheetEditor(CommandRegistry(SheetContext()))


@pytest.fixture()
def broker() -> Broker:
    return Broker(max_connections=3, send_timeout=1.0)


@pytest.fixture()
def client(broker: Broker) -> TestClient:
    """Relay and gateway served from one app."""
    with TestClient(create_app(broker)) as test_client:
        yield test_client


class FakeConnection:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self) -> None:
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.sent: list[str] = []
        self.closed: tuple[int, str] | None = None
        self.fail_sends = False

    async def recv(self):
        item = await self.inbox.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def send(self, data: str) -> None:
        if self.fail_sends:
            raise OSError("broken pipe")
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = (code, reason)
        frame = Close(code, reason)
        self.inbox.put_nowait(ConnectionClosed(frame, frame))

    def feed(self, raw: str) -> None:
        self.inbox.put_nowait(raw)

    def drop(self, code: int = 1006, reason: str = "") -> None:
        """Simulate the server closing the connection."""
        frame = Close(code, reason) if code != 1006 else None
        self.inbox.put_nowait(ConnectionClosed(frame, None))


class FakeConnector:
    """Connector returning scripted connections; ``None`` entries fail to connect."""

    def __init__(self, script: list | None = None, *, fail_all: bool = False) -> None:
        self.script = list(script or [])
        self.fail_all = fail_all
        self.calls = 0
        self.call_times: list[float] = []
        self.connections: list[FakeConnection] = []

    async def __call__(self, url: str) -> FakeConnection:
        self.calls += 1
        self.call_times.append(asyncio.get_running_loop().time())
        if self.fail_all:
            raise OSError(f"connection refused: {url}")
        conn = self.script.pop(0) if self.script else FakeConnection()
        if conn is None:
            raise OSError(f"connection refused: {url}")
        self.connections.append(conn)
        return conn


@pytest.fixture()
def fake_connector() -> FakeConnector:
    return FakeConnector()
