"""Tests for the relay broker over the WebSocket endpoint."""

import asyncio

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from sheetrelay.contracts import messages
from sheetrelay.server.broker import Broker, ClientSet, Session

SET_CELL = {
    "type": "command",
    "command": "setProcessedData",
    "params": {"startRow": 0, "startCol": 0, "values": [["hello"]]},
    "requestId": "r1",
}


def _connect(client: TestClient):
    return client.websocket_connect("/ws")


def _welcomed(ws) -> dict:
    msg = ws.receive_json()
    assert msg["type"] == "welcome"
    return msg


def _assert_quiet(ws) -> None:
    """The next frame a socket sees after a ping is the pong."""
    ws.send_json({"type": "ping"})
    assert ws.receive_json()["type"] == "pong"


def test_welcome_carries_server_assigned_id(client: TestClient):
    with client.websocket_connect("/") as ws:
        msg = _welcomed(ws)
        assert msg["message"] == "Connected to Spreadsheet WebSocket Server"
        assert len(msg["sessionId"]) == 32
        assert msg["timestamp"].endswith("Z")


def test_ping_is_answered_only_to_sender(client: TestClient):
    with _connect(client) as a, _connect(client) as b:
        _welcomed(a)
        _welcomed(b)
        a.send_json({"type": "ping"})
        assert a.receive_json()["type"] == "pong"

        b.send_json({"type": "command_echo", "command": "getSheetNames", "requestId": "e1"})
        echoed = b.receive_json()
        assert echoed["type"] == "command"
        assert echoed["command"] == "getSheetNames"
        assert echoed["requestId"] == "e1"


def test_command_fans_out_and_acks_once(client: TestClient):
    with _connect(client) as a, _connect(client) as b, _connect(client) as c:
        for ws in (a, b, c):
            _welcomed(ws)

        a.send_json(SET_CELL)
        ack = a.receive_json()
        assert ack["type"] == "command_ack"
        assert ack["status"] == "sent"
        assert ack["broadcastCount"] == 2
        assert ack["requestId"] == "r1"

        for peer in (b, c):
            relayed = peer.receive_json()
            assert relayed["type"] == "command"
            assert relayed["command"] == "setProcessedData"
            assert relayed["params"] == SET_CELL["params"]

        # exactly one ack, and no copy of its own command
        _assert_quiet(a)


def test_commands_update_the_mirror(client: TestClient):
    with _connect(client) as a:
        _welcomed(a)
        a.send_json(SET_CELL)
        assert a.receive_json()["broadcastCount"] == 0

    resp = client.get("/mcp/spreadsheet/get-processed-data", params={"startRow": 0, "startCol": 0})
    assert resp.json()["result"] == [["hello"]]


def test_mirror_failure_still_relays(client: TestClient):
    bad = {**SET_CELL, "params": {"startRow": -1, "startCol": 0, "values": [[1]]}}
    with _connect(client) as a, _connect(client) as b:
        _welcomed(a)
        _welcomed(b)
        a.send_json(bad)
        assert a.receive_json()["broadcastCount"] == 1
        assert b.receive_json()["command"] == "setProcessedData"


def test_capacity_refusal(client: TestClient):
    with _connect(client) as a, _connect(client) as b, _connect(client) as c:
        for ws in (a, b, c):
            _welcomed(ws)
        with _connect(client) as extra:
            with pytest.raises(WebSocketDisconnect) as exc:
                extra.receive_json()
            assert exc.value.code == 1008
            assert exc.value.reason == "Server full"
        assert client.get("/health").json()["websocket"]["connectedClients"] == 3


def test_invalid_json_keeps_connection_open(client: TestClient):
    with _connect(client) as ws:
        _welcomed(ws)
        ws.send_text("not json")
        reply = ws.receive_json()
        assert reply["type"] == "error"
        assert reply["message"] == "Invalid JSON format"
        _assert_quiet(ws)


def test_numeric_request_id_is_echoed_unchanged(client: TestClient):
    with _connect(client) as a, _connect(client) as b:
        _welcomed(a)
        _welcomed(b)
        a.send_json({"type": "ping", "requestId": 17})
        assert a.receive_json()["type"] == "pong"

        a.send_json({**SET_CELL, "requestId": 1712345})
        ack = a.receive_json()
        assert ack["type"] == "command_ack"
        assert ack["broadcastCount"] == 1
        assert ack["requestId"] == 1712345
        relayed = b.receive_json()
        assert relayed["command"] == "setProcessedData"
        assert relayed["requestId"] == 1712345


def test_badly_typed_fields_are_not_invalid_json(client: TestClient):
    with _connect(client) as ws:
        _welcomed(ws)
        ws.send_json({"type": "command", "command": "setProcessedData", "params": [1, 2]})
        reply = ws.receive_json()
        assert reply["type"] == "error"
        assert reply["message"] == "Invalid message format"
        _assert_quiet(ws)


@pytest.mark.parametrize("frame, received", [
    ({"type": "teleport"}, "teleport"),
    ({"type": 5}, 5),
])
def test_unknown_message_type(client: TestClient, frame, received):
    with _connect(client) as ws:
        _welcomed(ws)
        ws.send_json(frame)
        reply = ws.receive_json()
        assert reply["message"] == "Unknown message type"
        assert reply["receivedType"] == received


def test_unknown_command_is_not_relayed(client: TestClient):
    with _connect(client) as a, _connect(client) as b:
        _welcomed(a)
        _welcomed(b)
        a.send_json({"type": "command", "command": "bogus", "requestId": "x"})
        reply = a.receive_json()
        assert reply["type"] == "error"
        assert reply["message"] == "Unknown command"
        assert reply["command"] == "bogus"
        assert reply["requestId"] == "x"
        _assert_quiet(b)


def test_missing_params_are_listed(client: TestClient):
    with _connect(client) as a, _connect(client) as b:
        _welcomed(a)
        _welcomed(b)
        a.send_json({"type": "command", "command": "setProcessedData", "params": {"startRow": 0}})
        reply = a.receive_json()
        assert reply["message"] == "Missing required parameters"
        assert reply["missing"] == ["startCol", "values"]
        _assert_quiet(b)


def test_peer_acks_are_not_answered(client: TestClient):
    with _connect(client) as ws:
        _welcomed(ws)
        ws.send_json({"type": "command_ack", "command": "setRawData", "success": True})
        _assert_quiet(ws)


# ---------------------------------------------------------------------------
# client set, without a server
# ---------------------------------------------------------------------------
class StubTransport:
    def __init__(self, *, fail=False, delay=0.0):
        self.fail = fail
        self.delay = delay
        self.sent = []
        self.closed = None

    async def send_text(self, data):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("socket gone")
        self.sent.append(data)

    async def close(self, code=1000, reason=None):
        self.closed = (code, reason)


def test_failed_and_slow_sessions_are_dropped():
    async def scenario():
        clients = ClientSet(max_connections=10, send_timeout=0.05)
        good, broken, slow = StubTransport(), StubTransport(fail=True), StubTransport(delay=1.0)
        sessions = [Session(t) for t in (good, broken, slow)]
        for session in sessions:
            clients.add(session)
        count = await clients.deliver(messages.pong())
        return clients, sessions, good, count

    clients, sessions, good, count = asyncio.run(scenario())
    assert count == 1
    assert len(clients) == 1
    assert sessions[0] in clients
    assert not sessions[1].alive
    assert len(good.sent) == 1


def test_accept_refuses_when_full():
    async def scenario():
        broker = Broker(max_connections=1)
        first = await broker.accept(StubTransport())
        refused_transport = StubTransport()
        second = await broker.accept(refused_transport)
        return broker, first, second, refused_transport

    broker, first, second, refused = asyncio.run(scenario())
    assert first is not None
    assert second is None
    assert refused.closed == (1008, "Server full")
    assert broker.connected_clients == 1


def test_submit_validates_before_broadcast():
    async def scenario():
        broker = Broker()
        transport = StubTransport()
        await broker.accept(transport)
        count, outcome = await broker.submit("setRawData", {"startRow": 0, "startCol": 0, "formulas": [["=1"]]})
        return broker, transport, count, outcome

    broker, transport, count, outcome = asyncio.run(scenario())
    assert count == 1
    assert outcome.success
    relayed = messages.decode(transport.sent[-1])
    assert relayed.source == "mcp"
    assert broker.read("getRawData", {"startRow": 0, "startCol": 0}).result == [["=1"]]


def test_reads_are_not_mirrored():
    broker = Broker()
    assert broker.apply("getSheetNames", {}) is None
    assert Broker(mirror=False).apply("setRawData", {"startRow": 0, "startCol": 0, "formulas": [[1]]}) is None
