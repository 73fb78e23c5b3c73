"""Tests for the HTTP gateway endpoints."""

from fastapi.testclient import TestClient

from sheetrelay.engine.catalog import COMMANDS
from sheetrelay.server.app import create_app
from sheetrelay.server.broker import Broker
from sheetrelay.server.gateway import LEGACY_ROUTES, MIRROR_DISABLED, coerce_query

BASE = "/mcp/spreadsheet"


def _welcomed(ws) -> None:
    assert ws.receive_json()["type"] == "welcome"


def test_health(client: TestClient):
    body = client.get("/health").json()
    assert body["status"] == "healthy"
    assert body["websocket"] == {"connectedClients": 0, "serverRunning": True}


def test_status_counts_clients(client: TestClient):
    with client.websocket_connect("/ws") as ws:
        _welcomed(ws)
        body = client.get(f"{BASE}/status").json()
    assert body["status"] == "active"
    assert body["connectedClients"] == 1


def test_operations_catalog(client: TestClient):
    ops = client.get(f"{BASE}/operations").json()["operations"]
    assert len(ops) == len(COMMANDS) + len(LEGACY_ROUTES)
    by_name = {op["name"]: op for op in ops}
    assert by_name["set-processed-data"] == {
        "name": "set-processed-data",
        "description": "Set processed data in range",
        "endpoint": "/mcp/spreadsheet/set-processed-data",
        "method": "POST",
        "params": ["startRow", "startCol", "values", "sheetName?"],
    }
    assert by_name["get-styles-merges"]["method"] == "GET"
    assert by_name["set-cell"]["params"] == ["row", "col", "value", "sheetIndex?"]


def test_mutation_is_broadcast(client: TestClient):
    with client.websocket_connect("/ws") as ws:
        _welcomed(ws)
        resp = client.post(f"{BASE}/set-raw-data", json={"startRow": 1, "startCol": 1, "formulas": [["=A1"]]})
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["broadcastCount"] == 1
        assert "error" not in body

        relayed = ws.receive_json()
        assert relayed["command"] == "setRawData"
        assert relayed["source"] == "mcp"


def test_missing_params_reject_without_broadcast(client: TestClient, broker):
    with client.websocket_connect("/ws") as ws:
        _welcomed(ws)
        resp = client.post(f"{BASE}/set-cell", json={"row": 0, "col": 0})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Missing required parameters: value", "missing": ["value"]}

        ws.send_json({"type": "ping"})
        assert ws.receive_json()["type"] == "pong"
    assert broker.read("getProcessedData", {"startRow": 0, "startCol": 0}).result == [[None]]


def test_registry_endpoint_missing_params(client: TestClient):
    resp = client.post(f"{BASE}/set-processed-data", json={"startRow": 0})
    assert resp.status_code == 400
    assert resp.json()["missing"] == ["startCol", "values"]


def test_legacy_set_cell_and_read_back(client: TestClient):
    resp = client.post(f"{BASE}/set-cell", json={"row": 2, "col": 1, "value": 42})
    assert resp.json()["command"] == "setProcessedData"

    read = client.get(f"{BASE}/get-processed-data", params={"startRow": 2, "startCol": 1})
    body = read.json()
    assert body["success"] is True
    assert body["params"] == {"startRow": 2, "startCol": 1}
    assert body["result"] == [[42]]


def test_legacy_set_formula(client: TestClient):
    client.post(f"{BASE}/set-formula", json={"row": 0, "col": 0, "formula": "=1+1"})
    body = client.get(f"{BASE}/get-raw-data", params={"startRow": 0, "startCol": 0}).json()
    assert body["result"] == [["=1+1"]]


def test_legacy_clear_sheet_defaults_to_first_sheet(client: TestClient):
    client.post(f"{BASE}/set-cell", json={"row": 0, "col": 0, "value": "x"})
    resp = client.post(f"{BASE}/clear-sheet")
    assert resp.json()["command"] == "clearSheets"
    assert client.get(f"{BASE}/get-sheet-csv").json()["result"] == ""
    assert client.get(f"{BASE}/get-sheet-names").json()["result"] == ["Sheet1"]


def test_legacy_set_active_sheet_requires_index(client: TestClient):
    resp = client.post(f"{BASE}/set-active-sheet", json={})
    assert resp.status_code == 400
    assert resp.json()["missing"] == ["sheetIndex"]


def test_read_missing_params(client: TestClient):
    resp = client.get(f"{BASE}/get-formatter", params={"row": 0})
    assert resp.status_code == 400
    assert resp.json()["missing"] == ["col"]


def test_mirror_error_is_reported_but_still_succeeds(client: TestClient):
    resp = client.post(f"{BASE}/add-rows", json={"row": 0, "count": 0})
    body = resp.json()
    assert body["success"] is True
    assert body["error"] == "count must be >= 1, got 0"


def test_sheet_management_round_trip(client: TestClient):
    client.post(f"{BASE}/add-sheet", json={"sheetName": "Budget"})
    assert client.get(f"{BASE}/get-sheet-count").json()["result"] == 2
    client.post(f"{BASE}/set-active-sheet-index", json={"index": 1})
    assert client.get(f"{BASE}/get-active-sheet").json()["result"]["name"] == "Budget"


def test_coerce_query_keeps_text_params():
    assert coerce_query({"row": "3", "sheetName": "2024", "delimiter": ";", "col": "-1"}) == {
        "row": 3, "sheetName": "2024", "delimiter": ";", "col": -1,
    }


def test_reads_unavailable_without_mirror():
    broker = Broker(mirror=False)
    with TestClient(create_app(broker)) as relay_only:
        resp = relay_only.post(f"{BASE}/set-cell", json={"row": 0, "col": 0, "value": 42})
        assert resp.status_code == 200
        assert resp.json()["success"] is True

        resp = relay_only.get(f"{BASE}/get-processed-data", params={"startRow": 0, "startCol": 0})
        assert resp.status_code == 501
        assert resp.json() == {"error": MIRROR_DISABLED, "command": "getProcessedData"}

        ops = relay_only.get(f"{BASE}/operations").json()["operations"]
        assert all(op["method"] == "POST" for op in ops)
        assert len(ops) == len([d for d in COMMANDS if d.mutating]) + len(LEGACY_ROUTES)
