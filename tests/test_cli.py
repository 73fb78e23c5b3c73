"""Tests for CLI commands via Typer test runner."""

from __future__ import annotations

import json
import socket
from pathlib import Path

from typer.testing import CliRunner

import sheetrelay
from sheetrelay.cli import app
from sheetrelay.engine.catalog import COMMANDS
from sheetrelay.server.gateway import LEGACY_ROUTES

runner = CliRunner()


def _envelope(output: str) -> dict:
    """The JSON envelope, skipping any log lines printed before it."""
    lines = output.splitlines()
    start = lines.index("{")
    return json.loads("\n".join(lines[start:]))


def _closed_url() -> str:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    return f"ws://127.0.0.1:{port}"


def test_version():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["ok"] is True
    assert data["result"]["version"] == sheetrelay.__version__


def test_version_flag():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert result.stdout.strip() == sheetrelay.__version__


def test_operations():
    result = runner.invoke(app, ["operations"])
    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["command"] == "operations"
    names = [op["name"] for op in data["result"]["operations"]]
    assert len(names) == len(COMMANDS) + len(LEGACY_ROUTES)
    assert "set-cell" in names
    assert "get-sheet-csv-of-range" in names


def test_operations_group_filter():
    result = runner.invoke(app, ["operations", "--group", "style"])
    data = json.loads(result.stdout)
    names = {op["name"] for op in data["result"]["operations"]}
    assert names == {d.path for d in COMMANDS if d.group == "style"}


def test_send_invalid_params_json():
    result = runner.invoke(app, ["send", "setRawData", "--params", "{not json"])
    assert result.exit_code == 10
    data = _envelope(result.stdout)
    assert data["ok"] is False
    assert data["errors"][0]["code"] == "ERR_INVALID_ARGUMENT"


def test_send_params_must_be_object():
    result = runner.invoke(app, ["send", "setRawData", "-P", "[1, 2]"])
    assert result.exit_code == 10
    assert _envelope(result.stdout)["errors"][0]["message"] == "--params must be a JSON object"


def test_send_unreachable_relay():
    result = runner.invoke(app, ["send", "getSheetNames", "--url", _closed_url()])
    assert result.exit_code == 50
    data = _envelope(result.stdout)
    assert data["command"] == "send"
    assert data["errors"][0]["code"] == "ERR_CONNECT_FAILED"


def test_ping_unreachable_relay():
    result = runner.invoke(app, ["ping", "--url", _closed_url()])
    assert result.exit_code == 50
    assert _envelope(result.stdout)["errors"][0]["code"] == "ERR_CONNECT_FAILED"


def test_listen_gives_up(tmp_path: Path):
    cfg = tmp_path / "sheetrelay.yaml"
    cfg.write_text(f"client:\n  url: {_closed_url()}\n  max_reconnect_attempts: 0\n")
    result = runner.invoke(app, ["listen", "--config", str(cfg)])
    assert result.exit_code == 50
    data = _envelope(result.stdout)
    assert data["command"] == "listen"
    assert data["errors"][0]["details"] == {"received": 0, "applied": 0, "failed": 0}


def test_serve_rejects_invalid_settings():
    result = runner.invoke(app, ["serve", "--log-level", "loud"])
    assert result.exit_code == 10
    data = _envelope(result.stdout)
    assert data["command"] == "serve"
    assert data["errors"][0]["code"] == "ERR_CONFIG_INVALID"


def test_send_invalid_client_config(tmp_path: Path):
    cfg = tmp_path / "bad.yaml"
    cfg.write_text("client:\n  reconnect_delay: -1\n")
    result = runner.invoke(app, ["send", "getSheetNames", "--config", str(cfg)])
    assert result.exit_code == 10
    assert _envelope(result.stdout)["errors"][0]["code"] == "ERR_CONFIG_INVALID"
