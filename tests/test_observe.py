"""Tests for traffic observers and logging setup."""

import io
import logging

import orjson
import pytest

from sheetrelay.observe.events import NdjsonObserver, Timer, TrafficRecorder
from sheetrelay.observe.logconfig import configure_logging


@pytest.fixture()
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    logging.disable(logging.NOTSET)
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


def test_timer_measures_milliseconds():
    with Timer() as t:
        pass
    assert t.elapsed_ms >= 0


def test_ndjson_observer_writes_one_line_per_record():
    stream = io.StringIO()
    observer = NdjsonObserver(enabled=True, stream=stream)
    observer("out", "command", {"command": "setRawData"})
    observer("system", "open", {"url": "ws://x"})
    lines = stream.getvalue().splitlines()
    assert len(lines) == 2
    first = orjson.loads(lines[0])
    assert first["direction"] == "out"
    assert first["kind"] == "command"
    assert first["data"] == {"command": "setRawData"}
    assert first["timestamp"].endswith("Z")


def test_disabled_ndjson_observer_is_silent():
    stream = io.StringIO()
    NdjsonObserver(stream=stream)("in", "pong", {})
    assert stream.getvalue() == ""


def test_traffic_recorder_limit():
    recorder = TrafficRecorder(limit=2)
    for kind in ("a", "b", "c"):
        recorder("in", kind, None)
    assert [e["kind"] for e in recorder.entries] == ["b", "c"]
    assert recorder.of_kind("c")[0]["direction"] == "in"
    recorder.clear()
    assert recorder.entries == []


def test_configure_logging_levels(restore_logging):
    configure_logging("debug")
    assert restore_logging.level == logging.DEBUG
    assert logging.getLogger("websockets").level == logging.WARNING
    assert logging.getLogger("uvicorn.access").level == logging.WARNING


def test_configure_logging_silent(restore_logging):
    configure_logging("silent")
    assert logging.getLogger("sheetrelay").isEnabledFor(logging.CRITICAL) is False
