"""Timing, NDJSON traffic tracing, and in-memory message recording."""

from __future__ import annotations

import sys
import time
from typing import Any, TextIO

import orjson

from sheetrelay.contracts.common import utc_timestamp


class Timer:
    """Simple context-manager timer for measuring duration_ms."""

    def __init__(self) -> None:
        self.start: float = 0
        self.elapsed_ms: int = 0

    def __enter__(self) -> "Timer":
        self.start = time.perf_counter()
        return self

    def __exit__(self, *args: Any) -> None:
        self.elapsed_ms = int((time.perf_counter() - self.start) * 1000)


class NdjsonObserver:
    """Session observer that writes each record as one NDJSON line (stderr by default)."""

    def __init__(self, enabled: bool = False, stream: TextIO | None = None) -> None:
        self.enabled = enabled
        self.stream = stream

    def __call__(self, direction: str, kind: str, payload: Any) -> None:
        if not self.enabled:
            return
        stream = self.stream or sys.stderr
        line = {
            "direction": direction,
            "kind": kind,
            "timestamp": utc_timestamp(),
            "data": payload,
        }
        stream.write(orjson.dumps(line, default=str).decode() + "\n")
        stream.flush()


class TrafficRecorder:
    """Session observer that keeps every record in memory, newest last."""

    def __init__(self, limit: int | None = None) -> None:
        self.entries: list[dict[str, Any]] = []
        self.limit = limit
        self._start = time.perf_counter()

    def __call__(self, direction: str, kind: str, payload: Any) -> None:
        self.record(direction, kind, payload)

    def record(self, direction: str, kind: str, payload: Any) -> None:
        elapsed = int((time.perf_counter() - self._start) * 1000)
        self.entries.append({
            "direction": direction,
            "kind": kind,
            "timestamp_ms": elapsed,
            "data": payload,
        })
        if self.limit is not None and len(self.entries) > self.limit:
            del self.entries[: len(self.entries) - self.limit]

    def of_kind(self, kind: str) -> list[dict[str, Any]]:
        return [e for e in self.entries if e["kind"] == kind]

    def clear(self) -> None:
        self.entries.clear()
