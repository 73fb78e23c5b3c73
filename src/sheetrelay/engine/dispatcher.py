"""CLI response envelope helpers and exit codes."""

from __future__ import annotations

import sys
from typing import Any

import orjson

from sheetrelay.contracts.common import ErrorDetail, Metrics, ResponseEnvelope

# Exit code mapping
EXIT_CODES = {
    "success": 0,
    "validation": 10,
    "command": 30,
    "timeout": 40,
    "io": 50,
    "internal": 90,
}

VALIDATION_CODE_MARKERS = (
    "INVALID_ARGUMENT",
    "CONFIG_INVALID",
    "MISSING_",
    "UNKNOWN_COMMAND",
    "USAGE",
)

IO_CODE_MARKERS = ("CONNECT", "BIND", "TRANSPORT")


def success_envelope(command: str, result: Any, *, duration_ms: int = 0) -> ResponseEnvelope:
    return ResponseEnvelope(
        ok=True,
        command=command,
        result=result,
        metrics=Metrics(duration_ms=duration_ms),
    )


def error_envelope(
    command: str,
    code: str,
    message: str,
    *,
    details: dict | None = None,
    duration_ms: int = 0,
) -> ResponseEnvelope:
    return ResponseEnvelope(
        ok=False,
        command=command,
        errors=[ErrorDetail(code=code, message=message, details=details)],
        metrics=Metrics(duration_ms=duration_ms),
    )


def output_json(envelope: ResponseEnvelope) -> str:
    """Serialize envelope to JSON string using orjson."""
    data = envelope.model_dump(mode="json")
    return orjson.dumps(data, option=orjson.OPT_INDENT_2).decode()


def print_response(envelope: ResponseEnvelope) -> None:
    """Print response as JSON to stdout."""
    sys.stdout.write(output_json(envelope) + "\n")


def exit_code_for(envelope: ResponseEnvelope) -> int:
    """Determine exit code from envelope errors."""
    if envelope.ok:
        return 0
    if not envelope.errors:
        return EXIT_CODES["internal"]
    code = envelope.errors[0].code.upper()
    if "TIMEOUT" in code:
        return EXIT_CODES["timeout"]
    if any(marker in code for marker in VALIDATION_CODE_MARKERS):
        return EXIT_CODES["validation"]
    if any(marker in code for marker in IO_CODE_MARKERS):
        return EXIT_CODES["io"]
    if "COMMAND" in code:
        return EXIT_CODES["command"]
    return EXIT_CODES["internal"]
