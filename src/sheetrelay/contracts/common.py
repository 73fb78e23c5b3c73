"""Common Pydantic models: response envelope, command results, errors."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field


def utc_timestamp() -> str:
    """ISO-8601 timestamp used on every wire message and response."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class RelayError(Exception):
    """Base class for relay and command errors."""


class UnknownCommandError(RelayError):
    """Raised when a command name is not in the registry."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown command: {name}")
        self.name = name


class MissingParamsError(RelayError):
    """Raised when required command parameters are absent."""

    def __init__(self, command: str, missing: list[str]) -> None:
        super().__init__(f"Missing required parameters: {', '.join(missing)}")
        self.command = command
        self.missing = missing


class ChannelFullError(RelayError):
    """Raised by a non-blocking publish on a full event channel."""


class SessionNotOpenError(RelayError):
    """Raised when a transport session is used before it is open."""


class ErrorDetail(BaseModel):
    """Structured error."""

    code: str
    message: str
    details: dict[str, Any] | None = None


class Metrics(BaseModel):
    """Execution metrics."""

    duration_ms: int = 0


class ResponseEnvelope(BaseModel):
    """Standard response envelope printed by every CLI command."""

    ok: bool = True
    command: str = ""
    result: Any = None
    errors: list[ErrorDetail] = Field(default_factory=list)
    metrics: Metrics = Field(default_factory=Metrics)


class CommandResult(BaseModel):
    """Outcome of executing one command against a sheet."""

    success: bool
    command: str
    result: Any = None
    error: str | None = None
    timestamp: str = Field(default_factory=utc_timestamp)

    def to_wire(self) -> dict[str, Any]:
        data = self.model_dump(mode="json")
        if self.success:
            data.pop("error")
        else:
            data.pop("result")
        return data
