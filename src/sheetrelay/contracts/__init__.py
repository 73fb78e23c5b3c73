"""Pydantic models for wire messages, change events, and gateway responses."""

from sheetrelay.contracts.common import (
    ChannelFullError,
    CommandResult,
    ErrorDetail,
    Metrics,
    MissingParamsError,
    RelayError,
    ResponseEnvelope,
    SessionNotOpenError,
    UnknownCommandError,
)
from sheetrelay.contracts.events import (
    ChangeEvent,
    ChangeKind,
    RangeSpec,
    SyncIntent,
)
from sheetrelay.contracts.messages import Message, MessageType
from sheetrelay.contracts.responses import (
    CommandResponse,
    HealthStatus,
    OperationInfo,
    OperationsCatalog,
    ReadResponse,
    RelayStatus,
)

__all__ = [
    "ChangeEvent",
    "ChangeKind",
    "ChannelFullError",
    "CommandResponse",
    "CommandResult",
    "ErrorDetail",
    "HealthStatus",
    "Message",
    "MessageType",
    "Metrics",
    "MissingParamsError",
    "OperationInfo",
    "OperationsCatalog",
    "RangeSpec",
    "ReadResponse",
    "RelayError",
    "RelayStatus",
    "ResponseEnvelope",
    "SessionNotOpenError",
    "SyncIntent",
    "UnknownCommandError",
]
