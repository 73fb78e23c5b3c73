"""Wire message model and constructors for the relay protocol."""

from __future__ import annotations

from enum import Enum
from typing import Any

import orjson
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from sheetrelay.contracts.common import utc_timestamp

# WebSocket close codes
CLOSE_NORMAL = 1000
CLOSE_POLICY = 1008
SERVER_FULL_REASON = "Server full"
CLIENT_DISCONNECT_REASON = "Client disconnecting"


class MessageFormatError(ValueError):
    """A JSON object whose fields do not fit the message schema."""


class MessageType(str, Enum):
    WELCOME = "welcome"
    PING = "ping"
    PONG = "pong"
    COMMAND = "command"
    COMMAND_ECHO = "command_echo"
    COMMAND_ACK = "command_ack"
    ERROR = "error"


class Message(BaseModel):
    """One JSON frame on the relay socket.

    ``type`` is kept as a plain string so that frames with an unrecognised
    type still parse and can be answered with an ``error`` message.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    type: str
    command: str | None = None
    params: dict[str, Any] | None = None
    # Opaque correlation token; echoed back unchanged, string or number.
    request_id: str | int | None = Field(default=None, alias="requestId")
    source: str | None = None
    timestamp: str = Field(default_factory=utc_timestamp)

    # Kind-specific fields
    message: str | None = None
    received_type: Any | None = Field(default=None, alias="receivedType")
    status: str | None = None
    broadcast_count: int | None = Field(default=None, alias="broadcastCount")
    session_id: str | None = Field(default=None, alias="sessionId")
    missing: list[str] | None = None
    result: Any | None = None
    error: str | None = None

    @property
    def kind(self) -> MessageType | None:
        try:
            return MessageType(self.type)
        except ValueError:
            return None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def encode(self) -> str:
        return orjson.dumps(self.to_dict()).decode()


def decode(raw: str | bytes) -> Message:
    """Parse a raw frame.

    Raises ValueError for anything that is not a JSON object, and
    MessageFormatError for an object with badly typed fields.
    """
    try:
        data = orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("Message must be a JSON object")
    if not isinstance(data.get("type"), str):
        # Still a protocol message; answered as an unknown type.
        data = {**data, "receivedType": data.get("type"), "type": ""}
    try:
        return Message.model_validate(data)
    except ValidationError as e:
        raise MessageFormatError(f"Invalid message: {e.error_count()} field error(s)") from e


def welcome(session_id: str) -> Message:
    return Message(
        type=MessageType.WELCOME.value,
        message="Connected to Spreadsheet WebSocket Server",
        session_id=session_id,
    )


def ping() -> Message:
    return Message(type=MessageType.PING.value)


def pong() -> Message:
    return Message(type=MessageType.PONG.value)


def command(
    name: str,
    params: dict[str, Any] | None = None,
    *,
    source: str | None = None,
    request_id: str | int | None = None,
) -> Message:
    return Message(
        type=MessageType.COMMAND.value,
        command=name,
        params=params or {},
        source=source,
        request_id=request_id,
    )


def command_ack(
    name: str | None,
    *,
    status: str = "sent",
    broadcast_count: int | None = None,
    request_id: str | int | None = None,
    result: Any | None = None,
    error: str | None = None,
) -> Message:
    return Message(
        type=MessageType.COMMAND_ACK.value,
        command=name,
        status=status,
        broadcast_count=broadcast_count,
        request_id=request_id,
        result=result,
        error=error,
    )


def error(message: str, **fields: Any) -> Message:
    return Message(type=MessageType.ERROR.value, message=message, **fields)
