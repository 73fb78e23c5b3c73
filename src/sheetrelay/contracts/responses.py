"""Gateway response models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from sheetrelay.contracts.common import utc_timestamp


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class CommandResponse(_CamelModel):
    """Returned by every mutating gateway endpoint."""

    success: bool = True
    command: str
    params: dict[str, Any] = Field(default_factory=dict)
    broadcast_count: int = Field(default=0, alias="broadcastCount")
    error: str | None = None
    timestamp: str = Field(default_factory=utc_timestamp)


class ReadResponse(_CamelModel):
    """Returned by every read gateway endpoint."""

    success: bool = True
    command: str
    params: dict[str, Any] = Field(default_factory=dict)
    result: Any = None
    error: str | None = None
    timestamp: str = Field(default_factory=utc_timestamp)


class OperationInfo(BaseModel):
    """One entry of the operations catalog."""

    name: str
    description: str = ""
    endpoint: str
    method: str
    params: list[str] = Field(default_factory=list)


class OperationsCatalog(BaseModel):
    operations: list[OperationInfo] = Field(default_factory=list)
    timestamp: str = Field(default_factory=utc_timestamp)


class WebSocketHealth(_CamelModel):
    connected_clients: int = Field(default=0, alias="connectedClients")
    server_running: bool = Field(default=True, alias="serverRunning")


class HealthStatus(_CamelModel):
    status: str = "healthy"
    websocket: WebSocketHealth = Field(default_factory=WebSocketHealth)
    timestamp: str = Field(default_factory=utc_timestamp)


class RelayStatus(_CamelModel):
    status: str = "active"
    connected_clients: int = Field(default=0, alias="connectedClients")
    timestamp: str = Field(default_factory=utc_timestamp)
