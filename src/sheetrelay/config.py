"""Relay and client settings: defaults, sheetrelay.yaml, environment overrides."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from sheetrelay.contracts.common import RelayError

CONFIG_FILENAME = "sheetrelay.yaml"

LOG_LEVELS = ("debug", "info", "warning", "error", "silent")


class ConfigError(RelayError):
    """Raised when a config file or environment value is invalid."""


class RelaySettings(BaseModel):
    """Server-side settings for the relay and gateway."""

    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=0, le=65535)
    mcp_port: int = Field(default=8387, ge=0, le=65535)
    log_level: str = "info"
    max_connections: int = Field(default=100, ge=1)
    send_timeout: float = Field(default=5.0, gt=0)
    mirror: bool = True

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        value = value.lower()
        if value not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return value


class ClientSettings(BaseModel):
    """Settings for a transport session connecting to the relay."""

    url: str = "ws://localhost:8080"
    max_reconnect_attempts: int = Field(default=5, ge=0)
    reconnect_delay: float = Field(default=3.0, ge=0)


# env var -> settings field
RELAY_ENV = {
    "HOST": "host",
    "PORT": "port",
    "MCP_PORT": "mcp_port",
    "LOG_LEVEL": "log_level",
    "WEBSOCKET_MAX_CONNECTIONS": "max_connections",
    "SEND_TIMEOUT": "send_timeout",
}

CLIENT_ENV = {
    "SHEETRELAY_URL": "url",
}


def read_config_file(path: str | Path) -> dict[str, Any]:
    """Load a YAML mapping. An empty file yields {}."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return data


def _from_env(mapping: Mapping[str, str], env: Mapping[str, str]) -> dict[str, Any]:
    return {field: env[var] for var, field in mapping.items() if env.get(var) not in (None, "")}


def _drop_none(values: Mapping[str, Any] | None) -> dict[str, Any]:
    return {k: v for k, v in (values or {}).items() if v is not None}


def load_settings(
    config_path: str | Path | None = None,
    overrides: Mapping[str, Any] | None = None,
    env: Mapping[str, str] | None = None,
    cwd: str | Path | None = None,
) -> RelaySettings:
    """Build RelaySettings: defaults < YAML file < environment < overrides.

    Without ``config_path``, ``sheetrelay.yaml`` in ``cwd`` is used when present.
    """
    env = os.environ if env is None else env
    data: dict[str, Any] = {}
    if config_path is not None:
        data.update(read_config_file(config_path))
    else:
        default_path = Path(cwd or Path.cwd()) / CONFIG_FILENAME
        if default_path.exists():
            data.update(read_config_file(default_path))
    relay_section = data.pop("relay", None)
    if isinstance(relay_section, dict):
        data.update(relay_section)
    data.pop("client", None)
    data.update(_from_env(RELAY_ENV, env))
    data.update(_drop_none(overrides))
    try:
        return RelaySettings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(str(e)) from e


def load_client_settings(
    config_path: str | Path | None = None,
    overrides: Mapping[str, Any] | None = None,
    env: Mapping[str, str] | None = None,
) -> ClientSettings:
    """Build ClientSettings from the ``client`` section of a config file, env, and overrides."""
    env = os.environ if env is None else env
    data: dict[str, Any] = {}
    if config_path is not None:
        section = read_config_file(config_path).get("client") or {}
        if not isinstance(section, dict):
            raise ConfigError("'client' section must be a mapping")
        data.update(section)
    data.update(_from_env(CLIENT_ENV, env))
    data.update(_drop_none(overrides))
    try:
        return ClientSettings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(str(e)) from e
