"""Administrative HTTP gateway: one endpoint per registry command plus legacy routes."""

from __future__ import annotations

import logging
import re
from typing import Any, Awaitable, Callable

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from sheetrelay.contracts.common import MissingParamsError, UnknownCommandError
from sheetrelay.contracts.responses import (
    CommandResponse,
    HealthStatus,
    OperationInfo,
    OperationsCatalog,
    ReadResponse,
    RelayStatus,
    WebSocketHealth,
)
from sheetrelay.engine.catalog import GATEWAY_PREFIX, CommandDescriptor
from sheetrelay.server.broker import Broker

logger = logging.getLogger(__name__)

Endpoint = Callable[[Request], Awaitable[Any]]

_INT_RE = re.compile(r"^-?\d+$")

MIRROR_DISABLED = "Server-side sheet state is disabled (--no-mirror)"

# Query values that stay strings even when they look numeric.
TEXT_PARAMS = frozenset({"sheetName", "csv", "newLine", "delimiter", "option", "format"})


class LegacyRoute:
    """A pre-registry endpoint that maps its body onto a registry command."""

    def __init__(
        self,
        path: str,
        command: str,
        description: str,
        required: list[str],
        optional: dict[str, Any],
        build: Callable[[dict[str, Any]], dict[str, Any]],
    ) -> None:
        self.path = path
        self.command = command
        self.description = description
        self.required = required
        self.optional = optional
        self.build = build

    @property
    def endpoint(self) -> str:
        return f"{GATEWAY_PREFIX}/{self.path}"

    @property
    def labels(self) -> list[str]:
        return [*self.required, *(f"{name}?" for name in self.optional)]


LEGACY_ROUTES = [
    LegacyRoute(
        "set-cell", "setProcessedData", "Set cell value (legacy)",
        ["row", "col", "value"], {"sheetIndex": 0},
        lambda b: {"sheetIndex": b["sheetIndex"], "row": b["row"], "col": b["col"], "values": [[b["value"]]]},
    ),
    LegacyRoute(
        "set-formula", "setRawData", "Set cell formula (legacy)",
        ["row", "col", "formula"], {"sheetIndex": 0},
        lambda b: {"sheetIndex": b["sheetIndex"], "row": b["row"], "col": b["col"], "formulas": [[b["formula"]]]},
    ),
    LegacyRoute(
        "set-active-sheet", "setActiveSheetIndex", "Set active sheet (legacy)",
        ["sheetIndex"], {},
        lambda b: {"sheetIndex": b["sheetIndex"]},
    ),
    LegacyRoute(
        "clear-sheet", "clearSheets", "Clear sheet data (legacy)",
        [], {"sheetIndex": 0},
        lambda b: {"sheetIndex": b["sheetIndex"]},
    ),
]


def coerce_query(params: dict[str, str]) -> dict[str, Any]:
    """Integers in query strings become ints, except for free-text parameters."""
    return {
        key: int(value) if key not in TEXT_PARAMS and _INT_RE.match(value) else value
        for key, value in params.items()
    }


def missing_response(missing: list[str]) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": f"Missing required parameters: {', '.join(missing)}", "missing": missing},
    )


async def _json_body(request: Request) -> dict[str, Any]:
    body = await request.body()
    if not body:
        return {}
    try:
        data = await request.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def operations_catalog(descriptors: list[CommandDescriptor], *, reads: bool = True) -> OperationsCatalog:
    """Catalog of gateway operations. ``reads=False`` leaves out the GET endpoints."""
    operations = [
        OperationInfo(
            name=d.path,
            description=d.description,
            endpoint=d.endpoint,
            method=d.method,
            params=[p.label for p in d.params],
        )
        for d in descriptors
        if reads or d.mutating
    ]
    operations.extend(
        OperationInfo(
            name=route.path,
            description=route.description,
            endpoint=route.endpoint,
            method="POST",
            params=route.labels,
        )
        for route in LEGACY_ROUTES
    )
    return OperationsCatalog(operations=operations)


def health_status(broker: Broker) -> dict[str, Any]:
    return HealthStatus(
        websocket=WebSocketHealth(connected_clients=broker.connected_clients, server_running=True),
    ).to_dict()


def _mutation_endpoint(broker: Broker, descriptor: CommandDescriptor) -> Endpoint:
    async def endpoint(request: Request) -> Any:
        params = await _json_body(request)
        return await _submit(broker, descriptor.name, params)

    endpoint.__name__ = f"post_{descriptor.path.replace('-', '_')}"
    return endpoint


def _read_endpoint(broker: Broker, descriptor: CommandDescriptor) -> Endpoint:
    async def endpoint(request: Request) -> Any:
        if not broker.mirror:
            return JSONResponse(status_code=501, content={"error": MIRROR_DISABLED, "command": descriptor.name})
        params = coerce_query(dict(request.query_params))
        try:
            broker.validate(descriptor.name, params)
        except MissingParamsError as e:
            return missing_response(e.missing)
        result = broker.read(descriptor.name, params)
        return ReadResponse(
            success=result.success,
            command=descriptor.name,
            params=params,
            result=result.result,
            error=result.error,
        ).to_dict()

    endpoint.__name__ = f"get_{descriptor.path.replace('-', '_')}"
    return endpoint


def _legacy_endpoint(broker: Broker, route: LegacyRoute) -> Endpoint:
    async def endpoint(request: Request) -> Any:
        body = await _json_body(request)
        missing = [name for name in route.required if name not in body]
        if missing:
            return missing_response(missing)
        merged = {**route.optional, **{k: v for k, v in body.items() if v is not None or k in route.required}}
        return await _submit(broker, route.command, route.build(merged))

    endpoint.__name__ = f"legacy_{route.path.replace('-', '_')}"
    return endpoint


async def _submit(broker: Broker, command: str, params: dict[str, Any]) -> Any:
    try:
        count, outcome = await broker.submit(command, params, source="mcp")
    except MissingParamsError as e:
        return missing_response(e.missing)
    except UnknownCommandError as e:
        return JSONResponse(status_code=404, content={"error": str(e)})
    return CommandResponse(
        command=command,
        params=params,
        broadcast_count=count,
        error=outcome.error if outcome is not None and not outcome.success else None,
    ).to_dict()


def create_gateway_router(broker: Broker) -> APIRouter:
    """Build the /mcp/spreadsheet router from the broker's registry."""
    router = APIRouter(prefix=GATEWAY_PREFIX, tags=["gateway"])

    @router.get("/status")
    async def status() -> dict[str, Any]:
        return RelayStatus(connected_clients=broker.connected_clients).to_dict()

    @router.get("/operations")
    async def operations() -> dict[str, Any]:
        return operations_catalog(broker.registry.describe(), reads=broker.mirror).model_dump(mode="json")

    for descriptor in broker.registry.describe():
        if descriptor.mutating:
            router.add_api_route(f"/{descriptor.path}", _mutation_endpoint(broker, descriptor), methods=["POST"])
        else:
            router.add_api_route(f"/{descriptor.path}", _read_endpoint(broker, descriptor), methods=["GET"])

    for route in LEGACY_ROUTES:
        router.add_api_route(f"/{route.path}", _legacy_endpoint(broker, route), methods=["POST"])

    return router
