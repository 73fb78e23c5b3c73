"""Typer CLI application: run the relay and talk to it from the command line."""

from __future__ import annotations

import asyncio
import sys
from typing import Annotated, Any, Optional

import orjson
import typer

import sheetrelay
from sheetrelay.client.peer import SheetPeer
from sheetrelay.client.session import SessionState, TransportSession
from sheetrelay.config import ConfigError, load_client_settings, load_settings
from sheetrelay.contracts import messages
from sheetrelay.contracts.common import SessionNotOpenError
from sheetrelay.contracts.messages import MessageType
from sheetrelay.engine.dispatcher import (
    error_envelope,
    exit_code_for,
    print_response,
    success_envelope,
)
from sheetrelay.engine.registry import CommandRegistry
from sheetrelay.observe.events import NdjsonObserver, Timer
from sheetrelay.observe.logconfig import configure_logging
from sheetrelay.server.gateway import operations_catalog

# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

_MAIN_HELP = """\
Relay spreadsheet commands between editors over WebSocket.

**Typical use:**

1. `sheetrelay serve`  — start the relay (ws://0.0.0.0:8080) and the HTTP gateway (:8387)
2. `sheetrelay listen --ack`  — join as a peer with a local in-memory sheet
3. `sheetrelay send setProcessedData --params '{"startRow":0,"startCol":0,"values":[[1]]}'`

**Every command** prints a JSON `ResponseEnvelope` (`listen` prints inbound messages first):
`{"ok": bool, "command": "...", "result": ..., "errors": [...], "metrics": {"duration_ms": N}}`

**Exit codes:** 0=success, 10=validation, 30=command rejected, 40=timeout, 50=io, 90=internal
"""


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(sheetrelay.__version__)
        raise typer.Exit()


app = typer.Typer(
    name="sheetrelay",
    help=_MAIN_HELP,
    no_args_is_help=True,
    rich_markup_mode="markdown",
)


@app.callback(invoke_without_command=True)
def main_callback(
    version: Annotated[
        bool, typer.Option("--version", "-V", help="Print version and exit.", is_eager=True)
    ] = False,
) -> None:
    if version:
        _version_callback(True)


# Type aliases for common options
UrlOpt = Annotated[Optional[str], typer.Option("--url", "-u", help="Relay WebSocket URL (default: $SHEETRELAY_URL or ws://localhost:8080)")]
ConfigOpt = Annotated[Optional[str], typer.Option("--config", "-c", help="Path to a sheetrelay.yaml config file")]
TimeoutOpt = Annotated[float, typer.Option("--timeout", "-t", help="Seconds to wait for a reply")]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _emit(envelope, code=None):
    print_response(envelope)
    raise typer.Exit(code if code is not None else exit_code_for(envelope))


def _client_session(command: str, url: str | None, config: str | None, *, reconnect: bool = False) -> TransportSession:
    """Build a TransportSession from settings, or emit a config error envelope."""
    try:
        settings = load_client_settings(config, overrides={"url": url})
    except ConfigError as e:
        _emit(error_envelope(command, "ERR_CONFIG_INVALID", str(e)))
    return TransportSession(
        settings.url,
        max_reconnect_attempts=settings.max_reconnect_attempts if reconnect else 0,
        reconnect_delay=settings.reconnect_delay,
    )


def _parse_params(command: str, raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        params = orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        _emit(error_envelope(command, "ERR_INVALID_ARGUMENT", f"--params is not valid JSON: {e}"))
    if not isinstance(params, dict):
        _emit(error_envelope(command, "ERR_INVALID_ARGUMENT", "--params must be a JSON object"))
    return params


# ---------------------------------------------------------------------------
# sheetrelay version
# ---------------------------------------------------------------------------
@app.command()
def version():
    """Print the sheetrelay version.

    Example: `sheetrelay version`
    """
    env = success_envelope("version", {"version": sheetrelay.__version__})
    _emit(env)


# ---------------------------------------------------------------------------
# sheetrelay operations
# ---------------------------------------------------------------------------
@app.command()
def operations(
    group: Annotated[Optional[str], typer.Option("--group", "-g", help="Only commands of one resource group (sheet, range, style, chart, row/column)")] = None,
):
    """List every relayable command with its gateway endpoint and parameters.

    Optional parameters are suffixed with `?`.

    Example: `sheetrelay operations --group range`
    """
    with Timer() as t:
        descriptors = CommandRegistry().describe()
        if group:
            descriptors = [d for d in descriptors if d.group == group]
        catalog = operations_catalog(descriptors)
        if group:
            catalog.operations = [op for op in catalog.operations if not op.description.endswith("(legacy)")]
    env = success_envelope("operations", catalog.model_dump(mode="json"), duration_ms=t.elapsed_ms)
    _emit(env)


# ---------------------------------------------------------------------------
# sheetrelay serve
# ---------------------------------------------------------------------------
@app.command("serve")
def serve_cmd(
    host: Annotated[Optional[str], typer.Option("--host", help="Interface to bind")] = None,
    port: Annotated[Optional[int], typer.Option("--port", "-p", help="WebSocket relay port (env PORT)")] = None,
    mcp_port: Annotated[Optional[int], typer.Option("--mcp-port", help="HTTP gateway port (env MCP_PORT)")] = None,
    max_connections: Annotated[Optional[int], typer.Option("--max-connections", help="Session limit (env WEBSOCKET_MAX_CONNECTIONS)")] = None,
    log_level: Annotated[Optional[str], typer.Option("--log-level", help="debug, info, warning, error or silent (env LOG_LEVEL)")] = None,
    config: ConfigOpt = None,
    no_mirror: Annotated[bool, typer.Option("--no-mirror", help="Relay only; do not keep an authoritative sheet")] = False,
):
    """Run the WebSocket relay and the HTTP gateway until interrupted.

    Settings come from defaults, then `sheetrelay.yaml` (or `--config`), then
    environment variables, then these options.

    Example: `sheetrelay serve --port 8080 --mcp-port 8387`
    """
    from sheetrelay.server.app import BindError, serve

    overrides = {
        "host": host,
        "port": port,
        "mcp_port": mcp_port,
        "max_connections": max_connections,
        "log_level": log_level,
        "mirror": False if no_mirror else None,
    }
    try:
        settings = load_settings(config, overrides=overrides)
    except ConfigError as e:
        _emit(error_envelope("serve", "ERR_CONFIG_INVALID", str(e)))

    configure_logging(settings.log_level)
    try:
        asyncio.run(serve(settings))
    except BindError as e:
        _emit(error_envelope(
            "serve", "ERR_BIND_FAILED", str(e),
            details={"host": e.host, "port": e.port},
        ))
    except KeyboardInterrupt:
        pass


# ---------------------------------------------------------------------------
# sheetrelay send
# ---------------------------------------------------------------------------
@app.command("send")
def send_cmd(
    command: Annotated[str, typer.Argument(help="Command name, e.g. setProcessedData (see `sheetrelay operations`)")],
    params: Annotated[Optional[str], typer.Option("--params", "-P", help="Command parameters as a JSON object")] = None,
    url: UrlOpt = None,
    config: ConfigOpt = None,
    timeout: TimeoutOpt = 10.0,
    source: Annotated[str, typer.Option("--source", help="Origin tag carried on the relayed message")] = "cli",
):
    """Send one command through the relay and print its acknowledgment.

    The relay validates the command, forwards it to every other session, and
    replies with `command_ack{command, status, broadcastCount}`.

    Example: `sheetrelay send setRawData -P '{"startRow":2,"startCol":3,"formulas":[["=SUM(A1:A2)"]]}'`
    """
    parsed = _parse_params("send", params)
    session = _client_session("send", url, config)

    async def run() -> Any:
        if not await session.connect():
            return error_envelope("send", "ERR_CONNECT_FAILED", f"Cannot connect to {session.url}")
        try:
            reply = await session.request(
                messages.command(command, parsed, source=source), timeout=timeout,
            )
        except asyncio.TimeoutError:
            return error_envelope("send", "ERR_TIMEOUT", f"No acknowledgment within {timeout}s")
        except SessionNotOpenError as e:
            return error_envelope("send", "ERR_CONNECT_FAILED", str(e))
        finally:
            await session.disconnect()
        if reply.kind == MessageType.ERROR:
            return error_envelope(
                "send", "ERR_COMMAND_REJECTED", reply.message or "Command rejected",
                details=reply.to_dict(),
            )
        return reply.to_dict()

    with Timer() as t:
        outcome = asyncio.run(run())
    if isinstance(outcome, dict):
        outcome = success_envelope("send", outcome, duration_ms=t.elapsed_ms)
    else:
        outcome.metrics.duration_ms = t.elapsed_ms
    _emit(outcome)


# ---------------------------------------------------------------------------
# sheetrelay ping
# ---------------------------------------------------------------------------
@app.command("ping")
def ping_cmd(
    url: UrlOpt = None,
    config: ConfigOpt = None,
    timeout: TimeoutOpt = 10.0,
):
    """Measure a ping/pong round trip to the relay.

    Example: `sheetrelay ping --url ws://localhost:8080`
    """
    session = _client_session("ping", url, config)

    async def run() -> Any:
        if not await session.connect():
            return error_envelope("ping", "ERR_CONNECT_FAILED", f"Cannot connect to {session.url}")
        try:
            with Timer() as rtt:
                await session.ping(timeout=timeout)
        except asyncio.TimeoutError:
            return error_envelope("ping", "ERR_TIMEOUT", f"No pong within {timeout}s")
        except SessionNotOpenError as e:
            return error_envelope("ping", "ERR_CONNECT_FAILED", str(e))
        finally:
            await session.disconnect()
        return {"url": session.url, "sessionId": session.session_id, "rtt_ms": rtt.elapsed_ms}

    with Timer() as t:
        outcome = asyncio.run(run())
    if isinstance(outcome, dict):
        outcome = success_envelope("ping", outcome, duration_ms=t.elapsed_ms)
    _emit(outcome)


# ---------------------------------------------------------------------------
# sheetrelay listen
# ---------------------------------------------------------------------------
@app.command("listen")
def listen_cmd(
    url: UrlOpt = None,
    config: ConfigOpt = None,
    count: Annotated[Optional[int], typer.Option("--count", "-n", help="Stop after this many inbound messages")] = None,
    ack: Annotated[bool, typer.Option("--ack", help="Reply to each relayed command with a command_ack")] = False,
    trace: Annotated[bool, typer.Option("--trace", help="Write session lifecycle and traffic as NDJSON to stderr")] = False,
):
    """Join the relay as a peer with a local in-memory sheet.

    Relayed commands are applied locally; each inbound message is printed as
    one JSON line on stdout. A summary envelope is printed on exit. The
    session reconnects on abnormal close.

    Example: `sheetrelay listen --count 10 --ack`
    """
    session = _client_session("listen", url, config, reconnect=True)
    peer = SheetPeer(session, acknowledge=ack)
    if trace:
        session.add_observer(NdjsonObserver(enabled=True))

    received = 0
    done = asyncio.Event()

    def print_inbound(direction: str, kind: str, payload: Any) -> None:
        nonlocal received
        if direction != "in":
            return
        sys.stdout.write(orjson.dumps(payload, default=str).decode() + "\n")
        sys.stdout.flush()
        received += 1
        if count is not None and received >= count:
            done.set()

    session.add_observer(print_inbound)

    async def run() -> SessionState:
        await peer.start()
        closed = asyncio.create_task(session.wait_closed())
        limit = asyncio.create_task(done.wait())
        try:
            await asyncio.wait({closed, limit}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closed.cancel()
            limit.cancel()
            state = session.state
            await peer.stop()
        return state

    with Timer() as t:
        try:
            final_state = asyncio.run(run())
        except KeyboardInterrupt:
            final_state = SessionState.CLOSED

    if final_state == SessionState.GAVE_UP:
        _emit(error_envelope(
            "listen", "ERR_CONNECT_FAILED", f"Gave up connecting to {session.url}",
            details={"received": received, **peer.stats()}, duration_ms=t.elapsed_ms,
        ))
    _emit(success_envelope(
        "listen", {"received": received, **peer.stats()}, duration_ms=t.elapsed_ms,
    ))


# ---------------------------------------------------------------------------
# Entrypoint (for `python -m sheetrelay`)
# ---------------------------------------------------------------------------
def main() -> None:
    try:
        app()
    except SystemExit:
        raise
    except Exception as exc:
        # Unhandled errors still produce a JSON envelope.
        env = error_envelope(
            "unknown",
            "ERR_INTERNAL",
            str(exc),
        )
        print_response(env)
        raise SystemExit(90) from exc


if __name__ == "__main__":
    main()
