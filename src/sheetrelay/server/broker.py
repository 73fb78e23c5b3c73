"""Relay broker: live session set, message dispatch, and command fan-out."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Iterator, Protocol

from sheetrelay.contracts import messages
from sheetrelay.contracts.common import CommandResult, MissingParamsError, UnknownCommandError
from sheetrelay.contracts.messages import (
    CLOSE_POLICY,
    SERVER_FULL_REASON,
    Message,
    MessageType,
)
from sheetrelay.engine.registry import CommandRegistry, bind_params

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """What the broker needs from a server-side socket (Starlette's WebSocket fits)."""

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


class Session:
    """One accepted connection. The id is assigned here, never by the client."""

    def __init__(self, transport: Transport) -> None:
        self.id = uuid.uuid4().hex
        self.transport = transport
        self.alive = True
        self.connected_at = datetime.now(timezone.utc)
        self._send_lock = asyncio.Lock()

    async def send_raw(self, payload: str) -> None:
        async with self._send_lock:
            await self.transport.send_text(payload)

    async def send(self, message: Message) -> None:
        await self.send_raw(message.encode())

    def __repr__(self) -> str:
        return f"Session({self.id[:8]}, alive={self.alive})"


class ClientSet:
    """Live sessions. Callers hold ``lock`` around every add, remove, and deliver."""

    def __init__(self, max_connections: int = 100, send_timeout: float = 5.0) -> None:
        self.max_connections = max_connections
        self.send_timeout = send_timeout
        self.lock = asyncio.Lock()
        self._sessions: dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))

    def __contains__(self, session: object) -> bool:
        return isinstance(session, Session) and session.id in self._sessions

    @property
    def full(self) -> bool:
        return len(self._sessions) >= self.max_connections

    def add(self, session: Session) -> None:
        self._sessions[session.id] = session

    def remove(self, session: Session) -> None:
        session.alive = False
        self._sessions.pop(session.id, None)

    async def _deliver_one(self, session: Session, payload: str) -> bool:
        if not session.alive:
            return False
        try:
            await asyncio.wait_for(session.send_raw(payload), timeout=self.send_timeout)
        except asyncio.TimeoutError:
            logger.warning("Send to %s timed out after %.1fs; dropping", session, self.send_timeout)
            return False
        except Exception as e:
            logger.warning("Send to %s failed: %s; dropping", session, e)
            return False
        return True

    async def deliver(self, message: Message, exclude: Session | None = None) -> int:
        """Send to every live session except ``exclude``; drop the ones that fail."""
        payload = message.encode()
        targets = [s for s in self if s is not exclude]
        if not targets:
            return 0
        results = await asyncio.gather(*(self._deliver_one(s, payload) for s in targets))
        for session, ok in zip(targets, results):
            if not ok:
                self.remove(session)
        return sum(results)


class Broker:
    """Accepts sessions and relays commands between them.

    With ``mirror`` enabled the broker applies every accepted mutating command
    to its own SheetContext before fan-out, so gateway reads see real state.
    """

    def __init__(
        self,
        max_connections: int = 100,
        send_timeout: float = 5.0,
        *,
        registry: CommandRegistry | None = None,
        mirror: bool = True,
    ) -> None:
        self.clients = ClientSet(max_connections, send_timeout)
        self.registry = registry or CommandRegistry()
        self.mirror = mirror
        self.started_at = datetime.now(timezone.utc)

    @property
    def connected_clients(self) -> int:
        return len(self.clients)

    # ------------------------------------------------------------------
    # session lifecycle
    # ------------------------------------------------------------------
    async def accept(self, transport: Transport) -> Session | None:
        """Register an already-accepted transport. Returns None when refused for capacity."""
        session: Session | None = None
        async with self.clients.lock:
            if not self.clients.full:
                session = Session(transport)
                self.clients.add(session)
        if session is None:
            logger.warning("Refusing connection: %d/%d clients", len(self.clients), self.clients.max_connections)
            await transport.close(code=CLOSE_POLICY, reason=SERVER_FULL_REASON)
            return None
        logger.info("Client connected: %s (%d total)", session.id, len(self.clients))
        await self._reply(session, messages.welcome(session.id))
        return session

    async def release(self, session: Session) -> None:
        async with self.clients.lock:
            self.clients.remove(session)
        logger.info("Client disconnected: %s (%d total)", session.id, len(self.clients))

    async def _reply(self, session: Session, message: Message) -> bool:
        try:
            await session.send(message)
        except Exception as e:
            logger.warning("Reply to %s failed: %s", session, e)
            async with self.clients.lock:
                self.clients.remove(session)
            return False
        return True

    # ------------------------------------------------------------------
    # fan-out
    # ------------------------------------------------------------------
    async def broadcast(self, message: Message, exclude: Session | None = None) -> int:
        """Deliver to every open session but ``exclude``. Returns the delivery count."""
        async with self.clients.lock:
            count = await self.clients.deliver(message, exclude)
        logger.debug("Broadcast %s %s to %d client(s)", message.type, message.command or "", count)
        return count

    # ------------------------------------------------------------------
    # commands
    # ------------------------------------------------------------------
    def validate(self, command: str | None, params: dict[str, Any] | None) -> None:
        """Raise UnknownCommandError or MissingParamsError for a bad command."""
        if not command:
            raise UnknownCommandError(str(command))
        bind_params(self.registry.get(command), params or {})

    def apply(self, command: str, params: dict[str, Any] | None) -> CommandResult | None:
        """Apply a mutating command to the mirror. Failures are logged, never raised."""
        if not self.mirror or not self.registry.is_mutating(command):
            return None
        result = self.registry.execute(command, params)
        if not result.success:
            logger.warning("Mirror rejected %s: %s", command, result.error)
        return result

    def read(self, command: str, params: dict[str, Any] | None = None) -> CommandResult:
        return self.registry.execute(command, params)

    async def submit(
        self,
        command: str,
        params: dict[str, Any] | None = None,
        source: str = "mcp",
    ) -> tuple[int, CommandResult | None]:
        """Validate, mirror, and broadcast a command to every session.

        Returns (broadcast count, mirror result). Raises on validation failure,
        in which case nothing is broadcast.
        """
        params = params or {}
        self.validate(command, params)
        outcome = self.apply(command, params)
        count = await self.broadcast(messages.command(command, params, source=source))
        return count, outcome

    # ------------------------------------------------------------------
    # inbound messages
    # ------------------------------------------------------------------
    async def handle(self, session: Session, raw: str | bytes) -> None:
        try:
            msg = messages.decode(raw)
        except messages.MessageFormatError as e:
            logger.warning("Malformed message from %s: %s", session, e)
            await self._reply(session, messages.error("Invalid message format"))
            return
        except ValueError:
            logger.warning("Invalid JSON from %s", session)
            await self._reply(session, messages.error("Invalid JSON format"))
            return

        kind = msg.kind
        if kind == MessageType.PING:
            await self._reply(session, messages.pong())
        elif kind == MessageType.COMMAND_ECHO:
            await self._reply(session, messages.command(
                msg.command or "", msg.params, request_id=msg.request_id,
            ))
        elif kind == MessageType.COMMAND:
            await self._relay(session, msg)
        elif kind == MessageType.COMMAND_ACK:
            logger.info(
                "Ack from %s: %s status=%s", session, msg.command, msg.status,
            )
        else:
            received = msg.received_type if msg.type == "" else msg.type
            await self._reply(session, messages.error("Unknown message type", received_type=received))

    async def _relay(self, session: Session, msg: Message) -> None:
        try:
            self.validate(msg.command, msg.params)
        except UnknownCommandError:
            await self._reply(session, messages.error(
                "Unknown command", command=msg.command, request_id=msg.request_id,
            ))
            return
        except MissingParamsError as e:
            await self._reply(session, messages.error(
                "Missing required parameters",
                command=msg.command, missing=e.missing, request_id=msg.request_id,
            ))
            return

        self.apply(msg.command, msg.params)
        count = await self.broadcast(msg, exclude=session)
        await self._reply(session, messages.command_ack(
            msg.command, broadcast_count=count, request_id=msg.request_id,
        ))

    def stats(self) -> dict[str, Any]:
        return {
            "connectedClients": len(self.clients),
            "maxConnections": self.clients.max_connections,
            "mirror": self.mirror,
            "startedAt": self.started_at.isoformat(),
        }
