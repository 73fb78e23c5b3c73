"""Transport session: one logical client connection to the relay.

The session owns the reconnect state machine. An abnormal close schedules a
reconnect after a fixed delay until ``max_reconnect_attempts`` is exhausted;
a normal close (1000) or an explicit ``disconnect()`` never reconnects.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from enum import Enum
from typing import Any, Awaitable, Callable

import websockets
from websockets.exceptions import ConnectionClosed

from sheetrelay.contracts import messages
from sheetrelay.contracts.common import SessionNotOpenError
from sheetrelay.contracts.messages import (
    CLIENT_DISCONNECT_REASON,
    CLOSE_NORMAL,
    Message,
    MessageType,
)

logger = logging.getLogger(__name__)

CLOSE_ABNORMAL = 1006

Observer = Callable[[str, str, Any], None]
Connector = Callable[[str], Awaitable[Any]]
MessageHandler = Callable[[Message], Any]


class SessionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    GAVE_UP = "gave_up"


async def default_connector(url: str) -> Any:
    return await websockets.connect(url)


class TransportSession:
    def __init__(
        self,
        url: str,
        *,
        max_reconnect_attempts: int = 5,
        reconnect_delay: float = 3.0,
        connector: Connector | None = None,
        on_message: MessageHandler | None = None,
    ) -> None:
        self.url = url
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_delay = reconnect_delay
        self.on_message = on_message
        self.state = SessionState.IDLE
        self.retries = 0
        self.session_id: str | None = None
        self.last_close_code: int | None = None
        self._connector = connector or default_connector
        self._conn: Any = None
        self._reader: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._closing = False
        self._observers: list[Observer] = []
        self._waiters: list[tuple[Callable[[Message], bool], asyncio.Future]] = []
        self._opened = asyncio.Event()
        self._finished = asyncio.Event()

    # ------------------------------------------------------------------
    # observers
    # ------------------------------------------------------------------
    def add_observer(self, observer: Observer) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: Observer) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def _notify(self, direction: str, kind: str, payload: Any = None) -> None:
        for observer in list(self._observers):
            try:
                observer(direction, kind, payload)
            except Exception as e:
                logger.warning("Observer %r failed: %s", observer, e)

    def _set_state(self, state: SessionState, **info: Any) -> None:
        self.state = state
        if state == SessionState.OPEN:
            self._opened.set()
            self._finished.clear()
        else:
            self._opened.clear()
        if state in (SessionState.CLOSED, SessionState.GAVE_UP):
            self._finished.set()
        self._notify("system", state.value, {"url": self.url, "retries": self.retries, **info})

    @property
    def is_open(self) -> bool:
        return self.state == SessionState.OPEN and self._conn is not None

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    async def connect(self) -> bool:
        """Open the transport. Returns False if the attempt failed (a reconnect may follow)."""
        if self.is_open:
            return True
        self._closing = False
        self._finished.clear()
        return await self._open()

    async def _open(self) -> bool:
        self._set_state(SessionState.CONNECTING)
        try:
            conn = await self._connector(self.url)
        except Exception as e:
            logger.warning("Connect to %s failed: %s", self.url, e)
            self._notify("system", "connect_failed", {"url": self.url, "error": str(e)})
            self._on_abnormal_close(CLOSE_ABNORMAL, str(e))
            return False
        if self._closing:
            await conn.close(code=CLOSE_NORMAL, reason=CLIENT_DISCONNECT_REASON)
            return False
        self._conn = conn
        self.retries = 0
        self._set_state(SessionState.OPEN)
        logger.info("Connected to %s", self.url)
        self._reader = asyncio.create_task(self._read_loop(conn))
        return True

    async def _read_loop(self, conn: Any) -> None:
        code, reason = CLOSE_ABNORMAL, ""
        try:
            while True:
                raw = await conn.recv()
                await self._dispatch(raw)
        except ConnectionClosed as e:
            if e.rcvd is not None:
                code, reason = e.rcvd.code, e.rcvd.reason
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Receive from %s failed: %s", self.url, e)
            reason = str(e)

        if self._conn is conn:
            self._conn = None
        self.last_close_code = code
        self._fail_waiters(f"connection closed ({code})")
        if self._closing:
            return
        if code == CLOSE_NORMAL:
            logger.info("Connection to %s closed normally", self.url)
            self._set_state(SessionState.CLOSED, code=code, reason=reason)
            return
        self._on_abnormal_close(code, reason)

    def _on_abnormal_close(self, code: int, reason: str) -> None:
        self.last_close_code = code
        if self._closing:
            return
        if self.retries < self.max_reconnect_attempts:
            self.retries += 1
            logger.info(
                "Reconnecting to %s in %.1fs (attempt %d/%d)",
                self.url, self.reconnect_delay, self.retries, self.max_reconnect_attempts,
            )
            self._set_state(SessionState.CONNECTING, code=code, reason=reason)
            self._reconnect_task = asyncio.create_task(self._reconnect_later())
        else:
            logger.warning("Giving up on %s after %d attempts", self.url, self.retries)
            self._set_state(SessionState.GAVE_UP, code=code, reason=reason)

    async def _reconnect_later(self) -> None:
        await asyncio.sleep(self.reconnect_delay)
        if not self._closing:
            await self._open()

    async def disconnect(self) -> None:
        """Close normally and cancel any pending reconnect. Nothing reconnects afterwards."""
        self._closing = True
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        conn, self._conn = self._conn, None
        if conn is not None:
            try:
                await conn.close(code=CLOSE_NORMAL, reason=CLIENT_DISCONNECT_REASON)
            except Exception as e:
                logger.warning("Close of %s failed: %s", self.url, e)
        reader, self._reader = self._reader, None
        if reader is not None and reader is not asyncio.current_task():
            if not reader.done():
                reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        self.retries = 0
        self._fail_waiters("session disconnected")
        self._set_state(SessionState.CLOSED, code=CLOSE_NORMAL, reason=CLIENT_DISCONNECT_REASON)

    async def wait_open(self, timeout: float | None = None) -> bool:
        """Wait until the session is open, or it gives up. False on timeout or give-up."""
        opened = asyncio.create_task(self._opened.wait())
        finished = asyncio.create_task(self._finished.wait())
        try:
            await asyncio.wait({opened, finished}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            opened.cancel()
            finished.cancel()
        return self.is_open

    async def wait_closed(self) -> SessionState:
        await self._finished.wait()
        return self.state

    # ------------------------------------------------------------------
    # messages
    # ------------------------------------------------------------------
    async def send(self, message: Message | dict[str, Any]) -> bool:
        """Send one message. Returns False, never raises, when not open or on write failure."""
        if isinstance(message, dict):
            message = Message.model_validate(message)
        if not self.is_open:
            logger.warning("Not connected; dropping %s message", message.type)
            self._notify("system", "send_dropped", message.to_dict())
            return False
        try:
            await self._conn.send(message.encode())
        except Exception as e:
            logger.warning("Send to %s failed: %s", self.url, e)
            self._notify("system", "send_failed", {"error": str(e), "message": message.to_dict()})
            return False
        self._notify("out", message.type, message.to_dict())
        return True

    async def request(
        self,
        message: Message,
        predicate: Callable[[Message], bool] | None = None,
        timeout: float = 10.0,
    ) -> Message:
        """Send and wait for the first inbound message matching ``predicate``.

        By default waits for the ``command_ack`` or ``error`` carrying the
        message's request id (one is generated when absent).
        """
        if predicate is None:
            if message.request_id is None:
                message.request_id = uuid.uuid4().hex
            request_id = message.request_id
            reply_kinds = (MessageType.COMMAND_ACK, MessageType.ERROR)

            def predicate(m: Message) -> bool:
                return m.request_id == request_id and m.kind in reply_kinds

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        waiter = (predicate, future)
        self._waiters.append(waiter)
        try:
            if not await self.send(message):
                raise SessionNotOpenError(f"Session to {self.url} is not open")
            return await asyncio.wait_for(future, timeout=timeout)
        finally:
            if waiter in self._waiters:
                self._waiters.remove(waiter)

    async def ping(self, timeout: float = 10.0) -> Message:
        return await self.request(
            messages.ping(), lambda m: m.kind == MessageType.PONG, timeout=timeout,
        )

    def _fail_waiters(self, reason: str) -> None:
        for _, future in self._waiters:
            if not future.done():
                future.set_exception(SessionNotOpenError(reason))
        self._waiters.clear()

    async def _dispatch(self, raw: str | bytes) -> None:
        try:
            msg = messages.decode(raw)
        except ValueError as e:
            logger.warning("Undecodable frame from %s: %s", self.url, e)
            text = raw.decode(errors="replace") if isinstance(raw, bytes) else raw
            self._notify("in", "error", {"error": str(e), "raw": text})
            return

        if msg.kind == MessageType.WELCOME:
            self.session_id = msg.session_id
        self._notify("in", msg.type, msg.to_dict())

        for predicate, future in list(self._waiters):
            if not future.done() and predicate(msg):
                future.set_result(msg)

        if self.on_message is not None:
            try:
                result = self.on_message(msg)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning("Message handler failed for %s: %s", msg.type, e)
