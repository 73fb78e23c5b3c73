"""Sync engine: turn collaborator change events into replication commands.

The engine reads from a *source* registry (the sheet the user edited) and
emits write commands into a sink, which is either another local registry or a
transport session that relays them to peers.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, NamedTuple, Protocol

from sheetrelay.contracts import messages
from sheetrelay.contracts.common import ChannelFullError, RelayError
from sheetrelay.contracts.events import (
    RANGE_ACTION_CLEAR,
    ChangeEvent,
    ChangeKind,
    RangeSpec,
    SyncIntent,
)
from sheetrelay.engine.registry import CommandRegistry

logger = logging.getLogger(__name__)


class SyncCommand(NamedTuple):
    command: str
    params: dict[str, Any]


class SyncReadError(RelayError):
    """A source read failed, so nothing is emitted for the event."""


class CommandSink(Protocol):
    async def emit(self, command: str, params: dict[str, Any]) -> Any: ...


class RegistrySink:
    """Apply emitted commands to a local registry."""

    def __init__(self, registry: CommandRegistry) -> None:
        self.registry = registry

    async def emit(self, command: str, params: dict[str, Any]) -> Any:
        result = self.registry.execute(command, params)
        if not result.success:
            logger.warning("Sync command %s failed on target: %s", command, result.error)
        return result


class SessionSink:
    """Relay emitted commands through a transport session as ``command`` messages."""

    def __init__(self, session: Any, source: str = "sync") -> None:
        self.session = session
        self.source = source

    async def emit(self, command: str, params: dict[str, Any]) -> bool:
        return await self.session.send(messages.command(command, params, source=self.source))


class EventChannel:
    """Bounded, ordered channel of change events with a single consumer."""

    _CLOSED = object()

    def __init__(self, maxsize: int = 1024) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)

    async def publish(self, event: ChangeEvent) -> None:
        """Enqueue an event, waiting while the channel is full."""
        await self._queue.put(event)

    def publish_nowait(self, event: ChangeEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            raise ChannelFullError(f"Event channel full ({self._queue.maxsize} pending)") from None

    async def close(self) -> None:
        await self._queue.put(self._CLOSED)

    async def get(self) -> ChangeEvent | None:
        """Next event, or None once the channel is closed."""
        item = await self._queue.get()
        return None if item is self._CLOSED else item

    def qsize(self) -> int:
        return self._queue.qsize()


def _is_formula(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("=")


def _event_range(event: ChangeEvent) -> RangeSpec | None:
    rng = event.range()
    if rng is None and event.cell_range is not None:
        rng = event.cell_range
    return rng


def classify(event: ChangeEvent) -> SyncIntent | None:
    """Decide what to copy for one event. None means the event is not replicated."""
    sheet = event.sheet_name
    if event.kind == ChangeKind.VALUE_CHANGED:
        if "new_value" not in event.model_fields_set or event.row is None or event.col is None:
            return None
        reason = "formula" if _is_formula(event.new_value) else "value"
        return SyncIntent(
            range=RangeSpec.cell(event.row, event.col),
            values=True, formulas=True, sheet_name=sheet, reason=reason,
        )

    if event.kind == ChangeKind.FORMULA_ENTERED:
        if event.formula is None or event.row is None or event.col is None:
            return None
        return SyncIntent(
            range=RangeSpec.cell(event.row, event.col),
            values=True, formulas=True, sheet_name=sheet, reason="formula",
        )

    if event.kind == ChangeKind.RANGE_CHANGED:
        rng = _event_range(event)
        if rng is None:
            return None
        if event.property_name == "span" and event.action in ("add", "remove"):
            reason = "merge" if event.action == "add" else "unmerge"
            return SyncIntent(range=rng, styles=True, sheet_name=sheet, reason=reason)
        if event.action == "clear" or event.action == RANGE_ACTION_CLEAR:
            return SyncIntent(range=rng, values=True, formulas=True, sheet_name=sheet, reason="clear")
        return None

    if event.kind == ChangeKind.CLIPBOARD_PASTED:
        if event.cell_range is None:
            return None
        return SyncIntent(
            range=event.cell_range,
            values=True, formulas=True, styles=True, sheet_name=sheet, reason="paste",
        )

    # selection_changed, cell_changed and everything else stay local
    return None


class SyncEngine:
    """Consume change events and mirror the affected cells into a sink."""

    def __init__(
        self,
        source: CommandRegistry,
        sink: CommandSink,
        channel: EventChannel | None = None,
        *,
        target_sheet: str | None = None,
    ) -> None:
        self.source = source
        self.sink = sink
        self.channel = channel or EventChannel()
        self.target_sheet = target_sheet
        self.handled = 0
        self.failed = 0

    def _read(self, command: str, params: dict[str, Any]) -> Any:
        result = self.source.execute(command, params)
        if not result.success:
            raise SyncReadError(f"{command} failed: {result.error}")
        return result.result

    def plan(self, intent: SyncIntent) -> list[SyncCommand]:
        """Read everything the intent needs, then build the write commands."""
        rng = intent.range
        read_params = {**rng.to_params(), "sheetName": intent.sheet_name}
        target = self.target_sheet or intent.sheet_name
        at = {"startRow": rng.row, "startCol": rng.col}

        values = self._read("getProcessedData", read_params) if intent.values else None
        formulas = self._read("getRawData", read_params) if intent.formulas else None
        styles = self._read("getStylesAndMerges", read_params) if intent.styles else None

        commands: list[SyncCommand] = []
        if values is not None:
            commands.append(SyncCommand("setProcessedData", {**at, "values": values}))
        if formulas is not None:
            commands.append(SyncCommand("setRawData", {**at, "formulas": formulas}))
        if styles is not None:
            commands.append(SyncCommand("setStylesAndMerges", {
                **rng.to_params(),
                "styles": styles["styles"],
                "merges": styles["merges"],
            }))
        if target is not None:
            for cmd in commands:
                cmd.params["sheetName"] = target
        return commands

    async def handle(self, event: ChangeEvent) -> list[SyncCommand]:
        """Process one event to completion and return the commands emitted."""
        intent = classify(event)
        if intent is None:
            return []
        commands = self.plan(intent)
        for cmd in commands:
            await self.sink.emit(cmd.command, cmd.params)
        logger.debug("Synced %s (%s): %d command(s)", event.kind.value, intent.reason, len(commands))
        return commands

    async def run(self) -> None:
        """Consume the channel until it is closed."""
        while True:
            event = await self.channel.get()
            if event is None:
                break
            try:
                await self.handle(event)
                self.handled += 1
            except Exception as e:
                self.failed += 1
                logger.warning("Sync failed for %s event: %s", event.kind.value, e)
