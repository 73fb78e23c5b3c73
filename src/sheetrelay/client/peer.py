"""SheetPeer: a client front end that executes relayed commands locally."""

from __future__ import annotations

import logging
from typing import Any

from sheetrelay.client.session import TransportSession
from sheetrelay.contracts.common import CommandResult
from sheetrelay.contracts.messages import Message, MessageType
from sheetrelay.engine.registry import CommandRegistry

logger = logging.getLogger(__name__)


def ack_for(message: Message, result: CommandResult) -> Message:
    """``command_ack`` reply: the command result plus the request id."""
    return Message.model_validate({
        **result.to_wire(),
        "type": MessageType.COMMAND_ACK.value,
        "requestId": message.request_id,
    })


class SheetPeer:
    """Pairs a transport session with a local registry.

    Every inbound ``command`` runs against the local sheet; with
    ``acknowledge`` set, the outcome is sent back as a ``command_ack``.
    """

    def __init__(
        self,
        session: TransportSession,
        registry: CommandRegistry | None = None,
        *,
        acknowledge: bool = False,
    ) -> None:
        self.session = session
        self.registry = registry or CommandRegistry()
        self.acknowledge = acknowledge
        self.applied: list[CommandResult] = []
        session.on_message = self.handle

    async def handle(self, message: Message) -> CommandResult | None:
        if message.kind != MessageType.COMMAND or not message.command:
            return None
        result = self.registry.execute(message.command, message.params or {})
        self.applied.append(result)
        if not result.success:
            logger.warning("Relayed %s failed locally: %s", message.command, result.error)
        if self.acknowledge:
            await self.session.send(ack_for(message, result))
        return result

    async def start(self) -> bool:
        return await self.session.connect()

    async def stop(self) -> None:
        await self.session.disconnect()

    def stats(self) -> dict[str, Any]:
        ok = sum(1 for r in self.applied if r.success)
        return {"applied": ok, "failed": len(self.applied) - ok}
