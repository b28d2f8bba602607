"""Routes inbound observer commands into the orchestrator."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ..errors import DirectoryMissingError
from .messages import (
    CreateDirectoryMessage,
    KillAgentMessage,
    MoveAgentMessage,
    RemoveAgentMessage,
    RenameAgentMessage,
    SendCommandMessage,
    SpawnAgentMessage,
    StopAgentMessage,
    SyncAreasMessage,
    parse_inbound,
)

if TYPE_CHECKING:
    from ..orchestrator import Orchestrator

logger = logging.getLogger(__name__)


class CommandRouter:
    """Demultiplexes observer messages by ``type``.

    Failures are reported back to the observer (or the activity feed) and
    never close the connection.
    """

    def __init__(self, orchestrator: Orchestrator) -> None:
        self._orchestrator = orchestrator

    @property
    def hub(self):
        return self._orchestrator.hub

    async def handle(self, subscriber_id: int, raw: str | bytes | dict[str, Any]) -> bool:
        message = parse_inbound(raw)
        if message is None:
            return False
        logger.debug("Observer message", extra={"subscriber": subscriber_id, "message_type": message.type})
        try:
            await self._dispatch(subscriber_id, message)
        except (OSError, RuntimeError, ValueError) as exc:
            logger.error(
                "Failed to handle observer message",
                extra={"subscriber": subscriber_id, "message_type": message.type, "error": str(exc)},
            )
            self.hub.send(subscriber_id, "error", {"message": str(exc)})
        return True

    async def _dispatch(self, subscriber_id: int, message: Any) -> None:
        if isinstance(message, SpawnAgentMessage):
            await self._spawn(subscriber_id, message)
        elif isinstance(message, SendCommandMessage):
            await self._send_command(message)
        elif isinstance(message, MoveAgentMessage):
            self._orchestrator.agents.update_agent(
                message.payload.agent_id,
                {"position": message.payload.position.model_dump()},
                touch_activity=False,
            )
        elif isinstance(message, RenameAgentMessage):
            self._orchestrator.agents.update_agent(
                message.payload.agent_id, {"name": message.payload.name}, touch_activity=False
            )
        elif isinstance(message, KillAgentMessage):
            await self._orchestrator.runner.stop(message.payload.agent_id)
            self._orchestrator.agents.delete_agent(message.payload.agent_id)
        elif isinstance(message, StopAgentMessage):
            await self._orchestrator.runner.stop(message.payload.agent_id)
            self._orchestrator.agents.update_agent(
                message.payload.agent_id,
                {"current_task": None, "current_tool": None},
            )
            self._orchestrator.send_activity(message.payload.agent_id, "Operation cancelled")
        elif isinstance(message, RemoveAgentMessage):
            self._orchestrator.agents.delete_agent(message.payload.agent_id)
        elif isinstance(message, CreateDirectoryMessage):
            await self._create_directory(subscriber_id, message)
        elif isinstance(message, SyncAreasMessage):
            self._orchestrator.areas.save(message.payload)
            logger.info("Saved areas", extra={"count": len(message.payload)})
            self.hub.broadcast_to_others(subscriber_id, "areas_update", message.payload)

    async def _spawn(self, subscriber_id: int, message: SpawnAgentMessage) -> None:
        payload = message.payload
        try:
            self._orchestrator.spawn_agent(
                payload.name,
                payload.cwd,
                agent_class=payload.agent_class,
                backend=payload.backend,
                session_id=payload.session_id,
                position=payload.position.model_dump() if payload.position else None,
                use_chrome=payload.use_chrome,
                model=payload.model,
                permission_mode=payload.permission_mode,
                custom_instructions=payload.custom_instructions,
            )
        except DirectoryMissingError:
            logger.info("Spawn target directory is missing", extra={"path": payload.cwd})
            self.hub.send(
                subscriber_id,
                "directory_not_found",
                {"path": payload.cwd, "name": payload.name, "class": payload.agent_class},
            )
        except (OSError, ValueError, RuntimeError) as exc:
            logger.error("Failed to spawn agent", extra={"agent_name": payload.name, "error": str(exc)})
            self.hub.send(subscriber_id, "error", {"message": str(exc)})

    async def _send_command(self, message: SendCommandMessage) -> None:
        agent_id = message.payload.agent_id
        try:
            await self._orchestrator.send_command(agent_id, message.payload.command)
        except (RuntimeError, OSError, ValueError) as exc:
            logger.error("Failed to send command", extra={"agent_id": agent_id, "error": str(exc)})
            self._orchestrator.send_activity(agent_id, f"Error: {exc}")

    async def _create_directory(self, subscriber_id: int, message: CreateDirectoryMessage) -> None:
        payload = message.payload
        try:
            Path(payload.path).expanduser().mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.error("Failed to create directory", extra={"path": payload.path, "error": str(exc)})
            self.hub.send(subscriber_id, "error", {"message": f"Failed to create directory: {exc}"})
            return
        logger.info("Created directory", extra={"path": payload.path})
        try:
            self._orchestrator.spawn_agent(payload.name, payload.path, agent_class=payload.agent_class)
        except (OSError, ValueError, RuntimeError) as exc:
            logger.error("Failed to spawn agent after creating directory", extra={"error": str(exc)})
            self.hub.send(subscriber_id, "error", {"message": str(exc)})


__all__ = ["CommandRouter"]
