"""Inbound observer message schema."""

from __future__ import annotations

import json
import logging
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from ..models import BackendKind, PermissionMode

logger = logging.getLogger(__name__)


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Position(_Payload):
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


class SpawnAgentPayload(_Payload):
    name: str
    agent_class: str = Field(default="default", alias="class")
    cwd: str
    position: Position | None = None
    session_id: str | None = None
    use_chrome: bool = False
    backend: BackendKind | None = None
    model: str | None = None
    permission_mode: PermissionMode = "bypass"
    custom_instructions: str | None = None


class AgentRef(_Payload):
    agent_id: str


class SendCommandPayload(AgentRef):
    command: str


class MoveAgentPayload(AgentRef):
    position: Position


class RenameAgentPayload(AgentRef):
    name: str


class CreateDirectoryPayload(_Payload):
    path: str
    name: str
    agent_class: str = Field(default="default", alias="class")


class SpawnAgentMessage(BaseModel):
    type: Literal["spawn_agent"]
    payload: SpawnAgentPayload


class SendCommandMessage(BaseModel):
    type: Literal["send_command"]
    payload: SendCommandPayload


class MoveAgentMessage(BaseModel):
    type: Literal["move_agent"]
    payload: MoveAgentPayload


class KillAgentMessage(BaseModel):
    type: Literal["kill_agent"]
    payload: AgentRef


class StopAgentMessage(BaseModel):
    type: Literal["stop_agent"]
    payload: AgentRef


class RemoveAgentMessage(BaseModel):
    type: Literal["remove_agent"]
    payload: AgentRef


class RenameAgentMessage(BaseModel):
    type: Literal["rename_agent"]
    payload: RenameAgentPayload


class CreateDirectoryMessage(BaseModel):
    type: Literal["create_directory"]
    payload: CreateDirectoryPayload


class SyncAreasMessage(BaseModel):
    type: Literal["sync_areas"]
    payload: list[dict[str, Any]]


InboundMessage = Annotated[
    Union[
        SpawnAgentMessage,
        SendCommandMessage,
        MoveAgentMessage,
        KillAgentMessage,
        StopAgentMessage,
        RemoveAgentMessage,
        RenameAgentMessage,
        CreateDirectoryMessage,
        SyncAreasMessage,
    ],
    Field(discriminator="type"),
]

_INBOUND = TypeAdapter(InboundMessage)


def parse_inbound(raw: str | bytes | dict[str, Any]) -> InboundMessage | None:
    """Validate one observer message; unknown or malformed input yields ``None``."""

    try:
        document = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
    except (ValueError, RecursionError) as exc:
        logger.warning("Ignoring non-JSON observer message", extra={"error": str(exc)})
        return None
    if not isinstance(document, dict):
        logger.warning("Ignoring observer message that is not an object")
        return None
    try:
        return _INBOUND.validate_python(document)
    except ValidationError as exc:
        logger.warning(
            "Ignoring unknown or invalid observer message",
            extra={"message_type": document.get("type"), "error": str(exc)},
        )
        return None


__all__ = [
    "CreateDirectoryMessage",
    "InboundMessage",
    "KillAgentMessage",
    "MoveAgentMessage",
    "Position",
    "RemoveAgentMessage",
    "RenameAgentMessage",
    "SendCommandMessage",
    "SpawnAgentMessage",
    "StopAgentMessage",
    "SyncAreasMessage",
    "parse_inbound",
]
