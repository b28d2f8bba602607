"""Data models for persistent tracking."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..models import AgentStatus, BackendKind, PermissionMode, RunnerRequest


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class Agent(_CamelModel):
    """Durable agent record mirrored to every observer."""

    id: str
    name: str
    agent_class: str = Field(default="default", alias="class")
    cwd: str
    backend: BackendKind = BackendKind.INTERACTIVE
    session_id: str | None = None
    status: AgentStatus = AgentStatus.IDLE
    pending_commands: list[str] = Field(default_factory=list)
    context_used: int = 0
    context_limit: int = 200_000
    context_stats: dict[str, Any] | None = None
    usage_stats: dict[str, Any] | None = None
    tokens_used: int = 0
    current_task: str | None = None
    current_tool: str | None = None
    last_assigned_task: str | None = None
    last_assigned_task_time: float | None = None
    task_count: int = 0
    last_error: str | None = None
    model: str | None = None
    permission_mode: PermissionMode = "bypass"
    use_chrome: bool = False
    custom_instructions: str | None = None
    position: dict[str, float] | None = None
    created_at: float
    last_activity: float


class RunningProcessInfo(_CamelModel):
    """Recovery-relevant subset of a live process, persisted across host restarts."""

    agent_id: str
    pid: int
    backend: BackendKind
    session_id: str | None = None
    start_time: float
    output_file: str | None = None
    stderr_file: str | None = None
    last_request: RunnerRequest | None = None


__all__ = ["Agent", "RunningProcessInfo"]
