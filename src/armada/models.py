"""Request and status models for Armada agent runs."""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BackendKind(str, Enum):
    """Tag selecting which backend adapter drives an agent."""

    INTERACTIVE = "interactive"
    BATCH_RESUME = "batch-resume"


class AgentStatus(str, Enum):
    IDLE = "idle"
    WORKING = "working"
    WAITING = "waiting"
    WAITING_PERMISSION = "waiting_permission"
    ERROR = "error"
    OFFLINE = "offline"
    ORPHANED = "orphaned"


PermissionMode = Literal["bypass", "interactive"]


class CodexOptions(BaseModel):
    """Approval and sandbox flags for the batch-resume CLI."""

    model_config = ConfigDict(frozen=True)

    full_auto: bool = True
    approval_mode: str = "on-request"
    sandbox: str = "workspace-write"
    search: bool = False
    profile: str | None = None


class AgentOverlay(BaseModel):
    """Agent-class prompt overlay attached to a run."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str | None = None
    instructions: str


class RunnerRequest(BaseModel):
    """Immutable instruction to start or resume one agent run."""

    model_config = ConfigDict(frozen=True)

    agent_id: str
    working_dir: str
    prompt: str
    session_id: str | None = None
    backend: BackendKind = BackendKind.INTERACTIVE
    model: str | None = None
    system_prompt: str | None = None
    overlay: AgentOverlay | None = None
    permission_mode: PermissionMode = "bypass"
    use_chrome: bool = False
    disable_tools: bool = False
    force_new_session: bool = False
    codex: CodexOptions = Field(default_factory=CodexOptions)

    @field_validator("agent_id", "working_dir")
    @classmethod
    def _require_value(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("agent_id and working_dir must not be empty")
        return value

    @property
    def effective_session_id(self) -> str | None:
        """Session to resume, honouring ``force_new_session``."""

        return None if self.force_new_session else self.session_id

    def with_changes(self, **changes: Any) -> "RunnerRequest":
        return self.model_copy(update=changes)


__all__ = [
    "AgentOverlay",
    "AgentStatus",
    "BackendKind",
    "CodexOptions",
    "PermissionMode",
    "RunnerRequest",
]
