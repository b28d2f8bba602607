"""Normalized event model shared by every backend adapter."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

EventType = Literal[
    "init",
    "text",
    "thinking",
    "tool_start",
    "tool_result",
    "block_start",
    "block_end",
    "step_complete",
    "context_stats",
    "usage_stats",
    "error",
]


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_wire(self) -> dict[str, Any]:
        """Return the camelCase payload broadcast to observers."""

        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TokenUsage(_WireModel):
    """Token accounting for one completed turn."""

    input: int | None = None
    output: int | None = None
    cache_creation: int | None = None
    cache_read: int | None = None


class ModelUsage(_WireModel):
    """Per-model usage block reported alongside a completed turn."""

    context_window: int | None = None
    max_output_tokens: int | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    cache_read_input_tokens: int | None = None
    cache_creation_input_tokens: int | None = None


class PermissionDenial(_WireModel):
    tool_name: str | None = None
    tool_use_id: str | None = None
    tool_input: dict[str, Any] | None = None


class StandardEvent(_WireModel):
    """One normalized event, identical in shape whichever CLI produced it."""

    type: EventType
    uuid: str | None = None

    # init
    session_id: str | None = None
    model: str | None = None
    tools: list[str] | None = None

    # text / thinking
    text: str | None = None
    is_streaming: bool | None = None

    # tool_start / tool_result
    tool_name: str | None = None
    tool_input: dict[str, Any] | None = None
    tool_output: str | None = None
    tool_use_id: str | None = None
    subagent_name: str | None = None
    subagent_description: str | None = None
    subagent_type: str | None = None
    subagent_model: str | None = None

    # block_start
    block_type: str | None = None

    # step_complete
    duration_ms: int | None = None
    cost: float | None = None
    tokens: TokenUsage | None = None
    model_usage: ModelUsage | None = None
    result_text: str | None = None
    permission_denials: list[PermissionDenial] | None = Field(default=None)

    # context_stats / usage_stats
    context_stats_raw: str | None = None
    usage_stats_raw: str | None = None

    # error
    error_message: str | None = None


__all__ = ["EventType", "ModelUsage", "PermissionDenial", "StandardEvent", "TokenUsage"]
