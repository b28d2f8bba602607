"""Agent class models: reusable prompt overlays assigned to agents."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator


class Skill(BaseModel):
    """A named block of guidance appended to an agent's instructions."""

    name: str = Field(..., description="Short skill name shown in the skills list.")
    description: str | None = Field(default=None, description="One-line summary of the skill.")
    content: str = Field(default="", description="Markdown body injected into the prompt.")

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Skill name must not be empty")
        return normalized


class AgentClass(BaseModel):
    """Configuration describing how Armada primes agents of one class."""

    id: str = Field(..., description="Unique identifier referenced by agents.")
    title: str = Field(..., description="Display title for the class.")
    description: str | None = Field(default=None, description="Summary shown to operators.")
    instructions: str = Field(
        default="",
        description="Class-level instructions attached to every run of the agent.",
    )
    skills: list[Skill] = Field(
        default_factory=list,
        description="Skills appended after the class instructions.",
    )
    model: str | None = Field(default=None, description="Default model for agents of this class.")
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Arbitrary metadata for UI grouping or filtering.",
    )

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Agent class id must not be empty")
        return normalized

    @field_validator("skills", mode="before")
    @classmethod
    def _ensure_list(cls, value: Any):  # type: ignore[override]
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return list(value)
        raise TypeError("Skills must be a sequence of skill definitions")


__all__ = ["AgentClass", "Skill"]
