"""Agent class loading and overlay composition."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

import yaml
from pydantic import ValidationError

from ..models import AgentOverlay
from .models import AgentClass


class ClassLoadError(RuntimeError):
    """Raised when one or more agent class files cannot be parsed."""


class ClassLoader:
    """Loads agent classes from YAML files on disk."""

    def __init__(self, search_paths: Iterable[Path] | None = None) -> None:
        paths = [Path(path) for path in (search_paths or [])]
        self._search_paths: list[Path] = [path for path in paths if path.exists()]

    @property
    def search_paths(self) -> list[Path]:
        return list(self._search_paths)

    def load_all(self) -> dict[str, AgentClass]:
        """Load classes from all configured search paths.

        Later search paths override earlier ones when class ids collide.
        """

        if not self._search_paths:
            return {}

        classes: dict[str, AgentClass] = {}
        errors: list[str] = []

        for base in self._search_paths:
            for path in sorted(base.glob("*.yml")) + sorted(base.glob("*.yaml")):
                try:
                    document = yaml.safe_load(path.read_text(encoding="utf-8"))
                except yaml.YAMLError as exc:
                    errors.append(f"Failed to parse YAML in {path}: {exc}")
                    continue

                if document is None:
                    continue

                try:
                    agent_class = AgentClass.model_validate(document)
                except ValidationError as exc:
                    errors.append(f"Agent class validation error in {path}: {exc}")
                    continue

                classes[agent_class.id] = agent_class

        if errors:
            raise ClassLoadError("; ".join(errors))

        return classes

    def get(self, class_id: str) -> AgentClass:
        classes = self.load_all()
        try:
            return classes[class_id]
        except KeyError as exc:
            raise ClassLoadError(f"Agent class '{class_id}' not found in search paths") from exc


def build_skills_section(skills: list) -> str:
    if not skills:
        return ""
    lines = ["# Skills"]
    for skill in skills:
        header = f"## {skill.name}"
        if skill.description:
            header = f"{header}\n{skill.description}"
        lines.append(header)
        if skill.content.strip():
            lines.append(skill.content.strip())
    return "\n\n".join(lines)


def build_overlay(
    agent_class: AgentClass | None,
    *,
    agent_id: str,
    agent_name: str,
    custom_instructions: str | None = None,
) -> AgentOverlay:
    """Compose the prompt overlay attached to every run of one agent."""

    sections = [
        "# Agent Identity\n"
        f"You are agent \"{agent_name}\" (id: {agent_id})"
        + (f", class \"{agent_class.title}\"." if agent_class else ".")
    ]
    if agent_class and agent_class.instructions.strip():
        sections.append(agent_class.instructions.strip())
    if agent_class:
        skills = build_skills_section(agent_class.skills)
        if skills:
            sections.append(skills)
    if custom_instructions and custom_instructions.strip():
        sections.append(f"# Custom Instructions\n{custom_instructions.strip()}")

    return AgentOverlay(
        name=agent_class.id if agent_class else "default",
        description=agent_class.description if agent_class else None,
        instructions="\n\n".join(sections),
    )


def load_classes(search_paths: Iterable[Path] | None = None) -> dict[str, AgentClass]:
    return ClassLoader(search_paths).load_all()


__all__ = ["ClassLoadError", "ClassLoader", "build_overlay", "build_skills_section", "load_classes"]
