"""Prompt composition for agent-class overlays and runtime context."""

from __future__ import annotations

from ..models import RunnerRequest

APPENDED_INSTRUCTIONS = """## Armada Appended Instructions
You are running as an Armada-managed coding agent. Several agents may work on
this machine at the same time, each in its own working directory.
- Stay inside your working directory unless a task says otherwise.
- Report progress in short plain sentences; the operator reads them live.
- When a task is finished, end with a one-line summary of what changed."""


def compose_system_prompt(request: RunnerRequest) -> str | None:
    """Merge the class overlay and runtime system context into one block.

    Returns ``None`` when the request carries neither.
    """

    sections: list[str] = []
    if request.overlay is not None and request.overlay.instructions.strip():
        sections.append("## Agent Class Instructions\n" + request.overlay.instructions.strip())
    if request.system_prompt and request.system_prompt.strip():
        sections.append("## Runtime System Context\n" + request.system_prompt.strip())
    if not sections:
        return None
    return "\n\n".join([APPENDED_INSTRUCTIONS, *sections])


def wrap_task_prompt(request: RunnerRequest) -> str:
    """Build the single prompt argument for CLIs that take no system prompt flag."""

    sections = ["Follow all instructions below for this task.", APPENDED_INSTRUCTIONS]
    if request.overlay is not None and request.overlay.instructions.strip():
        sections.append("## Agent Instructions\n" + request.overlay.instructions.strip())
    if request.system_prompt and request.system_prompt.strip():
        sections.append("## System Context\n" + request.system_prompt.strip())
    sections.append("## User Request\n" + request.prompt)
    return "\n\n".join(sections)


__all__ = ["APPENDED_INSTRUCTIONS", "compose_system_prompt", "wrap_task_prompt"]
