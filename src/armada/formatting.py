"""Human-readable labels for tool calls and events shown in the activity feed."""

from __future__ import annotations

from typing import Any

from .events import StandardEvent


def truncate(value: Any, max_len: int) -> str | None:
    if not isinstance(value, str) or not value:
        return None
    if len(value) <= max_len:
        return value
    return value[: max_len - 3] + "..."


def get_file_name(path: str | None) -> str:
    if not path:
        return "unknown"
    return path.rstrip("/").split("/")[-1] or "unknown"


def get_short_path(path: str, max_len: int = 40) -> str:
    if len(path) <= max_len:
        return path
    parts = path.split("/")
    return ".../" + "/".join(parts[-2:])


def get_tool_key_param(tool_name: str, tool_input: dict[str, Any]) -> str | None:
    """Pick the single most telling argument of a tool call."""

    if tool_name == "WebSearch":
        return truncate(tool_input.get("query"), 50)
    if tool_name == "WebFetch":
        return truncate(tool_input.get("url"), 60)
    if tool_name in {"Read", "Write", "Edit", "MultiEdit", "NotebookEdit"}:
        file_path = tool_input.get("file_path") or tool_input.get("path")
        if not isinstance(file_path, str) or not file_path:
            return None
        return get_short_path(file_path)
    if tool_name == "Bash":
        return truncate(tool_input.get("command"), 60)
    if tool_name == "Grep":
        pattern = truncate(tool_input.get("pattern"), 40)
        return f'"{pattern}"' if pattern else None
    if tool_name == "Glob":
        return truncate(tool_input.get("pattern"), 50)
    if tool_name == "Task":
        return truncate(tool_input.get("description"), 50)
    if tool_name == "TodoWrite":
        todos = tool_input.get("todos")
        if isinstance(todos, list) and todos:
            return f"{len(todos)} item{'s' if len(todos) > 1 else ''}"
        return None
    if tool_name == "AskUserQuestion":
        return "clarification"

    for value in tool_input.values():
        if isinstance(value, str) and 0 < len(value) < 100:
            return truncate(value, 50)
    return None


def format_tool_activity(tool_name: str | None, tool_input: dict[str, Any] | None) -> str:
    if not tool_name:
        return "Using unknown tool"
    param = get_tool_key_param(tool_name, tool_input) if tool_input else None
    if param:
        return f"{tool_name}: {param}"
    return f"Using {tool_name}"


def describe_event(event: StandardEvent) -> str | None:
    """Return the activity-feed line for ``event``, or ``None`` when it has none."""

    if event.type == "init":
        return f"Session initialized ({event.model or 'unknown model'})"
    if event.type == "tool_start":
        return format_tool_activity(event.tool_name, event.tool_input)
    return None


__all__ = [
    "describe_event",
    "format_tool_activity",
    "get_file_name",
    "get_short_path",
    "get_tool_key_param",
    "truncate",
]
