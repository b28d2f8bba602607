"""Backend adapter contract and helpers shared by both CLI variants."""

from __future__ import annotations

import json
from collections import OrderedDict
from pathlib import Path
from typing import Any, Protocol, Union, runtime_checkable

from ..events import StandardEvent
from ..models import BackendKind, RunnerRequest

ParseResult = Union[StandardEvent, list[StandardEvent], None]

_MAX_TRACKED_TOOL_USES = 512


@runtime_checkable
class BackendAdapter(Protocol):
    """Strategy translating one CLI's wire protocol into ``StandardEvent`` values."""

    kind: BackendKind
    name: str

    def build_args(self, request: RunnerRequest) -> list[str]:
        ...

    def parse_event(self, raw_line: str) -> ParseResult:
        ...

    def extract_session_id(self, raw_line: str) -> str | None:
        ...

    def requires_stdin_input(self) -> bool:
        ...

    def format_stdin_input(self, prompt: str) -> str:
        ...

    def executable(self) -> Path:
        ...


def decode_line(raw_line: str) -> dict[str, Any] | None:
    """Decode one stdout line into a JSON object, or ``None`` for anything else."""

    stripped = raw_line.strip()
    if not stripped or stripped[0] != "{":
        return None
    try:
        document = json.loads(stripped)
    except (ValueError, RecursionError):
        return None
    return document if isinstance(document, dict) else None


def as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None


class ToolCorrelator:
    """Bounded map from tool-use id to tool name.

    Result lines often only carry the id, so names are remembered when the
    matching start line is parsed. The oldest ids are evicted first.
    """

    def __init__(self, max_entries: int = _MAX_TRACKED_TOOL_USES) -> None:
        self._max_entries = max_entries
        self._names: OrderedDict[str, str] = OrderedDict()

    def remember(self, tool_use_id: str | None, tool_name: str) -> None:
        if not tool_use_id:
            return
        self._names[tool_use_id] = tool_name
        self._names.move_to_end(tool_use_id)
        while len(self._names) > self._max_entries:
            self._names.popitem(last=False)

    def resolve(self, tool_use_id: str | None, fallback: str | None = None) -> str:
        if tool_use_id and tool_use_id in self._names:
            return self._names.pop(tool_use_id)
        return fallback or "unknown"

    def __len__(self) -> int:
        return len(self._names)


__all__ = ["BackendAdapter", "ParseResult", "ToolCorrelator", "as_dict", "as_int", "decode_line"]
