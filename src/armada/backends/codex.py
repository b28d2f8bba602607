"""Batch-resume backend adapter for the Codex ``exec --json`` CLI."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from ..events import StandardEvent, TokenUsage
from ..models import BackendKind, RunnerRequest
from .base import ParseResult, ToolCorrelator, as_dict, as_int, decode_line
from .prompts import wrap_task_prompt
from .utils import resolve_executable

logger = logging.getLogger(__name__)


class CodexBackend:
    """Starts a fresh process per command and resumes the thread by id."""

    kind = BackendKind.BATCH_RESUME
    name = "codex"

    def __init__(self, executable_path: str | Path | None = None) -> None:
        self._executable_path = executable_path
        self._tools = ToolCorrelator()

    def executable(self) -> Path:
        return resolve_executable(self._executable_path, "codex")

    def build_args(self, request: RunnerRequest) -> list[str]:
        options = request.codex
        args = ["exec", "--json"]

        if options.full_auto:
            args.append("--dangerously-bypass-approvals-and-sandbox")
        else:
            args.extend(["--ask-for-approval", options.approval_mode])
            args.extend(["--sandbox", options.sandbox])

        if options.search:
            args.append("--search")
        if options.profile:
            args.extend(["--profile", options.profile])
        if request.model:
            args.extend(["--model", request.model])

        args.extend(["-C", request.working_dir])

        session_id = request.effective_session_id
        if session_id:
            args.extend(["resume", session_id])

        args.append(wrap_task_prompt(request))
        return args

    def requires_stdin_input(self) -> bool:
        return False

    def format_stdin_input(self, prompt: str) -> str:
        return prompt

    def extract_session_id(self, raw_line: str) -> str | None:
        event = decode_line(raw_line)
        if event is None or event.get("type") != "thread.started":
            return None
        thread_id = event.get("thread_id")
        return thread_id if isinstance(thread_id, str) and thread_id else None

    def parse_event(self, raw_line: str) -> ParseResult:
        event = decode_line(raw_line)
        if event is None:
            return None
        try:
            return self._dispatch(event)
        except (AttributeError, KeyError, TypeError, ValueError):
            logger.debug("Unparseable codex event", extra={"line": raw_line[:200]})
            return None

    def _dispatch(self, event: dict[str, Any]) -> ParseResult:
        event_type = event.get("type")
        if event_type == "thread.started":
            return StandardEvent(type="init", session_id=event.get("thread_id"), model=event.get("model"))
        if event_type == "item.started":
            return self._item_started(as_dict(event.get("item")))
        if event_type == "item.completed":
            return self._item_completed(as_dict(event.get("item")))
        if event_type == "turn.completed":
            usage = as_dict(event.get("usage"))
            return StandardEvent(
                type="step_complete",
                tokens=TokenUsage(
                    input=as_int(usage.get("input_tokens")),
                    output=as_int(usage.get("output_tokens")),
                    cache_read=as_int(usage.get("cached_input_tokens")),
                ),
            )
        if event_type == "turn.failed":
            message = as_dict(event.get("error")).get("message") or "Turn failed"
            return StandardEvent(type="error", error_message=str(message))
        if event_type == "error":
            return StandardEvent(type="error", error_message=str(event.get("message") or "Unknown error"))
        return None

    def _start(self, item: dict[str, Any], tool_name: str, tool_input: dict[str, Any]) -> StandardEvent:
        item_id = item.get("id")
        self._tools.remember(item_id, tool_name)
        return StandardEvent(
            type="tool_start",
            tool_name=tool_name,
            tool_input=tool_input,
            tool_use_id=item_id,
            uuid=item_id,
        )

    def _result(self, item: dict[str, Any], fallback: str, output: str) -> StandardEvent:
        item_id = item.get("id")
        return StandardEvent(
            type="tool_result",
            tool_name=self._tools.resolve(item_id, fallback),
            tool_output=output,
            tool_use_id=item_id,
            uuid=item_id,
        )

    def _item_started(self, item: dict[str, Any]) -> StandardEvent | None:
        item_type = item.get("type")
        if item_type == "command_execution":
            return self._start(item, "Bash", {"command": item.get("command", "")})
        if item_type == "mcp_tool_call":
            return self._start(item, _mcp_tool_name(item), as_dict(item.get("arguments")))
        if item_type == "web_search":
            return self._start(item, "WebSearch", {"query": item.get("query", "")})
        return None

    def _item_completed(self, item: dict[str, Any]) -> ParseResult:
        item_type = item.get("type")
        item_id = item.get("id")

        if item_type == "agent_message":
            text = item.get("text")
            if isinstance(text, str) and text.strip():
                return StandardEvent(type="text", text=text, is_streaming=False, uuid=item_id)
            return None

        if item_type == "reasoning":
            text = item.get("text")
            if isinstance(text, str) and text.strip():
                return StandardEvent(type="thinking", text=text, is_streaming=False, uuid=item_id)
            return None

        if item_type == "command_execution":
            output = str(item.get("aggregated_output") or "")
            exit_code = item.get("exit_code")
            if isinstance(exit_code, int) and exit_code != 0:
                output = f"{output}\n[exit code] {exit_code}" if output else f"[exit code] {exit_code}"
            return self._result(item, "Bash", output)

        if item_type == "mcp_tool_call":
            result = item.get("result")
            output = result if isinstance(result, str) else str(as_dict(item.get("error")).get("message") or "")
            return self._result(item, _mcp_tool_name(item), output)

        if item_type == "web_search":
            return self._result(item, "WebSearch", str(item.get("query") or ""))

        if item_type == "file_change":
            changes = [as_dict(change) for change in item.get("changes") or []]
            paths = [str(change.get("path")) for change in changes if change.get("path")]
            start = self._start(
                item,
                "Edit",
                {"file_path": paths[0] if paths else "", "changes": changes},
            )
            summary = "\n".join(
                f"{change.get('kind', 'update')}: {change.get('path')}" for change in changes
            )
            return [start, self._result(item, "Edit", summary)]

        if item_type == "todo_list":
            todos = [as_dict(todo) for todo in item.get("items") or []]
            return self._start(item, "TodoWrite", {"todos": todos})

        if item_type == "error":
            return StandardEvent(type="error", error_message=str(item.get("message") or "Unknown error"))

        return None


def _mcp_tool_name(item: dict[str, Any]) -> str:
    server = item.get("server")
    tool = item.get("tool") or "tool"
    return f"mcp__{server}__{tool}" if server else str(tool)


__all__ = ["CodexBackend"]
