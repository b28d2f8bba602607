"""Interactive backend adapter for the Claude Code stream-json CLI."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from ..events import ModelUsage, PermissionDenial, StandardEvent, TokenUsage
from ..models import BackendKind, RunnerRequest
from .base import ParseResult, ToolCorrelator, as_dict, as_int, decode_line
from .prompts import compose_system_prompt
from .utils import resolve_executable, sanitize_unicode

logger = logging.getLogger(__name__)

_LOCAL_STDOUT_TAG = "<local-command-stdout>"


class ClaudeBackend:
    """Keeps one long-lived process per agent and feeds each command through stdin."""

    kind = BackendKind.INTERACTIVE
    name = "claude"

    def __init__(self, executable_path: str | Path | None = None) -> None:
        self._executable_path = executable_path
        self._tools = ToolCorrelator()

    def executable(self) -> Path:
        return resolve_executable(self._executable_path, "claude")

    def build_args(self, request: RunnerRequest) -> list[str]:
        args = [
            "--print",
            "--verbose",
            "--output-format",
            "stream-json",
            "--input-format",
            "stream-json",
        ]

        session_id = request.effective_session_id
        if session_id:
            args.extend(["--resume", session_id])

        if request.permission_mode == "bypass":
            args.append("--dangerously-skip-permissions")
        elif request.permission_mode == "interactive":
            args.extend(["--permission-mode", "acceptEdits"])

        if request.model:
            args.extend(["--model", request.model])
        if request.use_chrome:
            args.append("--chrome")

        system_prompt = compose_system_prompt(request)
        if system_prompt:
            # --system-prompt is ignored when resuming
            flag = "--append-system-prompt" if session_id else "--system-prompt"
            args.extend([flag, system_prompt])

        if request.disable_tools:
            args.extend(["--tools", ""])

        return args

    def requires_stdin_input(self) -> bool:
        return True

    def format_stdin_input(self, prompt: str) -> str:
        return json.dumps(
            {
                "type": "user",
                "message": {"role": "user", "content": sanitize_unicode(prompt)},
            }
        )

    def extract_session_id(self, raw_line: str) -> str | None:
        event = decode_line(raw_line)
        if event is None:
            return None
        if event.get("type") == "system" and event.get("subtype") == "init":
            session_id = event.get("session_id")
            return session_id if isinstance(session_id, str) and session_id else None
        return None

    def parse_event(self, raw_line: str) -> ParseResult:
        event = decode_line(raw_line)
        if event is None:
            return None
        try:
            return self._dispatch(event)
        except (AttributeError, KeyError, TypeError, ValueError):
            logger.debug("Unparseable claude event", extra={"line": raw_line[:200]})
            return None

    def _dispatch(self, event: dict[str, Any]) -> ParseResult:
        event_type = event.get("type")
        if event_type == "system":
            return self._parse_system(event)
        if event_type == "assistant":
            return self._parse_assistant(event)
        if event_type == "user":
            return self._parse_user(event)
        if event_type == "tool_use":
            return self._parse_tool_use(event)
        if event_type == "result":
            return self._parse_result(event)
        if event_type == "stream_event":
            return self._parse_stream_event(event)
        return None

    def _parse_system(self, event: dict[str, Any]) -> StandardEvent | None:
        subtype = event.get("subtype")
        if subtype == "init":
            tools = event.get("tools")
            return StandardEvent(
                type="init",
                session_id=event.get("session_id"),
                model=event.get("model"),
                tools=[str(tool) for tool in tools] if isinstance(tools, list) else None,
            )
        if subtype == "error" and event.get("error"):
            return StandardEvent(type="error", error_message=str(event["error"]))
        return None

    def _parse_assistant(self, event: dict[str, Any]) -> ParseResult:
        content = as_dict(event.get("message")).get("content")
        if not isinstance(content, list) or not content:
            return None

        message_uuid = event.get("uuid")
        events: list[StandardEvent] = []
        for block in content:
            block = as_dict(block)
            block_type = block.get("type")
            if block_type == "text":
                text = block.get("text")
                if isinstance(text, str) and text.strip():
                    events.append(
                        StandardEvent(type="text", text=text, is_streaming=False, uuid=message_uuid)
                    )
            elif block_type == "thinking":
                text = block.get("thinking") or block.get("text")
                if isinstance(text, str) and text.strip():
                    events.append(
                        StandardEvent(type="thinking", text=text, is_streaming=False, uuid=message_uuid)
                    )
            elif block_type == "tool_use" and block.get("name"):
                events.append(self._tool_start(block))

        if not events:
            return None
        if len(events) == 1:
            return events[0]
        return events

    def _tool_start(self, block: dict[str, Any]) -> StandardEvent:
        tool_name = str(block["name"])
        tool_use_id = block.get("id")
        tool_input = as_dict(block.get("input"))
        self._tools.remember(tool_use_id, tool_name)

        subagent: dict[str, Any] = {}
        if tool_name == "Task":
            subagent = {
                "subagent_name": tool_input.get("name"),
                "subagent_description": tool_input.get("description"),
                "subagent_type": tool_input.get("subagent_type"),
                "subagent_model": tool_input.get("model"),
            }

        return StandardEvent(
            type="tool_start",
            tool_name=tool_name,
            tool_input=tool_input,
            tool_use_id=tool_use_id,
            uuid=tool_use_id,
            **subagent,
        )

    def _parse_user(self, event: dict[str, Any]) -> ParseResult:
        content = as_dict(event.get("message")).get("content")

        if isinstance(content, str):
            if _LOCAL_STDOUT_TAG not in content:
                return None
            if "## Context Usage" in content:
                return StandardEvent(type="context_stats", context_stats_raw=content)
            if "## Usage" in content:
                return StandardEvent(type="usage_stats", usage_stats_raw=content)
            return None

        if not isinstance(content, list):
            return None

        extra = as_dict(event.get("tool_use_result"))
        events: list[StandardEvent] = []
        for block in content:
            block = as_dict(block)
            if block.get("type") != "tool_result":
                continue
            tool_use_id = block.get("tool_use_id")
            tool_name = self._tools.resolve(tool_use_id, block.get("name"))
            events.append(
                StandardEvent(
                    type="tool_result",
                    tool_name=tool_name,
                    tool_output=self._tool_output(block.get("content"), extra),
                    tool_use_id=tool_use_id,
                    uuid=tool_use_id,
                )
            )

        if not events:
            return None
        if len(events) == 1:
            return events[0]
        return events

    @staticmethod
    def _tool_output(content: Any, extra: dict[str, Any]) -> str:
        stdout = extra.get("stdout")
        if isinstance(stdout, str) and stdout:
            stderr = extra.get("stderr")
            if isinstance(stderr, str) and stderr:
                return f"{stdout}\n[stderr] {stderr}"
            return stdout
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            parts = [
                str(item.get("text", ""))
                for item in content
                if isinstance(item, dict) and item.get("type") == "text"
            ]
            return "\n".join(parts)
        if content is None:
            return ""
        return json.dumps(content)

    def _parse_tool_use(self, event: dict[str, Any]) -> StandardEvent | None:
        tool_name = event.get("tool_name") or "unknown"
        subtype = event.get("subtype")
        if subtype == "input" and event.get("input"):
            return StandardEvent(
                type="tool_start", tool_name=tool_name, tool_input=as_dict(event["input"])
            )
        if subtype == "result":
            result = event.get("result")
            output = result if isinstance(result, str) else json.dumps(result)
            return StandardEvent(type="tool_result", tool_name=tool_name, tool_output=output)
        return None

    def _parse_result(self, event: dict[str, Any]) -> StandardEvent:
        usage = event.get("usage")
        tokens = None
        if isinstance(usage, dict):
            tokens = TokenUsage(
                input=as_int(usage.get("input_tokens")),
                output=as_int(usage.get("output_tokens")),
                cache_creation=as_int(usage.get("cache_creation_input_tokens")),
                cache_read=as_int(usage.get("cache_read_input_tokens")),
            )

        model_usage = None
        per_model = event.get("modelUsage")
        if isinstance(per_model, dict) and per_model:
            first = next(iter(per_model.values()))
            if isinstance(first, dict):
                model_usage = ModelUsage.model_validate(first)

        denials = None
        raw_denials = event.get("permission_denials")
        if isinstance(raw_denials, list) and raw_denials:
            denials = [
                PermissionDenial(
                    tool_name=denial.get("tool_name"),
                    tool_use_id=denial.get("tool_use_id"),
                    tool_input=as_dict(denial.get("tool_input")) or None,
                )
                for denial in raw_denials
                if isinstance(denial, dict)
            ]
            logger.info("Turn reported permission denials", extra={"count": len(denials)})

        result = event.get("result")
        cost = event.get("total_cost_usd")
        return StandardEvent(
            type="step_complete",
            duration_ms=as_int(event.get("duration_ms")),
            cost=float(cost) if isinstance(cost, (int, float)) else None,
            tokens=tokens,
            model_usage=model_usage,
            result_text=result if isinstance(result, str) else None,
            permission_denials=denials,
            uuid=event.get("uuid"),
        )

    def _parse_stream_event(self, event: dict[str, Any]) -> StandardEvent | None:
        stream_event = as_dict(event.get("event"))
        stream_type = stream_event.get("type")
        if stream_type == "content_block_delta":
            delta = as_dict(stream_event.get("delta"))
            if delta.get("type") == "text_delta" and delta.get("text"):
                return StandardEvent(type="text", text=delta["text"], is_streaming=True)
            thinking = delta.get("thinking") or delta.get("text")
            if delta.get("type") == "thinking_delta" and thinking:
                return StandardEvent(type="thinking", text=thinking, is_streaming=True)
        elif stream_type == "content_block_start":
            block_type = as_dict(stream_event.get("content_block")).get("type")
            if block_type in {"text", "thinking"}:
                return StandardEvent(type="block_start", block_type=block_type)
        elif stream_type == "content_block_stop":
            return StandardEvent(type="block_end")
        return None


__all__ = ["ClaudeBackend"]
