from __future__ import annotations

import json

import pytest

from armada.backends import ClaudeBackend
from armada.events import StandardEvent
from armada.models import AgentOverlay, RunnerRequest

FIXED_FLAGS = [
    "--print",
    "--verbose",
    "--output-format",
    "stream-json",
    "--input-format",
    "stream-json",
]


def _request(**overrides) -> RunnerRequest:
    values = {"agent_id": "a1", "working_dir": "/tmp", "prompt": "hello"}
    values.update(overrides)
    return RunnerRequest(**values)


def test_build_args_new_session_uses_fixed_flags_and_system_prompt() -> None:
    backend = ClaudeBackend()
    overlay = AgentOverlay(name="scout", instructions="Map the repo first.")
    args = backend.build_args(_request(overlay=overlay, model="sonnet"))

    assert args[: len(FIXED_FLAGS)] == FIXED_FLAGS
    assert "--resume" not in args
    assert "--dangerously-skip-permissions" in args
    assert args[args.index("--model") + 1] == "sonnet"
    prompt = args[args.index("--system-prompt") + 1]
    assert "Map the repo first." in prompt
    assert "--append-system-prompt" not in args


def test_build_args_resume_appends_system_prompt() -> None:
    backend = ClaudeBackend()
    overlay = AgentOverlay(name="scout", instructions="Stay read-only.")
    args = backend.build_args(_request(session_id="sess-1", overlay=overlay, permission_mode="interactive"))

    assert args[args.index("--resume") + 1] == "sess-1"
    assert args[args.index("--permission-mode") + 1] == "acceptEdits"
    assert "--dangerously-skip-permissions" not in args
    assert "--append-system-prompt" in args
    assert "--system-prompt" not in args


def test_force_new_session_skips_resume() -> None:
    args = ClaudeBackend().build_args(_request(session_id="sess-1", force_new_session=True))
    assert "--resume" not in args


def test_disable_tools_and_chrome_flags() -> None:
    args = ClaudeBackend().build_args(_request(disable_tools=True, use_chrome=True))
    assert "--chrome" in args
    assert args[-2:] == ["--tools", ""]


def test_stdin_frame_wraps_prompt_for_interactive_backend() -> None:
    backend = ClaudeBackend()
    frame = json.loads(backend.format_stdin_input("find recent taco recipes"))

    assert backend.requires_stdin_input() is True
    assert frame == {
        "type": "user",
        "message": {"role": "user", "content": "find recent taco recipes"},
    }


def test_stdin_frame_replaces_lone_surrogates() -> None:
    frame = ClaudeBackend().format_stdin_input("bad \ud800 char")
    assert json.loads(frame)["message"]["content"] == "bad \ufffd char"


def test_extract_session_id_from_init_only() -> None:
    backend = ClaudeBackend()
    init = json.dumps({"type": "system", "subtype": "init", "session_id": "abc", "model": "opus"})

    assert backend.extract_session_id(init) == "abc"
    assert backend.extract_session_id('{"type":"assistant"}') is None
    assert backend.extract_session_id("plain text") is None


def test_multi_block_assistant_turn_keeps_order() -> None:
    backend = ClaudeBackend()
    line = (
        '{"type":"assistant","message":{"content":[{"type":"text","text":"Let me check"},'
        '{"type":"tool_use","id":"t1","name":"Read","input":{"file_path":"/tmp/x"}}]}}'
    )

    events = backend.parse_event(line)

    assert isinstance(events, list)
    assert [event.type for event in events] == ["text", "tool_start"]
    assert events[0].text == "Let me check"
    assert events[1].tool_name == "Read"
    assert events[1].tool_use_id == "t1"
    assert events[1].tool_input == {"file_path": "/tmp/x"}


def test_tool_result_is_correlated_by_tool_use_id() -> None:
    backend = ClaudeBackend()
    backend.parse_event(
        json.dumps(
            {
                "type": "assistant",
                "message": {"content": [{"type": "tool_use", "id": "t9", "name": "Bash", "input": {"command": "ls"}}]},
            }
        )
    )
    result = backend.parse_event(
        json.dumps(
            {
                "type": "user",
                "message": {"content": [{"type": "tool_result", "tool_use_id": "t9", "content": "ignored"}]},
                "tool_use_result": {"stdout": "a.txt", "stderr": "warn"},
            }
        )
    )

    assert result.type == "tool_result"
    assert result.tool_name == "Bash"
    assert result.tool_output == "a.txt\n[stderr] warn"


def test_unmatched_tool_result_falls_back_to_unknown() -> None:
    backend = ClaudeBackend()
    line = json.dumps(
        {"type": "user", "message": {"content": [{"type": "tool_result", "tool_use_id": "nope", "content": "x"}]}}
    )

    event = backend.parse_event(line)

    assert event.tool_name == "unknown"
    assert event.tool_output == "x"
    # a duplicate result for the same id is still non-fatal
    assert backend.parse_event(line).tool_name == "unknown"


def test_task_tool_start_carries_subagent_fields() -> None:
    line = json.dumps(
        {
            "type": "assistant",
            "message": {
                "content": [
                    {
                        "type": "tool_use",
                        "id": "task-1",
                        "name": "Task",
                        "input": {"description": "audit", "subagent_type": "explorer", "name": "Audit"},
                    }
                ]
            },
        }
    )
    event = ClaudeBackend().parse_event(line)
    assert event.subagent_name == "Audit"
    assert event.subagent_type == "explorer"


def test_result_line_becomes_step_complete() -> None:
    line = json.dumps(
        {
            "type": "result",
            "subtype": "success",
            "result": "done",
            "duration_ms": 1200,
            "total_cost_usd": 0.0123,
            "usage": {
                "input_tokens": 10,
                "output_tokens": 20,
                "cache_creation_input_tokens": 5,
                "cache_read_input_tokens": 100,
            },
            "modelUsage": {"claude-x": {"contextWindow": 1000000, "inputTokens": 10, "outputTokens": 20}},
            "permission_denials": [{"tool_name": "Write", "tool_use_id": "w1", "tool_input": {}}],
        }
    )

    event = ClaudeBackend().parse_event(line)

    assert event.type == "step_complete"
    assert event.cost == pytest.approx(0.0123)
    assert event.tokens.cache_read == 100
    assert event.model_usage.context_window == 1000000
    assert event.result_text == "done"
    assert event.permission_denials[0].tool_name == "Write"


def test_local_command_output_maps_to_stats_events() -> None:
    backend = ClaudeBackend()
    context_line = json.dumps(
        {
            "type": "user",
            "message": {"content": "<local-command-stdout>## Context Usage\n**Model:** x</local-command-stdout>"},
        }
    )
    usage_line = json.dumps(
        {"type": "user", "message": {"content": "<local-command-stdout>## Usage\nSession: 5% used</local-command-stdout>"}}
    )

    assert backend.parse_event(context_line).type == "context_stats"
    assert backend.parse_event(usage_line).type == "usage_stats"


def test_stream_events() -> None:
    backend = ClaudeBackend()
    delta = json.dumps(
        {"type": "stream_event", "event": {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Hi"}}}
    )
    start = json.dumps(
        {"type": "stream_event", "event": {"type": "content_block_start", "content_block": {"type": "thinking"}}}
    )
    stop = json.dumps({"type": "stream_event", "event": {"type": "content_block_stop"}})

    text = backend.parse_event(delta)
    assert text.type == "text" and text.is_streaming is True
    assert backend.parse_event(start).block_type == "thinking"
    assert backend.parse_event(stop).type == "block_end"


@pytest.mark.parametrize(
    "line",
    [
        "",
        "not json",
        "{broken",
        "[1, 2]",
        '{"type": "assistant", "message": "oops"}',
        '{"type": "assistant", "message": {"content": [null, 3, {"type": "tool_use"}]}}',
        '{"type": "result", "usage": [], "modelUsage": {"m": {"contextWindow": "big"}}}',
        '{"type": "user", "message": {"content": [{"type": "tool_result", "content": {"a": 1}}]}}',
        '{"type": "mystery"}',
    ],
)
def test_parse_event_never_raises(line: str) -> None:
    result = ClaudeBackend().parse_event(line)
    if isinstance(result, list):
        assert all(isinstance(event, StandardEvent) for event in result)
    else:
        assert result is None or isinstance(result, StandardEvent)


def test_system_error_becomes_error_event() -> None:
    event = ClaudeBackend().parse_event('{"type":"system","subtype":"error","error":"rate limited"}')
    assert event.type == "error"
    assert event.error_message == "rate limited"


def test_deeply_nested_line_is_not_an_event() -> None:
    backend = ClaudeBackend()
    line = '{"a":' * 50_000 + "1" + "}" * 50_000

    assert backend.parse_event(line) is None
    assert backend.extract_session_id(line) is None
