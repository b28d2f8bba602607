from __future__ import annotations

import json

from armada.backends import CodexBackend
from armada.models import AgentOverlay, CodexOptions, RunnerRequest


def _request(**overrides) -> RunnerRequest:
    values = {"agent_id": "a1", "working_dir": "/work/app", "prompt": "find recent taco recipes"}
    values.update(overrides)
    return RunnerRequest(**values)


def test_build_args_start_with_fixed_flags_and_end_with_wrapped_prompt() -> None:
    args = CodexBackend().build_args(_request(backend="batch-resume"))

    assert args[:2] == ["exec", "--json"]
    assert "--dangerously-bypass-approvals-and-sandbox" in args
    assert args[args.index("-C") + 1] == "/work/app"
    prompt = args[-1]
    assert "find recent taco recipes" in prompt
    assert prompt.startswith("Follow all instructions below for this task.")
    assert prompt.rstrip().endswith("## User Request\nfind recent taco recipes")


def test_build_args_with_approval_mode_and_options() -> None:
    options = CodexOptions(full_auto=False, approval_mode="never", sandbox="read-only", search=True, profile="fast")
    args = CodexBackend().build_args(_request(codex=options, model="gpt-5"))

    assert args[args.index("--ask-for-approval") + 1] == "never"
    assert args[args.index("--sandbox") + 1] == "read-only"
    assert "--search" in args
    assert args[args.index("--profile") + 1] == "fast"
    assert args[args.index("--model") + 1] == "gpt-5"
    assert "--dangerously-bypass-approvals-and-sandbox" not in args


def test_overlay_is_folded_into_prompt() -> None:
    overlay = AgentOverlay(name="builder", instructions="Run tests after every edit.")
    prompt = CodexBackend().build_args(_request(overlay=overlay, system_prompt="Branch: main"))[-1]

    assert "## Agent Instructions\nRun tests after every edit." in prompt
    assert "## System Context\nBranch: main" in prompt


def test_session_id_round_trips_into_resume_args() -> None:
    backend = CodexBackend()
    line = json.dumps({"type": "thread.started", "thread_id": "thread-42"})

    session_id = backend.extract_session_id(line)
    args = backend.build_args(_request(session_id=session_id))

    assert session_id == "thread-42"
    resume_at = args.index("resume")
    assert args[resume_at + 1] == "thread-42"
    assert resume_at + 2 == len(args) - 1


def test_codex_never_uses_stdin() -> None:
    backend = CodexBackend()
    assert backend.requires_stdin_input() is False


def test_command_execution_start_and_result_are_correlated() -> None:
    backend = CodexBackend()
    start = backend.parse_event(
        json.dumps({"type": "item.started", "item": {"id": "i1", "type": "command_execution", "command": "ls"}})
    )
    done = backend.parse_event(
        json.dumps(
            {
                "type": "item.completed",
                "item": {"id": "i1", "type": "command_execution", "aggregated_output": "boom", "exit_code": 2},
            }
        )
    )

    assert start.type == "tool_start"
    assert start.tool_name == "Bash"
    assert start.tool_input == {"command": "ls"}
    assert done.type == "tool_result"
    assert done.tool_name == "Bash"
    assert done.tool_output == "boom\n[exit code] 2"


def test_file_change_yields_start_then_result() -> None:
    events = CodexBackend().parse_event(
        json.dumps(
            {
                "type": "item.completed",
                "item": {"id": "f1", "type": "file_change", "changes": [{"path": "src/a.py", "kind": "add"}]},
            }
        )
    )

    assert [event.type for event in events] == ["tool_start", "tool_result"]
    assert events[0].tool_name == "Edit"
    assert events[0].tool_input["file_path"] == "src/a.py"
    assert events[1].tool_output == "add: src/a.py"


def test_agent_message_reasoning_and_mcp_calls() -> None:
    backend = CodexBackend()
    text = backend.parse_event('{"type":"item.completed","item":{"id":"m","type":"agent_message","text":"Hi"}}')
    thinking = backend.parse_event('{"type":"item.completed","item":{"id":"r","type":"reasoning","text":"hmm"}}')
    mcp = backend.parse_event(
        '{"type":"item.started","item":{"id":"c","type":"mcp_tool_call","server":"docs","tool":"search","arguments":{"q":"x"}}}'
    )

    assert text.type == "text" and text.text == "Hi"
    assert thinking.type == "thinking"
    assert mcp.tool_name == "mcp__docs__search"
    assert mcp.tool_input == {"q": "x"}


def test_turn_completed_reports_tokens() -> None:
    event = CodexBackend().parse_event(
        '{"type":"turn.completed","usage":{"input_tokens":100,"cached_input_tokens":40,"output_tokens":7}}'
    )

    assert event.type == "step_complete"
    assert event.tokens.input == 100
    assert event.tokens.cache_read == 40
    assert event.tokens.output == 7


def test_failures_map_to_error_events() -> None:
    backend = CodexBackend()
    failed = backend.parse_event('{"type":"turn.failed","error":{"message":"quota"}}')
    error = backend.parse_event('{"type":"error","message":"stream closed"}')

    assert failed.error_message == "quota"
    assert error.error_message == "stream closed"


def test_unknown_and_malformed_lines_return_none() -> None:
    backend = CodexBackend()
    assert backend.parse_event("Reading prompt from stdin...") is None
    assert backend.parse_event('{"type":"item.completed","item":"nope"}') is None
    assert backend.parse_event('{"type":"item.completed","item":{"type":"file_change","changes":5}}') is None


def test_deeply_nested_line_is_not_an_event() -> None:
    backend = CodexBackend()
    line = '{"item":' * 50_000 + "1" + "}" * 50_000

    assert backend.parse_event(line) is None
    assert backend.extract_session_id(line) is None
