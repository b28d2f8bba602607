from __future__ import annotations

from pathlib import Path

from armada.events import ModelUsage, StandardEvent, TokenUsage
from armada.models import AgentStatus
from armada.runner import AgentStateReducer, EventBus
from armada.runner.signals import (
    AgentError,
    CommandStarted,
    ParsedEvent,
    QueueChanged,
    SessionAssigned,
    StatusChanged,
)
from armada.runner.state import context_usage
from armada.storage import AgentStore


def _setup(tmp_path: Path):
    bus = EventBus()
    store = AgentStore(tmp_path / "agents.json", clock=lambda: 10.0, id_factory=lambda: "a1")
    store.create_agent("scout", str(tmp_path))
    reducer = AgentStateReducer(bus, store, clock=lambda: 20.0)
    return bus, store, reducer


def _step(**fields) -> StandardEvent:
    return StandardEvent(type="step_complete", **fields)


def test_replayed_step_complete_is_counted_once(tmp_path: Path) -> None:
    bus, store, _reducer = _setup(tmp_path)
    event = _step(tokens=TokenUsage(input=100, output=20, cache_read=1000))

    bus.publish(ParsedEvent("a1", event, "digest-1"))
    bus.publish(ParsedEvent("a1", event, "digest-1"))

    agent = store.get_agent("a1")
    assert agent.tokens_used == 120
    assert agent.context_used == 1120
    assert agent.context_limit == 200_000

    bus.publish(ParsedEvent("a1", event, "digest-2"))
    assert store.get_agent("a1").tokens_used == 240


def test_context_usage_prefers_model_usage() -> None:
    event = _step(
        tokens=TokenUsage(input=1, output=1),
        model_usage=ModelUsage(context_window=1_000_000, input_tokens=10, output_tokens=5, cache_read_input_tokens=85),
    )

    assert context_usage(event) == (100, 1_000_000)
    assert context_usage(_step()) is None


def test_command_and_tool_tracking(tmp_path: Path) -> None:
    bus, store, _reducer = _setup(tmp_path)

    bus.publish(CommandStarted("a1", "find recent taco recipes"))
    bus.publish(ParsedEvent("a1", StandardEvent(type="tool_start", tool_name="WebSearch"), "d1"))
    agent = store.get_agent("a1")
    assert agent.current_task == "find recent taco recipes"
    assert agent.last_assigned_task == "find recent taco recipes"
    assert agent.last_assigned_task_time == 20.0
    assert agent.task_count == 1
    assert agent.current_tool == "WebSearch"

    bus.publish(ParsedEvent("a1", StandardEvent(type="tool_result", tool_name="WebSearch"), "d2"))
    assert store.get_agent("a1").current_tool is None

    bus.publish(CommandStarted("a1", "[System: context check]"))
    agent = store.get_agent("a1")
    assert agent.task_count == 2
    assert agent.last_assigned_task == "find recent taco recipes"

    bus.publish(StatusChanged("a1", AgentStatus.IDLE))
    agent = store.get_agent("a1")
    assert agent.status is AgentStatus.IDLE
    assert agent.current_task is None


def test_status_session_queue_and_errors(tmp_path: Path) -> None:
    bus, store, _reducer = _setup(tmp_path)

    bus.publish(StatusChanged("a1", AgentStatus.ERROR, "Process exited with code 1"))
    bus.publish(SessionAssigned("a1", "sess-9"))
    bus.publish(QueueChanged("a1", ("one", "two")))
    bus.publish(AgentError("a1", "later failure"))

    agent = store.get_agent("a1")
    assert agent.status is AgentStatus.ERROR
    assert agent.session_id == "sess-9"
    assert agent.pending_commands == ["one", "two"]
    assert agent.last_error == "later failure"


def test_context_and_usage_stats_events(tmp_path: Path) -> None:
    bus, store, _reducer = _setup(tmp_path)

    context = StandardEvent(type="context_stats", context_stats_raw="**Tokens:** 50k / 200k (25%)")
    usage = StandardEvent(type="usage_stats", usage_stats_raw="Session: 12% used")
    bus.publish(ParsedEvent("a1", context, "c"))
    bus.publish(ParsedEvent("a1", usage, "u"))

    agent = store.get_agent("a1")
    assert agent.context_used == 50_000
    assert agent.context_stats["usedPercent"] == 25.0
    assert agent.usage_stats["entries"] == [{"label": "Session", "percent": 12.0}]


def test_unknown_agent_and_close(tmp_path: Path) -> None:
    bus, store, reducer = _setup(tmp_path)

    bus.publish(SessionAssigned("ghost", "s"))
    assert store.get_agent("ghost") is None

    reducer.close()
    bus.publish(SessionAssigned("a1", "after-close"))
    assert store.get_agent("a1").session_id is None
