"""Bridges bus signals and agent store changes to observer messages."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from ..runner.signals import (
    Activity,
    AgentError,
    CommandStarted,
    EventBus,
    Output,
    ParsedEvent,
    QueueChanged,
    TurnCompleted,
)
from ..storage import Agent, AgentStore, AreaStore
from .broadcast import BroadcastHub

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def activity_payload(agents: AgentStore, agent_id: str, message: str) -> dict[str, Any]:
    agent = agents.get_agent(agent_id)
    return {
        "agentId": agent_id,
        "agentName": agent.name if agent else "Unknown",
        "message": message,
        "timestamp": _now_ms(),
    }


def send_activity(hub: BroadcastHub, agents: AgentStore, agent_id: str, message: str) -> None:
    hub.broadcast("activity", activity_payload(agents, agent_id, message))


def wire_listeners(bus: EventBus, agents: AgentStore, hub: BroadcastHub) -> list[Callable[[], None]]:
    """Subscribe the hub to every outbound source; returns the unsubscribe callables."""

    def on_agent_change(event: str, data: Any) -> None:
        if event == "created":
            hub.broadcast("agent_created", data.to_wire())
            send_activity(hub, agents, data.id, f"{data.name} deployed")
        elif event == "updated":
            hub.broadcast("agent_updated", data.to_wire())
        elif event == "deleted":
            hub.broadcast("agent_deleted", {"id": data})
            hub.broadcast(
                "activity",
                {"agentId": data, "agentName": "System", "message": "Agent terminated", "timestamp": _now_ms()},
            )

    def on_event(signal_: ParsedEvent) -> None:
        hub.broadcast("event", {**signal_.event.to_wire(), "agentId": signal_.agent_id})

    def on_activity(signal_: Activity) -> None:
        if signal_.message:
            send_activity(hub, agents, signal_.agent_id, signal_.message)

    def on_output(signal_: Output) -> None:
        payload: dict[str, Any] = {
            "agentId": signal_.agent_id,
            "text": signal_.text,
            "isStreaming": signal_.is_streaming,
            "timestamp": _now_ms(),
        }
        if signal_.subagent_name:
            payload["subagentName"] = signal_.subagent_name
        if signal_.uuid:
            payload["uuid"] = signal_.uuid
        hub.broadcast("output", payload)

    def on_turn(signal_: TurnCompleted) -> None:
        send_activity(hub, agents, signal_.agent_id, "Task completed" if signal_.success else "Task failed")

    def on_error(signal_: AgentError) -> None:
        send_activity(hub, agents, signal_.agent_id, f"Error: {signal_.message}")

    def on_queue(signal_: QueueChanged) -> None:
        hub.broadcast("queue_update", {"agentId": signal_.agent_id, "pendingCommands": list(signal_.pending)})

    def on_command(signal_: CommandStarted) -> None:
        hub.broadcast("command_started", {"agentId": signal_.agent_id, "command": signal_.command})

    return [
        agents.subscribe(on_agent_change),
        bus.subscribe(ParsedEvent, on_event),
        bus.subscribe(Activity, on_activity),
        bus.subscribe(Output, on_output),
        bus.subscribe(TurnCompleted, on_turn),
        bus.subscribe(AgentError, on_error),
        bus.subscribe(QueueChanged, on_queue),
        bus.subscribe(CommandStarted, on_command),
    ]


def send_snapshot(hub: BroadcastHub, subscriber_id: int, agents: AgentStore, areas: AreaStore) -> None:
    """Send the full state an observer needs right after connecting."""

    snapshot: list[Agent] = agents.list_agents()
    hub.send(subscriber_id, "agents_update", [agent.to_wire() for agent in snapshot])
    hub.send(subscriber_id, "areas_update", areas.load())


__all__ = ["activity_payload", "send_activity", "send_snapshot", "wire_listeners"]
