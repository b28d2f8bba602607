"""Applies runner signals to the durable agent records."""

from __future__ import annotations

import logging
import time
from collections import defaultdict, deque
from typing import Any, Callable

from ..backends.stats import parse_context_output, parse_usage_output
from ..events import StandardEvent
from ..models import AgentStatus
from ..storage import AgentStore
from .signals import (
    AgentError,
    CommandStarted,
    EventBus,
    ParsedEvent,
    QueueChanged,
    SessionAssigned,
    StatusChanged,
)

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_LIMIT = 200_000
_APPLIED_DIGEST_LIMIT = 256
_TASK_PREVIEW = 100
_SYSTEM_PREFIX = "[System:"


def context_usage(event: StandardEvent) -> tuple[int, int] | None:
    """Return ``(context_used, context_limit)`` for a ``step_complete`` event."""

    usage = event.model_usage
    if usage is not None:
        used = (
            (usage.cache_read_input_tokens or 0)
            + (usage.cache_creation_input_tokens or 0)
            + (usage.input_tokens or 0)
            + (usage.output_tokens or 0)
        )
        return used, usage.context_window or DEFAULT_CONTEXT_LIMIT
    tokens = event.tokens
    if tokens is None:
        return None
    used = (tokens.cache_read or 0) + (tokens.cache_creation or 0) + (tokens.input or 0) + (tokens.output or 0)
    return used, DEFAULT_CONTEXT_LIMIT


class AgentStateReducer:
    """Idempotent reducer from bus signals to :class:`AgentStore` updates.

    Token totals are keyed by line digest, so replaying a line leaves the
    record unchanged.
    """

    def __init__(self, bus: EventBus, agents: AgentStore, *, clock: Callable[[], float] = time.time) -> None:
        self._agents = agents
        self._clock = clock
        self._applied: dict[str, deque[str]] = defaultdict(lambda: deque(maxlen=_APPLIED_DIGEST_LIMIT))
        self._unsubscribers = [
            bus.subscribe(StatusChanged, self._on_status),
            bus.subscribe(SessionAssigned, self._on_session),
            bus.subscribe(ParsedEvent, self._on_event),
            bus.subscribe(CommandStarted, self._on_command),
            bus.subscribe(QueueChanged, self._on_queue),
            bus.subscribe(AgentError, self._on_error),
        ]

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    def _update(self, agent_id: str, changes: dict[str, Any], touch_activity: bool = True) -> None:
        if self._agents.get_agent(agent_id) is None:
            logger.debug("Dropping update for unknown agent", extra={"agent_id": agent_id})
            return
        self._agents.update_agent(agent_id, changes, touch_activity=touch_activity)

    def _on_status(self, signal_: StatusChanged) -> None:
        changes: dict[str, Any] = {"status": signal_.status}
        if signal_.error is not None:
            changes["last_error"] = signal_.error
        if signal_.status is AgentStatus.IDLE:
            changes["current_task"] = None
            changes["current_tool"] = None
        self._update(signal_.agent_id, changes)

    def _on_session(self, signal_: SessionAssigned) -> None:
        self._update(signal_.agent_id, {"session_id": signal_.session_id})

    def _on_command(self, signal_: CommandStarted) -> None:
        agent = self._agents.get_agent(signal_.agent_id)
        if agent is None:
            return
        changes: dict[str, Any] = {
            "current_task": signal_.command[:_TASK_PREVIEW],
            "task_count": agent.task_count + 1,
        }
        if not signal_.command.startswith(_SYSTEM_PREFIX):
            changes["last_assigned_task"] = signal_.command
            changes["last_assigned_task_time"] = self._clock()
        self._update(signal_.agent_id, changes)

    def _on_queue(self, signal_: QueueChanged) -> None:
        self._update(signal_.agent_id, {"pending_commands": list(signal_.pending)}, touch_activity=False)

    def _on_error(self, signal_: AgentError) -> None:
        self._update(signal_.agent_id, {"last_error": signal_.message})

    def _on_event(self, signal_: ParsedEvent) -> None:
        event = signal_.event
        agent_id = signal_.agent_id

        if event.type == "tool_start":
            self._update(agent_id, {"current_tool": event.tool_name})
        elif event.type == "tool_result":
            self._update(agent_id, {"current_tool": None})
        elif event.type == "step_complete":
            self._apply_step(agent_id, event, signal_.digest)
        elif event.type == "context_stats" and event.context_stats_raw:
            stats = parse_context_output(event.context_stats_raw)
            if stats is None:
                return
            self._update(
                agent_id,
                {
                    "context_stats": stats.model_dump(mode="json", by_alias=True),
                    "context_used": stats.total_tokens,
                    "context_limit": stats.context_window,
                },
            )
        elif event.type == "usage_stats" and event.usage_stats_raw:
            stats = parse_usage_output(event.usage_stats_raw)
            self._update(agent_id, {"usage_stats": stats.model_dump(mode="json", by_alias=True)})

    def _apply_step(self, agent_id: str, event: StandardEvent, digest: str) -> None:
        applied = self._applied[agent_id]
        if digest in applied:
            logger.debug("Ignoring replayed turn accounting", extra={"agent_id": agent_id})
            return
        agent = self._agents.get_agent(agent_id)
        if agent is None:
            return
        applied.append(digest)

        changes: dict[str, Any] = {}
        usage = context_usage(event)
        if usage is not None:
            changes["context_used"], changes["context_limit"] = usage
        if event.tokens is not None:
            changes["tokens_used"] = agent.tokens_used + (event.tokens.input or 0) + (event.tokens.output or 0)
        if changes:
            self._update(agent_id, changes)


__all__ = ["AgentStateReducer", "DEFAULT_CONTEXT_LIMIT", "context_usage"]
