"""Typed publish/subscribe bus decoupling output parsing from its side effects."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from ..events import StandardEvent
from ..models import AgentStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Activity:
    agent_id: str
    timestamp: float
    message: str | None = None


@dataclass(frozen=True, slots=True)
class SessionAssigned:
    agent_id: str
    session_id: str


@dataclass(frozen=True, slots=True)
class ParsedEvent:
    agent_id: str
    event: StandardEvent
    digest: str


@dataclass(frozen=True, slots=True)
class Output:
    agent_id: str
    text: str
    is_streaming: bool = False
    subagent_name: str | None = None
    uuid: str | None = None


@dataclass(frozen=True, slots=True)
class ProcessSpawned:
    agent_id: str
    pid: int | None
    argv: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class SpawnFailed:
    agent_id: str
    error: str


@dataclass(frozen=True, slots=True)
class ProcessExited:
    agent_id: str
    pid: int | None
    returncode: int | None
    runtime: float
    stopped: bool
    stderr_tail: str = ""


@dataclass(frozen=True, slots=True)
class TurnCompleted:
    agent_id: str
    success: bool


@dataclass(frozen=True, slots=True)
class AgentError:
    agent_id: str
    message: str


@dataclass(frozen=True, slots=True)
class StatusChanged:
    agent_id: str
    status: AgentStatus
    error: str | None = None


@dataclass(frozen=True, slots=True)
class QueueChanged:
    agent_id: str
    pending: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class CommandStarted:
    agent_id: str
    command: str


@dataclass(frozen=True, slots=True)
class AgentStopped:
    agent_id: str
    discarded: tuple[str, ...]


SignalT = TypeVar("SignalT")


class EventBus:
    """Synchronous in-process bus keyed by signal type.

    A handler that raises is logged and skipped; the remaining handlers for
    the same signal still run.
    """

    def __init__(self) -> None:
        self._handlers: dict[type, list[Callable[[Any], None]]] = defaultdict(list)

    def subscribe(self, signal_type: type[SignalT], handler: Callable[[SignalT], None]) -> Callable[[], None]:
        self._handlers[signal_type].append(handler)

        def _unsubscribe() -> None:
            handlers = self._handlers.get(signal_type)
            if handlers and handler in handlers:
                handlers.remove(handler)

        return _unsubscribe

    def publish(self, signal: Any) -> None:
        for handler in list(self._handlers.get(type(signal), ())):
            try:
                handler(signal)
            except Exception:  # noqa: BLE001
                logger.exception(
                    "Bus handler failed",
                    extra={
                        "signal": type(signal).__name__,
                        "agent_id": getattr(signal, "agent_id", None),
                    },
                )

    def handler_count(self, signal_type: type) -> int:
        return len(self._handlers.get(signal_type, ()))


__all__ = [
    "Activity",
    "AgentError",
    "AgentStopped",
    "CommandStarted",
    "EventBus",
    "Output",
    "ParsedEvent",
    "ProcessExited",
    "ProcessSpawned",
    "QueueChanged",
    "SessionAssigned",
    "SpawnFailed",
    "StatusChanged",
    "TurnCompleted",
]
