"""JSON-backed agent directory."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Callable
from uuid import uuid4

from pydantic import ValidationError

from ..errors import DirectoryMissingError
from ..models import BackendKind
from .files import read_json, write_json_atomic
from .models import Agent

logger = logging.getLogger(__name__)

AgentListener = Callable[[str, Any], None]


class AgentStore:
    """Holds every agent record in memory and rewrites the file on each change.

    Listeners receive ``("created", Agent)``, ``("updated", Agent)`` or
    ``("deleted", agent_id)``.
    """

    def __init__(
        self,
        path: Path,
        *,
        clock: Callable[[], float] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._path = Path(path)
        self._clock = clock or time.time
        self._id_factory = id_factory or (lambda: uuid4().hex[:12])
        self._agents: dict[str, Agent] = {}
        self._listeners: list[AgentListener] = []
        self._load()

    def _load(self) -> None:
        document = read_json(self._path, [])
        for entry in document if isinstance(document, list) else []:
            try:
                agent = Agent.model_validate(entry)
            except ValidationError as exc:
                logger.warning("Skipping invalid agent record", extra={"error": str(exc)})
                continue
            self._agents[agent.id] = agent

    def _save(self) -> None:
        write_json_atomic(self._path, [agent.to_wire() for agent in self._agents.values()])

    def _notify(self, event: str, data: Any) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, data)
            except Exception:  # noqa: BLE001
                logger.exception("Agent listener failed", extra={"event": event})

    def subscribe(self, listener: AgentListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def list_agents(self) -> list[Agent]:
        return list(self._agents.values())

    def get_agent(self, agent_id: str) -> Agent | None:
        return self._agents.get(agent_id)

    def create_agent(
        self,
        name: str,
        cwd: str,
        *,
        agent_class: str = "default",
        backend: BackendKind | str = BackendKind.INTERACTIVE,
        session_id: str | None = None,
        position: dict[str, float] | None = None,
        use_chrome: bool = False,
        model: str | None = None,
        permission_mode: str = "bypass",
        custom_instructions: str | None = None,
    ) -> Agent:
        """Create and persist an agent; the working directory must already exist."""

        directory = Path(cwd).expanduser()
        if not directory.is_dir():
            raise DirectoryMissingError(str(directory))

        now = self._clock()
        agent = Agent(
            id=self._id_factory(),
            name=name,
            agent_class=agent_class,
            cwd=str(directory.resolve()),
            backend=BackendKind(backend),
            session_id=session_id,
            position=position,
            use_chrome=use_chrome,
            model=model,
            permission_mode=permission_mode,
            custom_instructions=custom_instructions,
            created_at=now,
            last_activity=now,
        )
        self._agents[agent.id] = agent
        self._save()
        logger.info("Created agent", extra={"agent_id": agent.id, "agent_name": name, "cwd": agent.cwd})
        self._notify("created", agent)
        return agent

    def update_agent(
        self, agent_id: str, changes: dict[str, Any], touch_activity: bool = True
    ) -> Agent | None:
        """Apply ``changes`` (field names) and return the new record."""

        current = self._agents.get(agent_id)
        if current is None:
            return None

        updates = dict(changes)
        if touch_activity:
            updates["last_activity"] = self._clock()
        updated = current.model_copy(update=updates)
        if updated == current:
            return current

        self._agents[agent_id] = updated
        self._save()
        self._notify("updated", updated)
        return updated

    def delete_agent(self, agent_id: str) -> bool:
        if self._agents.pop(agent_id, None) is None:
            return False
        self._save()
        logger.info("Deleted agent", extra={"agent_id": agent_id})
        self._notify("deleted", agent_id)
        return True


__all__ = ["AgentStore"]
