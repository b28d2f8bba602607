"""Composition root wiring stores, runner, supervision and the observer hub."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .classes import AgentClass, ClassLoadError, ClassLoader, build_overlay
from .config import ArmadaSettings, get_settings
from .errors import AgentNotFoundError
from .hub import BroadcastHub, CommandRouter, send_activity, wire_listeners
from .models import AgentStatus, BackendKind, RunnerRequest
from .runner import (
    AgentStateReducer,
    EventBus,
    ProcessRunner,
    RecoveryAction,
    RecoveryStore,
    ResourceMonitor,
    RestartPolicy,
    Watchdog,
)
from .runner.process_runner import RunOutcome
from .storage import Agent, AgentStore, AreaStore, RunningProcessStore

logger = logging.getLogger(__name__)

_STALE_STATUSES = {AgentStatus.WORKING, AgentStatus.WAITING, AgentStatus.WAITING_PERMISSION}


class Orchestrator:
    """Owns every long-lived collaborator for one host lifetime."""

    def __init__(
        self,
        settings: ArmadaSettings | None = None,
        *,
        bus: EventBus | None = None,
        runner: ProcessRunner | None = None,
        recovery: RecoveryStore | None = None,
        hub: BroadcastHub | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        data_dir = self.settings.data_dir
        self.bus = bus or EventBus()
        self.agents = AgentStore(data_dir / "agents.json")
        self.areas = AreaStore(data_dir / "areas.json")
        self.classes = ClassLoader(self.settings.class_paths)
        self.recovery = recovery or RecoveryStore(
            RunningProcessStore(data_dir / "running_processes.json"),
            resume_delay=self.settings.resume_delay_seconds,
        )
        self.runner = runner or ProcessRunner(
            self.bus,
            settings=self.settings,
            snapshot_sink=self.recovery.persist,
            request_builder=self.build_request,
            restart_policy=RestartPolicy(enabled=self.settings.auto_restart),
        )
        self.reducer = AgentStateReducer(self.bus, self.agents)
        self.watchdog = Watchdog(self.runner, self.bus)
        self.resources = ResourceMonitor(self.runner)
        self.hub = hub or BroadcastHub(self.settings.observer_queue_size)
        self.router = CommandRouter(self)
        self.ready = asyncio.Event()
        self.recovery_actions: list[RecoveryAction] = []
        self._tasks: list[asyncio.Task] = []
        self._unsubscribers = wire_listeners(self.bus, self.agents, self.hub)

    # --------------------------------------------------------------- requests

    def _agent_class(self, class_id: str) -> AgentClass | None:
        try:
            return self.classes.load_all().get(class_id)
        except ClassLoadError as exc:
            logger.warning("Agent classes could not be loaded", extra={"error": str(exc)})
            return None

    def build_request(self, agent_id: str, prompt: str) -> RunnerRequest:
        """Translate an agent record plus prompt into a runner request."""

        agent = self.agents.get_agent(agent_id)
        if agent is None:
            raise AgentNotFoundError(f"Agent {agent_id} not found")
        agent_class = self._agent_class(agent.agent_class)
        overlay = build_overlay(
            agent_class,
            agent_id=agent.id,
            agent_name=agent.name,
            custom_instructions=agent.custom_instructions,
        )
        return RunnerRequest(
            agent_id=agent.id,
            working_dir=agent.cwd,
            prompt=prompt,
            session_id=self.runner.session_id(agent.id) or agent.session_id,
            backend=agent.backend,
            model=agent.model or (agent_class.model if agent_class else None),
            overlay=overlay,
            permission_mode=agent.permission_mode,
            use_chrome=agent.use_chrome,
        )

    # --------------------------------------------------------------- commands

    def spawn_agent(
        self,
        name: str,
        cwd: str,
        *,
        agent_class: str = "default",
        backend: BackendKind | str | None = None,
        **options: Any,
    ) -> Agent:
        return self.agents.create_agent(
            name,
            cwd,
            agent_class=agent_class,
            backend=backend or self.settings.default_backend,
            **options,
        )

    async def send_command(self, agent_id: str, text: str) -> RunOutcome:
        if self.agents.get_agent(agent_id) is None:
            raise AgentNotFoundError(f"Agent {agent_id} not found")
        return await self.runner.send_command(agent_id, text)

    async def stop_agent(self, agent_id: str, *, requeue: bool = False) -> list[str]:
        return await self.runner.stop(agent_id, requeue=requeue)

    def send_activity(self, agent_id: str, message: str) -> None:
        send_activity(self.hub, self.agents, agent_id, message)

    # -------------------------------------------------------------- lifecycle

    def _reset_stale_state(self, recovered: set[str]) -> None:
        for agent in self.agents.list_agents():
            changes: dict[str, Any] = {}
            if agent.pending_commands:
                changes["pending_commands"] = []
            if agent.status in _STALE_STATUSES and agent.id not in recovered:
                changes["status"] = AgentStatus.OFFLINE
                changes["current_task"] = None
                changes["current_tool"] = None
            if changes:
                self.agents.update_agent(agent.id, changes, touch_activity=False)

    async def start(self) -> list[RecoveryAction]:
        """Reconcile the previous lifetime and start the background loops."""

        self.recovery_actions, plans = self.recovery.scan(self.runner)
        self._reset_stale_state({action.agent_id for action in self.recovery_actions})
        loop = asyncio.get_running_loop()
        self._tasks = [
            loop.create_task(self.recovery.resume(plans, self.runner, self.ready), name="armada-resume"),
            loop.create_task(self._persist_forever(), name="armada-persist"),
            loop.create_task(
                self.watchdog.run_forever(self.settings.watchdog_interval_seconds), name="armada-watchdog"
            ),
        ]
        self.ready.set()
        logger.info(
            "Orchestrator started",
            extra={
                "agents": len(self.agents.list_agents()),
                "recovered": len(self.recovery_actions),
                "resumes": len(plans),
            },
        )
        return self.recovery_actions

    async def _persist_forever(self) -> None:
        while True:
            await asyncio.sleep(self.settings.persist_interval_seconds)
            self.runner.persist()

    async def shutdown(self) -> None:
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        await self.runner.stop_all(kill_processes=self.settings.kill_on_shutdown)
        await self.hub.close()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self.reducer.close()
        logger.info("Orchestrator stopped")


__all__ = ["Orchestrator"]
