"""Tool registration for the Armada MCP surface."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from ..classes import ClassLoadError
from ..errors import AgentNotFoundError

if TYPE_CHECKING:
    from ..orchestrator import Orchestrator

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    spawn_agent: Any
    list_agents: Any
    send_command: Any
    stop_agent: Any
    interrupt_agent: Any
    agent_status: Any
    list_agent_classes: Any
    process_diagnostics: Any


def register_tools(server: FastMCP, *, orchestrator: Orchestrator) -> ToolHandles:
    """Register the agent orchestration tools on ``server``."""

    agents = orchestrator.agents
    runner = orchestrator.runner

    def _require_agent(agent_id: str):
        agent = agents.get_agent(agent_id)
        if agent is None:
            raise AgentNotFoundError(f"Agent '{agent_id}' not found")
        return agent

    def _spawn_agent(
        name: str,
        cwd: str,
        *,
        agent_class: str = "default",
        backend: str | None = None,
        model: str | None = None,
        create_directory: bool = False,
        custom_instructions: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Create an agent bound to ``cwd``; commands start its process."""

        if create_directory:
            Path(cwd).expanduser().mkdir(parents=True, exist_ok=True)
        agent = orchestrator.spawn_agent(
            name,
            cwd,
            agent_class=agent_class,
            backend=backend,
            model=model,
            custom_instructions=custom_instructions,
        )
        _emit_log(
            context,
            "info",
            "Spawned agent",
            extra={"agent_id": agent.id, "agent_name": agent.name, "backend": agent.backend.value},
        )
        return agent.to_wire()

    def _list_agents(context: Context | None = None) -> list[dict[str, Any]]:
        catalog = [
            {
                "id": agent.id,
                "name": agent.name,
                "class": agent.agent_class,
                "status": agent.status.value,
                "backend": agent.backend.value,
                "cwd": agent.cwd,
                "pendingCommands": len(agent.pending_commands),
                "running": runner.is_running(agent.id),
            }
            for agent in agents.list_agents()
        ]
        _emit_log(context, "debug", "Listing agents", extra={"count": len(catalog)})
        return catalog

    async def _send_command(agent_id: str, command: str, context: Context | None = None) -> dict[str, Any]:
        """Run ``command`` now if the agent is idle, otherwise queue it."""

        _require_agent(agent_id)
        outcome = await orchestrator.send_command(agent_id, command)
        pending = runner.pending(agent_id)
        _emit_log(
            context,
            "info",
            "Command submitted",
            extra={"agent_id": agent_id, "outcome": outcome, "pending": len(pending)},
        )
        return {"agentId": agent_id, "outcome": outcome, "pendingCommands": pending}

    async def _stop_agent(agent_id: str, requeue: bool = False, context: Context | None = None) -> dict[str, Any]:
        _require_agent(agent_id)
        discarded = await orchestrator.stop_agent(agent_id, requeue=requeue)
        orchestrator.send_activity(agent_id, "Operation cancelled")
        _emit_log(context, "info", "Stopped agent", extra={"agent_id": agent_id, "discarded": len(discarded)})
        return {"agentId": agent_id, "discarded": discarded, "status": runner.status(agent_id).value}

    def _interrupt_agent(agent_id: str, context: Context | None = None) -> dict[str, Any]:
        """Send SIGINT to the agent's live process; it stays tracked until it exits."""

        _require_agent(agent_id)
        interrupted = runner.interrupt(agent_id)
        if interrupted:
            orchestrator.send_activity(agent_id, "Interrupt sent")
        _emit_log(context, "info", "Interrupt requested", extra={"agent_id": agent_id, "interrupted": interrupted})
        return {"agentId": agent_id, "interrupted": interrupted}

    def _agent_status(agent_id: str, context: Context | None = None) -> dict[str, Any]:
        agent = _require_agent(agent_id)
        handle = runner.get_process(agent_id)
        payload = agent.to_wire()
        payload["process"] = (
            {
                "pid": handle.pid,
                "sessionId": handle.session_id,
                "inFlight": handle.in_flight,
                "memoryMb": orchestrator.resources.process_memory_mb(agent_id),
            }
            if handle is not None
            else None
        )
        _emit_log(context, "debug", "Agent status", extra={"agent_id": agent_id, "status": agent.status.value})
        return payload

    def _list_agent_classes(context: Context | None = None) -> list[dict[str, Any]]:
        try:
            classes = orchestrator.classes.load_all()
        except ClassLoadError as exc:
            _emit_log(context, "warning", "Agent classes failed to load", extra={"error": str(exc)})
            raise
        catalog = [
            {
                "id": agent_class.id,
                "title": agent_class.title,
                "description": agent_class.description,
                "skills": [skill.name for skill in agent_class.skills],
                "model": agent_class.model,
            }
            for agent_class in classes.values()
        ]
        _emit_log(context, "debug", "Listing agent classes", extra={"count": len(catalog)})
        return catalog

    def _process_diagnostics(context: Context | None = None) -> dict[str, Any]:
        processes = runner.diagnostics()
        for entry in processes:
            entry["memory_mb"] = orchestrator.resources.process_memory_mb(entry["agent_id"])
        deaths = [death.to_dict() for death in orchestrator.watchdog.death_history()[:10]]
        _emit_log(context, "debug", "Process diagnostics", extra={"processes": len(processes)})
        return {
            "processes": processes,
            "recent_deaths": deaths,
            "recovery_actions": [action.to_dict() for action in orchestrator.recovery_actions],
        }

    tool_spawn = server.tool(
        name="spawn_agent",
        description=(
            "Create an agent bound to a working directory. Optionally create the "
            "directory first. Returns the agent record."
        ),
    )(_spawn_agent)

    tool_list = server.tool(
        name="list_agents",
        description="List agents with status, backend, queue depth, and whether a process is live.",
    )(_list_agents)

    tool_send = server.tool(
        name="send_command",
        description=(
            "Send a command to an agent. Idle agents start immediately; busy agents "
            "queue the command in FIFO order."
        ),
        annotations={
            "safety": {
                "level": "caution",
                "notes": "Agents run with the configured permission mode in their working directory",
            }
        },
    )(_send_command)

    tool_stop = server.tool(
        name="stop_agent",
        description=(
            "Stop the agent's process (SIGTERM, then SIGKILL after the grace period). "
            "Pending commands are discarded unless requeue is true."
        ),
    )(_stop_agent)

    tool_interrupt = server.tool(
        name="interrupt_agent",
        description="Send SIGINT to the agent's live process without discarding its queue.",
    )(_interrupt_agent)

    tool_status = server.tool(
        name="agent_status",
        description="Return one agent record plus its live process details and memory usage.",
    )(_agent_status)

    tool_classes = server.tool(
        name="list_agent_classes",
        description="List agent classes available for new agents.",
    )(_list_agent_classes)

    tool_diagnostics = server.tool(
        name="process_diagnostics",
        description="Report live processes, recent process deaths, and startup recovery actions.",
    )(_process_diagnostics)

    return ToolHandles(
        spawn_agent=tool_spawn,
        list_agents=tool_list,
        send_command=tool_send,
        stop_agent=tool_stop,
        interrupt_agent=tool_interrupt,
        agent_status=tool_status,
        list_agent_classes=tool_classes,
        process_diagnostics=tool_diagnostics,
    )


__all__ = ["register_tools", "ToolHandles"]


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)
