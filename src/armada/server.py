"""ASGI application and FastMCP server bootstrap for Armada."""

from __future__ import annotations

import contextlib
import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import uvicorn
from fastmcp import Context, FastMCP
from starlette.applications import Starlette
from starlette.routing import Mount, WebSocketRoute
from starlette.websockets import WebSocket, WebSocketDisconnect

from . import __version__
from .classes import ClassLoadError
from .config import ArmadaSettings, get_settings
from .hub import send_snapshot
from .orchestrator import Orchestrator
from .tools import register_tools

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Configure root logging for the Armada host."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def build_status_payload(orchestrator: Orchestrator, settings: ArmadaSettings) -> dict[str, Any]:
    """Summarize agents, live processes and recovery for the status resource."""

    try:
        class_ids = sorted(orchestrator.classes.load_all())
        class_error: str | None = None
    except ClassLoadError as exc:
        class_ids = []
        class_error = str(exc)

    status_counts: dict[str, int] = {}
    for agent in orchestrator.agents.list_agents():
        status_counts[agent.status.value] = status_counts.get(agent.status.value, 0) + 1

    recovery_counts: dict[str, int] = {}
    for action in orchestrator.recovery_actions:
        recovery_counts[action.status] = recovery_counts.get(action.status, 0) + 1

    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "server_version": __version__,
        "log_level": settings.log_level,
        "data_dir": str(settings.data_dir),
        "classes": {"count": len(class_ids), "ids": class_ids, "error": class_error},
        "agents": {
            "count": sum(status_counts.values()),
            "status_counts": status_counts,
        },
        "processes": {
            "count": len(orchestrator.runner.tracked()),
            "memory_mb": orchestrator.resources.all_process_memory(),
            "recent_deaths": len(orchestrator.watchdog.death_history()),
        },
        "recovery": {
            "actions": [action.to_dict() for action in orchestrator.recovery_actions[-5:]],
            "by_status": recovery_counts,
        },
        "observers": len(orchestrator.hub),
    }


def create_server(
    settings: Optional[ArmadaSettings] = None,
    orchestrator: Orchestrator | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server with the orchestration tools and status resource."""

    settings = settings or get_settings()
    orchestrator = orchestrator or Orchestrator(settings)

    server = FastMCP(
        name="Armada",
        version=__version__,
        instructions=(
            "Armada runs many coding-agent CLI sessions side by side. Use the tools "
            "to create agents, send them commands, stop them, and inspect their processes."
        ),
    )

    handles = register_tools(server, orchestrator=orchestrator)

    @server.resource(
        "resource://armada/status",
        name="armada_status",
        description="Provides the current runtime status for the Armada host.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        payload = build_status_payload(orchestrator, settings)
        payload["request_id"] = getattr(context, "request_id", None)
        return json.dumps(payload)

    setattr(server, "orchestrator", orchestrator)
    setattr(server, "tool_handles", handles)
    return server


def create_app(
    settings: Optional[ArmadaSettings] = None,
    orchestrator: Orchestrator | None = None,
    mcp_server: FastMCP | None | bool = True,
) -> Starlette:
    """Build the ASGI app: observer WebSocket at ``/ws`` and MCP at ``/mcp``.

    Pass ``mcp_server=None`` to serve only the observer endpoint.
    """

    settings = settings or get_settings()
    orchestrator = orchestrator or Orchestrator(settings)
    if mcp_server is True:
        mcp_server = create_server(settings, orchestrator)
    mcp_app = mcp_server.http_app(path="/") if mcp_server else None

    async def observer_endpoint(websocket: WebSocket) -> None:
        await websocket.accept()
        subscriber_id = orchestrator.hub.register(websocket.send_text)
        send_snapshot(orchestrator.hub, subscriber_id, orchestrator.agents, orchestrator.areas)
        try:
            while True:
                raw = await websocket.receive_text()
                await orchestrator.router.handle(subscriber_id, raw)
        except WebSocketDisconnect:
            pass
        finally:
            orchestrator.hub.unregister(subscriber_id)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        async with contextlib.AsyncExitStack() as stack:
            if mcp_app is not None:
                await stack.enter_async_context(mcp_app.lifespan(app))
            await orchestrator.start()
            try:
                yield
            finally:
                await orchestrator.shutdown()

    routes: list[Any] = [WebSocketRoute("/ws", observer_endpoint)]
    if mcp_app is not None:
        routes.append(Mount("/mcp", app=mcp_app))

    app = Starlette(routes=routes, lifespan=lifespan)
    app.state.orchestrator = orchestrator
    app.state.mcp_server = mcp_server or None
    return app


def main() -> None:
    """Entry point for running the Armada host via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    app = create_app(settings)
    logger.info(
        "Launching Armada",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "host": settings.host,
            "port": settings.port,
            "data_dir": str(settings.data_dir),
        },
    )
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
