"""Armada diagnostics CLI."""

from __future__ import annotations

import argparse
import json
import time
from pathlib import Path

from armada.config import ArmadaSettings
from armada.runner import memory_mb_for_pid
from armada.storage import AgentStore, RunningProcessStore, is_process_running


def _data_dir(args: argparse.Namespace) -> Path:
    if getattr(args, "data_dir", None):
        return Path(args.data_dir)
    return ArmadaSettings().data_dir


def cmd_processes(args: argparse.Namespace) -> None:
    store = RunningProcessStore(_data_dir(args) / "running_processes.json")
    records = store.load()
    now = time.time()
    rows = [
        {
            "agent_id": record.agent_id,
            "pid": record.pid,
            "backend": record.backend.value,
            "session_id": record.session_id,
            "alive": is_process_running(record.pid),
            "memory_mb": memory_mb_for_pid(record.pid),
            "runtime_seconds": round(now - record.start_time, 1),
        }
        for record in records
    ]
    if args.json:
        print(json.dumps(rows, indent=2))
        return
    if not rows:
        print("No running processes recorded")
        return
    for row in rows:
        state = "alive" if row["alive"] else "dead"
        print(f"{row['agent_id']} pid={row['pid']} [{state}] {row['backend']} -> {row['session_id']}")


def cmd_agents(args: argparse.Namespace) -> None:
    agents = AgentStore(_data_dir(args) / "agents.json").list_agents()
    if args.status:
        agents = [agent for agent in agents if agent.status.value == args.status]
    if args.json:
        print(json.dumps([agent.to_wire() for agent in agents], indent=2))
        return
    for agent in agents:
        line = f"{agent.id} {agent.name} [{agent.status.value}] {agent.cwd}"
        if agent.last_error:
            line = f"{line} error={agent.last_error}"
        print(line)


def cmd_metrics(args: argparse.Namespace) -> None:
    data_dir = _data_dir(args)
    agents = AgentStore(data_dir / "agents.json").list_agents()
    records = RunningProcessStore(data_dir / "running_processes.json").load()

    status_counts: dict[str, int] = {}
    for agent in agents:
        status_counts[agent.status.value] = status_counts.get(agent.status.value, 0) + 1

    alive = [record for record in records if is_process_running(record.pid)]
    metrics = {
        "agents_total": len(agents),
        "status_counts": status_counts,
        "pending_commands": sum(len(agent.pending_commands) for agent in agents),
        "tokens_used": sum(agent.tokens_used for agent in agents),
        "processes_recorded": len(records),
        "processes_alive": len(alive),
        "processes_dead": len(records) - len(alive),
    }
    print(json.dumps(metrics, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Armada diagnostics")
    parser.add_argument("--data-dir", help="Override ARMADA_DATA_DIR")
    sub = parser.add_subparsers(dest="cmd")

    p_processes = sub.add_parser("processes", help="List recorded agent processes and their liveness")
    p_processes.add_argument("--json", action="store_true", help="Output JSON")
    p_processes.set_defaults(func=cmd_processes)

    p_agents = sub.add_parser("agents", help="List agent records")
    p_agents.add_argument("--status", help="Only show agents with this status")
    p_agents.add_argument("--json", action="store_true", help="Output JSON")
    p_agents.set_defaults(func=cmd_agents)

    p_metrics = sub.add_parser("metrics", help="Show agent and process counts")
    p_metrics.set_defaults(func=cmd_metrics)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
