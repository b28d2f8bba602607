from __future__ import annotations

import importlib.util
import json
import os
from pathlib import Path

from armada.models import BackendKind
from armada.storage import AgentStore, RunningProcessInfo, RunningProcessStore


def _load_diag(module_name: str):
    module_path = Path(__file__).resolve().parents[1] / "scripts" / "armada_diag.py"
    spec = importlib.util.spec_from_file_location(module_name, module_path)
    assert spec and spec.loader
    diag = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(diag)
    return diag


def _seed(data_dir: Path) -> str:
    store = AgentStore(data_dir / "agents.json", id_factory=lambda: "a1")
    agent = store.create_agent("Scout", str(data_dir))
    store.update_agent(agent.id, {"pending_commands": ["one", "two"], "tokens_used": 50, "last_error": "boom"})
    RunningProcessStore(data_dir / "running_processes.json").save(
        [
            RunningProcessInfo(agent_id="a1", pid=os.getpid(), backend=BackendKind.INTERACTIVE, start_time=1.0),
            RunningProcessInfo(agent_id="gone", pid=999_999_999, backend=BackendKind.BATCH_RESUME, start_time=1.0),
        ]
    )
    return agent.id


def test_processes_reports_liveness(tmp_path: Path, capsys) -> None:
    _seed(tmp_path)
    diag = _load_diag("armada_diag_processes_module")

    diag.main(["--data-dir", str(tmp_path), "processes", "--json"])

    rows = {row["agent_id"]: row for row in json.loads(capsys.readouterr().out)}
    assert rows["a1"]["alive"] is True
    assert rows["a1"]["memory_mb"] is not None
    assert rows["gone"]["alive"] is False
    assert rows["gone"]["memory_mb"] is None
    assert rows["gone"]["backend"] == "batch-resume"


def test_processes_without_snapshot(tmp_path: Path, capsys) -> None:
    diag = _load_diag("armada_diag_empty_module")

    diag.main(["--data-dir", str(tmp_path), "processes"])

    assert capsys.readouterr().out.strip() == "No running processes recorded"


def test_agents_lists_records_with_errors(tmp_path: Path, capsys) -> None:
    _seed(tmp_path)
    diag = _load_diag("armada_diag_agents_module")

    diag.main(["--data-dir", str(tmp_path), "agents"])
    line = capsys.readouterr().out.strip()
    assert line.startswith("a1 Scout [idle]")
    assert line.endswith("error=boom")

    diag.main(["--data-dir", str(tmp_path), "agents", "--status", "working", "--json"])
    assert json.loads(capsys.readouterr().out) == []


def test_metrics_counts(tmp_path: Path, capsys) -> None:
    _seed(tmp_path)
    diag = _load_diag("armada_diag_metrics_module")

    diag.main(["--data-dir", str(tmp_path), "metrics"])

    payload = json.loads(capsys.readouterr().out)
    assert payload["agents_total"] == 1
    assert payload["status_counts"] == {"idle": 1}
    assert payload["pending_commands"] == 2
    assert payload["tokens_used"] == 50
    assert payload["processes_recorded"] == 2
    assert payload["processes_alive"] == 1
    assert payload["processes_dead"] == 1


def test_no_subcommand_prints_help(capsys) -> None:
    diag = _load_diag("armada_diag_help_module")

    diag.main([])

    assert "Armada diagnostics" in capsys.readouterr().out
