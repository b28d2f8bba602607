from __future__ import annotations

import asyncio
from pathlib import Path

from armada.errors import AgentBusyError
from armada.models import AgentStatus, BackendKind, RunnerRequest
from armada.runner import RESUME_PROMPT, RecoveryStore
from armada.storage import RunningProcessInfo, RunningProcessStore


class FakeRunner:
    def __init__(self, busy: set[str] | None = None) -> None:
        self.busy = busy or set()
        self.marks: list[tuple[str, AgentStatus]] = []
        self.runs: list[RunnerRequest] = []

    def mark(self, agent_id: str, status: AgentStatus, message: str | None = None) -> None:
        self.marks.append((agent_id, status))

    async def run(self, request: RunnerRequest, *, enqueue: bool = True) -> str:
        assert enqueue is False
        if request.agent_id in self.busy:
            raise AgentBusyError(f"Agent {request.agent_id} already has a command in flight")
        self.runs.append(request)
        return "dispatched"


def _record(agent_id: str, pid: int, backend: BackendKind, session_id: str | None = "th-1") -> RunningProcessInfo:
    return RunningProcessInfo(
        agent_id=agent_id,
        pid=pid,
        backend=backend,
        session_id=session_id,
        start_time=1.0,
        last_request=RunnerRequest(
            agent_id=agent_id,
            working_dir="/work",
            prompt="find recent taco recipes",
            backend=backend,
            force_new_session=True,
        ),
    )


def _store(tmp_path: Path, records: list[RunningProcessInfo]) -> RunningProcessStore:
    store = RunningProcessStore(tmp_path / "running_processes.json")
    store.save(records)
    return store


def test_dead_batch_process_is_resumed_once(tmp_path: Path) -> None:
    store = _store(tmp_path, [_record("a1", 4242, BackendKind.BATCH_RESUME)])
    runner = FakeRunner()

    actions = asyncio.run(RecoveryStore(store, is_alive=lambda pid: False, resume_delay=0).recover(runner))

    assert [action.status for action in actions] == ["resumed"]
    assert len(runner.runs) == 1
    request = runner.runs[0]
    assert request.prompt == RESUME_PROMPT == "continue"
    assert request.session_id == "th-1"
    assert request.force_new_session is False
    assert request.working_dir == "/work"
    assert not store.path.exists()

    second = asyncio.run(RecoveryStore(store, is_alive=lambda pid: False, resume_delay=0).recover(runner))
    assert second == []
    assert len(runner.runs) == 1


def test_live_and_unresumable_records_are_marked(tmp_path: Path) -> None:
    store = _store(
        tmp_path,
        [
            _record("alive", 100, BackendKind.BATCH_RESUME),
            _record("interactive", 200, BackendKind.INTERACTIVE),
            _record("no-session", 300, BackendKind.BATCH_RESUME, session_id=None),
        ],
    )
    runner = FakeRunner()
    recovery = RecoveryStore(store, is_alive=lambda pid: pid == 100, resume_delay=0)

    actions, plans = recovery.scan(runner)

    assert plans == []
    assert {action.agent_id: action.status for action in actions} == {
        "alive": "orphaned",
        "interactive": "offline",
        "no-session": "offline",
    }
    assert ("alive", AgentStatus.ORPHANED) in runner.marks
    assert ("interactive", AgentStatus.OFFLINE) in runner.marks


def test_resume_waits_for_ready_event(tmp_path: Path) -> None:
    store = _store(tmp_path, [_record("a1", 4242, BackendKind.BATCH_RESUME)])
    runner = FakeRunner()
    recovery = RecoveryStore(store, is_alive=lambda pid: False, resume_delay=0)

    async def scenario():
        ready = asyncio.Event()
        _actions, plans = recovery.scan(runner)
        task = asyncio.create_task(recovery.resume(plans, runner, ready))
        await asyncio.sleep(0.05)
        before = len(runner.runs)
        ready.set()
        await task
        return before

    before = asyncio.run(scenario())

    assert before == 0
    assert len(runner.runs) == 1


def test_busy_agent_skips_resume(tmp_path: Path) -> None:
    store = _store(tmp_path, [_record("a1", 4242, BackendKind.BATCH_RESUME)])
    runner = FakeRunner(busy={"a1"})

    actions = asyncio.run(RecoveryStore(store, is_alive=lambda pid: False, resume_delay=0).recover(runner))

    assert actions[0].status == "resume_skipped"
    assert "in flight" in actions[0].error
    assert runner.runs == []


def test_persist_mirrors_live_set(tmp_path: Path) -> None:
    store = RunningProcessStore(tmp_path / "running_processes.json")
    recovery = RecoveryStore(store)

    recovery.persist([_record("a1", 1, BackendKind.BATCH_RESUME)])
    assert [record.agent_id for record in store.load()] == ["a1"]
    assert store.load()[0].last_request.prompt == "find recent taco recipes"

    recovery.persist([])
    assert not store.path.exists()
    assert store.load() == []


def test_corrupt_snapshot_is_ignored(tmp_path: Path) -> None:
    path = tmp_path / "running_processes.json"
    path.write_text("{not json", encoding="utf-8")

    assert RunningProcessStore(path).load() == []

    path.write_text('[{"agentId": "a1"}, {"agentId": "a2", "pid": 5, "backend": "interactive", "startTime": 2}]')
    records = RunningProcessStore(path).load()
    assert [record.agent_id for record in records] == ["a2"]
