from __future__ import annotations

import json
from pathlib import Path

import pytest

from armada.errors import DirectoryMissingError
from armada.models import AgentStatus, BackendKind
from armada.storage import AgentStore, AreaStore


def _store(tmp_path: Path) -> AgentStore:
    ids = iter(["a1", "a2", "a3"])
    return AgentStore(tmp_path / "agents.json", clock=lambda: 5.0, id_factory=lambda: next(ids))


def test_create_agent_persists_camel_case_record(tmp_path: Path) -> None:
    store = _store(tmp_path)
    agent = store.create_agent("scout", str(tmp_path), agent_class="scout", backend="batch-resume")

    assert agent.id == "a1"
    assert agent.backend is BackendKind.BATCH_RESUME
    document = json.loads((tmp_path / "agents.json").read_text())
    assert document[0]["class"] == "scout"
    assert document[0]["pendingCommands"] == []
    assert document[0]["createdAt"] == 5.0

    reloaded = AgentStore(tmp_path / "agents.json")
    assert reloaded.get_agent("a1").name == "scout"


def test_create_agent_requires_existing_directory(tmp_path: Path) -> None:
    with pytest.raises(DirectoryMissingError):
        _store(tmp_path).create_agent("scout", str(tmp_path / "missing"))


def test_listeners_see_created_updated_deleted(tmp_path: Path) -> None:
    store = _store(tmp_path)
    events: list[tuple[str, object]] = []
    unsubscribe = store.subscribe(lambda event, data: events.append((event, data)))

    store.create_agent("scout", str(tmp_path))
    store.update_agent("a1", {"status": AgentStatus.WORKING})
    store.update_agent("a1", {"status": AgentStatus.WORKING}, touch_activity=False)
    store.delete_agent("a1")
    unsubscribe()
    store.create_agent("builder", str(tmp_path))

    assert [event for event, _ in events] == ["created", "updated", "deleted"]
    assert events[1][1].status is AgentStatus.WORKING
    assert events[2][1] == "a1"


def test_failing_listener_does_not_block_others(tmp_path: Path) -> None:
    store = _store(tmp_path)
    seen: list[str] = []

    def broken(event, data):
        raise RuntimeError("boom")

    store.subscribe(broken)
    store.subscribe(lambda event, data: seen.append(event))
    store.create_agent("scout", str(tmp_path))

    assert seen == ["created"]


def test_update_and_delete_unknown_agent(tmp_path: Path) -> None:
    store = _store(tmp_path)
    assert store.update_agent("ghost", {"name": "x"}) is None
    assert store.delete_agent("ghost") is False


def test_invalid_records_are_skipped(tmp_path: Path) -> None:
    path = tmp_path / "agents.json"
    path.write_text(
        json.dumps([{"id": "bad"}, {"id": "ok", "name": "n", "cwd": "/", "createdAt": 1, "lastActivity": 1}]),
        encoding="utf-8",
    )

    store = AgentStore(path)
    assert [agent.id for agent in store.list_agents()] == ["ok"]


def test_area_store_round_trip(tmp_path: Path) -> None:
    store = AreaStore(tmp_path / "areas.json")
    assert store.load() == []

    store.save([{"id": "zone", "name": "Backend"}, "junk"])
    assert store.load() == [{"id": "zone", "name": "Backend"}]
