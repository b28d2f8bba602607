from __future__ import annotations

import os
from types import SimpleNamespace

from armada.runner.resources import ResourceMonitor, memory_mb_for_pid


class FakeRunner:
    def __init__(self, handles: dict[str, SimpleNamespace]) -> None:
        self._handles = handles

    def get_process(self, agent_id: str):
        return self._handles.get(agent_id)

    def tracked(self):
        return list(self._handles.items())


def test_memory_for_current_process() -> None:
    memory = memory_mb_for_pid(os.getpid())

    assert memory is not None
    assert memory > 0


def test_memory_unavailable_for_missing_pid() -> None:
    assert memory_mb_for_pid(None) is None
    assert memory_mb_for_pid(999_999_999) is None


def test_monitor_skips_unreadable_processes() -> None:
    runner = FakeRunner(
        {
            "live": SimpleNamespace(pid=os.getpid()),
            "gone": SimpleNamespace(pid=999_999_999),
        }
    )
    monitor = ResourceMonitor(runner)  # type: ignore[arg-type]

    assert monitor.process_memory_mb("live") is not None
    assert monitor.process_memory_mb("gone") is None
    assert monitor.process_memory_mb("unknown") is None
    assert set(monitor.all_process_memory()) == {"live"}
