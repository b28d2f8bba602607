"""Best-effort per-agent memory telemetry."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import psutil

if TYPE_CHECKING:
    from .process_runner import ProcessRunner

logger = logging.getLogger(__name__)

_MIB = 1024 * 1024


def memory_mb_for_pid(pid: int | None) -> int | None:
    """Resident memory of ``pid`` in MiB, or ``None`` when it cannot be read."""

    if not pid:
        return None
    try:
        rss = psutil.Process(pid).memory_info().rss
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
        return None
    return round(rss / _MIB)


class ResourceMonitor:
    def __init__(self, runner: ProcessRunner) -> None:
        self._runner = runner

    def process_memory_mb(self, agent_id: str) -> int | None:
        handle = self._runner.get_process(agent_id)
        if handle is None:
            return None
        return memory_mb_for_pid(handle.pid)

    def all_process_memory(self) -> dict[str, int]:
        usage: dict[str, int] = {}
        for agent_id, handle in self._runner.tracked():
            memory = memory_mb_for_pid(handle.pid)
            if memory is not None:
                usage[agent_id] = memory
        return usage


__all__ = ["ResourceMonitor", "memory_mb_for_pid"]
