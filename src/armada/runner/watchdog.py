"""Periodic liveness sweep over tracked processes plus a death log."""

from __future__ import annotations

import asyncio
import logging
import signal
import time
from collections import deque
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Callable

from ..storage import is_process_running
from .signals import EventBus, ProcessExited

if TYPE_CHECKING:
    from .process_runner import ProcessRunner

logger = logging.getLogger(__name__)

MAX_DEATH_HISTORY = 50
PATTERN_WINDOW_SECONDS = 60.0
PATTERN_MIN_DEATHS = 3
SHORT_LIVED_SECONDS = 5.0

_EXIT_CODE_HINTS = {
    137: "Exit code 137 = killed for out of memory; reduce concurrent agents or add RAM",
    1: "Exit code 1 = general error; check the agent CLI installation",
    139: "Exit code 139 = segmentation fault",
}


@dataclass(slots=True)
class ProcessDeathInfo:
    agent_id: str
    pid: int | None
    exit_code: int | None
    signal: str | None
    runtime: float
    was_tracked: bool
    timestamp: float
    stderr: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def _signal_name(returncode: int | None) -> str | None:
    if returncode is None or returncode >= 0:
        return None
    try:
        return signal.Signals(-returncode).name
    except ValueError:
        return f"SIG{-returncode}"


class Watchdog:
    """Releases handles whose pid vanished and records every unexpected death."""

    def __init__(
        self,
        runner: ProcessRunner,
        bus: EventBus,
        *,
        is_alive: Callable[[int], bool] = is_process_running,
        clock: Callable[[], float] = time.time,
        history_size: int = MAX_DEATH_HISTORY,
    ) -> None:
        self._runner = runner
        self._is_alive = is_alive
        self._clock = clock
        self._deaths: deque[ProcessDeathInfo] = deque(maxlen=history_size)
        self._suspects: set[int] = set()
        bus.subscribe(ProcessExited, self._on_exit)

    def _on_exit(self, exited: ProcessExited) -> None:
        if exited.stopped or exited.returncode == 0:
            return
        if exited.returncode in (-signal.SIGINT, -signal.SIGTERM):
            return
        self.record_death(
            ProcessDeathInfo(
                agent_id=exited.agent_id,
                pid=exited.pid,
                exit_code=exited.returncode if exited.returncode is None or exited.returncode >= 0 else None,
                signal=_signal_name(exited.returncode),
                runtime=exited.runtime,
                was_tracked=True,
                timestamp=self._clock(),
                stderr=exited.stderr_tail or None,
            )
        )

    def record_death(self, info: ProcessDeathInfo) -> None:
        self._deaths.appendleft(info)
        logger.error(
            "Agent process died",
            extra={
                "agent_id": info.agent_id,
                "pid": info.pid,
                "exit_code": info.exit_code,
                "signal": info.signal,
                "runtime": round(info.runtime, 1),
                "stderr": (info.stderr or "")[:500] or None,
            },
        )
        self.analyze_patterns()

    def death_history(self) -> list[ProcessDeathInfo]:
        return list(self._deaths)

    def analyze_patterns(self, now: float | None = None) -> list[str]:
        """Return (and log) the findings for deaths within the last minute."""

        now = self._clock() if now is None else now
        recent = [death for death in self._deaths if now - death.timestamp < PATTERN_WINDOW_SECONDS]
        if len(recent) < PATTERN_MIN_DEATHS:
            return []

        findings = [f"{len(recent)} processes died in the last minute"]

        signals = [death.signal for death in recent if death.signal]
        if signals and all(sig == signals[0] for sig in signals):
            findings.append(f"All deaths have signal {signals[0]}; possible external kill or resource exhaustion")

        codes = [death.exit_code for death in recent if death.exit_code is not None]
        if codes and all(code == codes[0] for code in codes):
            findings.append(f"All deaths have exit code {codes[0]}")
            hint = _EXIT_CODE_HINTS.get(codes[0])
            if hint:
                findings.append(hint)

        short_lived = [death for death in recent if death.runtime < SHORT_LIVED_SECONDS]
        if len(short_lived) >= 2:
            agents = ", ".join(death.agent_id for death in short_lived)
            findings.append(f"{len(short_lived)} processes died within 5s of starting ({agents}); likely a startup error")

        if all(death.was_tracked for death in recent):
            findings.append("All deaths were tracked")

        for finding in findings:
            logger.error("Death pattern: %s", finding)
        return findings

    async def check(self) -> list[str]:
        """Release every tracked handle whose OS process is gone.

        A pid must be found dead on two consecutive sweeps, which leaves the
        normal exit path time to reap it first.
        """

        released: list[str] = []
        tracked = self._runner.tracked()
        if tracked:
            logger.debug("Watchdog checking processes", extra={"count": len(tracked)})
        suspects: set[int] = set()
        for agent_id, handle in tracked:
            pid = handle.pid
            if pid is None or self._is_alive(pid):
                continue
            if pid not in self._suspects:
                suspects.add(pid)
                continue
            logger.error(
                "Tracked agent process is gone",
                extra={"agent_id": agent_id, "pid": pid},
            )
            if await self._runner.release_missing(agent_id, handle):
                released.append(agent_id)
        self._suspects = suspects
        return released

    async def run_forever(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            await self.check()


__all__ = ["MAX_DEATH_HISTORY", "ProcessDeathInfo", "Watchdog"]
