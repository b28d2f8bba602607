from __future__ import annotations

import asyncio
import signal
from types import SimpleNamespace

from armada.runner import EventBus, ProcessDeathInfo, RestartPolicy, Watchdog
from armada.runner.signals import ProcessExited


class FakeRunner:
    def __init__(self, handles: dict[str, int]) -> None:
        self.handles = {agent_id: SimpleNamespace(pid=pid) for agent_id, pid in handles.items()}
        self.released: list[str] = []

    def tracked(self):
        return list(self.handles.items())

    async def release_missing(self, agent_id, handle) -> bool:
        self.released.append(agent_id)
        self.handles.pop(agent_id, None)
        return True


def _death(agent_id: str, *, exit_code=None, sig=None, runtime=30.0, timestamp=100.0) -> ProcessDeathInfo:
    return ProcessDeathInfo(
        agent_id=agent_id,
        pid=1,
        exit_code=exit_code,
        signal=sig,
        runtime=runtime,
        was_tracked=True,
        timestamp=timestamp,
    )


def test_check_releases_pid_after_two_dead_sweeps() -> None:
    runner = FakeRunner({"alive": 10, "gone": 20})
    watchdog = Watchdog(runner, EventBus(), is_alive=lambda pid: pid == 10)

    first = asyncio.run(watchdog.check())
    second = asyncio.run(watchdog.check())

    assert first == []
    assert second == ["gone"]
    assert runner.released == ["gone"]
    assert list(runner.handles) == ["alive"]


def test_exit_signals_feed_death_history() -> None:
    bus = EventBus()
    watchdog = Watchdog(FakeRunner({}), bus, clock=lambda: 50.0)

    bus.publish(ProcessExited("a", 1, 0, 10.0, False))
    bus.publish(ProcessExited("b", 2, 3, 10.0, True))
    bus.publish(ProcessExited("c", 3, -signal.SIGTERM, 10.0, False))
    bus.publish(ProcessExited("d", 4, -signal.SIGKILL, 10.0, False, "oom"))
    bus.publish(ProcessExited("e", 5, 2, 10.0, False))

    history = watchdog.death_history()
    assert [death.agent_id for death in history] == ["e", "d"]
    assert history[1].signal == "SIGKILL"
    assert history[1].exit_code is None
    assert history[1].stderr == "oom"
    assert history[0].exit_code == 2


def test_analyze_patterns_reports_shared_exit_code() -> None:
    watchdog = Watchdog(FakeRunner({}), EventBus(), clock=lambda: 110.0)
    for agent_id in ("a", "b"):
        watchdog.record_death(_death(agent_id, exit_code=137, runtime=2.0))
    assert watchdog.analyze_patterns() == []

    watchdog.record_death(_death("c", exit_code=137, runtime=2.0))
    findings = watchdog.analyze_patterns()

    assert findings[0] == "3 processes died in the last minute"
    assert "All deaths have exit code 137" in findings
    assert any("out of memory" in finding for finding in findings)
    assert any(finding.startswith("3 processes died within 5s") for finding in findings)
    assert findings[-1] == "All deaths were tracked"


def test_analyze_patterns_ignores_old_deaths() -> None:
    watchdog = Watchdog(FakeRunner({}), EventBus(), clock=lambda: 1000.0)
    for agent_id in ("a", "b", "c"):
        watchdog.record_death(_death(agent_id, sig="SIGKILL", timestamp=10.0))

    assert watchdog.analyze_patterns() == []
    assert watchdog.analyze_patterns(now=20.0)[1].startswith("All deaths have signal SIGKILL")


def test_restart_policy_rules() -> None:
    policy = RestartPolicy(enabled=True)
    base = {"returncode": 1, "runtime": 30.0, "stopped": False, "restart_count": 0, "last_restart_time": 0.0, "now": 1000.0}

    assert policy.evaluate(**base).restart is True
    assert policy.evaluate(**base).attempt == 1
    assert policy.evaluate(**{**base, "stopped": True}).reason == "stopped"
    assert policy.evaluate(**{**base, "returncode": 0}).reason == "clean_exit"
    assert policy.evaluate(**{**base, "returncode": -signal.SIGINT}).reason == "intentional_signal"

    quick = policy.evaluate(**{**base, "runtime": 0.5})
    assert quick.restart is False
    assert "crashed immediately (500ms)" in quick.error

    exhausted = policy.evaluate(**{**base, "restart_count": 3, "last_restart_time": 990.0})
    assert exhausted.reason == "max_attempts"
    assert "after 3 attempts" in exhausted.error

    cooled = policy.evaluate(**{**base, "restart_count": 3, "last_restart_time": 100.0})
    assert cooled.restart is True
    assert cooled.attempt == 1

    assert RestartPolicy().evaluate(**base).reason == "disabled"
