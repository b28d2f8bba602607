"""Decides whether a crashed agent process should be re-run automatically."""

from __future__ import annotations

import signal
from dataclasses import dataclass

MAX_RESTART_ATTEMPTS = 3
RESTART_COOLDOWN_SECONDS = 60.0
MIN_RUNTIME_FOR_RESTART_SECONDS = 5.0
RESTART_DELAY_SECONDS = 1.0

RESTARTED_NOTICE = "[System] Process was automatically restarted after crash"

_INTENTIONAL_SIGNALS = {-signal.SIGINT, -signal.SIGTERM}


@dataclass(slots=True)
class RestartDecision:
    restart: bool
    reason: str
    attempt: int = 0
    error: str | None = None


class RestartPolicy:
    """Bounded auto-restart: a few attempts per cooldown window, never for fast crashes."""

    def __init__(
        self,
        enabled: bool = False,
        *,
        max_attempts: int = MAX_RESTART_ATTEMPTS,
        cooldown: float = RESTART_COOLDOWN_SECONDS,
        min_runtime: float = MIN_RUNTIME_FOR_RESTART_SECONDS,
        delay: float = RESTART_DELAY_SECONDS,
    ) -> None:
        self.enabled = enabled
        self.max_attempts = max_attempts
        self.cooldown = cooldown
        self.min_runtime = min_runtime
        self.delay = delay

    def evaluate(
        self,
        *,
        returncode: int | None,
        runtime: float,
        stopped: bool,
        restart_count: int,
        last_restart_time: float,
        now: float,
    ) -> RestartDecision:
        if not self.enabled:
            return RestartDecision(False, "disabled")
        if stopped:
            return RestartDecision(False, "stopped")
        if returncode == 0:
            return RestartDecision(False, "clean_exit")
        if returncode in _INTENTIONAL_SIGNALS:
            return RestartDecision(False, "intentional_signal")
        if runtime < self.min_runtime:
            return RestartDecision(
                False,
                "crashed_immediately",
                error=(
                    f"Process crashed immediately ({int(runtime * 1000)}ms) - not auto-restarting. "
                    "Check the CLI installation."
                ),
            )

        effective = 0 if now - last_restart_time > self.cooldown else restart_count
        if effective >= self.max_attempts:
            return RestartDecision(
                False,
                "max_attempts",
                error=(
                    "Process keeps crashing - auto-restart disabled after "
                    f"{self.max_attempts} attempts. Manual intervention required."
                ),
            )
        return RestartDecision(True, "restart", attempt=effective + 1)


__all__ = ["RESTARTED_NOTICE", "RestartDecision", "RestartPolicy"]
