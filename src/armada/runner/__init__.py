"""Process orchestration: runner, pipeline, recovery and supervision."""

from .models import ActiveProcess
from .pipeline import RAW_PREFIX, StdoutPipeline, line_digest
from .process_runner import ProcessRunner
from .recovery import RESUME_PROMPT, RecoveryAction, RecoveryStore
from .resources import ResourceMonitor, memory_mb_for_pid
from .restart import RESTARTED_NOTICE, RestartDecision, RestartPolicy
from .signals import EventBus
from .state import AgentStateReducer
from .watchdog import ProcessDeathInfo, Watchdog

__all__ = [
    "ActiveProcess",
    "AgentStateReducer",
    "EventBus",
    "ProcessDeathInfo",
    "ProcessRunner",
    "RAW_PREFIX",
    "RESTARTED_NOTICE",
    "RESUME_PROMPT",
    "RecoveryAction",
    "RecoveryStore",
    "ResourceMonitor",
    "RestartDecision",
    "RestartPolicy",
    "StdoutPipeline",
    "Watchdog",
    "line_digest",
    "memory_mb_for_pid",
]
