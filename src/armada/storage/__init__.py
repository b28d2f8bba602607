"""Storage abstractions for Armada."""

from .agents import AgentStore
from .areas import AreaStore
from .models import Agent, RunningProcessInfo
from .processes import RunningProcessStore, is_process_running

__all__ = [
    "Agent",
    "AgentStore",
    "AreaStore",
    "RunningProcessInfo",
    "RunningProcessStore",
    "is_process_running",
]
