"""Exception hierarchy shared across Armada components."""

from __future__ import annotations


class RunnerError(RuntimeError):
    """Base class for agent process orchestration errors."""


class SpawnFailure(RunnerError):
    """Raised when an agent CLI process cannot be started."""


class BackendNotFoundError(SpawnFailure):
    """Raised when a backend CLI executable cannot be located."""


class ProcessCrash(RunnerError):
    """Describes an agent process that exited with a nonzero code or a signal."""

    def __init__(self, agent_id: str, returncode: int | None) -> None:
        self.agent_id = agent_id
        self.returncode = returncode
        super().__init__(f"Process exited with code {returncode}")


class DirectoryMissingError(RunnerError):
    """Raised when an agent's working directory does not exist."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Directory does not exist: {path}")


class AgentBusyError(RunnerError):
    """Raised when a run is requested for an agent that already has a live process."""


class AgentNotFoundError(RunnerError):
    """Raised when an operation targets an unknown agent id."""


__all__ = [
    "AgentBusyError",
    "AgentNotFoundError",
    "BackendNotFoundError",
    "DirectoryMissingError",
    "ProcessCrash",
    "RunnerError",
    "SpawnFailure",
]
