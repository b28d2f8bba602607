"""Runtime handles owned by the process runner."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from ..backends import BackendAdapter
from ..models import RunnerRequest
from ..storage import RunningProcessInfo

if TYPE_CHECKING:
    from .pipeline import StdoutPipeline

STDERR_TAIL_LIMIT = 2048


@dataclass(slots=True)
class ActiveProcess:
    """Live OS process bound to one agent; dropped on exit or stop."""

    agent_id: str
    backend: BackendAdapter
    process: asyncio.subprocess.Process
    request: RunnerRequest
    start_time: float
    session_id: str | None = None
    output_file: Path | None = None
    stderr_file: Path | None = None
    in_flight: bool = True
    stop_requested: bool = False
    stderr_tail: str = ""
    last_error: str | None = None
    last_activity: float = 0.0
    pipeline: StdoutPipeline | None = None
    watcher: asyncio.Task | None = field(default=None, repr=False)

    @property
    def pid(self) -> int | None:
        return self.process.pid

    @property
    def alive(self) -> bool:
        return self.process.returncode is None

    def append_stderr(self, text: str) -> None:
        self.stderr_tail = (self.stderr_tail + text)[-STDERR_TAIL_LIMIT:]

    def to_record(self) -> RunningProcessInfo | None:
        if self.pid is None:
            return None
        return RunningProcessInfo(
            agent_id=self.agent_id,
            pid=self.pid,
            backend=self.backend.kind,
            session_id=self.session_id,
            start_time=self.start_time,
            output_file=str(self.output_file) if self.output_file else None,
            stderr_file=str(self.stderr_file) if self.stderr_file else None,
            last_request=self.request,
        )


__all__ = ["ActiveProcess", "STDERR_TAIL_LIMIT"]
