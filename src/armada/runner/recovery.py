"""Startup reconciliation of the running-process snapshot."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable

from ..errors import AgentBusyError
from ..models import AgentStatus, BackendKind
from ..storage import RunningProcessInfo, RunningProcessStore, is_process_running

if TYPE_CHECKING:
    from .process_runner import ProcessRunner

logger = logging.getLogger(__name__)

RESUME_PROMPT = "continue"


@dataclass(slots=True)
class RecoveryAction:
    agent_id: str
    pid: int
    session_id: str | None
    status: str
    attempted_at: str
    error: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(slots=True)
class ResumePlan:
    action: RecoveryAction
    record: RunningProcessInfo


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class RecoveryStore:
    """Keeps the snapshot file equal to the live set and heals unclean shutdowns.

    ``scan`` consumes the snapshot, so a second startup pass sees an empty
    file and schedules nothing.
    """

    def __init__(
        self,
        store: RunningProcessStore,
        *,
        is_alive: Callable[[int], bool] = is_process_running,
        resume_delay: float = 2.0,
    ) -> None:
        self._store = store
        self._is_alive = is_alive
        self._resume_delay = resume_delay

    @property
    def store(self) -> RunningProcessStore:
        return self._store

    def persist(self, processes: list[RunningProcessInfo]) -> None:
        """Rewrite the snapshot; an empty live set removes the file."""

        if processes:
            self._store.save(processes)
        else:
            self._store.clear()

    def clear(self) -> None:
        self._store.clear()

    def scan(self, runner: ProcessRunner) -> tuple[list[RecoveryAction], list[ResumePlan]]:
        records = self._store.load()
        actions: list[RecoveryAction] = []
        plans: list[ResumePlan] = []

        for record in records:
            action = RecoveryAction(
                agent_id=record.agent_id,
                pid=record.pid,
                session_id=record.session_id,
                status="pending",
                attempted_at=_timestamp(),
            )
            actions.append(action)

            if self._is_alive(record.pid):
                action.status = "orphaned"
                runner.mark(record.agent_id, AgentStatus.ORPHANED, f"Process {record.pid} still running from a previous host")
                logger.warning(
                    "Found orphaned agent process",
                    extra={"agent_id": record.agent_id, "pid": record.pid},
                )
                continue

            resumable = (
                record.backend is BackendKind.BATCH_RESUME
                and record.session_id
                and record.last_request is not None
            )
            if resumable:
                action.status = "resume_scheduled"
                plans.append(ResumePlan(action, record))
                logger.info(
                    "Scheduling session resume",
                    extra={"agent_id": record.agent_id, "session_id": record.session_id},
                )
                continue

            action.status = "offline"
            runner.mark(record.agent_id, AgentStatus.OFFLINE, "Process ended while the host was down")
            logger.info(
                "Agent process not running; marked offline",
                extra={"agent_id": record.agent_id, "pid": record.pid},
            )

        if records:
            self._store.clear()
        return actions, plans

    async def resume(
        self,
        plans: list[ResumePlan],
        runner: ProcessRunner,
        ready: asyncio.Event | None = None,
    ) -> None:
        if not plans:
            return
        if ready is not None:
            await ready.wait()
        await asyncio.sleep(self._resume_delay)

        for plan in plans:
            record = plan.record
            assert record.last_request is not None
            request = record.last_request.with_changes(
                session_id=record.session_id,
                prompt=RESUME_PROMPT,
                force_new_session=False,
            )
            try:
                await runner.run(request, enqueue=False)
            except AgentBusyError as exc:
                plan.action.status = "resume_skipped"
                plan.action.error = str(exc)
                logger.info("Skipped resume; agent is busy", extra={"agent_id": record.agent_id})
                continue
            plan.action.status = "resumed"
            plan.action.attempted_at = _timestamp()
            logger.info(
                "Resumed agent session",
                extra={"agent_id": record.agent_id, "session_id": record.session_id},
            )

    async def recover(self, runner: ProcessRunner, ready: asyncio.Event | None = None) -> list[RecoveryAction]:
        actions, plans = self.scan(runner)
        await self.resume(plans, runner, ready)
        return actions


__all__ = ["RESUME_PROMPT", "RecoveryAction", "RecoveryStore", "ResumePlan"]
