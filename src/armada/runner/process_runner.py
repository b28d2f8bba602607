"""Owns the live agent processes and serializes commands per agent."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import time
from collections import defaultdict, deque
from pathlib import Path
from typing import Any, Callable, Literal

from ..backends import BackendAdapter, create_backend, sanitize_environment
from ..config import ArmadaSettings
from ..errors import (
    AgentBusyError,
    AgentNotFoundError,
    DirectoryMissingError,
    ProcessCrash,
    RunnerError,
    SpawnFailure,
)
from ..models import AgentStatus, BackendKind, RunnerRequest
from ..storage import RunningProcessInfo
from .models import ActiveProcess
from .pipeline import StdoutPipeline
from .restart import RESTARTED_NOTICE, RestartPolicy
from .signals import (
    Activity,
    AgentError,
    AgentStopped,
    CommandStarted,
    EventBus,
    Output,
    ParsedEvent,
    ProcessExited,
    ProcessSpawned,
    QueueChanged,
    SessionAssigned,
    SpawnFailed,
    StatusChanged,
    TurnCompleted,
)

logger = logging.getLogger(__name__)

RunOutcome = Literal["dispatched", "queued"]
BackendFactory = Callable[[BackendKind, ArmadaSettings], BackendAdapter]
RequestBuilder = Callable[[str, str], RunnerRequest]
SnapshotSink = Callable[[list[RunningProcessInfo]], None]


class ProcessRunner:
    """Spawns, feeds, and stops agent CLI processes.

    Every mutation of an agent's process handle or pending queue happens under
    that agent's lock. Exit handling, turn completion, dispatch and stop all
    take the same lock, so "agent just went idle" and "new command arrived"
    cannot interleave.
    """

    def __init__(
        self,
        bus: EventBus,
        *,
        settings: ArmadaSettings,
        backend_factory: BackendFactory = create_backend,
        snapshot_sink: SnapshotSink | None = None,
        request_builder: RequestBuilder | None = None,
        restart_policy: RestartPolicy | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._bus = bus
        self._settings = settings
        self._backend_factory = backend_factory
        self._snapshot_sink = snapshot_sink
        self._request_builder = request_builder
        self._restart_policy = restart_policy or RestartPolicy(enabled=settings.auto_restart)
        self._clock = clock

        self._active: dict[str, ActiveProcess] = {}
        self._queues: dict[str, deque[RunnerRequest]] = defaultdict(deque)
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._statuses: dict[str, AgentStatus] = {}
        self._sessions: dict[str, str] = {}
        self._last_requests: dict[str, RunnerRequest] = {}
        self._restarts: dict[str, tuple[int, float]] = {}
        self._background: set[asyncio.Task] = set()

        bus.subscribe(SessionAssigned, self._on_session_assigned)
        bus.subscribe(ParsedEvent, self._on_parsed_event)
        bus.subscribe(Activity, self._on_activity)

    # ------------------------------------------------------------------ queries

    def get_process(self, agent_id: str) -> ActiveProcess | None:
        return self._active.get(agent_id)

    def tracked(self) -> list[tuple[str, ActiveProcess]]:
        return list(self._active.items())

    def is_running(self, agent_id: str) -> bool:
        handle = self._active.get(agent_id)
        return handle is not None and handle.alive

    def is_busy(self, agent_id: str) -> bool:
        handle = self._active.get(agent_id)
        if handle is None:
            return False
        return handle.in_flight or not handle.backend.requires_stdin_input()

    def status(self, agent_id: str) -> AgentStatus:
        return self._statuses.get(agent_id, AgentStatus.IDLE)

    def session_id(self, agent_id: str) -> str | None:
        return self._sessions.get(agent_id)

    def pending(self, agent_id: str) -> list[str]:
        return [request.prompt for request in self._queues.get(agent_id, ())]

    def snapshot(self) -> list[RunningProcessInfo]:
        records = [handle.to_record() for handle in self._active.values()]
        return [record for record in records if record is not None]

    def diagnostics(self) -> list[dict[str, Any]]:
        now = self._clock()
        return [
            {
                "agent_id": agent_id,
                "pid": handle.pid,
                "backend": handle.backend.kind.value,
                "session_id": handle.session_id,
                "runtime_seconds": round(now - handle.start_time, 1),
                "in_flight": handle.in_flight,
                "alive": handle.alive,
                "last_activity": handle.last_activity or None,
                "last_error": handle.last_error,
                "stderr_tail": handle.stderr_tail[-500:] or None,
                "pending_commands": len(self._queues.get(agent_id, ())),
            }
            for agent_id, handle in self._active.items()
        ]

    # ----------------------------------------------------------------- commands

    async def run(self, request: RunnerRequest, *, enqueue: bool = True) -> RunOutcome:
        """Dispatch ``request`` now, or append it to the agent's FIFO queue.

        With ``enqueue=False`` a busy agent raises :class:`AgentBusyError`
        instead of queueing.
        """

        agent_id = request.agent_id
        async with self._locks[agent_id]:
            queue = self._queues[agent_id]
            busy = self.is_busy(agent_id)
            if busy or queue:
                if not enqueue:
                    raise AgentBusyError(f"Agent {agent_id} already has a command in flight")
                queue.append(request)
                self._publish_queue(agent_id)
                logger.info(
                    "Queued command",
                    extra={"agent_id": agent_id, "pending": len(queue)},
                )
                if not busy:
                    await self._pump_locked(agent_id)
                return "queued"

            await self._dispatch_locked(request)
            return "dispatched"

    async def send_command(self, agent_id: str, text: str) -> RunOutcome:
        """Run ``text`` for ``agent_id`` if idle, otherwise queue it."""

        return await self.run(self._build_request(agent_id, text))

    def _build_request(self, agent_id: str, text: str) -> RunnerRequest:
        if self._request_builder is not None:
            return self._request_builder(agent_id, text)
        previous = self._last_requests.get(agent_id)
        if previous is None:
            raise AgentNotFoundError(f"No previous request known for agent {agent_id}")
        return previous.with_changes(prompt=text, session_id=self._sessions.get(agent_id))

    def interrupt(self, agent_id: str) -> bool:
        """Send SIGINT to the agent's process without releasing it."""

        handle = self._active.get(agent_id)
        if handle is None or not handle.alive:
            return False
        try:
            handle.process.send_signal(signal.SIGINT)
        except ProcessLookupError:
            return False
        logger.info("Interrupted agent", extra={"agent_id": agent_id, "pid": handle.pid})
        return True

    async def stop(self, agent_id: str, *, requeue: bool = False) -> list[str]:
        """Terminate the agent's process, escalating to SIGKILL after the grace period.

        Returns the pending commands that were discarded. With ``requeue=True``
        nothing is discarded and the next queued command is dispatched.
        """

        async with self._locks[agent_id]:
            discarded: list[str] = []
            queue = self._queues.get(agent_id)
            if queue and not requeue:
                discarded = [request.prompt for request in queue]
                queue.clear()
                self._publish_queue(agent_id)

            handle = self._active.get(agent_id)
            if handle is not None:
                logger.info("Stopping agent", extra={"agent_id": agent_id, "pid": handle.pid})
                handle.stop_requested = True
                if handle.pipeline is not None:
                    handle.pipeline.detach()
                self._release(handle)
                await self._terminate(handle)

            self._set_status(agent_id, AgentStatus.IDLE)
            self._bus.publish(AgentStopped(agent_id, tuple(discarded)))
            if requeue:
                await self._pump_locked(agent_id)
            return discarded

    async def stop_all(self, kill_processes: bool = True) -> None:
        """Host shutdown: kill everything, or persist the snapshot and detach."""

        self._restart_policy.enabled = False
        if kill_processes:
            for agent_id in list(self._active):
                await self.stop(agent_id)
            self._emit_snapshot()
        else:
            self._emit_snapshot()
            for handle in list(self._active.values()):
                if handle.pipeline is not None:
                    handle.pipeline.detach()
                if handle.watcher is not None:
                    handle.watcher.cancel()
            self._active.clear()
            logger.info("Detached from running agent processes")

        for task in list(self._background):
            task.cancel()

    def mark(self, agent_id: str, status: AgentStatus, message: str | None = None) -> None:
        """Record a status decided outside the runner, such as startup recovery."""

        self._set_status(agent_id, status, message)

    async def release_missing(self, agent_id: str, handle: ActiveProcess) -> bool:
        """Drop a tracked handle whose OS process vanished without an exit callback."""

        async with self._locks[agent_id]:
            if self._active.get(agent_id) is not handle:
                return False
            if handle.pipeline is not None:
                handle.pipeline.detach()
            if handle.watcher is not None:
                handle.watcher.cancel()
            self._release(handle)
            self._signal_group(handle.process, signal.SIGKILL)
            runtime = self._clock() - handle.start_time
            self._bus.publish(
                ProcessExited(agent_id, handle.pid, None, runtime, False, handle.stderr_tail)
            )
            await self._after_failure(handle, None, runtime, "Process died unexpectedly")
            return True

    # ----------------------------------------------------------------- dispatch

    async def _pump_locked(self, agent_id: str) -> None:
        queue = self._queues.get(agent_id)
        if not queue or self.is_busy(agent_id):
            return
        request = queue.popleft()
        self._publish_queue(agent_id)
        await self._dispatch_locked(request)

    async def _dispatch_locked(self, request: RunnerRequest) -> None:
        agent_id = request.agent_id
        known_session = self._sessions.get(agent_id)
        if request.session_id is None and known_session and not request.force_new_session:
            request = request.with_changes(session_id=known_session)
        self._last_requests[agent_id] = request

        self._bus.publish(CommandStarted(agent_id, request.prompt))

        handle = self._active.get(agent_id)
        if handle is not None:
            reusable = (
                handle.alive
                and handle.backend.requires_stdin_input()
                and handle.backend.kind == request.backend
                and not request.force_new_session
            )
            if reusable:
                handle.in_flight = True
                handle.request = handle.request.with_changes(prompt=request.prompt)
                self._set_status(agent_id, AgentStatus.WORKING)
                if await self._write_stdin(handle, request.prompt):
                    return
                logger.warning(
                    "Live process rejected stdin; starting a new one",
                    extra={"agent_id": agent_id, "pid": handle.pid},
                )
            handle.stop_requested = True
            if handle.pipeline is not None:
                handle.pipeline.detach()
            self._release(handle)
            await self._terminate(handle)

        await self._spawn_locked(request)

    async def _spawn_locked(self, request: RunnerRequest) -> None:
        agent_id = request.agent_id
        backend = self._backend_factory(request.backend, self._settings)
        cwd = Path(request.working_dir)
        if not cwd.is_dir():
            self._fail_spawn(agent_id, DirectoryMissingError(str(cwd)))
            return

        try:
            executable = backend.executable()
            args = backend.build_args(request)
            process = await asyncio.create_subprocess_exec(
                str(executable),
                *args,
                cwd=str(cwd),
                stdin=asyncio.subprocess.PIPE if backend.requires_stdin_input() else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=sanitize_environment(
                    {
                        "ARMADA_AGENT_ID": agent_id,
                        "ARMADA_SERVER": f"http://{self._settings.host}:{self._settings.port}",
                    }
                ),
                start_new_session=True,
                limit=self._settings.stream_limit_bytes,
            )
        except SpawnFailure as exc:
            self._fail_spawn(agent_id, exc)
            return
        except OSError as exc:
            self._fail_spawn(agent_id, SpawnFailure(f"Failed to start {backend.name}: {exc}"))
            return

        handle = ActiveProcess(
            agent_id=agent_id,
            backend=backend,
            process=process,
            request=request,
            start_time=self._clock(),
            session_id=request.effective_session_id,
        )
        if self._settings.capture_output:
            stamp = time.strftime("%Y%m%d-%H%M%S")
            log_dir = self._settings.data_dir / "logs"
            handle.output_file = log_dir / f"{agent_id}-{stamp}.stdout.log"
            handle.stderr_file = log_dir / f"{agent_id}-{stamp}.stderr.log"
        handle.pipeline = StdoutPipeline(
            agent_id,
            backend,
            self._bus,
            session_lookup=lambda: handle.session_id,
            clock=self._clock,
        )
        self._active[agent_id] = handle
        handle.watcher = asyncio.create_task(self._watch(handle), name=f"armada-watch-{agent_id}")

        logger.info(
            "Spawned agent process",
            extra={
                "agent_id": agent_id,
                "pid": process.pid,
                "backend": backend.name,
                "session_id": handle.session_id,
            },
        )
        self._bus.publish(ProcessSpawned(agent_id, process.pid, (str(executable), *args)))
        self._set_status(agent_id, AgentStatus.WORKING)
        self._emit_snapshot()

        if backend.requires_stdin_input():
            await self._write_stdin(handle, request.prompt)

    def _fail_spawn(self, agent_id: str, error: RunnerError) -> None:
        message = str(error)
        logger.error("Failed to spawn agent process", extra={"agent_id": agent_id, "error": message})
        self._bus.publish(SpawnFailed(agent_id, message))
        self._bus.publish(AgentError(agent_id, message))
        self._set_status(agent_id, AgentStatus.ERROR, message)

    async def _write_stdin(self, handle: ActiveProcess, prompt: str) -> bool:
        stdin = handle.process.stdin
        if stdin is None or stdin.is_closing():
            handle.last_error = "stdin is closed"
            return False
        payload = handle.backend.format_stdin_input(prompt) + "\n"
        try:
            stdin.write(payload.encode("utf-8"))
            await asyncio.wait_for(stdin.drain(), timeout=self._settings.stop_grace_seconds)
        except (BrokenPipeError, ConnectionResetError) as exc:
            handle.last_error = f"stdin write failed: {exc}"
            logger.error(
                "Failed to write prompt to stdin",
                extra={"agent_id": handle.agent_id, "error": str(exc)},
            )
            return False
        except asyncio.TimeoutError:
            logger.warning(
                "Agent is slow to read stdin; prompt left buffered",
                extra={"agent_id": handle.agent_id, "chars": len(prompt)},
            )
        return True

    # ---------------------------------------------------------------- lifecycle

    async def _watch(self, handle: ActiveProcess) -> None:
        process = handle.process
        with contextlib.ExitStack() as stack:
            tee = None
            stderr_tee = None
            if handle.output_file is not None and handle.stderr_file is not None:
                handle.output_file.parent.mkdir(parents=True, exist_ok=True)
                tee = stack.enter_context(handle.output_file.open("a", encoding="utf-8"))
                stderr_tee = stack.enter_context(handle.stderr_file.open("a", encoding="utf-8"))
            assert handle.pipeline is not None
            await asyncio.gather(
                handle.pipeline.consume(process.stdout, tee),
                self._drain_stderr(handle, stderr_tee),
            )
            returncode = await process.wait()
        await self._on_exit(handle, returncode)

    async def _drain_stderr(self, handle: ActiveProcess, tee) -> None:
        stream = handle.process.stderr
        if stream is None:
            return
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                return
            text = chunk.decode("utf-8", errors="replace")
            handle.append_stderr(text)
            if tee is not None:
                tee.write(text)
                tee.flush()
            logger.debug("Agent stderr", extra={"agent_id": handle.agent_id, "stderr": text[:500]})

    async def _on_exit(self, handle: ActiveProcess, returncode: int) -> None:
        agent_id = handle.agent_id
        async with self._locks[agent_id]:
            runtime = self._clock() - handle.start_time
            self._bus.publish(
                ProcessExited(agent_id, handle.pid, returncode, runtime, handle.stop_requested, handle.stderr_tail)
            )
            if not self._release(handle):
                logger.info(
                    "Released process exited",
                    extra={"agent_id": agent_id, "pid": handle.pid, "returncode": returncode},
                )
                return

            if returncode == 0:
                logger.info(
                    "Agent process completed",
                    extra={"agent_id": agent_id, "pid": handle.pid, "runtime": round(runtime, 1)},
                )
                self._set_status(agent_id, AgentStatus.IDLE)
                if handle.in_flight:
                    self._bus.publish(TurnCompleted(agent_id, True))
                await self._pump_locked(agent_id)
                return

            message = str(ProcessCrash(agent_id, returncode))
            tail = handle.stderr_tail.strip().splitlines()
            if tail:
                message = f"{message}: {tail[-1][:300]}"
            logger.error(
                "Agent process failed",
                extra={"agent_id": agent_id, "pid": handle.pid, "returncode": returncode, "runtime": round(runtime, 1)},
            )
            await self._after_failure(handle, returncode, runtime, message)

    async def _after_failure(
        self, handle: ActiveProcess, returncode: int | None, runtime: float, message: str
    ) -> None:
        agent_id = handle.agent_id
        handle.last_error = message
        self._bus.publish(AgentError(agent_id, message))
        self._set_status(agent_id, AgentStatus.ERROR, message)
        if handle.in_flight:
            self._bus.publish(TurnCompleted(agent_id, False))

        count, last_time = self._restarts.get(agent_id, (0, 0.0))
        now = self._clock()
        decision = self._restart_policy.evaluate(
            returncode=returncode,
            runtime=runtime,
            stopped=handle.stop_requested,
            restart_count=count,
            last_restart_time=last_time,
            now=now,
        )
        if decision.error:
            self._bus.publish(AgentError(agent_id, decision.error))
        if decision.restart:
            logger.info(
                "Scheduling automatic restart",
                extra={"agent_id": agent_id, "attempt": decision.attempt},
            )
            self._restarts[agent_id] = (decision.attempt, now)
            self._spawn_background(self._restart(handle.request, decision.attempt))

    async def _restart(self, request: RunnerRequest, attempt: int) -> None:
        await asyncio.sleep(self._restart_policy.delay)
        session = self._sessions.get(request.agent_id) or request.session_id
        try:
            await self.run(request.with_changes(session_id=session), enqueue=False)
        except AgentBusyError:
            logger.info("Skipped automatic restart; agent is busy", extra={"agent_id": request.agent_id})
            return
        self._bus.publish(Output(request.agent_id, RESTARTED_NOTICE))
        logger.info("Restarted agent", extra={"agent_id": request.agent_id, "attempt": attempt})

    def _release(self, handle: ActiveProcess) -> bool:
        """Remove ``handle`` if it is still the agent's current process."""

        if self._active.get(handle.agent_id) is not handle:
            return False
        del self._active[handle.agent_id]
        self._emit_snapshot()
        return True

    async def _terminate(self, handle: ActiveProcess) -> None:
        process = handle.process
        if process.returncode is not None:
            return
        grace = self._settings.stop_grace_seconds
        self._signal_group(process, signal.SIGTERM)
        try:
            await asyncio.wait_for(process.wait(), timeout=grace)
            return
        except asyncio.TimeoutError:
            logger.warning(
                "Agent ignored SIGTERM; sending SIGKILL",
                extra={"agent_id": handle.agent_id, "pid": handle.pid, "grace": grace},
            )
        self._signal_group(process, signal.SIGKILL)
        try:
            await asyncio.wait_for(process.wait(), timeout=grace)
        except asyncio.TimeoutError:
            logger.error(
                "Agent process did not exit after SIGKILL",
                extra={"agent_id": handle.agent_id, "pid": handle.pid},
            )

    @staticmethod
    def _signal_group(process: asyncio.subprocess.Process, sig: signal.Signals) -> None:
        if process.pid is None or process.returncode is not None:
            return
        try:
            os.killpg(process.pid, sig)
        except ProcessLookupError:
            return
        except PermissionError:
            with contextlib.suppress(ProcessLookupError):
                process.send_signal(sig)

    # ------------------------------------------------------------ bus handlers

    def _on_session_assigned(self, signal_: SessionAssigned) -> None:
        self._sessions[signal_.agent_id] = signal_.session_id
        handle = self._active.get(signal_.agent_id)
        if handle is None:
            return
        handle.session_id = signal_.session_id
        if not handle.request.session_id:
            handle.request = handle.request.with_changes(session_id=signal_.session_id)
        self._emit_snapshot()

    def _on_activity(self, signal_: Activity) -> None:
        handle = self._active.get(signal_.agent_id)
        if handle is not None:
            handle.last_activity = signal_.timestamp

    def _on_parsed_event(self, signal_: ParsedEvent) -> None:
        handle = self._active.get(signal_.agent_id)
        if handle is None:
            return
        event = signal_.event
        if event.type == "error":
            handle.last_error = event.error_message
            self._set_status(signal_.agent_id, AgentStatus.ERROR, event.error_message)
        elif event.type == "step_complete" and handle.backend.requires_stdin_input():
            self._spawn_background(self._complete_turn(handle, bool(event.permission_denials)))

    async def _complete_turn(self, handle: ActiveProcess, denied: bool) -> None:
        agent_id = handle.agent_id
        async with self._locks[agent_id]:
            if self._active.get(agent_id) is not handle or not handle.in_flight:
                return
            handle.in_flight = False
            self._set_status(agent_id, AgentStatus.WAITING_PERMISSION if denied else AgentStatus.IDLE)
            self._bus.publish(TurnCompleted(agent_id, True))
            await self._pump_locked(agent_id)

    # ------------------------------------------------------------------ helpers

    def _spawn_background(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _set_status(self, agent_id: str, status: AgentStatus, error: str | None = None) -> None:
        previous = self._statuses.get(agent_id)
        self._statuses[agent_id] = status
        if previous is status and error is None:
            return
        self._bus.publish(StatusChanged(agent_id, status, error))

    def _publish_queue(self, agent_id: str) -> None:
        self._bus.publish(QueueChanged(agent_id, tuple(self.pending(agent_id))))

    def _emit_snapshot(self) -> None:
        if self._snapshot_sink is None:
            return
        try:
            self._snapshot_sink(self.snapshot())
        except OSError as exc:
            logger.error("Failed to persist running processes", extra={"error": str(exc)})

    def persist(self) -> None:
        self._emit_snapshot()


__all__ = ["ProcessRunner", "RunOutcome"]
