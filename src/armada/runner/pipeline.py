"""Turns one agent's raw stdout lines into bus signals."""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import time
from typing import Callable, TextIO

from ..backends import BackendAdapter
from ..events import StandardEvent
from ..formatting import describe_event
from .signals import Activity, AgentError, EventBus, Output, ParsedEvent, SessionAssigned

logger = logging.getLogger(__name__)

RAW_PREFIX = "[raw] "


def line_digest(line: str) -> str:
    return hashlib.sha1(line.encode("utf-8", errors="replace")).hexdigest()


class StdoutPipeline:
    """Feeds stdout lines of one process through its backend adapter.

    The pipeline performs no deduplication: replaying a line publishes the
    same signals again, each carrying the line digest so reducers can ignore
    repeats.
    """

    def __init__(
        self,
        agent_id: str,
        backend: BackendAdapter,
        bus: EventBus,
        *,
        session_lookup: Callable[[], str | None],
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.agent_id = agent_id
        self._backend = backend
        self._bus = bus
        self._session_lookup = session_lookup
        self._clock = clock
        self._text_emitted_in_turn = False
        self._subagent_name: str | None = None
        self._detached = False
        self.lines_processed = 0

    def detach(self) -> None:
        """Stop publishing; later lines are read and discarded."""

        self._detached = True

    @property
    def detached(self) -> bool:
        return self._detached

    async def consume(self, stream: asyncio.StreamReader, tee: TextIO | None = None) -> None:
        """Read ``stream`` to EOF, handling each complete line."""

        while True:
            try:
                chunk = await stream.readuntil(b"\n")
            except asyncio.IncompleteReadError as exc:
                chunk = exc.partial
            except asyncio.LimitOverrunError as exc:
                await self._discard_line(stream, exc.consumed)
                logger.warning(
                    "Dropped stdout line longer than the stream limit",
                    extra={"agent_id": self.agent_id},
                )
                continue
            if not chunk:
                break
            line = chunk.decode("utf-8", errors="replace").rstrip("\r\n")
            if tee is not None:
                tee.write(line + "\n")
                tee.flush()
            if line.strip():
                self._process_guarded(line)

    @staticmethod
    async def _discard_line(stream: asyncio.StreamReader, consumed: int) -> None:
        """Skip buffered bytes through the next newline, or to EOF."""

        while True:
            await stream.readexactly(consumed)
            try:
                await stream.readuntil(b"\n")
                return
            except asyncio.IncompleteReadError:
                return
            except asyncio.LimitOverrunError as exc:
                consumed = exc.consumed

    def _process_guarded(self, line: str) -> None:
        try:
            self.process_line(line)
        except Exception:
            logger.exception("Failed to process stdout line", extra={"agent_id": self.agent_id})
            self._output(RAW_PREFIX + line)

    def process_line(self, line: str) -> None:
        if self._detached:
            return
        self.lines_processed += 1

        session_id = self._backend.extract_session_id(line)
        if session_id and not self._session_lookup():
            self._bus.publish(SessionAssigned(self.agent_id, session_id))

        result = self._backend.parse_event(line)
        if result is None:
            self._output(RAW_PREFIX + line)
            return

        digest = line_digest(line)
        events = result if isinstance(result, list) else [result]
        for index, event in enumerate(events):
            self._handle_event(event, digest if len(events) == 1 else f"{digest}:{index}")

    def _output(self, text: str, *, is_streaming: bool = False, subagent: str | None = None, uuid: str | None = None) -> None:
        self._bus.publish(Output(self.agent_id, text, is_streaming, subagent, uuid))

    def _handle_event(self, event: StandardEvent, digest: str) -> None:
        self._bus.publish(Activity(self.agent_id, self._clock(), describe_event(event)))
        self._bus.publish(ParsedEvent(self.agent_id, event, digest))

        if event.type == "init":
            self._output(f"Session started: {event.session_id} ({event.model})")

        elif event.type == "text" and event.text:
            self._output(event.text, is_streaming=bool(event.is_streaming), uuid=event.uuid)
            self._text_emitted_in_turn = True

        elif event.type == "thinking" and event.text:
            self._output(f"[thinking] {event.text}", is_streaming=bool(event.is_streaming), uuid=event.uuid)

        elif event.type == "tool_start":
            if event.tool_name == "Task" and event.subagent_name:
                self._subagent_name = event.subagent_name
            subagent = event.subagent_name or self._subagent_name
            self._output(f"Using tool: {event.tool_name}", subagent=subagent, uuid=event.uuid)
            if event.tool_input:
                self._output(
                    f"Tool input: {json.dumps(event.tool_input)}", subagent=subagent, uuid=event.uuid
                )

        elif event.type == "tool_result":
            if event.tool_name == "Bash" and event.tool_output:
                self._output(
                    f"Bash output:\n{event.tool_output}", subagent=self._subagent_name, uuid=event.uuid
                )
            if event.tool_name == "Task":
                self._subagent_name = None

        elif event.type == "step_complete":
            if event.result_text and not self._text_emitted_in_turn:
                self._output(event.result_text, uuid=event.uuid)
            self._text_emitted_in_turn = False
            if event.tokens is not None:
                self._output(f"Tokens: {event.tokens.input or 0} in, {event.tokens.output or 0} out")
            if event.cost is not None:
                self._output(f"Cost: ${event.cost:.4f}")

        elif event.type == "context_stats" and event.context_stats_raw:
            self._output(event.context_stats_raw)

        elif event.type == "error":
            self._bus.publish(AgentError(self.agent_id, event.error_message or "Unknown error"))


__all__ = ["RAW_PREFIX", "StdoutPipeline", "line_digest"]
