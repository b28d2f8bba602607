"""Fan-out of orchestration messages to connected observers."""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

SendText = Callable[[str], Awaitable[None]]


@dataclass(slots=True)
class _Subscriber:
    id: int
    send: SendText
    queue: asyncio.Queue[str]
    writer: asyncio.Task | None = field(default=None, repr=False)
    dropped: int = 0


def encode_message(kind: str, payload: Any) -> str:
    return json.dumps({"type": kind, "payload": payload}, ensure_ascii=False)


class BroadcastHub:
    """Owns the observer set; every observer drains its own bounded queue.

    ``broadcast`` never awaits an observer. A subscriber whose queue is full is
    treated as not writable and skips that message.
    """

    def __init__(self, queue_size: int = 256) -> None:
        self._queue_size = queue_size
        self._subscribers: dict[int, _Subscriber] = {}
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self._subscribers)

    def register(self, send: SendText) -> int:
        subscriber = _Subscriber(next(self._ids), send, asyncio.Queue(maxsize=self._queue_size))
        subscriber.writer = asyncio.get_running_loop().create_task(
            self._drain(subscriber), name=f"armada-observer-{subscriber.id}"
        )
        self._subscribers[subscriber.id] = subscriber
        logger.info("Observer connected", extra={"subscriber": subscriber.id, "observers": len(self)})
        return subscriber.id

    def unregister(self, subscriber_id: int) -> None:
        subscriber = self._subscribers.pop(subscriber_id, None)
        if subscriber is None:
            return
        if subscriber.writer is not None and subscriber.writer is not asyncio.current_task():
            subscriber.writer.cancel()
        logger.info(
            "Observer disconnected",
            extra={"subscriber": subscriber_id, "observers": len(self), "dropped": subscriber.dropped},
        )

    def dropped(self, subscriber_id: int) -> int:
        subscriber = self._subscribers.get(subscriber_id)
        return subscriber.dropped if subscriber else 0

    def broadcast(self, kind: str, payload: Any) -> int:
        """Queue one message for every observer; returns how many accepted it."""

        return self._deliver(encode_message(kind, payload), list(self._subscribers.values()))

    def broadcast_to_others(self, exclude_id: int, kind: str, payload: Any) -> int:
        targets = [sub for sub in self._subscribers.values() if sub.id != exclude_id]
        return self._deliver(encode_message(kind, payload), targets)

    def send(self, subscriber_id: int, kind: str, payload: Any) -> bool:
        subscriber = self._subscribers.get(subscriber_id)
        if subscriber is None:
            return False
        return self._deliver(encode_message(kind, payload), [subscriber]) == 1

    def _deliver(self, message: str, targets: list[_Subscriber]) -> int:
        delivered = 0
        for subscriber in targets:
            try:
                subscriber.queue.put_nowait(message)
            except asyncio.QueueFull:
                subscriber.dropped += 1
                logger.debug("Observer not writable; message skipped", extra={"subscriber": subscriber.id})
                continue
            delivered += 1
        return delivered

    async def _drain(self, subscriber: _Subscriber) -> None:
        while True:
            message = await subscriber.queue.get()
            try:
                await subscriber.send(message)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                logger.info(
                    "Observer send failed; dropping observer",
                    extra={"subscriber": subscriber.id, "error": str(exc)},
                )
                self.unregister(subscriber.id)
                return

    async def close(self) -> None:
        writers = [sub.writer for sub in self._subscribers.values() if sub.writer is not None]
        for subscriber_id in list(self._subscribers):
            self.unregister(subscriber_id)
        for writer in writers:
            writer.cancel()
        if writers:
            await asyncio.gather(*writers, return_exceptions=True)


__all__ = ["BroadcastHub", "encode_message"]
