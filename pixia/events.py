"""Chat lifecycle events and the bus that fans them out.

Controllers emit ``turn_completed`` once an assistant reply is stored;
follow-up work (titling) subscribes here instead of running inside the turn.
A failing subscriber is logged and forgotten: it cannot delay, fail, or
roll back the turn that produced the event.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

EventHandler = Callable[["Event"], Awaitable[None]]

# data: {"message_id": int}
TURN_COMPLETED = "turn_completed"


@dataclass
class Event:
    """Something that happened to a chat session."""

    type: str
    session_id: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class EventBus:
    """Bounded queue of session events drained by one background task.

    ``emit`` never waits on subscribers; when the queue is full the event is
    dropped with a warning. Subscribers of the same event run concurrently.
    """

    def __init__(self, max_queue: int = 1000):
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)
        self._queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=max_queue)
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def on(self, event_type: str, handler: EventHandler) -> None:
        self._subscribers[event_type].append(handler)
        logger.debug("%s subscribed to %s", handler.__qualname__, event_type)

    async def emit(self, event: Event) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(
                "Dropped %s for session %s: %d events already queued",
                event.type,
                event.session_id,
                self._queue.maxsize,
            )

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._drain_forever(), name="chat-events")
        logger.info("Event bus started")

    async def stop(self) -> None:
        """Stop the worker and deliver whatever was still queued."""
        self._running = False
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            await asyncio.wait([task])
            while not self._queue.empty():
                await self._deliver(self._queue.get_nowait())
        logger.info("Event bus stopped")

    async def _drain_forever(self) -> None:
        while self._running:
            event = await self._queue.get()
            try:
                await self._deliver(event)
            except Exception:
                logger.exception("Event bus failed delivering %s", event.type)

    async def _deliver(self, event: Event) -> None:
        handlers = self._subscribers.get(event.type)
        if handlers:
            await asyncio.gather(*(self._call(h, event) for h in handlers))

    async def _call(self, handler: EventHandler, event: Event) -> None:
        try:
            await handler(event)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(
                "Subscriber %s failed on %s for session %s",
                handler.__qualname__,
                event.type,
                event.session_id,
            )
