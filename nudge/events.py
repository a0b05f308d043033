"""In-process async event bus for host session events.

Events are dispatched in arrival order. Each event's handlers run as
their own task, so a handler suspended on a network call does not hold
up later events (a new ``input`` can land while a turn is still being
classified). Handler errors are isolated: one broken handler never
crashes the bus or blocks other handlers.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

# Handler type: async function taking an Event. Return values are ignored.
EventHandler = Callable[["Event"], Awaitable[Any]]

INPUT = "input"
AGENT_END = "agent_end"
NUDGE_TOGGLE = "nudge_toggle"
NUDGE_SENT = "nudge_sent"


@dataclass
class Event:
    """A typed event flowing through the bus."""

    type: str
    session_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class EventBus:
    """In-process async event bus with error isolation.

    Events are queued and picked up by a background asyncio task, which
    starts the registered handlers for each event as tasks and moves on.
    Handler errors are logged but never propagate.
    """

    def __init__(self, max_queue: int = 1000):
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=max_queue)
        self._task: asyncio.Task | None = None
        self._running = False
        self._in_flight: set[asyncio.Task] = set()

    def on(self, event_type: str, handler: EventHandler) -> None:
        """Register a handler for an event type. Can register multiple."""
        self._handlers[event_type].append(handler)
        logger.debug("Registered handler for '%s': %s", event_type, handler.__qualname__)

    async def emit(self, event: Event) -> None:
        """Emit an event. Non-blocking, queued for async processing.

        If queue is full, logs warning and drops event (never blocks caller).
        """
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("Event bus queue full, dropping event: %s", event.type)

    async def start(self) -> None:
        """Start the background processing loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._process_loop(), name="event-bus")
        logger.info("Event bus started")

    async def stop(self) -> None:
        """Stop the bus. Drains queued events and waits for running handlers."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            while not self._queue.empty():
                try:
                    event = self._queue.get_nowait()
                    self._dispatch(event)
                except asyncio.QueueEmpty:
                    break
        await self.join()
        logger.info("Event bus stopped")

    async def join(self) -> None:
        """Wait until every handler started so far has finished."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    async def _process_loop(self) -> None:
        """Main processing loop, runs as a background task."""
        while self._running:
            try:
                event = await asyncio.wait_for(self._queue.get(), timeout=1.0)
                self._dispatch(event)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Unexpected error in event bus loop")

    def _dispatch(self, event: Event) -> None:
        """Start every handler registered for the event as its own task."""
        for handler in self._handlers.get(event.type, []):
            task = asyncio.create_task(
                self._safe_handle(handler, event),
                name=f"event-{event.type}",
            )
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)

    async def _safe_handle(self, handler: EventHandler, event: Event) -> None:
        """Run handler with error isolation. Never propagates (except CancelledError)."""
        try:
            await handler(event)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(
                "Handler %s failed for event %s",
                handler.__qualname__,
                event.type,
            )

    @property
    def pending(self) -> int:
        """Number of events waiting in queue."""
        return self._queue.qsize()

    @property
    def running_handlers(self) -> int:
        """Number of handler tasks still in flight."""
        return len(self._in_flight)
