"""
monitor/dispatch.py

Single dispatch point for every event the core reacts to.
Events are queued in arrival order and handled one at a time by one task,
so handlers never run concurrently and need no locking.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

import structlog

from monitor.events import Event

logger = structlog.get_logger(__name__)

Handler = Callable[[Any], Awaitable[None]]


class Dispatcher:
    """Mailbox plus the loop that drains it."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Event] = asyncio.Queue()
        self._handlers: dict[type, Handler] = {}
        self._task: Optional[asyncio.Task] = None

    def register(self, event_type: type, handler: Handler) -> None:
        self._handlers[event_type] = handler

    def post(self, event: Event) -> None:
        """Enqueue an event; safe to call from callbacks on the loop thread."""
        self._queue.put_nowait(event)

    async def dispatch(self, event: Event) -> None:
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.warning("event_unhandled", event_type=type(event).__name__)
            return
        try:
            await handler(event)
        except Exception as exc:
            # A failing handler must not stop the mailbox
            logger.error(
                "event_handler_failed",
                event_type=type(event).__name__,
                error=str(exc),
                exc_info=True,
            )

    async def drain(self) -> None:
        """Handle everything currently queued."""
        while not self._queue.empty():
            event = self._queue.get_nowait()
            await self.dispatch(event)
            self._queue.task_done()

    async def run(self) -> None:
        while True:
            event = await self._queue.get()
            await self.dispatch(event)
            self._queue.task_done()

    def start(self) -> asyncio.Task:
        self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
