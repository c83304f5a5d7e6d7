"""
Duty Reminder — In-process Event Bus.

Fire-and-forget publish/subscribe. Every handler invocation runs in its own
asyncio task; a handler that raises is logged at the task boundary and never
affects the publisher or sibling handlers.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Awaitable, Callable

from src.core.events import Event

logger = logging.getLogger(__name__)

# return values are discarded
Handler = Callable[[Any], Awaitable[object]]


class EventBus:
    """Registry of async handlers keyed by event name."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = {}
        self._lock = threading.Lock()
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, event_name: str, handler: Handler) -> None:
        """Register `handler` for `event_name`. Multiple handlers are allowed."""
        with self._lock:
            self._handlers.setdefault(event_name, []).append(handler)
        logger.debug("Subscribed %s to %s", _handler_name(handler), event_name)

    def publish(self, event: Event) -> None:
        """Dispatch `event` to every handler registered right now.

        Returns as soon as the handler tasks are created. Must be called
        from within a running event loop.
        """
        with self._lock:
            handlers = list(self._handlers.get(event.name, ()))

        if not handlers:
            logger.debug("No handlers for %s", event.name)
            return

        for handler in handlers:
            task = asyncio.create_task(
                self._dispatch(handler, event),
                name=f"{event.name}:{_handler_name(handler)}",
            )
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def join(self) -> None:
        """Wait until every dispatched handler, including ones they publish, finishes."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @staticmethod
    async def _dispatch(handler: Handler, event: Event) -> None:
        try:
            await handler(event)
        except Exception:
            logger.exception(
                "Handler %s failed on %s", _handler_name(handler), event,
            )


def _handler_name(handler: Handler) -> str:
    return getattr(handler, "__qualname__", repr(handler))
