"""Named handler registry for event source events."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from .types import ERROR_EVENT, MESSAGE_EVENT, OPEN_EVENT, Event

logger = logging.getLogger(__name__)

EventHandler = Callable[[Event], Union[None, Awaitable[None]]]


class EventDispatcher:
    """Thread-safe, append-only mapping of event name to ordered handlers."""

    def __init__(self) -> None:
        self._listeners: Dict[str, List[EventHandler]] = {}
        self._lock = threading.Lock()

    def on(self, name: str, handler: Optional[EventHandler] = None) -> Any:
        """Register a handler for ``name``. Can be used as decorator."""
        if handler is None:
            # Used as decorator: @source.on("update")
            def decorator(fn: EventHandler) -> EventHandler:
                self.add_event_listener(name, fn)
                return fn
            return decorator
        self.add_event_listener(name, handler)
        return self

    def add_event_listener(self, name: str, handler: EventHandler) -> None:
        with self._lock:
            self._listeners.setdefault(name, []).append(handler)

    def on_message(self, handler: EventHandler) -> None:
        self.add_event_listener(MESSAGE_EVENT, handler)

    def on_open(self, handler: EventHandler) -> None:
        self.add_event_listener(OPEN_EVENT, handler)

    def on_error(self, handler: EventHandler) -> None:
        self.add_event_listener(ERROR_EVENT, handler)

    def handlers(self, name: str) -> List[EventHandler]:
        """Snapshot of the handlers registered for ``name``."""
        with self._lock:
            return list(self._listeners.get(name, ()))

    def dispatch(self, event: Event) -> None:
        """Invoke every handler registered for ``event.event``, in order."""
        for handler in self.handlers(event.event):
            try:
                handler(event)
            except Exception:
                logger.exception("Handler for %r event raised", event.event)

    async def dispatch_async(self, event: Event) -> None:
        """Like :meth:`dispatch`, awaiting coroutine handlers."""
        for handler in self.handlers(event.event):
            try:
                if asyncio.iscoroutinefunction(handler):
                    await handler(event)
                else:
                    handler(event)
            except Exception:
                logger.exception("Handler for %r event raised", event.event)
