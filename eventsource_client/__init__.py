"""
EventSource client for Python

Receives Server-Sent Events over a long-lived HTTP GET, dispatches them to
named handlers and reconnects automatically, resuming from the last event id.

Example:
    >>> from eventsource_client import EventSource
    >>> source = EventSource("https://example.com/stream")
    >>> source.on_message(lambda event: print(event.data))
    >>> source.open()
    >>> source.close()
"""

from .client import EventSource, AsyncEventSource
from .dispatcher import EventDispatcher, EventHandler
from .parser import StreamParser
from .retry import RetryPolicy
from .types import (
    ERROR_EVENT,
    MESSAGE_EVENT,
    OPEN_EVENT,
    ErrorKind,
    Event,
    EventSourceConfig,
    EventSourceError,
    ReadyState,
)

__version__ = "1.0.0"
__all__ = [
    # Clients
    "EventSource",
    "AsyncEventSource",
    # Components
    "StreamParser",
    "EventDispatcher",
    "EventHandler",
    "RetryPolicy",
    # Types
    "Event",
    "EventSourceConfig",
    "EventSourceError",
    "ErrorKind",
    "ReadyState",
    # Reserved event names
    "MESSAGE_EVENT",
    "OPEN_EVENT",
    "ERROR_EVENT",
]
