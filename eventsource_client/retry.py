"""Reconnection state that survives individual connection attempts."""

import threading
from typing import Dict, Optional

from .types import Event


class RetryPolicy:
    """
    Holds the last seen event id and the server-advertised reconnect delay.

    Both values change only when an event explicitly carries them; nothing
    clears them short of building a new client.
    """

    def __init__(self, retry_interval: int = 3000, last_event_id: Optional[str] = None) -> None:
        self._retry_interval = retry_interval
        self._last_event_id = last_event_id or None

    @property
    def retry_interval(self) -> int:
        """Reconnect delay in milliseconds."""
        return self._retry_interval

    @property
    def last_event_id(self) -> Optional[str]:
        return self._last_event_id

    @property
    def delay(self) -> float:
        """Reconnect delay in seconds, capped at what a timer can wait."""
        return min(self._retry_interval / 1000.0, threading.TIMEOUT_MAX)

    def note_event(self, event: Event) -> None:
        if event.id:
            self._last_event_id = event.id
        if event.retry is not None and event.retry >= 0:
            self._retry_interval = event.retry

    def request_headers(self) -> Dict[str, bytes]:
        # Ids are arbitrary UTF-8; httpx only encodes str header values as ASCII.
        if self._last_event_id is None:
            return {}
        return {"Last-Event-ID": self._last_event_id.encode("utf-8")}
