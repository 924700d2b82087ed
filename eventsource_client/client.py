"""
EventSource clients: Server-Sent Events over a long-lived HTTP GET.

Example (sync)::

    source = EventSource("https://example.com/stream")
    source.on_message(lambda event: print(event.data))

    @source.on("update")
    def on_update(event):
        print(event.id, event.data)

    source.open()
    ...
    source.close()

Example (async)::

    async with AsyncEventSource("https://example.com/stream") as source:
        source.on_message(handle)
        await asyncio.sleep(60)
"""

from __future__ import annotations

import asyncio
import codecs
import logging
import threading
from typing import Any, Dict, Optional

import httpx

from .dispatcher import EventDispatcher
from .parser import StreamParser
from .retry import RetryPolicy
from .types import (
    ERROR_EVENT,
    OPEN_EVENT,
    Event,
    EventSourceConfig,
    EventSourceError,
    ReadyState,
)

logger = logging.getLogger(__name__)

EVENT_STREAM = "text/event-stream"

_TRANSPORT_ERRORS = (httpx.HTTPError, httpx.StreamError, OSError)


def check_response(response: httpx.Response) -> Optional[EventSourceError]:
    """Return an error unless ``response`` is a 2xx ``text/event-stream``."""
    content_type = response.headers.get("content-type", "")
    media_type = content_type.split(";", 1)[0].strip().lower()
    if response.is_success and media_type == EVENT_STREAM:
        return None
    return EventSourceError.wrong_http_response(response.status_code, content_type)


def _decoder() -> codecs.IncrementalDecoder:
    return codecs.getincrementaldecoder("utf-8")(errors="replace")


# ============================================================================
# Shared state
# ============================================================================

class _EventSourceBase(EventDispatcher):

    def __init__(
        self,
        url: Any,
        timeout: Optional[float] = None,
        last_event_id: Optional[str] = None,
        *,
        config: Optional[EventSourceConfig] = None,
    ) -> None:
        super().__init__()
        if not url:
            raise ValueError("url is required")
        config = config or EventSourceConfig()
        self._url = str(url)
        self._timeout = timeout if timeout is not None else config.timeout
        self._headers = dict(config.headers)
        self._retry = RetryPolicy(
            config.retry_interval,
            last_event_id if last_event_id is not None else config.last_event_id,
        )
        self._state = ReadyState.CONNECTING
        self._started = False

    @property
    def url(self) -> str:
        return self._url

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def state(self) -> ReadyState:
        return self._state

    @property
    def last_event_id(self) -> Optional[str]:
        return self._retry.last_event_id

    @property
    def retry_interval(self) -> int:
        """Current reconnect delay in milliseconds."""
        return self._retry.retry_interval

    def _request_headers(self) -> Dict[str, Any]:
        headers: Dict[str, Any] = {"Accept": EVENT_STREAM, "Cache-Control": "no-cache"}
        headers.update(self._headers)
        headers.update(self._retry.request_headers())
        return headers

    def _received(self, event: Event) -> Event:
        """Record a parsed event's id/retry and stamp it for delivery."""
        self._retry.note_event(event)
        return event.model_copy(update={
            "id": event.id or self._retry.last_event_id,
            "ready_state": ReadyState.OPEN,
        })

    def _error_event(self, error: EventSourceError) -> Event:
        return Event(
            id=self._retry.last_event_id,
            event=ERROR_EVENT,
            ready_state=ReadyState.CONNECTING,
            error=error,
        )

    def _log_failure(self, error: EventSourceError) -> None:
        if error.status_code is not None:
            logger.warning("%s: %s", self._url, error.message)
        else:
            logger.debug("%s: %s", self._url, error.message)


# ============================================================================
# Sync client (background thread)
# ============================================================================

class EventSource(_EventSourceBase):
    """
    Synchronous event source. Reads the stream in a background thread.

    Handlers run on that thread, in the order events arrive. ``close()`` may
    be called from any thread; once it returns no handler is started again
    and no reconnect is attempted.

    Args:
        url: The event stream URL.
        timeout: Request timeout in seconds (default: 5 minutes).
        last_event_id: Event id to resume from on the first request.
        config: Extra settings; ``timeout`` and ``last_event_id`` override it.
        client: An ``httpx.Client`` to issue requests with. It is left open
                on ``close()``; a client created internally is closed.
    """

    def __init__(
        self,
        url: Any,
        timeout: Optional[float] = None,
        last_event_id: Optional[str] = None,
        *,
        config: Optional[EventSourceConfig] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        super().__init__(url, timeout, last_event_id, config=config)
        self._client = client
        self._owns_client = client is None
        self._lock = threading.RLock()
        self._thread: Optional[threading.Thread] = None
        self._reconnect_timer: Optional[threading.Timer] = None
        self._response: Optional[httpx.Response] = None

    def open(self) -> None:
        with self._lock:
            if self._started or self._state is ReadyState.CLOSED:
                logger.debug("open() ignored for %s in state %s", self._url, self._state.name)
                return
            self._started = True
            if self._client is None:
                self._client = httpx.Client()
            self._thread = threading.Thread(
                target=self._read_stream, name="eventsource-reader", daemon=True
            )
            self._thread.start()

    def close(self) -> None:
        with self._lock:
            if self._state is ReadyState.CLOSED:
                return
            self._state = ReadyState.CLOSED
            timer, self._reconnect_timer = self._reconnect_timer, None
            response, self._response = self._response, None
        logger.debug("Closing event source %s", self._url)
        if timer is not None:
            timer.cancel()
        if response is not None:
            response.close()
        if self._owns_client and self._client is not None:
            self._client.close()

    def join(self, timeout: Optional[float] = None) -> None:
        """Wait for the current reader thread to finish."""
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def __enter__(self) -> "EventSource":
        self.open()
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    # --- Internal ---

    def _read_stream(self) -> None:
        error = self._consume()
        if error is not None:
            self._connection_lost(error)

    def _consume(self) -> Optional[EventSourceError]:
        """Run one request. Returns the failure, or None once closed."""
        assert self._client is not None
        parser = StreamParser()
        decoder = _decoder()
        logger.debug("Connecting to %s (Last-Event-ID=%s)", self._url, self._retry.last_event_id)
        try:
            with self._client.stream(
                "GET", self._url, headers=self._request_headers(), timeout=self._timeout,
            ) as response:
                if not self._attach(response):
                    return None
                error = check_response(response)
                if error is not None:
                    return error
                if not self._transition(ReadyState.OPEN):
                    return None
                if not self._deliver(Event(event=OPEN_EVENT, ready_state=ReadyState.OPEN)):
                    return None
                for chunk in response.iter_bytes():
                    for event in parser.feed(decoder.decode(chunk)):
                        if not self._deliver(self._received(event)):
                            return None
        except _TRANSPORT_ERRORS as exc:
            if self._state is ReadyState.CLOSED:
                return None
            return EventSourceError.transport(exc)
        except Exception as exc:
            if self._state is ReadyState.CLOSED:
                return None
            logger.exception("Unexpected failure reading %s", self._url)
            return EventSourceError.transport(exc)
        finally:
            with self._lock:
                self._response = None
        if self._state is ReadyState.CLOSED:
            return None
        return EventSourceError.closed_by_server()

    def _attach(self, response: httpx.Response) -> bool:
        with self._lock:
            if self._state is ReadyState.CLOSED:
                return False
            self._response = response
            return True

    def _transition(self, state: ReadyState) -> bool:
        with self._lock:
            if self._state is ReadyState.CLOSED:
                return False
            self._state = state
            return True

    def _deliver(self, event: Event) -> bool:
        if self._state is ReadyState.CLOSED:
            return False
        self.dispatch(event)
        return True

    def _connection_lost(self, error: EventSourceError) -> None:
        if not self._transition(ReadyState.CONNECTING):
            return
        self._log_failure(error)
        if not self._deliver(self._error_event(error)):
            return
        delay = self._retry.delay
        with self._lock:
            if self._state is ReadyState.CLOSED:
                return
            logger.debug("Reconnecting to %s in %.3fs", self._url, delay)
            timer = threading.Timer(delay, self._reconnect)
            timer.daemon = True
            self._reconnect_timer = timer
            timer.start()

    def _reconnect(self) -> None:
        with self._lock:
            self._reconnect_timer = None
            if self._state is ReadyState.CLOSED:
                return
            self._thread = threading.current_thread()
        self._read_stream()


# ============================================================================
# Async client
# ============================================================================

class AsyncEventSource(_EventSourceBase):
    """
    Asyncio event source. Handlers may be plain callables or coroutines.

    Same arguments as :class:`EventSource`, with an ``httpx.AsyncClient``.
    """

    def __init__(
        self,
        url: Any,
        timeout: Optional[float] = None,
        last_event_id: Optional[str] = None,
        *,
        config: Optional[EventSourceConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        super().__init__(url, timeout, last_event_id, config=config)
        self._client = client
        self._owns_client = client is None
        self._read_task: Optional[asyncio.Task] = None
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None

    async def open(self) -> None:
        if self._started or self._state is ReadyState.CLOSED:
            logger.debug("open() ignored for %s in state %s", self._url, self._state.name)
            return
        self._started = True
        if self._client is None:
            self._client = httpx.AsyncClient()
        self._read_task = asyncio.create_task(self._read_stream())

    async def close(self) -> None:
        if self._state is ReadyState.CLOSED:
            return
        self._state = ReadyState.CLOSED
        logger.debug("Closing event source %s", self._url)
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None
        task, self._read_task = self._read_task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        if self._owns_client and self._client is not None:
            await self._client.aclose()

    async def __aenter__(self) -> "AsyncEventSource":
        await self.open()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # --- Internal ---

    async def _read_stream(self) -> None:
        error = await self._consume()
        if error is not None:
            await self._connection_lost(error)

    async def _consume(self) -> Optional[EventSourceError]:
        assert self._client is not None
        parser = StreamParser()
        decoder = _decoder()
        logger.debug("Connecting to %s (Last-Event-ID=%s)", self._url, self._retry.last_event_id)
        try:
            async with self._client.stream(
                "GET", self._url, headers=self._request_headers(), timeout=self._timeout,
            ) as response:
                if self._state is ReadyState.CLOSED:
                    return None
                error = check_response(response)
                if error is not None:
                    return error
                self._state = ReadyState.OPEN
                if not await self._deliver(Event(event=OPEN_EVENT, ready_state=ReadyState.OPEN)):
                    return None
                async for chunk in response.aiter_bytes():
                    for event in parser.feed(decoder.decode(chunk)):
                        if not await self._deliver(self._received(event)):
                            return None
        except _TRANSPORT_ERRORS as exc:
            if self._state is ReadyState.CLOSED:
                return None
            return EventSourceError.transport(exc)
        except Exception as exc:
            if self._state is ReadyState.CLOSED:
                return None
            logger.exception("Unexpected failure reading %s", self._url)
            return EventSourceError.transport(exc)
        if self._state is ReadyState.CLOSED:
            return None
        return EventSourceError.closed_by_server()

    async def _deliver(self, event: Event) -> bool:
        if self._state is ReadyState.CLOSED:
            return False
        await self.dispatch_async(event)
        return True

    async def _connection_lost(self, error: EventSourceError) -> None:
        if self._state is ReadyState.CLOSED:
            return
        self._state = ReadyState.CONNECTING
        self._log_failure(error)
        if not await self._deliver(self._error_event(error)):
            return
        if self._state is ReadyState.CLOSED:
            return
        delay = self._retry.delay
        logger.debug("Reconnecting to %s in %.3fs", self._url, delay)
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(delay, self._reconnect)

    def _reconnect(self) -> None:
        self._reconnect_handle = None
        if self._state is ReadyState.CLOSED:
            return
        self._read_task = asyncio.create_task(self._read_stream())
