"""Shared fixtures for EventSource client tests."""

import inspect
import threading
import time
from typing import Any, Callable, List, Optional, Union

import httpx
import pytest


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

STREAM_URL = "http://events.test/stream"
SSE_HEADERS = {"content-type": "text/event-stream; charset=utf-8"}


# ---------------------------------------------------------------------------
# Scripted event-stream server
# ---------------------------------------------------------------------------

Reply = Union[httpx.Response, Exception, Callable[[httpx.Request], httpx.Response]]


def sse_response(*chunks: str, status: int = 200, headers: Optional[dict] = None) -> httpx.Response:
    """Build a streaming response that yields each chunk separately."""
    return httpx.Response(
        status,
        headers=SSE_HEADERS if headers is None else headers,
        stream=_ChunkStream([chunk.encode("utf-8") for chunk in chunks]),
    )


class _ChunkStream(httpx.SyncByteStream, httpx.AsyncByteStream):
    def __init__(self, chunks: List[bytes]):
        self._chunks = chunks

    def __iter__(self):
        yield from self._chunks

    async def __aiter__(self):
        for chunk in self._chunks:
            yield chunk


class StreamServer:
    """
    Answers requests with scripted replies, in order.

    Once the script runs out every request gets an empty event stream,
    which the client sees as the server closing the connection.
    """

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self._replies: List[Reply] = []
        self._lock = threading.Lock()

    def reply(self, *replies: Reply) -> "StreamServer":
        self._replies.extend(replies)
        return self

    def _next(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.requests.append(request)
            reply = self._replies.pop(0) if self._replies else sse_response()
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(request)
        return reply

    def handler(self, request: httpx.Request) -> httpx.Response:
        return self._next(request)

    async def async_handler(self, request: httpx.Request) -> httpx.Response:
        response = self._next(request)
        if inspect.isawaitable(response):
            response = await response
        return response

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))

    def async_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.async_handler))

    @property
    def request_count(self) -> int:
        with self._lock:
            return len(self.requests)


def wait_for(predicate: Callable[[], Any], timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return bool(predicate())


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def server():
    return StreamServer()


@pytest.fixture()
def http_client(server):
    c = server.client()
    yield c
    c.close()
