"""
AsyncEventSource tests (asyncio client over a mocked transport)
"""

import asyncio

import httpx

from conftest import STREAM_URL, sse_response
from eventsource_client import AsyncEventSource, ErrorKind, EventSourceConfig, ReadyState

FAST_RETRY = EventSourceConfig(retry_interval=10)


async def wait_until(predicate, timeout: float = 3.0) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(0.01)
    return bool(predicate())


class TestAsyncEventSource:
    def test_open_and_receive(self, server):
        server.reply(sse_response("id: 1\nevent: foo\ndata: bar\n\n", "data: a\ndata: b\n\n"))
        received = []

        async def run():
            async with server.async_client() as client:
                source = AsyncEventSource(STREAM_URL, client=client, config=FAST_RETRY)
                source.on_open(lambda e: received.append(("open", e.ready_state)))

                @source.on("foo")
                async def on_foo(event):
                    await asyncio.sleep(0)
                    received.append(("foo", event.id, event.data))

                source.on_message(lambda e: received.append(("message", e.id, e.data)))
                await source.open()
                assert await wait_until(lambda: len(received) >= 3)
                await source.close()
                assert source.state is ReadyState.CLOSED

        asyncio.run(run())

        assert received[:3] == [
            ("open", ReadyState.OPEN),
            ("foo", "1", "bar"),
            ("message", "1", "a\nb"),
        ]

    def test_reconnect_with_last_event_id(self, server):
        server.reply(sse_response("id: 5\ndata: a\n\n", "data: b\n\n"))
        errors = []

        async def run():
            async with server.async_client() as client:
                source = AsyncEventSource(STREAM_URL, client=client, config=FAST_RETRY)
                source.on_error(errors.append)
                await source.open()
                assert await wait_until(lambda: server.request_count >= 2)
                await source.close()

        asyncio.run(run())

        assert server.requests[1].headers["Last-Event-ID"] == "5"
        assert errors[0].error.kind is ErrorKind.CONNECTION_CLOSED_BY_SERVER
        assert errors[0].ready_state is ReadyState.CONNECTING

    def test_wrong_response_reported(self, server):
        server.reply(httpx.Response(404, text="not found"))
        errors = []

        async def run():
            async with server.async_client() as client:
                source = AsyncEventSource(STREAM_URL, client=client, config=FAST_RETRY)
                source.on_error(errors.append)
                await source.open()
                assert await wait_until(lambda: errors)
                await source.close()

        asyncio.run(run())

        assert errors[0].error.kind is ErrorKind.WRONG_HTTP_RESPONSE
        assert errors[0].error.status_code == 404

    def test_close_cancels_pending_reconnect(self, server):
        server.reply(sse_response("retry: 60000\ndata: x\n\n"))
        errors = []

        async def run():
            async with server.async_client() as client:
                source = AsyncEventSource(STREAM_URL, client=client, config=FAST_RETRY)
                source.on_error(errors.append)
                await source.open()
                assert await wait_until(lambda: source._reconnect_handle is not None)
                await source.close()
                assert source._reconnect_handle is None
                await asyncio.sleep(0.05)

        asyncio.run(run())

        assert len(errors) == 1
        assert server.request_count == 1

    def test_close_while_connecting_suppresses_open(self, server):
        calls = []

        async def run():
            gate = asyncio.Event()

            async def slow(request):
                await gate.wait()
                return sse_response("data: late\n\n")

            server.reply(slow)
            async with server.async_client() as client:
                source = AsyncEventSource(STREAM_URL, client=client, config=FAST_RETRY)
                source.on_open(calls.append)
                source.on_message(calls.append)
                source.on_error(calls.append)
                await source.open()
                assert await wait_until(lambda: server.request_count >= 1)
                await source.close()
                gate.set()
                await asyncio.sleep(0.05)
                assert source.state is ReadyState.CLOSED

        asyncio.run(run())

        assert calls == []
        assert server.request_count == 1

    def test_async_context_manager(self, server):
        server.reply(sse_response("data: x\n\n"))
        received = []

        async def run():
            async with server.async_client() as client:
                source = AsyncEventSource(STREAM_URL, client=client, config=FAST_RETRY)
                source.on_message(lambda e: received.append(e.data))
                async with source:
                    assert await wait_until(lambda: received)
                assert source.state is ReadyState.CLOSED
                assert not client.is_closed

        asyncio.run(run())

        assert received[0] == "x"

    def test_non_ascii_event_id_survives_reconnect(self, server):
        server.reply(sse_response("id: café\ndata: a\n\n"), sse_response("data: b\n\n"))
        received = []

        async def run():
            async with server.async_client() as client:
                source = AsyncEventSource(STREAM_URL, client=client, config=FAST_RETRY)
                source.on_message(lambda e: received.append((e.id, e.data)))
                await source.open()
                assert await wait_until(lambda: len(received) >= 2)
                await source.close()

        asyncio.run(run())

        assert server.requests[1].headers["Last-Event-ID"] == "café"
        assert received[:2] == [("café", "a"), ("café", "b")]

    def test_seeded_non_ascii_event_id(self, server):
        async def run():
            async with server.async_client() as client:
                source = AsyncEventSource(STREAM_URL, last_event_id="é", client=client,
                                          config=FAST_RETRY)
                await source.open()
                assert await wait_until(lambda: server.request_count >= 1)
                await source.close()

        asyncio.run(run())

        assert server.requests[0].headers["Last-Event-ID"] == "é"

    def test_unexpected_failure_is_reported_and_reconnects(self, server):
        failure = RuntimeError("unexpected")
        server.reply(failure)
        errors = []

        async def run():
            async with server.async_client() as client:
                source = AsyncEventSource(STREAM_URL, client=client, config=FAST_RETRY)
                source.on_error(errors.append)
                await source.open()
                assert await wait_until(lambda: server.request_count >= 2)
                await source.close()

        asyncio.run(run())

        assert errors[0].error.kind is ErrorKind.TRANSPORT
        assert errors[0].error.cause is failure
