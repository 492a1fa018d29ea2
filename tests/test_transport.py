"""
Tests for broker transports.

Tests cover:
- Transport selection by URL scheme
- Callback plumbing in the Transport base class
- WebSocketTransport against a local websockets server
- ZmqTransport against a local ROUTER socket
"""

import asyncio
import os
import sys

import pytest
import websockets
import zmq
import zmq.asyncio

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from brokerlink.core.transport import (
    WebSocketTransport,
    ZmqTransport,
    create_transport,
    url_scheme,
)

from fakes import FakeTransport, wait_until


class TestCreateTransport:
    """Test create_transport() scheme dispatch."""

    def test_websocket_schemes(self):
        assert isinstance(create_transport("ws://localhost:8080"), WebSocketTransport)
        assert isinstance(create_transport("WSS://broker.example"), WebSocketTransport)

    def test_zmq_schemes(self):
        assert isinstance(create_transport("tcp://127.0.0.1:5555"), ZmqTransport)
        assert isinstance(create_transport("ipc:///tmp/broker.sock"), ZmqTransport)

    def test_unknown_scheme(self):
        with pytest.raises(ValueError, match="http"):
            create_transport("http://localhost")

    def test_missing_scheme(self):
        with pytest.raises(ValueError):
            create_transport("localhost:8080")

    def test_url_scheme(self):
        assert url_scheme("WS://broker") == "ws"
        assert url_scheme("ipc:///tmp/broker.sock") == "ipc"
        with pytest.raises(ValueError):
            url_scheme("http://broker")


class TestTransportCallbacks:
    """Test the Transport base class event helpers."""

    def test_close_fires_once(self):
        transport = FakeTransport("ws://x")
        calls = []
        transport.on_close = lambda: calls.append(1)

        transport.drop()
        transport.drop()

        assert calls == [1]
        assert transport.closed

    def test_message_without_listener_is_ignored(self):
        FakeTransport("ws://x").deliver("{}")

    def test_listener_error_goes_to_on_error(self):
        transport = FakeTransport("ws://x")
        errors = []

        def explode(frame):
            raise RuntimeError("listener broke")

        transport.on_message = explode
        transport.on_error = errors.append
        transport.deliver("{}")

        assert [str(e) for e in errors] == ["listener broke"]

    def test_send_after_close_raises(self):
        async def scenario():
            transport = FakeTransport("ws://x")
            await transport.open()
            await transport.close()
            with pytest.raises(RuntimeError):
                transport.send("{}")

        asyncio.run(scenario())


class TestWebSocketTransport:
    """Test WebSocketTransport against a real server."""

    def test_open_failure(self):
        async def scenario():
            transport = WebSocketTransport("ws://127.0.0.1:1", open_timeout=1)
            with pytest.raises(OSError):
                await transport.open()

        asyncio.run(scenario())

    def test_send_receive_and_close(self):
        async def scenario():
            server_seen = []

            async def handler(ws, *args):
                async for frame in ws:
                    server_seen.append(frame)
                    await ws.send(frame.upper())
                    if frame == "bye":
                        await ws.close()

            async with websockets.serve(handler, "127.0.0.1", 0) as server:
                port = server.sockets[0].getsockname()[1]
                transport = WebSocketTransport(f"ws://127.0.0.1:{port}")
                received, closed = [], []
                await transport.open()
                transport.on_message = received.append
                transport.on_close = lambda: closed.append(True)

                transport.send('{"id":1}\nhello')
                transport.send("bye")
                await wait_until(lambda: closed, timeout=2.0)

                assert server_seen == ['{"id":1}\nhello', "bye"]
                assert received == ['{"ID":1}\nHELLO', "BYE"]
                assert closed == [True]

        asyncio.run(scenario())

    def test_send_failure_is_reported_and_writer_continues(self):
        async def scenario():
            class FlakySocket:
                def __init__(self):
                    self.sent = []

                async def send(self, frame):
                    if frame == "bad":
                        raise RuntimeError("write failed")
                    self.sent.append(frame)

            transport = WebSocketTransport("ws://x")
            transport._ws = FlakySocket()
            transport._outbox = asyncio.Queue()
            errors = []
            transport.on_error = errors.append
            writer = asyncio.ensure_future(transport._write_loop())

            for frame in ("one", "bad", "two"):
                transport.send(frame)
            await wait_until(lambda: len(transport._ws.sent) == 2)

            assert transport._ws.sent == ["one", "two"]
            assert [str(e) for e in errors] == ["write failed"]
            assert not writer.done()
            writer.cancel()

        asyncio.run(scenario())

    def test_close_does_not_fire_on_close(self):
        async def scenario():
            async def handler(ws, *args):
                await ws.wait_closed()

            async with websockets.serve(handler, "127.0.0.1", 0) as server:
                port = server.sockets[0].getsockname()[1]
                transport = WebSocketTransport(f"ws://127.0.0.1:{port}")
                closed = []
                await transport.open()
                transport.on_close = lambda: closed.append(True)

                await transport.close()
                await asyncio.sleep(0.05)

                assert closed == []
                assert transport.closed

        asyncio.run(scenario())


class TestZmqTransport:
    """Test ZmqTransport against a ROUTER socket."""

    def test_open_timeout(self):
        async def scenario():
            ctx = zmq.asyncio.Context()
            placeholder = ctx.socket(zmq.ROUTER)
            port = placeholder.bind_to_random_port("tcp://127.0.0.1")
            # Free the port so nothing is listening there
            placeholder.close(linger=0)
            ctx.term()

            transport = ZmqTransport(f"tcp://127.0.0.1:{port}", open_timeout=0.2)
            with pytest.raises(ConnectionError):
                await transport.open()

        asyncio.run(scenario())

    def test_send_and_receive(self):
        async def scenario():
            ctx = zmq.asyncio.Context()
            router = ctx.socket(zmq.ROUTER)
            router.setsockopt(zmq.LINGER, 0)
            port = router.bind_to_random_port("tcp://127.0.0.1")

            transport = ZmqTransport(f"tcp://127.0.0.1:{port}", open_timeout=5)
            received = []
            try:
                await transport.open()
                transport.on_message = received.append

                transport.send('{"id":1}\nping')
                identity, empty, frame = await asyncio.wait_for(
                    router.recv_multipart(), 5
                )
                assert empty == b""
                assert frame == b'{"id":1}\nping'

                await router.send_multipart([identity, b"", b'{"id":1}\npong'])
                await wait_until(lambda: received, timeout=5.0)
                assert received == ['{"id":1}\npong']
            finally:
                await transport.close()
                router.close()
                ctx.term()

            assert transport.closed

        asyncio.run(scenario())
