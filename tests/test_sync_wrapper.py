"""
Tests for SyncBroker.

Tests cover:
- SyncBroker lifecycle (start, request, close)
- Blocking requests, remote errors, and timeouts
- Provider and topic calls marshalled onto the loop thread
- Event loop management
- Context manager usage
"""

import concurrent.futures
import os
import sys
import threading
import time

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from brokerlink import (
    DuplicateServiceError,
    Message,
    RemoteCallError,
    ServiceBroker,
    SyncBroker,
)

from fakes import FakeBroker


def make_sync(hub=None):
    hub = hub or FakeBroker()
    return SyncBroker(ServiceBroker("ws://broker.test", transport_factory=hub.factory))


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("Condition not met in time")
        time.sleep(0.005)


class TestSyncBroker:
    """Test SyncBroker class."""

    def test_init(self):
        """Test SyncBroker initialization."""
        broker = ServiceBroker("ws://broker.test", transport_factory=FakeBroker().factory)
        wrapper = SyncBroker(broker)

        assert wrapper.broker is broker
        assert wrapper._loop is None
        assert wrapper._loop_thread is None

    def test_start_creates_loop(self):
        """Test that start creates an event loop."""
        wrapper = make_sync()

        wrapper.start()

        assert wrapper._loop is not None
        assert wrapper._loop.is_running()
        assert wrapper.broker.running is True
        wait_for(wrapper.is_connected)

        wrapper.close()

    def test_close_stops_loop(self):
        """Test that close stops the event loop."""
        wrapper = make_sync()

        wrapper.start()
        wrapper.close()

        assert wrapper._loop is None
        assert wrapper._loop_thread is None
        assert wrapper.broker.running is False
        assert not wrapper.is_connected()

    def test_request(self):
        """Test a blocking request answered by the same endpoint."""
        wrapper = make_sync()
        wrapper.start()

        wrapper.advertise("echo", lambda m: Message(payload=m.payload.upper()))
        result = wrapper.request("echo", Message(payload="hi"), timeout=2)

        assert result.payload == "HI"
        wrapper.close()

    def test_request_between_endpoints(self):
        hub = FakeBroker()
        provider = make_sync(hub)
        client = make_sync(hub)
        provider.start()
        client.start()

        def add(m):
            return Message(payload=str(sum(int(n) for n in m.payload.split(","))))

        provider.advertise("add", add)
        # Let the advertisement reach the broker before asking for it
        wait_for(lambda: hub.providers_of("add"))

        assert client.request("add", Message(payload="2,3"), timeout=2).payload == "5"

        client.close()
        provider.close()

    def test_request_raises_remote_error(self):
        """Test that a provider failure surfaces in the calling thread."""
        wrapper = make_sync()
        wrapper.start()

        def fail(m):
            raise ValueError("boom")

        wrapper.advertise("fail", fail)

        with pytest.raises(RemoteCallError, match="boom"):
            wrapper.request("fail", Message(), timeout=2)

        wrapper.close()

    def test_request_timeout(self):
        """Test that timeout bounds the wait for an unanswered request."""
        wrapper = make_sync()
        wrapper.start()

        with pytest.raises(concurrent.futures.TimeoutError):
            wrapper.request("nobody", Message(), timeout=0.05)

        # Still pending in the async core
        assert wrapper.broker.pending_requests == 1
        wrapper.close()
        assert wrapper.broker.pending_requests == 0

    def test_duplicate_advertise_raises(self):
        wrapper = make_sync()
        wrapper.start()
        wrapper.advertise("math", lambda m: None)

        with pytest.raises(DuplicateServiceError):
            wrapper.advertise("math", lambda m: None)

        wrapper.close()

    def test_handlers_run_on_loop_thread(self):
        wrapper = make_sync()
        wrapper.start()
        threads = []

        def handler(m):
            threads.append(threading.current_thread())
            return Message()

        wrapper.set_service_handler("where", handler)
        wrapper.advertise("where-public", handler)
        wrapper.request("where-public", Message(), timeout=2)

        assert threads == [wrapper._loop_thread]
        wrapper.close()

    def test_publish_subscribe(self):
        hub = FakeBroker()
        subscriber = make_sync(hub)
        publisher = make_sync(hub)
        subscriber.start()
        publisher.start()
        received = []

        subscriber.subscribe("chat", received.append)
        wait_for(lambda: hub.providers_of("#chat"))
        publisher.publish("chat", "hello")
        wait_for(lambda: received)

        assert received == ["hello"]

        subscriber.unsubscribe("chat")
        wait_for(lambda: not hub.providers_of("#chat"))

        publisher.close()
        subscriber.close()

    def test_connect_listener(self):
        wrapper = make_sync()
        calls = []
        wrapper.start()
        wait_for(wrapper.is_connected)

        wrapper.add_connect_listener(lambda: calls.append(1))

        assert calls == [1]
        wrapper.close()

    def test_context_manager(self):
        """Test using SyncBroker as context manager."""
        with make_sync() as wrapper:
            assert wrapper._loop is not None
            wait_for(wrapper.is_connected)

        assert wrapper._loop is None

    def test_context_manager_with_exception(self):
        """Test context manager closes the broker on exception."""
        wrapper = make_sync()

        with pytest.raises(ValueError):
            with wrapper:
                raise ValueError("Test error")

        assert wrapper._loop is None
        assert wrapper.broker.running is False

    def test_run_async_without_loop_raises(self):
        """Test that calls without a running loop raise RuntimeError."""
        wrapper = make_sync()

        with pytest.raises(RuntimeError, match="not running"):
            wrapper.publish("chat", "too early")


class TestEventLoopManagement:
    """Test event loop management in SyncBroker."""

    def test_loop_starts_in_background_thread(self):
        """Test that loop runs in a separate thread."""
        wrapper = make_sync()
        wrapper.start()

        assert wrapper._loop_thread is not None
        assert wrapper._loop_thread is not threading.current_thread()
        assert wrapper._loop_thread.daemon is True

        wrapper.close()

    def test_loop_stops_on_close(self):
        """Test that loop thread exits on close."""
        wrapper = make_sync()
        wrapper.start()
        thread = wrapper._loop_thread

        wrapper.close()

        assert not thread.is_alive()

    def test_reusable_after_close(self):
        """Test that SyncBroker can be restarted after close."""
        wrapper = make_sync()

        wrapper.start()
        wrapper.close()

        wrapper.start()
        wrapper.advertise("echo", lambda m: m)
        result = wrapper.request("echo", Message(payload="again"), timeout=2)
        assert result.payload == "again"
        wrapper.close()

    def test_close_without_start(self):
        wrapper = make_sync()
        wrapper.close()
        assert wrapper._loop is None
