"""
Sync wrapper for the async ServiceBroker.
Provides a blocking API on top of the async core.
"""

import asyncio
import threading
from typing import Any, Callable, Optional

from .broker import SelectorLike, ServiceBroker, TopicHandler
from .message import Message
from .service_registry import Handler


class SyncBroker:
    """
    Synchronous facade for ServiceBroker.

    Runs the broker on an event loop in a background thread. Handlers and
    connect listeners execute on that thread.

    Usage:
        with SyncBroker(ServiceBroker("ws://localhost:8080")) as broker:
            broker.advertise("echo", lambda msg: msg)
            response = broker.request("echo", Message(payload="hi"), timeout=5)
    """

    def __init__(self, broker: ServiceBroker):
        """
        Initialize sync wrapper.

        Args:
            broker: The async ServiceBroker instance to wrap
        """
        self._broker = broker
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._loop_thread: Optional[threading.Thread] = None
        self._loop_started = threading.Event()
        self._loop_stopped = threading.Event()

    @property
    def broker(self) -> ServiceBroker:
        return self._broker

    def start(self):
        """Start the broker on the background loop."""
        self._ensure_loop()
        return self._run_async(self._broker.start())

    def close(self):
        """Close the broker and stop the background loop."""
        if self._loop and not self._loop.is_closed():
            self._run_async(self._broker.close())
            self._stop_loop()

    def request(
        self,
        service: SelectorLike,
        request: Optional[Message] = None,
        timeout: Optional[float] = None,
    ) -> Message:
        """Call a service and block for the response."""
        return self.request_to(None, service, request, timeout=timeout)

    def request_to(
        self,
        endpoint_id: Optional[str],
        service: SelectorLike,
        request: Optional[Message] = None,
        timeout: Optional[float] = None,
    ) -> Message:
        """
        Call a service on a specific endpoint and block for the response.

        A timeout only bounds this thread's wait; the request itself stays
        pending in the broker.
        """

        async def call():
            return await self._broker.request_to(endpoint_id, service, request)

        return self._run_async(call(), timeout=timeout)

    def advertise(self, service: SelectorLike, handler: Handler):
        self._call_soon(self._broker.advertise, service, handler)

    def unadvertise(self, name: str):
        self._call_soon(self._broker.unadvertise, name)

    def set_service_handler(self, name: str, handler: Handler):
        self._call_soon(self._broker.set_service_handler, name, handler)

    def publish(self, topic: str, text: Optional[str]):
        self._call_soon(self._broker.publish, topic, text)

    def subscribe(self, topic: str, handler: TopicHandler):
        self._call_soon(self._broker.subscribe, topic, handler)

    def unsubscribe(self, topic: str):
        self._call_soon(self._broker.unsubscribe, topic)

    def is_connected(self) -> bool:
        return self._broker.is_connected()

    def add_connect_listener(self, listener: Callable[[], Any]):
        self._call_soon(self._broker.add_connect_listener, listener)

    def _call_soon(self, func: Callable, *args):
        """Run a loop-bound method on the loop thread, re-raising its errors here."""

        async def call():
            return func(*args)

        return self._run_async(call())

    def _ensure_loop(self):
        """Ensure an event loop is running in a background thread."""
        if self._loop is None or self._loop.is_closed():
            self._start_loop()

    def _start_loop(self):
        """Start an event loop in a background thread."""
        self._loop_started.clear()
        self._loop_stopped.clear()

        def run_loop():
            self._loop = asyncio.new_event_loop()
            asyncio.set_event_loop(self._loop)
            self._loop_started.set()
            self._loop.run_forever()
            self._loop.close()
            self._loop_stopped.set()

        self._loop_thread = threading.Thread(target=run_loop, daemon=True)
        self._loop_thread.start()
        self._loop_started.wait()

    def _stop_loop(self):
        """Stop the background event loop."""
        if self._loop and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._loop_stopped.wait(timeout=2)
            if self._loop_thread is not None:
                self._loop_thread.join(timeout=2)
        self._loop = None
        self._loop_thread = None

    def _run_async(self, coro, timeout: Optional[float] = None):
        """
        Run an async coroutine in the background loop.

        Args:
            coro: The coroutine to run
            timeout: Seconds to wait for the result (None waits forever)

        Returns:
            The result of the coroutine
        """
        if not self._loop or self._loop.is_closed():
            coro.close()
            raise RuntimeError("Event loop is not running")

        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result(timeout=timeout)

    def __enter__(self):
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, tb):
        """Context manager exit."""
        self.close()
