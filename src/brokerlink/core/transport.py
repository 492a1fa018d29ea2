"""
Duplex transports carrying wire frames between this endpoint and the broker.

A transport is opened once, delivers inbound text frames through callbacks,
and accepts outbound frames without blocking the caller. It never reconnects
on its own; that is the ConnectionManager's job.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Callable, Optional
from urllib.parse import urlsplit

import websockets
import zmq
import zmq.asyncio
from websockets.exceptions import ConnectionClosed
from zmq.utils.monitor import parse_monitor_message


class Transport(ABC):
    """
    Base class for broker transports.

    Callbacks are installed by the owner after open() succeeds:
    - on_message(frame): one inbound text frame
    - on_close(): the established connection went away (fires at most once)
    - on_error(exc): a non-fatal transport error
    """

    def __init__(self, url: str):
        self.url = url
        self.on_message: Optional[Callable[[str], None]] = None
        self.on_close: Optional[Callable[[], None]] = None
        self.on_error: Optional[Callable[[Exception], None]] = None
        self._closed = False

    @abstractmethod
    async def open(self) -> None:
        """Establish the connection. Raises on failure."""

    @abstractmethod
    def send(self, frame: str) -> None:
        """Queue one frame for delivery, preserving call order."""

    @abstractmethod
    async def close(self) -> None:
        """Close the connection without firing on_close."""

    @property
    def closed(self) -> bool:
        return self._closed

    def _emit_message(self, frame: str):
        if self.on_message is None:
            return
        try:
            self.on_message(frame)
        except Exception as e:
            self._emit_error(e)

    def _emit_error(self, error: Exception):
        if self.on_error is not None:
            self.on_error(error)

    def _emit_close(self):
        if self._closed:
            return
        self._closed = True
        if self.on_close is not None:
            self.on_close()


class WebSocketTransport(Transport):
    """Transport over a WebSocket connection (ws:// and wss:// URLs)."""

    def __init__(self, url: str, open_timeout: float = 10.0):
        super().__init__(url)
        self.open_timeout = open_timeout
        self._ws = None
        self._outbox: Optional[asyncio.Queue] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._writer_task: Optional[asyncio.Task] = None

    async def open(self):
        self._ws = await websockets.connect(self.url, open_timeout=self.open_timeout)
        self._outbox = asyncio.Queue()
        self._reader_task = asyncio.create_task(self._read_loop())
        self._writer_task = asyncio.create_task(self._write_loop())

    def send(self, frame: str):
        if self._outbox is None or self._closed:
            raise RuntimeError("WebSocket transport is not open")
        self._outbox.put_nowait(frame)

    async def _read_loop(self):
        try:
            async for data in self._ws:
                if isinstance(data, bytes):
                    data = data.decode("utf-8")
                self._emit_message(data)
        except ConnectionClosed:
            pass
        except Exception as e:
            self._emit_error(e)
        finally:
            if self._writer_task is not None:
                self._writer_task.cancel()
            self._emit_close()

    async def _write_loop(self):
        while True:
            frame = await self._outbox.get()
            try:
                await self._ws.send(frame)
            except ConnectionClosed:
                # Reader sees the same closure and reports it
                return
            except Exception as e:
                # Frame is lost; later frames still go out
                self._emit_error(e)

    async def close(self):
        self._closed = True
        for task in (self._writer_task, self._reader_task):
            if task is not None and not task.done():
                task.cancel()
        if self._ws is not None:
            await self._ws.close()


class ZmqTransport(Transport):
    """
    Transport over a ZeroMQ DEALER socket (tcp:// and ipc:// URLs).

    Frames travel as [empty_delimiter, frame] so a ROUTER-based broker can
    address replies. Connection state comes from the socket monitor.
    """

    def __init__(self, url: str, open_timeout: float = 10.0):
        super().__init__(url)
        self.open_timeout = open_timeout
        self.context: Optional[zmq.asyncio.Context] = None
        self.socket: Optional[zmq.asyncio.Socket] = None
        self._monitor: Optional[zmq.asyncio.Socket] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._monitor_task: Optional[asyncio.Task] = None

    async def open(self):
        try:
            self.context = zmq.asyncio.Context()
            self.socket = self.context.socket(zmq.DEALER)
            self.socket.setsockopt(zmq.LINGER, 0)
            self._monitor = self.socket.get_monitor_socket(
                zmq.EVENT_CONNECTED | zmq.EVENT_DISCONNECTED
            )
            self.socket.connect(self.url)
        except zmq.ZMQError as e:
            self._teardown()
            raise ConnectionError(f"Failed to setup ZMQ socket: {e}") from e

        try:
            await asyncio.wait_for(
                self._wait_for_event(zmq.EVENT_CONNECTED), self.open_timeout
            )
        except asyncio.TimeoutError:
            self._teardown()
            raise ConnectionError(
                f"Timed out after {self.open_timeout}s connecting to {self.url}"
            )

        self._reader_task = asyncio.create_task(self._read_loop())
        self._monitor_task = asyncio.create_task(self._monitor_loop())

    def send(self, frame: str):
        if self.socket is None or self._closed:
            raise RuntimeError("ZMQ transport is not open")
        pending = self.socket.send_multipart([b"", frame.encode("utf-8")])
        pending.add_done_callback(self._check_sent)

    def _check_sent(self, future: asyncio.Future):
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            self._emit_error(error)

    async def _wait_for_event(self, event: int):
        while True:
            info = parse_monitor_message(await self._monitor.recv_multipart())
            if info["event"] == event:
                return

    async def _read_loop(self):
        try:
            while True:
                # DEALER receives: [empty_frame, frame]
                frames = await self.socket.recv_multipart()
                self._emit_message(frames[-1].decode("utf-8"))
        except zmq.ZMQError as e:
            self._emit_error(e)
            self._lost()

    async def _monitor_loop(self):
        try:
            await self._wait_for_event(zmq.EVENT_DISCONNECTED)
        except zmq.ZMQError as e:
            self._emit_error(e)
        self._lost()

    def _lost(self):
        if self._closed:
            return
        self._teardown()
        self._emit_close()

    def _teardown(self):
        current = asyncio.current_task()
        for task in (self._reader_task, self._monitor_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        if self.socket is not None:
            if self._monitor is not None:
                self.socket.disable_monitor()
            self.socket.close()
        if self._monitor is not None:
            self._monitor.close()
        if self.context is not None:
            self.context.term()
        self.socket = None
        self._monitor = None
        self.context = None

    async def close(self):
        self._closed = True
        self._teardown()


TransportFactory = Callable[[str], Transport]

WEBSOCKET_SCHEMES = ("ws", "wss")
ZMQ_SCHEMES = ("tcp", "ipc")


def url_scheme(url: str) -> str:
    """
    Return the transport scheme of a broker URL.

    Raises:
        ValueError: the scheme has no built-in transport
    """
    scheme = urlsplit(url).scheme.lower()
    if scheme not in WEBSOCKET_SCHEMES + ZMQ_SCHEMES:
        raise ValueError(f"Unsupported broker URL scheme: {scheme or url!r}")
    return scheme


def create_transport(url: str) -> Transport:
    """Pick a transport implementation from the URL scheme."""
    if url_scheme(url) in WEBSOCKET_SCHEMES:
        return WebSocketTransport(url)
    return ZmqTransport(url)
