"""
Connection lifecycle for the single logical link to the broker.

DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED ...

Frames sent while not connected are buffered and replayed in FIFO order on
the next successful open, before any frame sent after it.
"""

import asyncio
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from .logging import LogEvent, StructuredLogger
from .message import Message
from .metrics import Metrics
from .transport import Transport, TransportFactory, create_transport


class ConnectionState(Enum):
    """Lifecycle states of the broker connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


ConnectListener = Callable[[], Any]
FrameHandler = Callable[[str], None]


class ConnectionManager:
    """
    Owns the transport: connects, reconnects forever, buffers while down.

    Retry policy is deliberately flat: a failed open is retried after
    retry_delay, a lost connection after reconnect_delay, with no growth
    and no attempt limit.
    """

    def __init__(
        self,
        url: str,
        on_frame: FrameHandler,
        transport_factory: Optional[TransportFactory] = None,
        retry_delay: float = 15.0,
        reconnect_delay: float = 0.0,
        logger: Optional[StructuredLogger] = None,
        metrics: Optional[Metrics] = None,
    ):
        self.url = url
        self.retry_delay = retry_delay
        self.reconnect_delay = reconnect_delay

        self._on_frame = on_frame
        self._transport_factory = transport_factory or create_transport
        self._logger = logger or StructuredLogger()
        self._metrics = metrics

        self._state = ConnectionState.DISCONNECTED
        self._transport: Optional[Transport] = None
        self._listeners: List[ConnectListener] = []
        self._buffer: List[Tuple[Dict[str, Any], Optional[str]]] = []
        self._draining = False
        self._closed = False

        self._retry_handle: Optional[asyncio.TimerHandle] = None
        self._connect_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def buffered(self) -> int:
        """Number of frames waiting for a connection."""
        return len(self._buffer)

    def add_connect_listener(self, listener: ConnectListener):
        """Register a listener fired on every successful open, and now if already open."""
        self._listeners.append(listener)
        if self.is_connected:
            self._fire(listener)

    def start(self):
        """Schedule the first connection attempt on the running loop."""
        self._closed = False
        self._schedule_connect(0)

    async def connect(self):
        """Open a new transport and transition according to the outcome."""
        if self._closed or self._state is not ConnectionState.DISCONNECTED:
            return

        self._state = ConnectionState.CONNECTING
        try:
            transport = self._transport_factory(self.url)
            await transport.open()
        except Exception as e:
            self._on_open_failed(e)
            return

        if self._closed:
            await transport.close()
            self._state = ConnectionState.DISCONNECTED
            return
        self._on_open(transport)

    def send(self, header: Dict[str, Any], payload: Optional[str] = None):
        """Write a frame now, or buffer it until the next open."""
        if not self.is_connected or self._draining:
            self._buffer.append((header, payload))
            self._logger.debug(
                LogEvent.FRAME_BUFFERED,
                "Not connected, buffering frame",
                request_id=header.get("id"),
                metadata={"buffered": len(self._buffer)},
            )
            if self._metrics:
                self._metrics.record_buffer_depth(len(self._buffer))
            return
        self._write(header, payload)

    async def close(self):
        """Stop reconnecting and close the current transport."""
        self._closed = True
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None
        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()
            try:
                await self._connect_task
            except asyncio.CancelledError:
                pass
        self._connect_task = None

        transport, self._transport = self._transport, None
        self._state = ConnectionState.DISCONNECTED
        if transport is not None:
            await transport.close()

    # State transitions

    def _on_open(self, transport: Transport):
        self._transport = transport
        self._state = ConnectionState.CONNECTED
        transport.on_message = self._on_frame
        transport.on_close = lambda: self._on_close(transport)
        transport.on_error = self._on_error

        self._logger.connected()
        if self._metrics:
            self._metrics.record_connect()

        # Listener sends queue up behind the buffered frames
        self._draining = True
        try:
            for listener in list(self._listeners):
                self._fire(listener)
            while self._buffer and self._transport is transport:
                header, payload = self._buffer.pop(0)
                self._write(header, payload)
        finally:
            self._draining = False
        if self._metrics:
            self._metrics.record_buffer_depth(len(self._buffer))

    def _on_open_failed(self, error: Exception):
        self._state = ConnectionState.DISCONNECTED
        self._logger.connect_failed(error, self.retry_delay)
        self._schedule_connect(self.retry_delay)

    def _on_close(self, transport: Transport):
        if transport is not self._transport:
            return
        self._transport = None
        self._state = ConnectionState.DISCONNECTED
        self._logger.disconnected()
        self._schedule_connect(self.reconnect_delay)

    def _on_error(self, error: Exception):
        self._logger.error(
            LogEvent.SOCKET_ERROR,
            f"Transport error: {error}",
            error=str(error),
            error_type=type(error).__name__,
        )

    # Helpers

    def _write(self, header: Dict[str, Any], payload: Optional[str]):
        self._logger.frame_sent(header, payload)
        self._transport.send(Message(header=header, payload=payload).pack())

    def _fire(self, listener: ConnectListener):
        try:
            listener()
        except Exception as e:
            self._logger.error(
                LogEvent.LISTENER_ERROR,
                f"Connect listener failed: {e}",
                error=str(e),
                error_type=type(e).__name__,
            )

    def _schedule_connect(self, delay: float):
        if self._closed:
            return
        self._logger.info(
            LogEvent.SOCKET_RECONNECT,
            f"Connecting to service broker in {delay:g}s",
            metadata={"delay": delay},
        )
        loop = asyncio.get_running_loop()
        self._retry_handle = loop.call_later(delay, self._spawn_connect)

    def _spawn_connect(self):
        self._retry_handle = None
        if self._closed:
            return
        if self._metrics:
            self._metrics.record_connect_attempt()
        self._connect_task = asyncio.ensure_future(self.connect())
