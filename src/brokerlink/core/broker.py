"""
ServiceBroker: one endpoint's connection to a service broker.
"""

import inspect
from typing import Callable, Optional, Union

from .config import BrokerConfig
from .connection import ConnectionManager, ConnectionState, ConnectListener
from .correlator import BrokerClosedError, RequestCorrelator
from .logging import LogEvent, LogHandler, LogLevel, StructuredLogger
from .message import (
    TOPIC_PREFIX,
    MalformedHeaderError,
    Message,
    MessageType,
    ServiceSelector,
)
from .metrics import Metrics
from .service_registry import Handler, ServiceRegistry
from .transport import TransportFactory, url_scheme

SelectorLike = Union[ServiceSelector, str]
TopicHandler = Callable[[Optional[str]], None]

_RESPONSE_TYPES = (
    MessageType.SERVICE_RESPONSE.value,
    MessageType.STATUS_RESPONSE.value,
)


class ServiceBroker:
    """
    Client endpoint for a broker-mediated service bus.

    Calls services by name, provides services to other endpoints, and
    emulates topic publish/subscribe on top of service requests, all over a
    single connection that reconnects on its own.

    Usage:
        async with ServiceBroker("ws://localhost:8080") as broker:
            broker.advertise(ServiceSelector("echo"), lambda msg: msg)
            response = await broker.request("echo", Message(payload="hi"))

    Anything sent before the connection opens is buffered and replayed in
    call order once it does.
    """

    def __init__(
        self,
        url: str,
        transport_factory: Optional[TransportFactory] = None,
        retry_delay: float = 15.0,
        reconnect_delay: float = 0.0,
        enable_metrics: bool = True,
        log_handler: Optional[LogHandler] = None,
        log_level: LogLevel = LogLevel.INFO,
    ):
        if transport_factory is None:
            # Fail fast on a URL no built-in transport can open
            url_scheme(url)
        self.url = url

        self.enable_metrics = enable_metrics
        self._metrics = Metrics() if enable_metrics else None
        self._logger = StructuredLogger(handler=log_handler, level=log_level, url=url)

        self._connection = ConnectionManager(
            url,
            on_frame=self._on_frame,
            transport_factory=transport_factory,
            retry_delay=retry_delay,
            reconnect_delay=reconnect_delay,
            logger=self._logger,
            metrics=self._metrics,
        )
        self._correlator = RequestCorrelator(
            self._connection.send, logger=self._logger, metrics=self._metrics
        )
        self._registry = ServiceRegistry(
            self._connection.send, logger=self._logger, metrics=self._metrics
        )
        self.running = False
        self._closed = False

    @staticmethod
    def from_config(
        config: BrokerConfig,
        transport_factory: Optional[TransportFactory] = None,
        log_handler: Optional[LogHandler] = None,
    ) -> "ServiceBroker":
        """Create a ServiceBroker from a BrokerConfig."""
        return ServiceBroker(
            config.url,
            transport_factory=transport_factory,
            retry_delay=config.retry_delay,
            reconnect_delay=config.reconnect_delay,
            enable_metrics=config.enable_metrics,
            log_handler=log_handler,
            log_level=config.log_level,
        )

    @staticmethod
    def from_env(
        transport_factory: Optional[TransportFactory] = None,
        log_handler: Optional[LogHandler] = None,
    ) -> "ServiceBroker":
        """Create a ServiceBroker configured from BROKERLINK_* variables."""
        return ServiceBroker.from_config(
            BrokerConfig.from_env(),
            transport_factory=transport_factory,
            log_handler=log_handler,
        )

    @property
    def metrics(self) -> Optional[Metrics]:
        """Get the metrics collector."""
        return self._metrics

    @property
    def logger(self) -> StructuredLogger:
        """Get the structured logger."""
        return self._logger

    @property
    def state(self) -> ConnectionState:
        return self._connection.state

    @property
    def pending_requests(self) -> int:
        return self._correlator.pending_count

    def set_log_handler(self, handler: Optional[LogHandler]):
        """
        Set a custom log handler.

        Usage:
            broker.set_log_handler(lambda entry: print(entry.to_json()))
        """
        self._logger.set_handler(handler)

    async def start(self):
        """Begin connecting; returns immediately without waiting for the open."""
        if self.running:
            return
        self.running = True
        self._closed = False
        self._logger.info(LogEvent.BROKER_START, f"Starting broker client for {self.url}")
        self._connection.start()

    async def close(self):
        """Stop reconnecting, close the transport and fail pending requests."""
        if self._closed:
            return
        self._closed = True
        self.running = False

        self._logger.info(LogEvent.BROKER_STOP, "Broker client stopped")
        await self._connection.close()
        self._registry.cancel_all()
        self._correlator.reject_all(BrokerClosedError("Broker client closed"))

    async def wait_idle(self):
        """Wait for in-flight service handlers to finish."""
        await self._registry.wait_idle()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, tb):
        await self.close()

    # Requests

    def request(self, service: SelectorLike, request: Optional[Message] = None):
        """
        Call a service by name; the broker picks the provider.

        Returns an awaitable future resolving to the response Message.
        """
        return self.request_to(None, service, request)

    def request_to(
        self,
        endpoint_id: Optional[str],
        service: SelectorLike,
        request: Optional[Message] = None,
    ):
        """Call a service on a specific endpoint (or any, when endpoint_id is None)."""
        return self._correlator.request_to(
            endpoint_id, ServiceSelector.coerce(service), request
        )

    # Providers

    def advertise(self, service: SelectorLike, handler: Handler):
        """
        Provide a service and announce it to the broker.

        Raises:
            DuplicateServiceError: a provider already exists under this name
        """
        self._registry.advertise(ServiceSelector.coerce(service), handler)

    def unadvertise(self, name: str):
        """
        Stop providing a service and re-announce the remaining ones.

        Raises:
            UnknownServiceError: no provider under this name
        """
        self._registry.unadvertise(name)

    def set_service_handler(self, name: str, handler: Handler):
        """Answer requests for name without announcing it to the broker."""
        self._registry.set_service_handler(name, handler)

    # Pub/sub

    def publish(self, topic: str, text: Optional[str]):
        """Fire-and-forget a text message to every subscriber of topic."""
        message = Message.create_publish(topic, text)
        self._connection.send(message.header, message.payload)

    def subscribe(self, topic: str, handler: TopicHandler):
        """Receive payloads published to topic; headers are discarded."""

        async def deliver(message: Message):
            result = handler(message.payload)
            if inspect.isawaitable(result):
                await result

        self.advertise(ServiceSelector(TOPIC_PREFIX + topic), deliver)

    def unsubscribe(self, topic: str):
        self.unadvertise(TOPIC_PREFIX + topic)

    # Connection

    def is_connected(self) -> bool:
        return self._connection.is_connected

    def add_connect_listener(self, listener: ConnectListener):
        """Call listener on every (re)connection, and right away if connected."""
        self._connection.add_connect_listener(listener)

    def _on_frame(self, frame: str):
        """Route one inbound frame to the correlator or the dispatcher."""
        try:
            message = Message.unpack(frame)
        except MalformedHeaderError as e:
            self._logger.error(
                LogEvent.MALFORMED_HEADER,
                f"Dropping frame: {e}",
                error=str(e),
                metadata={"frame": frame[:200]},
            )
            if self._metrics:
                self._metrics.record_dropped_frame()
            return

        self._logger.frame_received(message.header, message.payload)

        if message.type in _RESPONSE_TYPES:
            self._correlator.handle_response(message)
        elif message.type == MessageType.SERVICE_REQUEST.value:
            self._registry.dispatch(message)
        elif message.error:
            self._correlator.handle_response(message)
        else:
            self._logger.error(
                LogEvent.UNHANDLED_FRAME,
                "Unhandled",
                metadata={"header": message.header},
            )
            if self._metrics:
                self._metrics.record_dropped_frame()
