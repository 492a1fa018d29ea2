"""
Core modules for the async broker client.
"""

from .message import (
    Message,
    MessageType,
    ServiceSelector,
    MalformedHeaderError,
    TOPIC_PREFIX,
)
from .correlator import (
    RequestCorrelator,
    BrokerError,
    RemoteCallError,
    BrokerClosedError,
)
from .service_registry import (
    ServiceRegistry,
    DuplicateServiceError,
    UnknownServiceError,
    HandlerResult,
    NoReply,
    Reply,
    Failure,
)
from .transport import (
    Transport,
    WebSocketTransport,
    ZmqTransport,
    create_transport,
)
from .connection import ConnectionManager, ConnectionState
from .config import BrokerConfig
from .broker import ServiceBroker
from .sync_wrapper import SyncBroker
from .metrics import Metrics, MetricsSnapshot
from .logging import (
    StructuredLogger,
    LogEntry,
    LogEvent,
    LogLevel,
    LogHandler,
    default_json_handler,
    default_pretty_handler,
)

__all__ = [
    "Message",
    "MessageType",
    "ServiceSelector",
    "MalformedHeaderError",
    "TOPIC_PREFIX",
    "RequestCorrelator",
    "BrokerError",
    "RemoteCallError",
    "BrokerClosedError",
    "ServiceRegistry",
    "DuplicateServiceError",
    "UnknownServiceError",
    "HandlerResult",
    "NoReply",
    "Reply",
    "Failure",
    "Transport",
    "WebSocketTransport",
    "ZmqTransport",
    "create_transport",
    "ConnectionManager",
    "ConnectionState",
    "BrokerConfig",
    "ServiceBroker",
    "SyncBroker",
    # Metrics
    "Metrics",
    "MetricsSnapshot",
    # Logging
    "StructuredLogger",
    "LogEntry",
    "LogEvent",
    "LogLevel",
    "LogHandler",
    "default_json_handler",
    "default_pretty_handler",
]
