"""
brokerlink - client endpoint for a broker-mediated service bus

One connection to a service broker over which an endpoint can call named
services, provide named services to other endpoints, and publish/subscribe
to topics. The connection buffers traffic while the broker is unreachable
and reconnects on its own.

## Quick Start

### Calling a service
```python
from brokerlink import ServiceBroker, Message

async with ServiceBroker("ws://localhost:8080") as broker:
    response = await broker.request("math", Message(header={"op": "add"}, payload="[1, 2]"))
    print(response.payload)
```

### Providing a service
```python
import json

from brokerlink import ServiceBroker, ServiceSelector, Message

async def add(request):
    a, b = json.loads(request.payload)
    return Message(payload=json.dumps(a + b))

broker = ServiceBroker("ws://localhost:8080")
broker.advertise(ServiceSelector("math", capabilities=["add"]), add)
await broker.start()
```

### Topics
```python
broker.subscribe("chat", lambda text: print("chat:", text))
broker.publish("chat", "hello")
```

### Blocking API
```python
from brokerlink import ServiceBroker, SyncBroker

with SyncBroker(ServiceBroker("ws://localhost:8080")) as broker:
    response = broker.request("math", Message(payload="[1, 2]"), timeout=5)
```

### With Observability (Metrics & Logging)
```python
from brokerlink import ServiceBroker, default_pretty_handler

broker = ServiceBroker("ws://localhost:8080", log_handler=default_pretty_handler)
...
print(broker.metrics.to_dict())
```

## Transports

The URL scheme picks the transport: ws:// and wss:// use WebSockets,
tcp:// and ipc:// use a ZeroMQ DEALER socket. Pass transport_factory to
ServiceBroker to plug in anything else.

## Exports

- ServiceBroker: async endpoint (requests, providers, pub/sub)
- SyncBroker: blocking facade running a ServiceBroker on a background loop
- Message, ServiceSelector, MessageType: wire data model
- BrokerConfig: configuration, including BROKERLINK_* environment variables
- Metrics: metrics collection for observability
- StructuredLogger: structured logging with pluggable handlers
"""

from .core.broker import ServiceBroker
from .core.sync_wrapper import SyncBroker
from .core.config import BrokerConfig
from .core.connection import ConnectionManager, ConnectionState
from .core.correlator import BrokerError, RemoteCallError, BrokerClosedError
from .core.message import Message, MessageType, ServiceSelector, MalformedHeaderError
from .core.service_registry import (
    DuplicateServiceError,
    UnknownServiceError,
    HandlerResult,
    NoReply,
    Reply,
    Failure,
)
from .core.transport import Transport, WebSocketTransport, ZmqTransport, create_transport
from .core.metrics import Metrics, MetricsSnapshot
from .core.logging import (
    StructuredLogger,
    LogEntry,
    LogEvent,
    LogLevel,
    LogHandler,
    default_json_handler,
    default_pretty_handler,
)

__version__ = "1.0.0"
__all__ = [
    # Core
    "ServiceBroker",
    "SyncBroker",
    "BrokerConfig",
    "ConnectionManager",
    "ConnectionState",
    "Message",
    "MessageType",
    "ServiceSelector",
    "HandlerResult",
    "NoReply",
    "Reply",
    "Failure",
    # Transports
    "Transport",
    "WebSocketTransport",
    "ZmqTransport",
    "create_transport",
    # Errors
    "BrokerError",
    "RemoteCallError",
    "BrokerClosedError",
    "DuplicateServiceError",
    "UnknownServiceError",
    "MalformedHeaderError",
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
