"""
Structured logging for the broker client core.

Provides JSON-formatted logs with pluggable output handlers. The core only
calls into a handler; where the entries end up is the caller's business.
"""

import json
import sys
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional


class LogLevel(Enum):
    """Log levels for structured logging."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class LogEvent(Enum):
    """Standard log events for broker client operations."""

    # Lifecycle
    BROKER_START = "broker_start"
    BROKER_STOP = "broker_stop"

    # Connection
    SOCKET_CONNECT = "socket_connect"
    SOCKET_CONNECT_FAILED = "socket_connect_failed"
    SOCKET_DISCONNECT = "socket_disconnect"
    SOCKET_RECONNECT = "socket_reconnect"
    SOCKET_ERROR = "socket_error"
    LISTENER_ERROR = "listener_error"

    # Frames
    FRAME_SENT = "frame_sent"
    FRAME_RECEIVED = "frame_received"
    FRAME_BUFFERED = "frame_buffered"
    MALFORMED_HEADER = "malformed_header"
    UNHANDLED_FRAME = "unhandled_frame"

    # Requests
    REQUEST_START = "request_start"
    REQUEST_END = "request_end"
    REQUEST_ERROR = "request_error"
    UNROUTABLE_RESPONSE = "unroutable_response"

    # Services
    SERVICE_ADVERTISE = "service_advertise"
    SERVICE_UNADVERTISE = "service_unadvertise"
    NO_PROVIDER = "no_provider"
    HANDLER_ERROR = "handler_error"


@dataclass
class LogEntry:
    """
    Structured log entry with all context.

    Can be serialized to JSON or passed to custom handlers.
    """

    # Required
    event: str
    level: str
    message: str
    timestamp: float = field(default_factory=time.time)

    # Correlation
    request_id: Optional[Any] = None
    endpoint_id: Optional[str] = None

    # Context
    url: Optional[str] = None
    service: Optional[str] = None
    state: Optional[str] = None

    # Timing
    duration_ms: Optional[float] = None

    # Status
    success: Optional[bool] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    # Custom metadata
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, omitting None values."""
        result = {}
        for key, value in asdict(self).items():
            if value is not None:
                result[key] = value
        return result

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), default=str)


# Type alias for log handler
LogHandler = Callable[[LogEntry], None]


class StructuredLogger:
    """
    Structured logger with pluggable handlers.

    Usage:
        logger = StructuredLogger(
            handler=lambda entry: print(entry.to_json())
        )

        logger.warn(LogEvent.NO_PROVIDER, "No handler for service math",
                    service="math")

    Integration with ServiceBroker:
        broker = ServiceBroker("ws://localhost:8080", log_handler=default_pretty_handler)
    """

    def __init__(
        self,
        handler: Optional[LogHandler] = None,
        level: LogLevel = LogLevel.INFO,
        url: Optional[str] = None,
    ):
        self.handler = handler
        self.level = level
        self.url = url
        self._level_order = {
            LogLevel.DEBUG: 0,
            LogLevel.INFO: 1,
            LogLevel.WARN: 2,
            LogLevel.ERROR: 3,
        }

    def set_handler(self, handler: Optional[LogHandler]):
        """Set or update the log handler."""
        self.handler = handler

    def set_level(self, level: LogLevel):
        self.level = level

    def _should_log(self, level: LogLevel) -> bool:
        """Check if this level should be logged."""
        return self._level_order.get(level, 0) >= self._level_order.get(self.level, 0)

    def log(
        self,
        event: LogEvent,
        message: str,
        level: LogLevel = LogLevel.INFO,
        **kwargs,
    ):
        """
        Log an event with structured data.

        Args:
            event: The event type (from LogEvent enum)
            message: Human-readable message
            level: Log level (default: INFO)
            **kwargs: Additional fields for LogEntry
        """
        if not self.handler or not self._should_log(level):
            return

        entry = LogEntry(
            event=event.value,
            level=level.value,
            message=message,
            url=self.url,
            **kwargs,
        )

        try:
            self.handler(entry)
        except Exception as e:
            # A broken sink must not take the connection down with it
            print(f"Log handler error: {e}", file=sys.stderr)

    def debug(self, event: LogEvent, message: str, **kwargs):
        """Log at DEBUG level."""
        self.log(event, message, level=LogLevel.DEBUG, **kwargs)

    def info(self, event: LogEvent, message: str, **kwargs):
        """Log at INFO level."""
        self.log(event, message, level=LogLevel.INFO, **kwargs)

    def warn(self, event: LogEvent, message: str, **kwargs):
        """Log at WARN level."""
        self.log(event, message, level=LogLevel.WARN, **kwargs)

    def error(self, event: LogEvent, message: str, **kwargs):
        """Log at ERROR level."""
        self.log(event, message, level=LogLevel.ERROR, **kwargs)

    # Convenience methods for common events

    def frame_sent(self, header: Dict[str, Any], payload: Optional[str]):
        self.debug(
            LogEvent.FRAME_SENT,
            ">>",
            request_id=header.get("id"),
            metadata={"header": header, "payload": payload},
        )

    def frame_received(self, header: Dict[str, Any], payload: Optional[str]):
        self.debug(
            LogEvent.FRAME_RECEIVED,
            "<<",
            request_id=header.get("id"),
            metadata={"header": header, "payload": payload},
        )

    def request_start(self, request_id: int, service: str, endpoint_id=None):
        """Log request start."""
        self.debug(
            LogEvent.REQUEST_START,
            f"Requesting {service}",
            request_id=request_id,
            service=service,
            endpoint_id=endpoint_id,
        )

    def request_end(
        self,
        request_id: int,
        service: str,
        duration_ms: float,
        success: bool = True,
        error: Optional[str] = None,
    ):
        """Log request completion."""
        event = LogEvent.REQUEST_END if success else LogEvent.REQUEST_ERROR
        level = LogLevel.DEBUG if success else LogLevel.WARN
        self.log(
            event,
            f"{'Completed' if success else 'Failed'} {service}",
            level=level,
            request_id=request_id,
            service=service,
            duration_ms=round(duration_ms, 2),
            success=success,
            error=error,
        )

    def connected(self):
        self.info(LogEvent.SOCKET_CONNECT, "Connected to service broker")

    def connect_failed(self, error: Exception, retry_in: float):
        self.error(
            LogEvent.SOCKET_CONNECT_FAILED,
            f"Failed to connect to service broker, retrying in {retry_in:g}s",
            error=str(error),
            error_type=type(error).__name__,
        )

    def disconnected(self):
        self.error(
            LogEvent.SOCKET_DISCONNECT,
            "Lost connection to service broker, reconnecting",
        )


def default_json_handler(entry: LogEntry):
    """Default handler that prints JSON to stdout."""
    print(entry.to_json())


def default_pretty_handler(entry: LogEntry):
    """Default handler that prints human-readable output."""
    timestamp = time.strftime("%H:%M:%S", time.localtime(entry.timestamp))
    level = entry.level.upper().ljust(5)
    prefix = f"[{timestamp}] [{level}]"

    parts = [prefix, entry.event, entry.message]

    if entry.request_id is not None:
        parts.append(f"req={entry.request_id}")
    if entry.service:
        parts.append(f"svc={entry.service}")
    if entry.duration_ms is not None:
        parts.append(f"{entry.duration_ms:.1f}ms")
    if entry.error:
        parts.append(f"error={entry.error}")

    print(" ".join(parts))
