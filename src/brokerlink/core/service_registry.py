"""
Local service providers and dispatch of inbound requests to them.

Each service name maps to at most one provider. Providers with an advertised
selector are announced to the broker; handler-only providers answer requests
addressed to this endpoint directly but are never announced.
"""

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from .correlator import BrokerError, SendFunc
from .logging import LogEvent, StructuredLogger
from .message import Message, ServiceSelector
from .metrics import Metrics


class DuplicateServiceError(BrokerError):
    """A provider is already registered under this service name."""


class UnknownServiceError(BrokerError):
    """No provider is registered under this service name."""


class HandlerResult:
    """Outcome of one handler invocation."""


@dataclass
class NoReply(HandlerResult):
    pass


@dataclass
class Reply(HandlerResult):
    message: Message


@dataclass
class Failure(HandlerResult):
    error: BaseException


HandlerReturn = Union[Message, HandlerResult, None]
Handler = Callable[[Message], Union[HandlerReturn, Awaitable[HandlerReturn]]]


@dataclass
class Provider:
    handler: Handler
    advertised_service: Optional[ServiceSelector] = None


async def invoke_handler(handler: Handler, message: Message) -> HandlerResult:
    """Run a sync or async handler and fold its outcome into a HandlerResult."""
    try:
        result = handler(message)
        if inspect.isawaitable(result):
            result = await result
    except Exception as e:
        return Failure(e)

    if isinstance(result, HandlerResult):
        return result
    if result is None:
        return NoReply()
    if isinstance(result, Message):
        return Reply(result)
    return Failure(TypeError(f"Handler returned {type(result).__name__}, expected Message"))


class ServiceRegistry:
    """Owns local providers and answers inbound ServiceRequests."""

    def __init__(
        self,
        send: SendFunc,
        logger: Optional[StructuredLogger] = None,
        metrics: Optional[Metrics] = None,
    ):
        self._send = send
        self._logger = logger or StructuredLogger()
        self._metrics = metrics
        self.providers: Dict[str, Provider] = {}
        self._inflight: Set[asyncio.Task] = set()

    def __contains__(self, name: str) -> bool:
        return name in self.providers

    def advertised_services(self) -> List[ServiceSelector]:
        """Selectors of every advertised provider, in registration order."""
        return [
            provider.advertised_service
            for provider in self.providers.values()
            if provider.advertised_service is not None
        ]

    def advertise(self, service: ServiceSelector, handler: Handler):
        """Register an advertised provider and resync the broker."""
        if service.name in self.providers:
            raise DuplicateServiceError(f"{service.name} provider already exists")
        self.providers[service.name] = Provider(handler, advertised_service=service)
        self._logger.info(
            LogEvent.SERVICE_ADVERTISE,
            f"Advertising {service.name}",
            service=service.name,
        )
        self._send_advertisement()

    def unadvertise(self, name: str):
        """Remove a provider and resync the broker."""
        if self.providers.pop(name, None) is None:
            raise UnknownServiceError(f"{name} provider not exists")
        self._logger.info(
            LogEvent.SERVICE_UNADVERTISE,
            f"Unadvertising {name}",
            service=name,
        )
        self._send_advertisement()

    def set_service_handler(self, name: str, handler: Handler):
        """Register a handler-only provider; nothing is sent to the broker."""
        if name in self.providers:
            raise DuplicateServiceError(f"{name} handler already exists")
        self.providers[name] = Provider(handler)

    def dispatch(self, message: Message) -> Optional[asyncio.Task]:
        """
        Hand an inbound ServiceRequest to its provider.

        The handler runs in its own task so later inbound frames are not held
        up. Returns the task, or None when no provider matches.
        """
        name = message.service_name
        provider = self.providers.get(name) if name is not None else None
        if provider is None:
            self._logger.error(
                LogEvent.NO_PROVIDER,
                f"No handler for service {name}",
                service=name,
                request_id=message.id,
            )
            if self._metrics:
                self._metrics.record_dropped_frame()
            return None

        task = asyncio.ensure_future(self._respond(provider.handler, message))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def wait_idle(self):
        """Wait until every in-flight handler invocation has finished."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    def cancel_all(self):
        for task in list(self._inflight):
            task.cancel()

    async def _respond(self, handler: Handler, request: Message):
        result = await invoke_handler(handler, request)
        # Falsy ids (0, "") expect no reply
        has_id = bool(request.id)

        if isinstance(result, Failure):
            error = _error_text(result.error)
            if self._metrics:
                self._metrics.record_handler_failure()
            if has_id:
                response = Message.create_error(request, error)
                self._send(response.header, response.payload)
            else:
                self._logger.error(
                    LogEvent.HANDLER_ERROR,
                    error,
                    service=request.service_name,
                    error=error,
                    error_type=type(result.error).__name__,
                    metadata={"header": request.header},
                )
            return

        if not has_id:
            return
        reply = result.message if isinstance(result, Reply) else None
        response = Message.create_response(request, reply)
        self._send(response.header, response.payload)

    def _send_advertisement(self):
        message = Message.create_advertise(self.advertised_services())
        self._send(message.header, message.payload)


def _error_text(error: BaseException) -> str:
    return str(error) or type(error).__name__
