"""
Request/response correlation over the shared broker connection.
"""

import asyncio
import time
from typing import Any, Callable, Dict, Optional

from .logging import LogEvent, StructuredLogger
from .message import Message, ServiceSelector
from .metrics import Metrics


class BrokerError(Exception):
    """Base class for errors raised by the broker client."""


class RemoteCallError(BrokerError):
    """A response frame carried an error; str() is the remote error text."""


class BrokerClosedError(BrokerError):
    """The broker was closed while the request was still pending."""


SendFunc = Callable[[Dict[str, Any], Optional[str]], None]


class RequestCorrelator:
    """
    Pairs outgoing requests with their responses by correlation id.

    Ids come from a counter starting at 1 and are never reused. A request
    with no matching response stays pending; no timeout is applied here.
    """

    def __init__(
        self,
        send: SendFunc,
        logger: Optional[StructuredLogger] = None,
        metrics: Optional[Metrics] = None,
    ):
        self._send = send
        self._logger = logger or StructuredLogger()
        self._metrics = metrics
        self._last_id = 0

        # request id -> future awaiting the response Message
        self.pending_requests: Dict[int, asyncio.Future] = {}

    @property
    def pending_count(self) -> int:
        return len(self.pending_requests)

    def next_id(self) -> int:
        self._last_id += 1
        return self._last_id

    def request_to(
        self,
        endpoint_id: Optional[str],
        service: ServiceSelector,
        request: Optional[Message] = None,
    ) -> asyncio.Future:
        """
        Send a ServiceRequest and return a future for its response.

        Args:
            endpoint_id: Target endpoint, or None to let the broker route by service
            service: Service selector to address
            request: Caller's message; its header fields are merged under the
                     reserved routing fields

        Returns:
            Future resolving to the response Message, or failing with
            RemoteCallError when the response carries an error
        """
        request_id = self.next_id()
        future = asyncio.get_running_loop().create_future()
        self.pending_requests[request_id] = future

        self._track(future, request_id, service.name)
        self._logger.request_start(request_id, service.name, endpoint_id=endpoint_id)

        message = Message.create_request(request_id, service, request, to=endpoint_id)
        self._send(message.header, message.payload)
        return future

    def handle_response(self, message: Message) -> bool:
        """
        Resolve the pending request matching this response.

        Returns False when no request is pending under the response id.
        """
        future = self.pending_requests.pop(message.id, None)
        if future is None:
            self._logger.error(
                LogEvent.UNROUTABLE_RESPONSE,
                "Response received but no pending request",
                request_id=message.id,
                metadata={"header": message.header},
            )
            if self._metrics:
                self._metrics.record_dropped_frame()
            return False

        if future.done():
            # Caller cancelled; nobody is listening any more
            return True

        if message.error:
            future.set_exception(RemoteCallError(message.error))
        else:
            future.set_result(message)
        return True

    def reject_all(self, error: Exception):
        """Fail every pending request, e.g. on teardown."""
        pending = list(self.pending_requests.values())
        self.pending_requests.clear()
        for future in pending:
            if not future.done():
                future.set_exception(error)

    def _track(self, future: asyncio.Future, request_id: int, service: str):
        start_time = time.perf_counter()
        if self._metrics:
            self._metrics.start_request()

        def done(fut: asyncio.Future):
            success = not fut.cancelled() and fut.exception() is None
            if self._metrics:
                self._metrics.end_request(start_time, success=success)
            error = None
            if not success:
                error = "cancelled" if fut.cancelled() else str(fut.exception())
            self._logger.request_end(
                request_id=request_id,
                service=service,
                duration_ms=(time.perf_counter() - start_time) * 1000,
                success=success,
                error=error,
            )

        future.add_done_callback(done)
