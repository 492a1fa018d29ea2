"""
Message handling for the service broker wire protocol.

A frame is the JSON header, optionally followed by a newline and an opaque
text payload. Everything after the first newline belongs to the payload.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class MessageType(Enum):
    """Header discriminants understood by the client core."""

    SERVICE_REQUEST = "ServiceRequest"
    SERVICE_RESPONSE = "ServiceResponse"
    STATUS_RESPONSE = "SbStatusResponse"
    ADVERTISE_REQUEST = "SbAdvertiseRequest"


TOPIC_PREFIX = "#"


class MalformedHeaderError(ValueError):
    """Raised when a frame's header segment is not a JSON object."""


@dataclass
class ServiceSelector:
    """
    Names a service, either to address a request or to advertise a provider.

    - name: service name (required)
    - capabilities: optional capability tags, a filter hint for the broker
    - priority: optional advertising priority hint
    """

    name: str
    capabilities: Optional[List[str]] = None
    priority: Optional[int] = None

    @classmethod
    def coerce(cls, value: Union["ServiceSelector", str, Dict[str, Any]]):
        """Accept a selector, a bare service name, or a header mapping."""
        if isinstance(value, ServiceSelector):
            return value
        if isinstance(value, str):
            return cls(name=value)
        if isinstance(value, dict) and "name" in value:
            return cls(
                name=value["name"],
                capabilities=value.get("capabilities"),
                priority=value.get("priority"),
            )
        raise TypeError(f"Cannot build a ServiceSelector from {value!r}")

    def to_dict(self) -> Dict[str, Any]:
        """Header form, omitting unset optional fields."""
        data: Dict[str, Any] = {"name": self.name}
        if self.capabilities is not None:
            data["capabilities"] = list(self.capabilities)
        if self.priority is not None:
            data["priority"] = self.priority
        return data


@dataclass
class Message:
    """
    Unit of exchange: an open header mapping plus an optional text payload.

    Reserved header fields: type, id, to, from, service, error. All other
    fields pass through untouched. An empty payload is the same as none.
    """

    header: Dict[str, Any] = field(default_factory=dict)
    payload: Optional[str] = None

    def __post_init__(self):
        if not self.payload:
            self.payload = None

    @property
    def type(self) -> Optional[str]:
        return self.header.get("type")

    @property
    def id(self) -> Any:
        return self.header.get("id")

    @property
    def error(self) -> Optional[str]:
        return self.header.get("error")

    @property
    def service_name(self) -> Optional[str]:
        service = self.header.get("service")
        if isinstance(service, dict):
            return service.get("name")
        return None

    @classmethod
    def create_request(
        cls,
        request_id: int,
        service: ServiceSelector,
        request: Optional["Message"] = None,
        to: Optional[str] = None,
    ):
        """Create a ServiceRequest, merging the caller's header fields."""
        header: Dict[str, Any] = dict(request.header) if request else {}
        header.update(
            id=request_id,
            type=MessageType.SERVICE_REQUEST.value,
            service=service.to_dict(),
        )
        if to:
            header["to"] = to
        return cls(header=header, payload=request.payload if request else None)

    @classmethod
    def create_response(
        cls,
        request: "Message",
        result: Optional["Message"] = None,
    ):
        """Create a ServiceResponse routed back to the request's sender."""
        header: Dict[str, Any] = dict(result.header) if result else {}
        # Routing is ours alone; a handler cannot redirect its reply
        header.pop("to", None)
        header.update(_routing_fields(request))
        return cls(header=header, payload=result.payload if result else None)

    @classmethod
    def create_error(cls, request: "Message", error: str):
        """Create a failed ServiceResponse carrying an error string."""
        header = _routing_fields(request)
        header["error"] = error
        return cls(header=header)

    @classmethod
    def create_advertise(cls, services: List[ServiceSelector]):
        """Create a full-state SbAdvertiseRequest."""
        return cls(
            header={
                "type": MessageType.ADVERTISE_REQUEST.value,
                "services": [service.to_dict() for service in services],
            }
        )

    @classmethod
    def create_publish(cls, topic: str, text: Optional[str]):
        """Create an unsolicited, id-less ServiceRequest to a topic."""
        return cls(
            header={
                "type": MessageType.SERVICE_REQUEST.value,
                "service": {"name": TOPIC_PREFIX + topic},
            },
            payload=text,
        )

    def pack(self) -> str:
        """Encode to a single wire frame."""
        text = json.dumps(self.header, separators=(",", ":"))
        if self.payload:
            return text + "\n" + self.payload
        return text

    @classmethod
    def unpack(cls, frame: Union[str, bytes]) -> "Message":
        """Decode a wire frame, splitting header and payload on the first newline."""
        if isinstance(frame, bytes):
            frame = frame.decode("utf-8")

        head, sep, payload = frame.partition("\n")
        try:
            header = json.loads(head)
        except ValueError as e:
            raise MalformedHeaderError(f"Header is not valid JSON: {e}") from e

        if not isinstance(header, dict):
            raise MalformedHeaderError(
                f"Header must be a JSON object, got {type(header).__name__}"
            )
        return cls(header=header, payload=payload if sep else None)


def _routing_fields(request: Message) -> Dict[str, Any]:
    header: Dict[str, Any] = {}
    sender = request.header.get("from")
    if sender is not None:
        header["to"] = sender
    header["id"] = request.id
    header["type"] = MessageType.SERVICE_RESPONSE.value
    return header
