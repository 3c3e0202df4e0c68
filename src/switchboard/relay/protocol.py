"""Envelope types for the channel relay wire protocol."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Protocol, Union


class RelayError(Exception):
    """Base class for relay errors."""


class MalformedEnvelope(RelayError):
    """Inbound frame could not be decoded into an envelope."""


class ProtocolViolation(RelayError):
    """A well-formed envelope that the router refuses."""


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


# Marks a join without an ``id`` key, which must not be echoed back
UNSET: Any = _Unset()


class Connection(Protocol):
    """A live bidirectional message stream owned by the host transport."""

    id: str

    @property
    def is_open(self) -> bool: ...

    def send(self, text: str) -> None:
        """Queue a text frame for the peer without blocking."""
        ...


# --- inbound ---


@dataclass(frozen=True, slots=True)
class JoinRequest:
    channel: Any
    request_id: Any = UNSET


@dataclass(frozen=True, slots=True)
class PublishRequest:
    channel: Any
    message: Any = None


@dataclass(frozen=True, slots=True)
class UnknownRequest:
    """Any envelope kind the relay does not act on."""

    type: str


Request = Union[JoinRequest, PublishRequest, UnknownRequest]


# --- outbound ---


@dataclass(frozen=True, slots=True)
class SystemEnvelope:
    message: Any
    channel: str | None = None

    def to_wire(self) -> dict:
        data: dict[str, Any] = {"type": "system", "message": self.message}
        if self.channel is not None:
            data["channel"] = self.channel
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_wire(), allow_nan=False)


@dataclass(frozen=True, slots=True)
class ErrorEnvelope:
    message: str

    def to_wire(self) -> dict:
        return {"type": "error", "message": self.message}

    def to_json(self) -> str:
        return json.dumps(self.to_wire(), allow_nan=False)


@dataclass(frozen=True, slots=True)
class BroadcastEnvelope:
    message: Any
    channel: str
    sender: str = "peer"

    def to_wire(self) -> dict:
        return {
            "type": "broadcast",
            "message": self.message,
            "sender": self.sender,
            "channel": self.channel,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_wire(), allow_nan=False)


Envelope = Union[SystemEnvelope, ErrorEnvelope, BroadcastEnvelope]


def _reject_constant(token: str) -> Any:
    # NaN and Infinity are not JSON; browsers refuse them
    raise ValueError(f"Non-standard JSON constant: {token}")


def parse_request(raw: str | bytes) -> Request:
    """Decode one inbound frame.

    Only the envelope shape is checked here. Channel names are validated by
    the router so that a bad name is answered with an ``error`` envelope
    instead of being dropped.

    Raises:
        MalformedEnvelope: the frame is not a JSON object with a string ``type``.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedEnvelope(f"Frame is not UTF-8: {exc}") from exc

    try:
        data = json.loads(raw, parse_constant=_reject_constant)
    except (ValueError, RecursionError) as exc:
        raise MalformedEnvelope(f"Invalid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise MalformedEnvelope(f"Expected a JSON object, got {type(data).__name__}")

    kind = data.get("type")
    if not isinstance(kind, str):
        raise MalformedEnvelope("Envelope has no string 'type'")

    if kind == "join":
        return JoinRequest(channel=data.get("channel"), request_id=data.get("id", UNSET))
    if kind == "message":
        return PublishRequest(channel=data.get("channel"), message=data.get("message"))
    return UnknownRequest(type=kind)


def require_channel(channel: Any) -> str:
    """Return ``channel`` if it is a usable channel name."""
    if not channel or not isinstance(channel, str):
        raise ProtocolViolation("Channel name is required")
    return channel
