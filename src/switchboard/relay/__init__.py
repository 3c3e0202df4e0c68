"""Transport-independent channel relay core."""

from switchboard.relay.lifecycle import Closed, Event, Opened, Received, RelayLifecycle, deliver
from switchboard.relay.protocol import (
    BroadcastEnvelope,
    Connection,
    ErrorEnvelope,
    MalformedEnvelope,
    ProtocolViolation,
    RelayError,
    SystemEnvelope,
    parse_request,
)
from switchboard.relay.router import ChannelRouter, Send

__all__ = [
    "BroadcastEnvelope",
    "ChannelRouter",
    "Closed",
    "Connection",
    "ErrorEnvelope",
    "Event",
    "MalformedEnvelope",
    "Opened",
    "ProtocolViolation",
    "Received",
    "RelayError",
    "RelayLifecycle",
    "Send",
    "SystemEnvelope",
    "deliver",
    "parse_request",
]
