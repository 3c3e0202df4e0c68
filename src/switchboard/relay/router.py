"""Channel router: channel membership and broadcast fan-out."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any

from switchboard.relay.protocol import (
    UNSET,
    BroadcastEnvelope,
    Connection,
    Envelope,
    ErrorEnvelope,
    ProtocolViolation,
    SystemEnvelope,
    require_channel,
)

log = logging.getLogger(__name__)

PEER_JOINED = "A new user has joined the channel"
NOT_A_MEMBER = "You must join the channel first"


@dataclass(frozen=True, slots=True)
class Send:
    """An envelope addressed to one connection."""

    target: Connection
    envelope: Envelope


class ChannelRouter:
    """Owns the channel name -> members table.

    Every public method takes the table lock, so the router can be shared by
    handlers running on different threads. Methods never send anything
    themselves; they return the sends the caller must deliver.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._channels: dict[str, set[Connection]] = {}
        self._memberships: dict[Connection, set[str]] = {}

    def join(self, conn: Connection, channel: Any, request_id: Any = UNSET) -> list[Send]:
        try:
            name = require_channel(channel)
        except ProtocolViolation as exc:
            return [Send(conn, ErrorEnvelope(str(exc)))]

        with self._lock:
            members = self._channels.setdefault(name, set())
            members.add(conn)
            self._memberships.setdefault(conn, set()).add(name)
            log.info("Client %s joined channel %r (%d total clients)", conn.id, name, len(members))

            result: dict[str, Any] = {"result": f"Connected to channel: {name}"}
            if request_id is not UNSET:
                result = {"id": request_id, **result}

            sends = [
                Send(conn, SystemEnvelope(f"Joined channel: {name}", channel=name)),
                Send(conn, SystemEnvelope(result, channel=name)),
            ]
            notice = SystemEnvelope(PEER_JOINED, channel=name)
            sends.extend(Send(peer, notice) for peer in self._peers(name, conn))
            return sends

    def publish(self, conn: Connection, channel: Any, payload: Any) -> list[Send]:
        try:
            name = require_channel(channel)
            with self._lock:
                members = self._channels.get(name)
                if members is None or conn not in members:
                    raise ProtocolViolation(NOT_A_MEMBER)
                peers = self._peers(name, conn)
        except ProtocolViolation as exc:
            return [Send(conn, ErrorEnvelope(str(exc)))]

        if not peers:
            log.debug("No other clients in channel %r to receive message", name)
            return []

        envelope = BroadcastEnvelope(payload, channel=name)
        log.debug("Broadcast to %d peer(s) in channel %r", len(peers), name)
        return [Send(peer, envelope) for peer in peers]

    def disconnect(self, conn: Connection) -> list[Send]:
        with self._lock:
            for name in self._memberships.pop(conn, ()):
                members = self._channels.get(name)
                if members is not None and conn in members:
                    members.discard(conn)
                    log.info("Client %s left channel %r (%d remaining)", conn.id, name, len(members))
        return []

    def _peers(self, name: str, conn: Connection) -> list[Connection]:
        # Snapshot, so later membership changes never disturb an in-flight fan-out
        return [m for m in tuple(self._channels.get(name, ())) if m is not conn and m.is_open]

    # --- introspection ---

    def channel_names(self) -> list[str]:
        with self._lock:
            return list(self._channels)

    def members(self, channel: str) -> frozenset[Connection]:
        with self._lock:
            return frozenset(self._channels.get(channel, ()))

    def channels_of(self, conn: Connection) -> frozenset[str]:
        with self._lock:
            return frozenset(self._memberships.get(conn, ()))

    def stats(self) -> dict:
        with self._lock:
            return {
                "channels": len(self._channels),
                "connections": len(self._memberships),
                "members": {name: len(members) for name, members in self._channels.items()},
            }
