"""Connection lifecycle: turns transport events into router calls."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Iterable, Union

from switchboard.relay.protocol import (
    Connection,
    JoinRequest,
    MalformedEnvelope,
    PublishRequest,
    SystemEnvelope,
    parse_request,
)
from switchboard.relay.router import ChannelRouter, Send

log = logging.getLogger(__name__)

WELCOME = "Please join a channel to start chatting"


@dataclass(frozen=True, slots=True)
class Opened:
    conn: Connection


@dataclass(frozen=True, slots=True)
class Received:
    conn: Connection
    raw: str | bytes


@dataclass(frozen=True, slots=True)
class Closed:
    conn: Connection


Event = Union[Opened, Received, Closed]


class RelayLifecycle:
    """Dispatches connection events to a ChannelRouter."""

    def __init__(self, router: ChannelRouter) -> None:
        self.router = router
        self._lock = threading.Lock()
        self._live: set[Connection] = set()

    def handle(self, event: Event) -> list[Send]:
        """Process one event and return the sends it produced."""
        if isinstance(event, Opened):
            return self._on_open(event.conn)
        if isinstance(event, Received):
            return self._on_message(event.conn, event.raw)
        if isinstance(event, Closed):
            return self._on_close(event.conn)
        raise TypeError(f"Unknown event: {event!r}")

    def _on_open(self, conn: Connection) -> list[Send]:
        with self._lock:
            self._live.add(conn)
        log.info("New client connected: %s", conn.id)
        return [Send(conn, SystemEnvelope(WELCOME))]

    def _on_message(self, conn: Connection, raw: str | bytes) -> list[Send]:
        with self._lock:
            live = conn in self._live
        if not live:
            log.debug("Dropping frame from closed client %s", conn.id)
            return []
        try:
            request = parse_request(raw)
        except MalformedEnvelope as exc:
            log.warning("Ignoring malformed frame from %s: %s", conn.id, exc)
            return []

        if isinstance(request, JoinRequest):
            log.debug("Received: type=join, channel=%s", request.channel or "N/A")
            return self.router.join(conn, request.channel, request.request_id)
        if isinstance(request, PublishRequest):
            log.debug("Received: type=message, channel=%s", request.channel or "N/A")
            return self.router.publish(conn, request.channel, request.message)
        log.debug("Ignoring envelope of type %r from %s", request.type, conn.id)
        return []

    def _on_close(self, conn: Connection) -> list[Send]:
        with self._lock:
            self._live.discard(conn)
        log.info("Client disconnected: %s", conn.id)
        return self.router.disconnect(conn)


def deliver(sends: Iterable[Send]) -> int:
    """Hand each send to its target transport.

    Closed targets are skipped and a failing target never stops delivery to
    the rest. Returns how many sends were handed over.
    """
    delivered = 0
    for send in sends:
        if not send.target.is_open:
            continue
        try:
            send.target.send(send.envelope.to_json())
        except Exception:
            log.exception("Send to %s failed", send.target.id)
            continue
        delivered += 1
    return delivered
