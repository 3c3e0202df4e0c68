"""Tests for connection lifecycle dispatch and delivery."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from switchboard.relay import ChannelRouter, Closed, Opened, Received, RelayLifecycle, deliver
from switchboard.relay.lifecycle import WELCOME


@pytest.fixture
def relay():
    return RelayLifecycle(ChannelRouter())


def _run(relay, event):
    return deliver(relay.handle(event))


def _send_json(relay, conn, data):
    return _run(relay, Received(conn, json.dumps(data)))


def test_open_sends_welcome(relay, make_conn):
    """A new connection is told to join a channel first."""
    a = make_conn("a")
    _run(relay, Opened(a))
    assert a.frames == [{"type": "system", "message": WELCOME}]
    assert relay.router.channel_names() == []


def test_malformed_frame_is_dropped(relay, make_conn):
    """Unparseable frames are dropped and the connection stays usable."""
    a = make_conn("a")
    _run(relay, Opened(a))
    assert _run(relay, Received(a, "{not json")) == 0
    assert len(a.sent) == 1
    # Still usable afterwards
    _send_json(relay, a, {"type": "join", "channel": "room1"})
    assert len(a.sent) == 3


def test_deeply_nested_frame_is_dropped(relay, make_conn):
    """Frames too deep to decode are malformed, not fatal."""
    a = make_conn("a")
    _run(relay, Opened(a))
    assert _run(relay, Received(a, "[" * 100000)) == 0
    _send_json(relay, a, {"type": "join", "channel": "room1"})
    assert a.frames[-2]["message"] == "Joined channel: room1"


def test_nan_payload_is_not_relayed(relay, make_conn):
    """Non-standard JSON constants never reach peers."""
    a, b = make_conn("a"), make_conn("b")
    for conn in (a, b):
        _run(relay, Opened(conn))
        _send_json(relay, conn, {"type": "join", "channel": "r"})
    before = len(b.sent)
    assert _run(relay, Received(a, '{"type": "message", "channel": "r", "message": NaN}')) == 0
    assert len(b.sent) == before


def test_unknown_kind_is_ignored(relay, make_conn):
    """Unknown envelope kinds produce no reply."""
    a = make_conn("a")
    _run(relay, Opened(a))
    assert _send_json(relay, a, {"type": "leave", "channel": "room1"}) == 0
    assert len(a.sent) == 1


def test_join_missing_channel_replies_error(relay, make_conn):
    """A join without a channel name gets an error envelope."""
    a = make_conn("a")
    _run(relay, Opened(a))
    _send_json(relay, a, {"type": "join"})
    assert a.frames[-1] == {"type": "error", "message": "Channel name is required"}


def test_frames_after_close_are_dropped(relay, make_conn):
    """Frames from a closed connection never touch the table."""
    a = make_conn("a")
    _run(relay, Opened(a))
    _run(relay, Closed(a))
    assert _send_json(relay, a, {"type": "join", "channel": "room1"}) == 0
    assert relay.router.members("room1") == frozenset()


def test_close_twice(relay, make_conn):
    """Closing twice is harmless."""
    a = make_conn("a")
    _run(relay, Opened(a))
    _send_json(relay, a, {"type": "join", "channel": "room1"})
    assert relay.handle(Closed(a)) == []
    assert relay.handle(Closed(a)) == []
    assert relay.router.channels_of(a) == frozenset()


def test_unknown_event_type(relay):
    with pytest.raises(TypeError):
        relay.handle(object())


class TestDeliver:
    def test_skips_closed_target(self, relay, make_conn):
        """Sends to closed transports are skipped."""
        a = make_conn("a", is_open=False)
        assert deliver(relay.handle(Opened(a))) == 0
        assert a.sent == []

    def test_failing_target_does_not_stop_fanout(self, make_conn):
        """One failing peer does not block delivery to the rest."""
        router = ChannelRouter()
        a, b, c = make_conn("a"), make_conn("b"), make_conn("c")
        for conn in (a, b, c):
            router.join(conn, "room1")
        sends = router.publish(a, "room1", "hi")
        with patch.object(b, "send", side_effect=RuntimeError("socket gone")):
            delivered = deliver(sends)
        assert delivered == 1
        assert c.frames == [{"type": "broadcast", "message": "hi", "sender": "peer", "channel": "room1"}]


def test_end_to_end_scenario(relay, make_conn):
    """Two clients join, chat, and one leaves."""
    a, b = make_conn("a"), make_conn("b")
    _run(relay, Opened(a))
    _run(relay, Opened(b))

    _send_json(relay, a, {"type": "join", "channel": "room1", "id": 42})
    assert a.frames[1:] == [
        {"type": "system", "message": "Joined channel: room1", "channel": "room1"},
        {"type": "system", "message": {"id": 42, "result": "Connected to channel: room1"}, "channel": "room1"},
    ]

    _send_json(relay, b, {"type": "join", "channel": "room1"})
    assert a.frames[-1] == {"type": "system", "message": "A new user has joined the channel", "channel": "room1"}
    assert [f["message"] for f in b.frames[1:]] == [
        "Joined channel: room1",
        {"result": "Connected to channel: room1"},
    ]

    a_before = len(a.sent)
    b_before = len(b.sent)
    _send_json(relay, b, {"type": "message", "channel": "room1", "message": "hi"})
    assert a.frames[a_before:] == [{"type": "broadcast", "message": "hi", "sender": "peer", "channel": "room1"}]
    assert len(b.sent) == b_before

    a_before = len(a.sent)
    _run(relay, Closed(b))
    assert len(a.sent) == a_before

    assert _send_json(relay, a, {"type": "message", "channel": "room1", "message": "anyone?"}) == 0
    assert len(a.sent) == a_before
