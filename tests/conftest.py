"""Shared fixtures: in-memory connections for routing tests."""

from __future__ import annotations

import json

import pytest


class FakeConnection:
    """Records frames instead of writing to a socket."""

    def __init__(self, id: str, is_open: bool = True) -> None:
        self.id = id
        self.is_open = is_open
        self.sent: list[str] = []

    def send(self, text: str) -> None:
        self.sent.append(text)

    @property
    def frames(self) -> list[dict]:
        return [json.loads(text) for text in self.sent]


@pytest.fixture
def make_conn():
    """Factory for FakeConnection instances."""
    return FakeConnection
