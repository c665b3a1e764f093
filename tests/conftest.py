"""Shared test fixtures."""

import pytest

from halochat.memory.store import ConversationMemoryStore
from halochat.session import SessionStore
from halochat.storage import InMemoryStorage

START = 1_700_000_000.0  # epoch seconds


class FakeClock:
    """Manually advanced replacement for ``time.time``."""

    def __init__(self, start: float = START) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def sessions(storage, clock) -> SessionStore:
    """A SessionStore with a 30-minute window driven by the fake clock."""
    return SessionStore(storage, timeout_seconds=30 * 60, clock=clock)


@pytest.fixture
def memory(storage, clock, sessions) -> ConversationMemoryStore:
    """A memory store tracking the ``sessions`` fixture."""
    m = ConversationMemoryStore(storage, clock=clock)
    m.track(sessions)
    return m
