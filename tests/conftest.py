"""Shared fixtures for the push scheduler tests."""

from __future__ import annotations

import pytest

from backend.app.push.capability import PushCapability
from backend.app.push.queue import InMemoryDelayedQueue
from backend.app.push.scheduler import PushScheduler

from tests.fakes import FakeClock, RecordingClient


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def queue() -> InMemoryDelayedQueue:
    return InMemoryDelayedQueue()


@pytest.fixture
def client() -> RecordingClient:
    return RecordingClient()


@pytest.fixture
def scheduler(queue, clock) -> PushScheduler:
    return PushScheduler(queue, PushCapability.always(), clock=clock)
