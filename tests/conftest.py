"""Shared fixtures for the NetPulse test suite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from netpulse.config import Settings
from netpulse.core.db import DeviceStore
from netpulse.core.events import EventBus

T0 = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        db_path=str(tmp_path / "netpulse.db"),
        vendor_registry=False,
        ping_timeout=1,
        ping_retries=0,
        port_timeout=0.5,
        snmp_timeout=0.5,
    )


@pytest_asyncio.fixture
async def store(settings):
    s = DeviceStore(settings.resolved_db_path)
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def engine():
    """Discovery engine stand-in whose probe result tests set per case."""
    mock = MagicMock()
    mock.probe = AsyncMock()
    mock.discover = AsyncMock()
    return mock


def _drain(queue) -> list:
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


@pytest.fixture
def drain():
    """Pull every event currently waiting on a subscription queue."""
    return _drain
