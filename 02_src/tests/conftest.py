"""Pytest configuration and fixtures."""

import sys
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest
import pytest_asyncio

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))


class FakeTransport:
    """Push transport driven by the test instead of a network stream."""

    def __init__(self):
        self.opened_with: list[str] = []
        self.close_calls = 0
        self.is_open = False
        self._on_open = None
        self._on_message = None
        self._on_error = None

    def on_open(self, callback):
        self._on_open = callback

    def on_message(self, callback):
        self._on_message = callback

    def on_error(self, callback):
        self._on_error = callback

    def open(self, token: str) -> None:
        self.close()
        self.opened_with.append(token)

    def close(self) -> None:
        self.close_calls += 1
        self.is_open = False

    # Test drivers

    def fire_open(self) -> None:
        self.is_open = True
        self._on_open()

    def fire_message(self, raw: str) -> None:
        self._on_message(raw)

    def fire_error(self, error: BaseException | None = None) -> None:
        self.is_open = False
        self._on_error(error or ConnectionError("stream dropped"))


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest_asyncio.fixture
async def storage():
    """Create in-memory storage for testing."""
    from livesync.storage import Storage

    st = Storage(":memory:")
    await st.init()
    yield st
    await st.close()


@pytest.fixture
def event_bus():
    """Create EventBus."""
    from livesync.event_bus import EventBus

    return EventBus()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def channel_api():
    """Create mock channel API."""
    api = Mock()
    api.subscribe_channel = AsyncMock(return_value=None)
    api.unsubscribe_channel = AsyncMock(return_value=None)
    return api


@pytest.fixture
def job_api():
    """Create mock job API."""
    api = Mock()
    api.get_job = AsyncMock(return_value=None)
    api.cancel_job = AsyncMock(return_value=None)
    api.restart_job = AsyncMock(return_value=None)
    return api


@pytest.fixture
def path_api():
    """Create mock path API."""
    api = Mock()
    api.get_path = AsyncMock(return_value=None)
    api.list_paths = AsyncMock(return_value=[])
    return api


@pytest.fixture
def event_api():
    """Create mock event ingest API that accepts every batch."""
    api = Mock()

    async def ingest(events):
        return {"ok": True, "ingested": len(events)}

    api.ingest_events = AsyncMock(side_effect=ingest)
    return api


@pytest.fixture
def token():
    """Mutable access token; set token['value'] = None to log out."""
    return {"value": "tok-1"}


@pytest_asyncio.fixture
async def connection(transport, channel_api, event_bus, token):
    """Create ConnectionManager over the fake transport."""
    import random

    from livesync.config import ConnectionSettings
    from livesync.connection import ConnectionManager

    cm = ConnectionManager(
        transport,
        channel_api,
        event_bus,
        lambda: token["value"],
        settings=ConnectionSettings(retry_jitter=0.0),
        rng=random.Random(7),
    )
    yield cm
    await cm.stop()


@pytest.fixture
def paths(path_api):
    """Create PathCollection over the mock path API."""
    from livesync.jobs import PathCollection

    return PathCollection(path_api)


@pytest_asyncio.fixture
async def engine(event_bus, job_api, paths):
    """Create JobReconciliationEngine for user u1 with a fast poll."""
    from livesync.config import JobSettings
    from livesync.jobs import JobReconciliationEngine

    eng = JobReconciliationEngine(
        event_bus,
        job_api,
        paths,
        user_id="u1",
        settings=JobSettings(poll_interval=0.01),
    )
    eng.start()
    yield eng
    await eng.stop()
