"""
Pytest configuration and fixtures for Fleet Registry tests.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from fleet_registry.core.database import create_engine  # noqa: E402
from fleet_registry.services.registry import FleetRegistry  # noqa: E402
from fleet_registry.storage import InMemoryStorage  # noqa: E402
from fleet_registry.storage.sql import SqlStorage  # noqa: E402


class FakeClock:
    """Deterministic clock: every call is one step later than the previous one."""

    def __init__(self, start: datetime | None = None, step: timedelta = timedelta(seconds=1)):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        self.now = self.now + self.step
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture(params=["memory", "sql"])
async def storage(request, tmp_path):
    """Each storage backing in turn."""
    if request.param == "memory":
        yield InMemoryStorage()
        return

    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'fleet.db'}")
    sql_storage = SqlStorage(engine)
    await sql_storage.create_schema()
    yield sql_storage
    await sql_storage.close()


@pytest.fixture
def registry(storage, clock):
    return FleetRegistry(storage, clock=clock)


@pytest.fixture
def memory_registry(clock):
    return FleetRegistry(InMemoryStorage(), clock=clock)


@pytest.fixture
def sample_telemetry_data():
    """Sample telemetry data for testing."""
    return {
        "temperature": 22.5,
        "humidity": 45.0,
        "signal_strength": -67,
        "battery_level": 88,
        "firmware_channel": "stable",
        "door_open": False,
    }


@pytest.fixture
def mock_mqtt_client():
    """Create a mock MQTT client for testing."""
    from unittest.mock import MagicMock

    client = MagicMock()
    client.is_connected.return_value = True

    result = MagicMock()
    result.rc = 0  # MQTT_ERR_SUCCESS
    client.publish.return_value = result

    return client
