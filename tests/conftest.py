"""
Pytest configuration and shared fixtures.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Dict
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from config import Settings
from db.memory_store import InMemoryCalendarStore
from models.slot import Slot, SlotCreate
from services.booking_service import BookingService
from services.notifications import Notifier
from services.reclaim import ReclaimSweeper
from utils.constants import SLOT_TIMES

TEST_DAY = date(2026, 3, 10)
TECH = "tech_1"


class FakeClock:
    """Controllable time source."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: int = 0, seconds: int = 0) -> None:
        self.now += timedelta(minutes=minutes, seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(clock):
    """In-memory store with no retry delay."""
    return InMemoryCalendarStore(clock=clock, retry_delay=0)


@pytest.fixture
def notifier():
    """Mock notifier."""
    mock = MagicMock(spec=Notifier)
    mock.booking_confirmed = AsyncMock()
    mock.booking_cancelled = AsyncMock()
    mock.close = AsyncMock()
    return mock


@pytest.fixture
def booking_service(store, notifier):
    return BookingService(store, notifier=notifier)


@pytest.fixture
def sweeper(store, clock):
    return ReclaimSweeper(store, clock=clock)


@pytest_asyncio.fixture
async def day_slots(store) -> Dict[str, Slot]:
    """One available slot per canonical time on TEST_DAY for TECH, keyed by time."""
    slots = {}
    for time in SLOT_TIMES:
        slots[time] = await store.create_slot(
            SlotCreate(date=TEST_DAY, time=time, resource_id=TECH)
        )
    return slots


@pytest.fixture
def app_settings():
    """Settings for the HTTP layer, independent of the environment."""
    return Settings(
        _env_file=None,
        store_backend="memory",
        cron_secret="cron_test_secret",
        bot_token=None,
        admin_chat_ids="",
        redis_url=None,
        environment="test",
    )


@pytest.fixture
def mock_supabase_client():
    """Create a mock Supabase client."""
    mock_client = MagicMock()
    mock_table = MagicMock()
    mock_client.table.return_value = mock_table
    return mock_client, mock_table
