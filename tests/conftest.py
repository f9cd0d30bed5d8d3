"""Shared test fixtures for the slot reservation test suite."""

from datetime import UTC, date, datetime, timedelta

import pytest

from src.config.settings import Settings
from src.services.event_broadcaster import EventBroadcaster
from src.services.reservation_manager import ReservationManager
from src.services.slot_store import SlotStore
from src.shared.domain import ReservationRequest
from src.shared.slot_grid import SlotGrid

DAY = date(2030, 1, 7)
STAFF = "staff-1"


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def _make_request(
    user_id: str = "user-a",
    session_id: str = "sess-1",
    time_range: str = "09:00-09:30",
    *,
    staff_id: str = STAFF,
    day: date = DAY,
    replace_existing: bool = False,
) -> ReservationRequest:
    """Build a ReservationRequest with test defaults."""
    return ReservationRequest(
        user_id=user_id,
        session_id=session_id,
        staff_id=staff_id,
        date=day,
        time_range=time_range,
        replace_existing=replace_existing,
    )


@pytest.fixture
def make_request():
    """Factory for ReservationRequest objects with test defaults."""
    return _make_request


@pytest.fixture
def settings() -> Settings:
    """Provide test settings with safe defaults.

    Returns:
        Settings with the journal and background reaper disabled.
    """
    return Settings(
        journal_enabled=False,
        reaper_enabled=False,
        lock_ttl_seconds=300,
        reaper_interval_seconds=15,
    )


@pytest.fixture
def clock() -> FakeClock:
    """Clock set to the morning before DAY."""
    return FakeClock(datetime(2030, 1, 6, 12, 0, tzinfo=UTC))


@pytest.fixture
def grid(settings: Settings) -> SlotGrid:
    return SlotGrid(settings.business_windows, settings.slot_minutes)


@pytest.fixture
def store(grid: SlotGrid) -> SlotStore:
    return SlotStore(grid)


@pytest.fixture
def broadcaster() -> EventBroadcaster:
    return EventBroadcaster()


@pytest.fixture
def manager(
    store: SlotStore,
    broadcaster: EventBroadcaster,
    clock: FakeClock,
) -> ReservationManager:
    """ReservationManager with a 300s lease driven by the fake clock."""
    return ReservationManager(
        store,
        broadcaster,
        lock_ttl=timedelta(seconds=300),
        clock=clock,
    )
