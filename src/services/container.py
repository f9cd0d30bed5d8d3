"""Builds and owns the reservation core for one process."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from src.config.settings import Settings
from src.services.conflict_resolver import ConflictResolver
from src.services.event_broadcaster import EventBroadcaster
from src.services.reservation_manager import ReservationManager, utcnow
from src.services.slot_store import SlotStore
from src.shared.slot_grid import SlotGrid
from src.workers.expiry_reaper import ExpiryReaper
from src.workers.journal_writer import JournalWriter

logger = logging.getLogger(__name__)


@dataclass
class ReservationCore:
    """All long-lived reservation components of the process.

    Attributes:
        settings: Settings the core was built from.
        store: Slot state.
        broadcaster: Realtime fan-out hub.
        manager: Reservation lifecycle.
        reaper: Background expiry sweep.
        journal: Durable journal writer, when enabled.
    """

    settings: Settings
    store: SlotStore
    broadcaster: EventBroadcaster
    manager: ReservationManager
    reaper: ExpiryReaper
    journal: JournalWriter | None = None

    async def startup(self) -> None:
        """Restore from the journal, then start background workers."""
        if self.journal is not None:
            appointments = await self.journal.load()
            await self.manager.restore(appointments)
            await self.journal.start()
        if self.settings.reaper_enabled:
            await self.reaper.start()
        logger.info("reservation_core_started")

    async def shutdown(self) -> None:
        """Stop background workers, flushing the journal."""
        await self.reaper.stop()
        if self.journal is not None:
            await self.journal.stop()
        logger.info("reservation_core_stopped")


def build_core(
    settings: Settings,
    *,
    clock: Callable[[], datetime] = utcnow,
) -> ReservationCore:
    """Wire SlotStore, EventBroadcaster, ReservationManager and the reaper.

    Args:
        settings: Application settings.
        clock: Time source (overridable in tests).

    Returns:
        A ReservationCore that has not been started yet.

    Raises:
        ValueError: On an invalid grid or a reaper interval not
            shorter than the lock TTL.
    """
    grid = SlotGrid(settings.business_windows, settings.slot_minutes)
    store = SlotStore(grid)
    broadcaster = EventBroadcaster(queue_max=settings.subscriber_queue_max)

    journal: JournalWriter | None = None
    if settings.journal_enabled:
        from src.db.session import get_session

        journal = JournalWriter(get_session)

    manager = ReservationManager(
        store,
        broadcaster,
        resolver=ConflictResolver(),
        lock_ttl=timedelta(seconds=settings.lock_ttl_seconds),
        retention=timedelta(seconds=settings.terminal_retention_seconds),
        allow_past_slots=settings.allow_past_slots,
        clock=clock,
        journal=journal,
    )
    reaper = ExpiryReaper(manager, interval_seconds=settings.reaper_interval_seconds)
    return ReservationCore(
        settings=settings,
        store=store,
        broadcaster=broadcaster,
        manager=manager,
        reaper=reaper,
        journal=journal,
    )
