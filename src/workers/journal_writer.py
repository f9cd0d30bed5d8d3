"""Journal writer: persists accepted transitions off the request path.

ReservationManager hands every transition to record(), which only
enqueues. A background task drains the queue in order and appends each
entry to Postgres. A failed write is logged and skipped; the in-memory
store stays authoritative while the process runs.
"""

import asyncio
import contextlib
import logging
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from src.db.journal import append_transition, load_active_appointments
from src.shared.domain import Appointment
from src.shared.types import ReleaseReason, SlotState

logger = logging.getLogger(__name__)

SessionProvider = Callable[[], AsyncGenerator[AsyncSession, None]]


@dataclass
class JournalEntry:
    """One queued transition.

    Attributes:
        appointment: Snapshot of the appointment after the transition.
        previous: Slot state before.
        current: Slot state after.
        reason: Release reason, if any.
    """

    appointment: Appointment
    previous: SlotState
    current: SlotState
    reason: ReleaseReason | None = None


class JournalWriter:
    """Queue-backed TransitionJournal writing to the database."""

    def __init__(self, session_provider: SessionProvider) -> None:
        self._session_scope = asynccontextmanager(session_provider)
        self._queue: asyncio.Queue[JournalEntry] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None

    def record(
        self,
        appointment: Appointment,
        previous: SlotState,
        current: SlotState,
        reason: ReleaseReason | None = None,
    ) -> None:
        """Enqueue a transition for persistence. Never blocks."""
        self._queue.put_nowait(JournalEntry(appointment, previous, current, reason))

    def pending(self) -> int:
        """Number of entries not yet written."""
        return self._queue.qsize()

    async def load(self) -> list[Appointment]:
        """Read active appointments for restore at startup."""
        async with self._session_scope() as session:
            return await load_active_appointments(session)

    async def write(self, entry: JournalEntry) -> None:
        """Persist one entry in its own transaction."""
        async with self._session_scope() as session:
            await append_transition(
                session,
                appointment=entry.appointment,
                previous=entry.previous,
                current=entry.current,
                reason=entry.reason,
            )

    async def start(self) -> None:
        """Start draining the queue in the background."""
        if self._task is None:
            self._task = asyncio.create_task(self._drain())
            logger.info("journal_writer_started")

    async def stop(self) -> None:
        """Flush what is queued, then stop the background task."""
        if self._task is None:
            return
        await self._queue.join()
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("journal_writer_stopped")

    async def _drain(self) -> None:
        while True:
            entry = await self._queue.get()
            try:
                await self.write(entry)
            except Exception:
                logger.exception(
                    "journal_write_failed",
                    extra={"appointment_id": entry.appointment.appointment_id},
                )
            finally:
                self._queue.task_done()
