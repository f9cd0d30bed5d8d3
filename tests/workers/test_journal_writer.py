"""Tests for the queue-backed journal writer."""

import asyncio
from datetime import UTC, date, datetime, timedelta
from unittest.mock import AsyncMock, patch

from src.shared.domain import Appointment
from src.shared.types import ReleaseReason, SlotState
from src.workers.journal_writer import JournalEntry, JournalWriter

NOW = datetime(2030, 1, 6, 12, 0, tzinfo=UTC)


def _appointment() -> Appointment:
    return Appointment(
        user_id="user-a",
        session_id="sess-1",
        staff_id="staff-1",
        date=date(2030, 1, 7),
        time_range="09:00-09:30",
        locked_until=NOW + timedelta(minutes=5),
        created_at=NOW,
        updated_at=NOW,
    )


def _provider(session: AsyncMock):
    async def get_session():
        yield session

    return get_session


class TestJournalWriter:
    """record() enqueues; the background task writes in order."""

    async def test_record_does_not_write_synchronously(self) -> None:
        writer = JournalWriter(_provider(AsyncMock()))
        with patch("src.workers.journal_writer.append_transition", AsyncMock()) as append:
            writer.record(_appointment(), SlotState.AVAILABLE, SlotState.LOCKED)
            assert writer.pending() == 1
            append.assert_not_awaited()

    async def test_drain_writes_entries_in_order(self) -> None:
        session = AsyncMock()
        writer = JournalWriter(_provider(session))
        appointment = _appointment()

        with patch("src.workers.journal_writer.append_transition", AsyncMock()) as append:
            await writer.start()
            writer.record(appointment, SlotState.AVAILABLE, SlotState.LOCKED)
            writer.record(
                appointment, SlotState.LOCKED, SlotState.AVAILABLE, ReleaseReason.USER,
            )
            await writer.stop()

        assert writer.pending() == 0
        calls = append.await_args_list
        assert [c.kwargs["current"] for c in calls] == [SlotState.LOCKED, SlotState.AVAILABLE]
        assert calls[1].kwargs["reason"] is ReleaseReason.USER
        assert calls[0].args[0] is session

    async def test_failed_write_is_skipped(self) -> None:
        writer = JournalWriter(_provider(AsyncMock()))
        append = AsyncMock(side_effect=[RuntimeError("db down"), None])

        with patch("src.workers.journal_writer.append_transition", append):
            await writer.start()
            writer.record(_appointment(), SlotState.AVAILABLE, SlotState.LOCKED)
            writer.record(_appointment(), SlotState.AVAILABLE, SlotState.LOCKED)
            await asyncio.wait_for(writer.stop(), timeout=1)

        assert append.await_count == 2

    async def test_write_single_entry(self) -> None:
        session = AsyncMock()
        writer = JournalWriter(_provider(session))
        entry = JournalEntry(_appointment(), SlotState.LOCKED, SlotState.CONFIRMED)

        with patch("src.workers.journal_writer.append_transition", AsyncMock()) as append:
            await writer.write(entry)

        append.assert_awaited_once_with(
            session,
            appointment=entry.appointment,
            previous=SlotState.LOCKED,
            current=SlotState.CONFIRMED,
            reason=None,
        )

    async def test_load_reads_active_appointments(self) -> None:
        session = AsyncMock()
        writer = JournalWriter(_provider(session))
        saved = [_appointment()]

        with patch(
            "src.workers.journal_writer.load_active_appointments",
            AsyncMock(return_value=saved),
        ) as load:
            assert await writer.load() == saved

        load.assert_awaited_once_with(session)

    async def test_stop_without_start(self) -> None:
        await JournalWriter(_provider(AsyncMock())).stop()
