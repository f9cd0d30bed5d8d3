"""Tests for the expiry reaper."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from src.shared.domain import Requestor
from src.shared.events import SlotReleased
from src.shared.types import AppointmentStatus, ConfirmOutcome, ReleaseReason, SlotState
from src.workers.expiry_reaper import ExpiryReaper

TTL = 300


class TestSweep:
    """One sweep pass."""

    async def test_lapsed_lock_released_within_one_sweep(
        self, manager, make_request, clock,
    ) -> None:
        """TTL elapses without confirm: slot returns to AVAILABLE; confirm is EXPIRED."""
        reaper = ExpiryReaper(manager, interval_seconds=15)
        result = await manager.reserve(make_request())

        clock.advance(TTL + 15)
        sweep = await reaper.sweep()

        assert sweep.released == 1
        assert sweep.appointment_ids == [result.appointment_id]
        assert manager.store.get_slot(make_request().slot_key).state is SlotState.AVAILABLE
        outcome = await manager.confirm(
            result.appointment_id, Requestor(user_id="user-a", session_id="sess-1"),
        )
        assert outcome.outcome is ConfirmOutcome.EXPIRED

    async def test_live_lock_untouched(self, manager, make_request, clock) -> None:
        reaper = ExpiryReaper(manager, interval_seconds=15)
        await manager.reserve(make_request())
        clock.advance(TTL - 1)

        sweep = await reaper.sweep()

        assert sweep.scanned == 0
        assert sweep.released == 0
        assert manager.store.get_slot(make_request().slot_key).state is SlotState.LOCKED

    async def test_expiry_publishes_release(
        self, manager, broadcaster, make_request, clock,
    ) -> None:
        reaper = ExpiryReaper(manager, interval_seconds=15)
        await manager.reserve(make_request())
        staff = broadcaster.subscribe("staff-1")
        clock.advance(TTL)

        await reaper.sweep()

        event = await staff.get()
        assert isinstance(event, SlotReleased)
        assert event.reason is ReleaseReason.EXPIRED

    async def test_two_reapers_one_release(self, manager, make_request, clock) -> None:
        """Concurrent reapers on the same lapsed lock: exactly one CAS wins."""
        first = ExpiryReaper(manager, interval_seconds=15, name="a")
        second = ExpiryReaper(manager, interval_seconds=15, name="b")
        results = [
            await manager.reserve(make_request(f"user-{i}", f"sess-{i}", time_range=tr))
            for i, tr in enumerate(["09:00-09:30", "09:30-10:00", "10:00-10:30"])
        ]
        clock.advance(TTL + 1)

        sweeps = await asyncio.gather(first.sweep(), second.sweep())

        assert sum(s.released for s in sweeps) == 3
        released = [a for s in sweeps for a in s.appointment_ids]
        assert sorted(released) == sorted(r.appointment_id for r in results)
        assert manager.store.locked_slots() == []
        for r in results:
            appointment = manager.get_appointment(r.appointment_id)
            assert appointment.status is AppointmentStatus.CANCELLED
            assert appointment.release_reason is ReleaseReason.EXPIRED

    async def test_losing_reaper_is_noop(self, manager, make_request, clock) -> None:
        reaper = ExpiryReaper(manager, interval_seconds=15)
        result = await manager.reserve(make_request())
        clock.advance(TTL + 1)

        assert await manager.expire(result.appointment_id) is True
        assert await manager.expire(result.appointment_id) is False
        assert (await reaper.sweep()).released == 0

    async def test_sweep_prunes_records_past_retention(
        self, manager, make_request, clock,
    ) -> None:
        """Reserve-then-cancel traffic does not accumulate records."""
        reaper = ExpiryReaper(manager, interval_seconds=15)
        ids = []
        for n in range(20):
            request = make_request(f"user-{n}", f"sess-{n}")
            result = await manager.reserve(request)
            await manager.cancel(result.appointment_id, request.requestor)
            ids.append(result.appointment_id)

        early = await reaper.sweep()
        clock.advance(manager.retention.total_seconds())
        late = await reaper.sweep()

        assert early.pruned == 0
        assert late.pruned == 20
        assert all(manager.get_appointment(a) is None for a in ids)


class TestReaperConfig:
    """Interval validation."""

    def test_interval_must_be_positive(self, manager) -> None:
        with pytest.raises(ValueError):
            ExpiryReaper(manager, interval_seconds=0)

    def test_interval_must_be_shorter_than_ttl(self, manager) -> None:
        with pytest.raises(ValueError):
            ExpiryReaper(manager, interval_seconds=manager.lock_ttl.total_seconds())

    def test_default_interval(self, manager) -> None:
        assert ExpiryReaper(manager).interval_seconds == 15


class TestReaperLoop:
    """Background start/stop."""

    async def test_start_and_stop(self, manager) -> None:
        reaper = ExpiryReaper(manager, interval_seconds=0.01)
        await reaper.start()
        assert reaper.running
        await reaper.start()
        await reaper.stop()
        assert not reaper.running

    async def test_loop_survives_sweep_errors(self, manager) -> None:
        reaper = ExpiryReaper(manager, interval_seconds=0.01)
        with patch.object(
            reaper, "sweep", AsyncMock(side_effect=RuntimeError("boom")),
        ) as sweep:
            await reaper.start()
            await asyncio.sleep(0.05)
            await reaper.stop()
        assert sweep.await_count >= 2

    async def test_loop_releases_lapsed_lock(self, manager, make_request, clock) -> None:
        reaper = ExpiryReaper(manager, interval_seconds=0.01)
        await manager.reserve(make_request())
        clock.advance(TTL + 1)

        await reaper.start()
        for _ in range(50):
            if not manager.store.locked_slots():
                break
            await asyncio.sleep(0.01)
        await reaper.stop()

        assert manager.store.locked_slots() == []
