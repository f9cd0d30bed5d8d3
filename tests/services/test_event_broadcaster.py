"""Tests for per-subscriber event fan-out."""

import asyncio
import logging
from datetime import UTC, date, datetime

import pytest

from src.services.event_broadcaster import EventBroadcaster
from src.shared.domain import Slot
from src.shared.events import SlotConfirmed
from src.shared.slot_grid import SlotKey, TimeRange

NOW = datetime(2030, 1, 6, 12, 0, tzinfo=UTC)


def _event(n: int) -> SlotConfirmed:
    key = SlotKey("staff-1", date(2030, 1, 7), TimeRange.parse("09:00-09:30"))
    return SlotConfirmed(slot=Slot.available(key), occurred_at=NOW, appointment_id=f"a-{n}")


class TestFanOut:
    """Every subscriber of a channel gets every event, in order."""

    async def test_all_subscribers_receive_in_order(self) -> None:
        hub = EventBroadcaster()
        first = hub.subscribe("staff-1")
        second = hub.subscribe("staff-1")

        for n in range(3):
            assert hub.publish("staff-1", _event(n)) == 2

        for sub in (first, second):
            ids = [(await sub.get()).appointment_id for _ in range(3)]
            assert ids == ["a-0", "a-1", "a-2"]

    async def test_channels_are_isolated(self) -> None:
        hub = EventBroadcaster()
        staff = hub.subscribe("staff-1")
        other = hub.subscribe("staff-2")
        user = hub.subscribe_user("staff-1")

        hub.publish("staff-1", _event(1))

        assert staff.pending() == 1
        assert other.pending() == 0
        assert user.pending() == 0

    async def test_user_channel(self) -> None:
        hub = EventBroadcaster()
        sub = hub.subscribe_user("user-a")
        assert hub.publish_user("user-a", _event(7)) == 1
        assert hub.publish_user("user-b", _event(8)) == 0
        assert (await sub.get()).appointment_id == "a-7"

    async def test_publish_without_subscribers(self) -> None:
        assert EventBroadcaster().publish("staff-1", _event(1)) == 0


class TestSlowSubscriber:
    """A subscriber that never reads does not hold back the others."""

    async def test_slow_reader_does_not_block_fast_reader(self) -> None:
        hub = EventBroadcaster()
        slow = hub.subscribe("staff-1")
        fast = hub.subscribe("staff-1")
        received: list[str] = []

        async def consume() -> None:
            async for event in fast:
                received.append(event.appointment_id)
                if len(received) == 50:
                    return

        reader = asyncio.create_task(consume())
        for n in range(50):
            hub.publish("staff-1", _event(n))
        await asyncio.wait_for(reader, timeout=1)

        assert received == [f"a-{n}" for n in range(50)]
        assert slow.pending() == 50

    async def test_bounded_queue_overflow_disconnects_only_that_subscriber(self) -> None:
        hub = EventBroadcaster(queue_max=2)
        slow = hub.subscribe("staff-1")
        healthy = hub.subscribe("staff-1")

        hub.publish("staff-1", _event(0))
        await healthy.get()
        hub.publish("staff-1", _event(1))
        await healthy.get()
        delivered = hub.publish("staff-1", _event(2))

        assert delivered == 1
        assert slow.overflowed
        assert slow.closed
        assert not healthy.closed
        assert hub.subscriber_count("staff-1") == 1
        # buffered events stay readable, then the stream ends
        assert (await slow.get()).appointment_id == "a-0"
        assert (await slow.get()).appointment_id == "a-1"
        assert await slow.get() is None

    async def test_overflow_logs_disconnect(self, caplog: pytest.LogCaptureFixture) -> None:
        hub = EventBroadcaster(queue_max=1)
        hub.subscribe("staff-1")

        with caplog.at_level(logging.WARNING):
            hub.publish("staff-1", _event(0))
            hub.publish("staff-1", _event(1))

        assert "subscriber_overflow_disconnected" in caplog.text


class TestSubscriptionLifecycle:
    """Closing a subscription."""

    async def test_close_ends_iteration_after_buffered_events(self) -> None:
        hub = EventBroadcaster()
        sub = hub.subscribe("staff-1")
        hub.publish("staff-1", _event(1))
        sub.close()

        assert [e.appointment_id async for e in sub] == ["a-1"]
        assert hub.subscriber_count("staff-1") == 0

    async def test_close_wakes_blocked_reader(self) -> None:
        hub = EventBroadcaster()
        sub = hub.subscribe("staff-1")
        waiter = asyncio.create_task(sub.get())
        await asyncio.sleep(0)
        sub.close()
        assert await asyncio.wait_for(waiter, timeout=1) is None

    async def test_context_manager_unsubscribes(self) -> None:
        hub = EventBroadcaster()
        with hub.subscribe("staff-1"):
            assert hub.subscriber_count("staff-1") == 1
        assert hub.subscriber_count("staff-1") == 0
        assert hub.publish("staff-1", _event(1)) == 0

    async def test_close_is_idempotent(self) -> None:
        hub = EventBroadcaster()
        sub = hub.subscribe("staff-1")
        sub.close()
        sub.close()
        assert sub.closed
