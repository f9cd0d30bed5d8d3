"""Per-channel event fan-out for slot state changes.

Every subscriber owns its own asyncio.Queue, so a slow consumer never
delays delivery to the others and publishing never awaits. Staff
channels carry SlotLocked / SlotReleased / SlotConfirmed for one staff
member's calendar; user channels carry notifications scoped to one
user's sessions.

Events are a freshness optimization. A subscriber that drops (or
overflows a bounded buffer) re-fetches the grid from SlotStore after
resubscribing.
"""

import asyncio
import logging
from typing import Any

from src.shared.domain import WireModel

logger = logging.getLogger(__name__)

STAFF = "staff"
USER = "user"

_CLOSED = object()


class Subscription:
    """Buffered, order-preserving event stream for one subscriber."""

    def __init__(
        self,
        broadcaster: "EventBroadcaster",
        channel: tuple[str, str],
        maxsize: int = 0,
    ) -> None:
        self.channel = channel
        self._broadcaster = broadcaster
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.overflowed = False

    @property
    def closed(self) -> bool:
        """True once the subscription no longer receives events."""
        return self._closed

    def pending(self) -> int:
        """Number of buffered events not yet consumed."""
        return self._queue.qsize()

    def _offer(self, event: WireModel) -> bool:
        """Enqueue without waiting. Returns False if the buffer is full."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            return False
        return True

    async def get(self) -> WireModel | None:
        """Wait for the next event.

        Returns:
            The next event, or None once the subscription is closed
            and its buffer drained.
        """
        if self._closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            return None
        return item

    def close(self) -> None:
        """Stop receiving events; buffered events can still be read."""
        if self._closed:
            return
        self._closed = True
        self._broadcaster._remove(self)
        # a full buffer means no reader is blocked on get()
        self._offer(_CLOSED)  # type: ignore[arg-type]

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> WireModel:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class EventBroadcaster:
    """Fan-out hub keyed by (channel kind, id)."""

    def __init__(self, queue_max: int = 0) -> None:
        self.queue_max = queue_max
        self._channels: dict[tuple[str, str], set[Subscription]] = {}

    def subscribe(self, staff_id: str) -> Subscription:
        """Open a stream of slot events for one staff member's calendar.

        Args:
            staff_id: Staff member whose channel to join.

        Returns:
            A new Subscription with its own buffer.
        """
        return self._add((STAFF, staff_id))

    def subscribe_user(self, user_id: str) -> Subscription:
        """Open a stream of notifications scoped to one user.

        Args:
            user_id: User whose notifications to receive.

        Returns:
            A new Subscription with its own buffer.
        """
        return self._add((USER, user_id))

    def publish(self, staff_id: str, event: WireModel) -> int:
        """Deliver an event to every subscriber of a staff channel.

        Args:
            staff_id: Target staff channel.
            event: Event payload.

        Returns:
            Number of subscribers the event was queued for.
        """
        return self._fan_out((STAFF, staff_id), event)

    def publish_user(self, user_id: str, event: WireModel) -> int:
        """Deliver an event to every subscriber of a user channel.

        Args:
            user_id: Target user channel.
            event: Event payload.

        Returns:
            Number of subscribers the event was queued for.
        """
        return self._fan_out((USER, user_id), event)

    def subscriber_count(self, staff_id: str) -> int:
        """Return how many subscribers a staff channel has."""
        return len(self._channels.get((STAFF, staff_id), ()))

    def _add(self, channel: tuple[str, str]) -> Subscription:
        sub = Subscription(self, channel, maxsize=self.queue_max)
        self._channels.setdefault(channel, set()).add(sub)
        logger.info(
            "subscriber_added",
            extra={"channel": ":".join(channel), "total": len(self._channels[channel])},
        )
        return sub

    def _remove(self, sub: Subscription) -> None:
        subs = self._channels.get(sub.channel)
        if subs is None:
            return
        subs.discard(sub)
        if not subs:
            del self._channels[sub.channel]
        logger.info("subscriber_removed", extra={"channel": ":".join(sub.channel)})

    def _fan_out(self, channel: tuple[str, str], event: WireModel) -> int:
        delivered = 0
        overflowed: list[Subscription] = []
        for sub in list(self._channels.get(channel, ())):
            if sub._offer(event):
                delivered += 1
            else:
                overflowed.append(sub)
        for sub in overflowed:
            logger.warning(
                "subscriber_overflow_disconnected",
                extra={"channel": ":".join(channel)},
            )
            sub.overflowed = True
            sub.close()
        return delivered
