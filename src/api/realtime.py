"""WebSocket channels for realtime slot updates.

/ws/staff/{staff_id}  SlotLocked / SlotReleased / SlotConfirmed for one
                      calendar, plus GridSnapshot on connect and every
                      snapshot interval for the date the client watches.
/ws/users/{user_id}   notifications scoped to one user's sessions.

Clients may send {"action": "snapshot", "date": "YYYY-MM-DD"} on a staff
channel to switch the watched date and get a snapshot immediately.
Malformed dates are ignored in messages and close the handshake with
1008 when given as the ?date= query parameter.
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from datetime import date

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from src.services.container import ReservationCore
from src.services.event_broadcaster import Subscription
from src.shared.domain import WireModel
from src.shared.events import to_wire

logger = logging.getLogger(__name__)

ws_router = APIRouter(tags=["websocket"])


class _Watch:
    """Date currently watched by a staff-channel client."""

    def __init__(self, day: date | None) -> None:
        self.day = day


@ws_router.websocket("/ws/staff/{staff_id}")
async def staff_channel(websocket: WebSocket, staff_id: str) -> None:
    """Stream slot events for one staff member's calendar.

    Args:
        websocket: Incoming WebSocket connection.
        staff_id: Staff member to follow.
    """
    core: ReservationCore = websocket.app.state.core
    raw_date = websocket.query_params.get("date")
    day = _parse_day(raw_date) if raw_date else None
    if raw_date and day is None:
        await websocket.close(code=1008)
        return
    watch = _Watch(day)

    with core.broadcaster.subscribe(staff_id) as sub:
        await websocket.accept()
        if watch.day is not None:
            await _send(websocket, core.manager.snapshot(staff_id, watch.day))

        def snapshot() -> WireModel | None:
            if watch.day is None:
                return None
            return core.manager.snapshot(staff_id, watch.day)

        async def on_message(message: dict) -> None:
            if message.get("action") != "snapshot":
                return
            requested = _parse_day(message.get("date"))
            if requested is None:
                return
            watch.day = requested
            await _send(websocket, core.manager.snapshot(staff_id, watch.day))

        await _serve(
            websocket,
            sub,
            snapshot=snapshot,
            interval=core.settings.snapshot_interval_seconds,
            on_message=on_message,
        )


@ws_router.websocket("/ws/users/{user_id}")
async def user_channel(websocket: WebSocket, user_id: str) -> None:
    """Stream notifications for one user.

    Args:
        websocket: Incoming WebSocket connection.
        user_id: User to follow.
    """
    core: ReservationCore = websocket.app.state.core
    with core.broadcaster.subscribe_user(user_id) as sub:
        await websocket.accept()
        await _serve(websocket, sub)


async def _serve(
    websocket: WebSocket,
    sub: Subscription,
    *,
    snapshot: Callable[[], WireModel | None] | None = None,
    interval: float | None = None,
    on_message: Callable[[dict], Awaitable[None]] | None = None,
) -> None:
    """Pump events out and client messages in until either side stops."""
    sender = asyncio.create_task(_pump_events(websocket, sub, snapshot, interval))
    receiver = asyncio.create_task(_read_messages(websocket, on_message))
    done, pending = await asyncio.wait(
        {sender, receiver}, return_when=asyncio.FIRST_COMPLETED,
    )
    for task in pending:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
    for task in done:
        if not task.cancelled() and task.exception() is not None:
            logger.warning(
                "ws_channel_closed_with_error",
                extra={"channel": ":".join(sub.channel)},
                exc_info=task.exception(),
            )
    if sub.overflowed:
        with contextlib.suppress(Exception):
            await websocket.close(code=1013)


async def _pump_events(
    websocket: WebSocket,
    sub: Subscription,
    snapshot: Callable[[], WireModel | None] | None,
    interval: float | None,
) -> None:
    while True:
        if snapshot is not None and interval:
            try:
                event = await asyncio.wait_for(sub.get(), timeout=interval)
            except TimeoutError:
                periodic = snapshot()
                if periodic is not None:
                    await _send(websocket, periodic)
                continue
        else:
            event = await sub.get()
        if event is None:
            return
        await _send(websocket, event)


async def _read_messages(
    websocket: WebSocket,
    on_message: Callable[[dict], Awaitable[None]] | None,
) -> None:
    try:
        while True:
            message = await websocket.receive_json()
            if on_message is not None and isinstance(message, dict):
                await on_message(message)
    except WebSocketDisconnect:
        logger.info("ws_client_disconnected")


def _parse_day(raw: object) -> date | None:
    """Parse a YYYY-MM-DD date sent by a client; None if malformed."""
    if not isinstance(raw, str):
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        logger.warning("ws_bad_date", extra={"date": raw})
        return None


async def _send(websocket: WebSocket, event: WireModel) -> None:
    await websocket.send_json(to_wire(event))
