"""Realtime event payloads published on staff and user channels."""

from datetime import date, datetime
from typing import Annotated, Literal

from pydantic import Field, TypeAdapter

from src.shared.domain import Slot, WireModel
from src.shared.types import ReleaseReason


class SlotEventBase(WireModel):
    """Common fields of every slot event."""

    slot: Slot
    occurred_at: datetime


class SlotLocked(SlotEventBase):
    """A slot moved AVAILABLE -> LOCKED."""

    type: Literal["SlotLocked"] = "SlotLocked"
    appointment_id: str
    locked_until: datetime


class SlotReleased(SlotEventBase):
    """A slot moved LOCKED -> AVAILABLE (cancel, expiry or supersede)."""

    type: Literal["SlotReleased"] = "SlotReleased"
    appointment_id: str
    reason: ReleaseReason


class SlotConfirmed(SlotEventBase):
    """A slot moved LOCKED -> CONFIRMED."""

    type: Literal["SlotConfirmed"] = "SlotConfirmed"
    appointment_id: str


class PreviousSlotReleased(SlotEventBase):
    """User-scoped: one of the user's locks went back to available.

    session_id names the session that held it, so a client can tell
    which of its tabs lost the slot.
    """

    type: Literal["PreviousSlotReleased"] = "PreviousSlotReleased"
    appointment_id: str
    session_id: str
    reason: ReleaseReason


class GridSnapshotEvent(WireModel):
    """Full grid for reconciliation after (re)connect."""

    type: Literal["GridSnapshot"] = "GridSnapshot"
    staff_id: str
    date: date
    slots: list[Slot]


SlotEvent = Annotated[
    SlotLocked | SlotReleased | SlotConfirmed | PreviousSlotReleased | GridSnapshotEvent,
    Field(discriminator="type"),
]

slot_event_adapter: TypeAdapter[SlotEvent] = TypeAdapter(SlotEvent)


def to_wire(event: WireModel) -> dict:
    """Serialize an event to a JSON-safe camelCase dict."""
    return event.model_dump(mode="json", by_alias=True)
