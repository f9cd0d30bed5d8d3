"""Domain records shared by the reservation services and the API layer.

Models serialize to camelCase on the wire and accept either
camelCase or snake_case on input.
"""

import uuid
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from src.shared.slot_grid import SlotKey, TimeRange
from src.shared.types import AppointmentStatus, ReleaseReason, SlotState


class WireModel(BaseModel):
    """Base model with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Holder(WireModel):
    """The user and client session holding a lock."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    session_id: str


class Slot(WireModel):
    """One grid entry as seen through SlotStore.

    held_by and locked_until are only present while LOCKED;
    appointment_id is present while LOCKED or CONFIRMED.
    """

    model_config = ConfigDict(frozen=True)

    staff_id: str
    date: date
    time_range: str
    state: SlotState = SlotState.AVAILABLE
    held_by: Holder | None = None
    appointment_id: str | None = None
    locked_until: datetime | None = None

    @classmethod
    def available(cls, key: SlotKey) -> "Slot":
        """Synthesize the AVAILABLE entry for a slot key."""
        return cls(staff_id=key.staff_id, date=key.date, time_range=str(key.time_range))


class Requestor(WireModel):
    """Who is asking: the user plus the browser/client session."""

    user_id: str = Field(min_length=1)
    session_id: str = Field(min_length=1)


class ReservationRequest(Requestor):
    """Request to validate or reserve one slot.

    Attributes:
        staff_id: Staff member whose calendar holds the slot.
        date: Calendar date of the slot.
        time_range: Grid position, e.g. "09:00-09:30".
        replace_existing: The user accepted releasing their prior lock.
    """

    staff_id: str = Field(min_length=1)
    date: date
    time_range: str
    replace_existing: bool = False

    @field_validator("time_range")
    @classmethod
    def _normalize_time_range(cls, value: str) -> str:
        return str(TimeRange.parse(value))

    @property
    def slot_key(self) -> SlotKey:
        """Slot identity targeted by this request."""
        return SlotKey(self.staff_id, self.date, TimeRange.parse(self.time_range))

    @property
    def requestor(self) -> Requestor:
        """The requesting user and session."""
        return Requestor(user_id=self.user_id, session_id=self.session_id)


class Appointment(WireModel):
    """Appointment record owned by the ReservationManager.

    Created LOCKED by a successful reservation; moves once to
    CONFIRMED or CANCELLED and is never mutated afterwards.
    """

    appointment_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    session_id: str
    staff_id: str
    date: date
    time_range: str
    status: AppointmentStatus = AppointmentStatus.LOCKED
    locked_until: datetime | None = None
    created_at: datetime
    updated_at: datetime
    confirmed_at: datetime | None = None
    cancelled_at: datetime | None = None
    release_reason: ReleaseReason | None = None

    @property
    def slot_key(self) -> SlotKey:
        """Slot this appointment references."""
        return SlotKey(self.staff_id, self.date, TimeRange.parse(self.time_range))

    @property
    def holder(self) -> Holder:
        """Lock holder identity for this appointment."""
        return Holder(user_id=self.user_id, session_id=self.session_id)

    @property
    def is_terminal(self) -> bool:
        """True once CONFIRMED or CANCELLED."""
        return self.status is not AppointmentStatus.LOCKED

    def is_owned_by(self, requestor: Requestor) -> bool:
        """True if the requestor's user and session created this appointment."""
        return (
            self.user_id == requestor.user_id
            and self.session_id == requestor.session_id
        )
