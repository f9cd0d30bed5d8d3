"""SlotStore: authoritative per-slot state with compare-and-set mutation.

Only non-available slots are stored; every other grid position is
synthesized as AVAILABLE on read, so an unknown staff member simply
yields an all-available grid.

try_transition is the only mutation entry point. Each call runs under
that slot's own lock, so transitions on one slot are totally ordered
while different slots never contend.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime

from src.shared.domain import Appointment, Slot
from src.shared.keyed_lock import KeyedLock
from src.shared.slot_grid import SlotGrid, SlotKey
from src.shared.types import SlotState

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: frozenset[tuple[SlotState, SlotState]] = frozenset({
    (SlotState.AVAILABLE, SlotState.LOCKED),
    (SlotState.LOCKED, SlotState.AVAILABLE),
    (SlotState.LOCKED, SlotState.CONFIRMED),
    # replay of a confirmed appointment from the journal
    (SlotState.AVAILABLE, SlotState.CONFIRMED),
})


@dataclass(frozen=True)
class Conflict:
    """CAS mismatch: the slot was not in the expected state.

    Attributes:
        current_state: State the slot is actually in.
        current_appointment_id: Appointment currently referencing the slot.
        current: Full current slot entry.
    """

    current_state: SlotState
    current_appointment_id: str | None
    current: Slot


class SlotStore:
    """In-memory slot state keyed by SlotKey."""

    def __init__(self, grid: SlotGrid) -> None:
        self.grid = grid
        self._slots: dict[SlotKey, Slot] = {}
        self._locks = KeyedLock()

    def get(self, staff_id: str, day: date) -> list[Slot]:
        """Return the full ordered grid for a staff member and date.

        Args:
            staff_id: Staff member identifier.
            day: Calendar date.

        Returns:
            One Slot per grid position, in time order.
        """
        return [self.get_slot(key) for key in self.grid.keys_for(staff_id, day)]

    def get_slot(self, key: SlotKey) -> Slot:
        """Return the current entry for one slot."""
        return self._slots.get(key) or Slot.available(key)

    def locked_slots(self) -> list[Slot]:
        """Return every slot currently LOCKED."""
        return [s for s in self._slots.values() if s.state is SlotState.LOCKED]

    def expired_locks(self, now: datetime) -> list[Slot]:
        """Return LOCKED slots whose lease has run out at `now`.

        Args:
            now: Current time.

        Returns:
            Locked slots with locked_until <= now.
        """
        return [
            s for s in self.locked_slots()
            if s.locked_until is not None and s.locked_until <= now
        ]

    async def forget_before(self, day: date) -> int:
        """Drop CONFIRMED entries for dates before `day`.

        LOCKED entries are left to the expiry path.

        Returns:
            Number of entries dropped.
        """
        stale = [
            key for key, slot in self._slots.items()
            if key.date < day and slot.state is SlotState.CONFIRMED
        ]
        dropped = 0
        for key in stale:
            async with self._locks.hold(key):
                current = self._slots.get(key)
                if current is not None and current.state is SlotState.CONFIRMED:
                    del self._slots[key]
                    dropped += 1
        return dropped

    async def try_transition(
        self,
        key: SlotKey,
        expected_state: SlotState,
        new_state: SlotState,
        appointment: Appointment,
        *,
        expected_appointment_id: str | None = None,
        precondition: Callable[[], bool] | None = None,
    ) -> Slot | Conflict:
        """Move a slot from expected_state to new_state atomically.

        Args:
            key: Slot to mutate.
            expected_state: State the caller believes the slot is in.
            new_state: Target state.
            appointment: Appointment driving the transition; supplies
                holder, appointment_id and locked_until for the new entry.
            expected_appointment_id: When set, the slot must also still
                reference this appointment.
            precondition: Extra check evaluated while the slot lock is
                held. A False result is reported as a Conflict.

        Returns:
            The new Slot on success, or Conflict describing the
            current slot when the expectation did not hold.

        Raises:
            ValueError: If the key is off-grid or the transition is
                not part of the slot state machine.
        """
        if not self.grid.contains(key.time_range):
            raise ValueError(f"Slot {key} is not on the grid")
        if (expected_state, new_state) not in ALLOWED_TRANSITIONS:
            raise ValueError(
                f"Illegal slot transition {expected_state.value} -> {new_state.value}"
            )

        async with self._locks.hold(key):
            current = self.get_slot(key)
            if current.state is not expected_state or (
                expected_appointment_id is not None
                and current.appointment_id != expected_appointment_id
            ) or (precondition is not None and not precondition()):
                logger.debug(
                    "slot_cas_conflict",
                    extra={
                        "slot": str(key),
                        "expected": expected_state.value,
                        "current": current.state.value,
                    },
                )
                return Conflict(
                    current_state=current.state,
                    current_appointment_id=current.appointment_id,
                    current=current,
                )

            updated = _build_slot(key, new_state, appointment)
            if new_state is SlotState.AVAILABLE:
                self._slots.pop(key, None)
            else:
                self._slots[key] = updated
            return updated


def _build_slot(key: SlotKey, state: SlotState, appointment: Appointment) -> Slot:
    """Build the stored entry for a slot entering `state`."""
    if state is SlotState.AVAILABLE:
        return Slot.available(key)
    if state is SlotState.LOCKED:
        return Slot(
            staff_id=key.staff_id,
            date=key.date,
            time_range=str(key.time_range),
            state=SlotState.LOCKED,
            held_by=appointment.holder,
            appointment_id=appointment.appointment_id,
            locked_until=appointment.locked_until,
        )
    return Slot(
        staff_id=key.staff_id,
        date=key.date,
        time_range=str(key.time_range),
        state=SlotState.CONFIRMED,
        appointment_id=appointment.appointment_id,
    )
