"""ReservationManager: lock/lease lifecycle for appointment slots.

Owns the Appointment records and is the only writer of slot state.
Every slot mutation goes through SlotStore.try_transition; every
accepted transition is published to the staff channel (and the owning
user's channel) and handed to the journal when one is configured.

Lifecycle:
    reserve  -> AVAILABLE -> LOCKED   (lease = now + TTL, never extended)
    confirm  -> LOCKED -> CONFIRMED   (only while now < locked_until)
    cancel   -> LOCKED -> AVAILABLE   reason=user
    expire   -> LOCKED -> AVAILABLE   reason=expired (reaper)
    release_own_prior_lock -> LOCKED -> AVAILABLE  reason=superseded

Single-flight: reservations are serialized per user so a user never
holds more than one LOCKED appointment.
"""

import logging
from collections.abc import Callable, Iterable
from datetime import UTC, date, datetime, timedelta
from typing import Protocol

from src.services.conflict_resolver import ConflictResolver, DecideFn
from src.services.event_broadcaster import EventBroadcaster
from src.services.slot_store import Conflict, SlotStore
from src.shared.domain import Appointment, Requestor, ReservationRequest, Slot
from src.shared.events import (
    GridSnapshotEvent,
    PreviousSlotReleased,
    SlotConfirmed,
    SlotLocked,
    SlotReleased,
)
from src.shared.keyed_lock import KeyedLock
from src.shared.response_models import (
    AppointmentPage,
    AvailableTimeSlots,
    CancelResult,
    ConfirmResult,
    ConflictDetail,
    ReserveResult,
    TimeSlotView,
    ValidationResult,
)
from src.shared.slot_grid import SlotKey
from src.shared.types import (
    AppointmentStatus,
    CancelOutcome,
    ConfirmOutcome,
    ConflictCategory,
    ErrorKind,
    RejectionReason,
    ReleaseReason,
    SlotState,
)

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TTL = timedelta(minutes=5)
DEFAULT_RETENTION = timedelta(hours=1)

REJECTION_MESSAGES: dict[RejectionReason, str] = {
    RejectionReason.UNKNOWN_SLOT: "The requested time slot does not exist.",
    RejectionReason.SLOT_IN_PAST: "The requested time slot has already started.",
}


def utcnow() -> datetime:
    """Return the current UTC time."""
    return datetime.now(UTC)


class TransitionJournal(Protocol):
    """Receives every accepted transition. Must not block."""

    def record(
        self,
        appointment: Appointment,
        previous: SlotState,
        current: SlotState,
        reason: ReleaseReason | None = None,
    ) -> None: ...


class ReservationManager:
    """Coordinates SlotStore, ConflictResolver and EventBroadcaster."""

    def __init__(
        self,
        store: SlotStore,
        broadcaster: EventBroadcaster,
        *,
        resolver: ConflictResolver | None = None,
        lock_ttl: timedelta = DEFAULT_LOCK_TTL,
        retention: timedelta = DEFAULT_RETENTION,
        allow_past_slots: bool = False,
        clock: Callable[[], datetime] = utcnow,
        journal: TransitionJournal | None = None,
    ) -> None:
        if lock_ttl <= timedelta(0):
            raise ValueError("lock_ttl must be positive")
        if retention < timedelta(0):
            raise ValueError("retention must not be negative")
        self.store = store
        self.broadcaster = broadcaster
        self.resolver = resolver or ConflictResolver()
        self.lock_ttl = lock_ttl
        self.retention = retention
        self.allow_past_slots = allow_past_slots
        self.clock = clock
        self.journal = journal
        self._appointments: dict[str, Appointment] = {}
        self._locked_by_user: dict[str, str] = {}
        self._confirmed_by_user: dict[tuple[str, str, date], str] = {}
        self._user_guard = KeyedLock()

    # --- Queries ---

    def get_appointment(self, appointment_id: str) -> Appointment | None:
        """Return an appointment record by id."""
        return self._appointments.get(appointment_id)

    def locked_appointment_for(self, user_id: str) -> Appointment | None:
        """Return the user's LOCKED appointment, if any."""
        appointment_id = self._locked_by_user.get(user_id)
        return self._appointments.get(appointment_id) if appointment_id else None

    def locked_appointments(self) -> list[Appointment]:
        """Return every LOCKED appointment."""
        return [self._appointments[a] for a in self._locked_by_user.values()]

    def appointments_for(
        self,
        user_id: str,
        *,
        status: AppointmentStatus | None = None,
        page: int = 1,
        page_size: int = 10,
        ascending: bool = True,
    ) -> AppointmentPage:
        """List a user's appointments, ordered by slot start.

        Only records still held in memory are listed: live locks,
        upcoming confirmations and recently finished leases.

        Args:
            user_id: User whose appointments to list.
            status: Optional status filter.
            page: 1-based page number.
            page_size: Items per page.
            ascending: Earliest slot first when True.

        Returns:
            AppointmentPage with the requested slice and the total count.
        """
        if page < 1 or page_size < 1:
            raise ValueError("page and page_size must be positive")
        matches = sorted(
            (
                a for a in self._appointments.values()
                if a.user_id == user_id and (status is None or a.status is status)
            ),
            key=lambda a: a.slot_key.starts_at,
            reverse=not ascending,
        )
        start = (page - 1) * page_size
        return AppointmentPage(
            items=matches[start:start + page_size],
            page=page,
            page_size=page_size,
            total_count=len(matches),
        )

    def available_time_slots(
        self,
        staff_id: str,
        day: date,
        requestor: Requestor | None = None,
    ) -> AvailableTimeSlots:
        """Render the grid from one requester's point of view.

        Args:
            staff_id: Staff member whose calendar to render.
            day: Calendar date.
            requestor: Viewer; marks slots they hold themselves.

        Returns:
            AvailableTimeSlots with per-slot flags and the viewer's lock.
        """
        own = self.locked_appointment_for(requestor.user_id) if requestor else None
        if own is not None and (own.staff_id != staff_id or own.date != day):
            own = None
        views = [
            TimeSlotView(
                time_slot=slot.time_range,
                is_available=slot.state is SlotState.AVAILABLE,
                is_locked=slot.state is SlotState.LOCKED,
                locked_by_current_user=(
                    own is not None and slot.appointment_id == own.appointment_id
                ),
            )
            for slot in self.store.get(staff_id, day)
        ]
        return AvailableTimeSlots(
            staff_id=staff_id,
            date=day,
            available_slots=views,
            user_selected_slot=own.time_range if own else None,
            locked_appointment_id=own.appointment_id if own else None,
            locked_until=own.locked_until if own else None,
        )

    def available_slot_count(self, staff_id: str, day: date) -> int:
        """Count AVAILABLE grid entries for a staff member and date."""
        return sum(
            1 for s in self.store.get(staff_id, day) if s.state is SlotState.AVAILABLE
        )

    def snapshot(self, staff_id: str, day: date) -> GridSnapshotEvent:
        """Build a full-grid snapshot event for reconciliation."""
        return GridSnapshotEvent(
            staff_id=staff_id, date=day, slots=self.store.get(staff_id, day),
        )

    # --- Validate ---

    def validate(self, request: ReservationRequest) -> ValidationResult:
        """Read-only pre-flight check of a reservation request.

        A passing validation does not guarantee reserve will succeed.

        Args:
            request: The reservation request.

        Returns:
            ValidationResult with a typed rejection or conflict.
        """
        key = request.slot_key
        rejection = self._reject_reason(key)
        if rejection is not None:
            return ValidationResult(
                ok=False,
                error_kind=ErrorKind.VALIDATION_REJECTED,
                reason=rejection,
                message=REJECTION_MESSAGES[rejection],
            )
        conflict = self._classify(request.requestor, key, self.store.get_slot(key))
        if conflict is not None:
            return ValidationResult(
                ok=False,
                error_kind=ErrorKind.CONFLICT,
                conflict=conflict,
                message=conflict.message,
            )
        return ValidationResult(ok=True, message="Slot can be reserved.")

    # --- Reserve ---

    async def reserve(self, request: ReservationRequest) -> ReserveResult:
        """Lock a slot for the requester.

        Never retries. On a conflict the result names the category so
        the caller can decide what to do.

        Args:
            request: The reservation request.

        Returns:
            ReserveResult with the new lock, a rejection, or a conflict.
        """
        key = request.slot_key
        rejection = self._reject_reason(key)
        if rejection is not None:
            return ReserveResult(
                locked=False,
                error_kind=ErrorKind.VALIDATION_REJECTED,
                reason=rejection,
                message=REJECTION_MESSAGES[rejection],
            )

        requestor = request.requestor
        async with self._user_guard.hold(requestor.user_id):
            await self._reclaim_if_expired(self.locked_appointment_for(requestor.user_id))
            slot = self.store.get_slot(key)
            if slot.state is SlotState.LOCKED:
                await self._reclaim_if_expired(self._appointments.get(slot.appointment_id))
                slot = self.store.get_slot(key)

            own = self.locked_appointment_for(requestor.user_id)
            if (
                own is not None
                and own.appointment_id == slot.appointment_id
                and own.session_id == requestor.session_id
            ):
                return _locked_result(own, "You are already holding this slot.")

            conflict = self._classify(requestor, key, slot)
            if conflict is not None:
                return _conflict_result(conflict)

            now = self.clock()
            appointment = Appointment(
                user_id=requestor.user_id,
                session_id=requestor.session_id,
                staff_id=key.staff_id,
                date=key.date,
                time_range=str(key.time_range),
                status=AppointmentStatus.LOCKED,
                locked_until=now + self.lock_ttl,
                created_at=now,
                updated_at=now,
            )
            outcome = await self.store.try_transition(
                key, SlotState.AVAILABLE, SlotState.LOCKED, appointment,
            )
            if isinstance(outcome, Conflict):
                conflict = self._classify(requestor, key, outcome.current) or (
                    self.resolver.detail(ConflictCategory.FOREIGN_LOCK, outcome.current)
                )
                return _conflict_result(conflict)

            self._appointments[appointment.appointment_id] = appointment
            self._locked_by_user[appointment.user_id] = appointment.appointment_id

        event = SlotLocked(
            slot=outcome,
            occurred_at=now,
            appointment_id=appointment.appointment_id,
            locked_until=appointment.locked_until,
        )
        self._emit(appointment, event)
        self._journal(appointment, SlotState.AVAILABLE, SlotState.LOCKED)
        logger.info(
            "slot_locked",
            extra={
                "appointment_id": appointment.appointment_id,
                "slot": str(key),
                "user_id": appointment.user_id,
            },
        )
        return _locked_result(appointment, "Slot locked.")

    async def reserve_resolving(
        self,
        request: ReservationRequest,
        decide: DecideFn | None = None,
    ) -> ReserveResult:
        """Reserve with the bounded release-and-retry conflict path.

        Args:
            request: The reservation request.
            decide: Optional user decision callback for resolvable
                conflicts; defaults to request.replace_existing.

        Returns:
            ReserveResult from the resolver.
        """
        return await self.resolver.resolve(
            request,
            reserve=self.reserve,
            release_prior=self.release_own_prior_lock,
            decide=decide,
        )

    # --- Cancel / release ---

    async def cancel(self, appointment_id: str, requestor: Requestor) -> CancelResult:
        """Cancel the requestor's locked appointment.

        Cancelling an appointment that is already cancelled or
        confirmed is a no-op success.

        Args:
            appointment_id: Appointment to cancel.
            requestor: Must match the appointment's user and session.

        Returns:
            CancelResult (RELEASED, NOOP, NOT_FOUND or FORBIDDEN).
        """
        appointment = self._appointments.get(appointment_id)
        if appointment is None:
            return CancelResult(outcome=CancelOutcome.NOT_FOUND, appointment_id=appointment_id)
        if not appointment.is_owned_by(requestor):
            logger.warning(
                "cancel_forbidden",
                extra={"appointment_id": appointment_id, "user_id": requestor.user_id},
            )
            return CancelResult(outcome=CancelOutcome.FORBIDDEN, appointment_id=appointment_id)
        if appointment.is_terminal:
            return CancelResult(outcome=CancelOutcome.NOOP, appointment_id=appointment_id)

        released = await self._release(appointment, ReleaseReason.USER)
        outcome = CancelOutcome.RELEASED if released else CancelOutcome.NOOP
        return CancelResult(outcome=outcome, appointment_id=appointment_id)

    async def release_own_prior_lock(
        self,
        user_id: str,
        session_id: str,
    ) -> Appointment | None:
        """Release the user's LOCKED appointment wherever it is.

        Args:
            user_id: User whose prior lock to release.
            session_id: Session asking for the release.

        Returns:
            The released appointment, or None if there was nothing to release.
        """
        async with self._user_guard.hold(user_id):
            appointment = self.locked_appointment_for(user_id)
            if appointment is None:
                return None
            released = await self._release(appointment, ReleaseReason.SUPERSEDED)
        if not released:
            return None
        logger.info(
            "prior_lock_released",
            extra={
                "appointment_id": appointment.appointment_id,
                "user_id": user_id,
                "requesting_session_id": session_id,
            },
        )
        return appointment

    async def expire(self, appointment_id: str) -> bool:
        """Release a lapsed lease with reason EXPIRED.

        Safe to call concurrently from several reapers: only one
        CAS can succeed, the others are no-ops.

        Args:
            appointment_id: Appointment whose lease to expire.

        Returns:
            True if this call released the slot.
        """
        appointment = self._appointments.get(appointment_id)
        if appointment is None or appointment.is_terminal:
            return False
        if appointment.locked_until is None or self.clock() < appointment.locked_until:
            return False
        return await self._release(appointment, ReleaseReason.EXPIRED)

    # --- Confirm ---

    async def confirm(self, appointment_id: str, requestor: Requestor) -> ConfirmResult:
        """Confirm a locked appointment before its lease runs out.

        An expired lease is reported as EXPIRED and left for the reaper.

        Args:
            appointment_id: Appointment to confirm.
            requestor: Must match the appointment's user and session.

        Returns:
            ConfirmResult with the outcome.
        """
        appointment = self._appointments.get(appointment_id)
        if appointment is None:
            return ConfirmResult(outcome=ConfirmOutcome.NOT_FOUND, appointment_id=appointment_id)
        if not appointment.is_owned_by(requestor):
            logger.warning(
                "confirm_forbidden",
                extra={"appointment_id": appointment_id, "user_id": requestor.user_id},
            )
            return ConfirmResult(outcome=ConfirmOutcome.FORBIDDEN, appointment_id=appointment_id)
        if appointment.is_terminal:
            return _terminal_confirm_result(appointment)

        now = self.clock()
        lease_end = appointment.locked_until
        if lease_end is None or now >= lease_end:
            logger.info("confirm_after_expiry", extra={"appointment_id": appointment_id})
            return ConfirmResult(outcome=ConfirmOutcome.EXPIRED, appointment_id=appointment_id)

        def lease_open() -> bool:
            nonlocal now
            now = self.clock()
            return now < lease_end

        outcome = await self.store.try_transition(
            appointment.slot_key,
            SlotState.LOCKED,
            SlotState.CONFIRMED,
            appointment,
            expected_appointment_id=appointment.appointment_id,
            precondition=lease_open,
        )
        if isinstance(outcome, Conflict):
            if not appointment.is_terminal and now >= lease_end:
                logger.info("confirm_after_expiry", extra={"appointment_id": appointment_id})
                return ConfirmResult(outcome=ConfirmOutcome.EXPIRED, appointment_id=appointment_id)
            return _terminal_confirm_result(appointment)

        appointment.status = AppointmentStatus.CONFIRMED
        appointment.locked_until = None
        appointment.confirmed_at = now
        appointment.updated_at = now
        self._drop_user_lock(appointment)
        self._confirmed_by_user[_confirmed_index(appointment)] = appointment.appointment_id

        self._emit(
            appointment,
            SlotConfirmed(slot=outcome, occurred_at=now, appointment_id=appointment_id),
        )
        self._journal(appointment, SlotState.LOCKED, SlotState.CONFIRMED)
        logger.info("slot_confirmed", extra={"appointment_id": appointment_id})
        return ConfirmResult(
            outcome=ConfirmOutcome.CONFIRMED,
            appointment_id=appointment_id,
            confirmed_at=now,
        )

    # --- Retention ---

    async def prune(self) -> int:
        """Forget finished appointments that are no longer needed.

        Cancelled and expired records are kept for `retention` after
        they end so repeated cancel and confirm calls still resolve.
        Confirmed records, their index entries and their slots are
        dropped once their date has passed.

        Returns:
            Number of appointment records dropped.
        """
        now = self.clock()
        cutoff = now - self.retention
        today = now.date()
        stale = [
            a for a in self._appointments.values()
            if (a.status is AppointmentStatus.CANCELLED and a.updated_at <= cutoff)
            or (a.status is AppointmentStatus.CONFIRMED and a.date < today)
        ]
        for appointment in stale:
            del self._appointments[appointment.appointment_id]
            index = _confirmed_index(appointment)
            if self._confirmed_by_user.get(index) == appointment.appointment_id:
                del self._confirmed_by_user[index]
        await self.store.forget_before(today)
        if stale:
            logger.info("appointments_pruned", extra={"count": len(stale)})
        return len(stale)

    # --- Restore ---

    async def restore(self, appointments: Iterable[Appointment]) -> int:
        """Replay persisted appointments into an empty store.

        LOCKED appointments whose lease already ran out are recorded as
        expired instead of being re-locked.

        Args:
            appointments: Non-terminal and confirmed appointments.

        Returns:
            Number of slots re-occupied.
        """
        restored = 0
        now = self.clock()
        for appointment in appointments:
            if appointment.status is AppointmentStatus.CANCELLED:
                continue
            if appointment.status is AppointmentStatus.CONFIRMED:
                target = SlotState.CONFIRMED
            elif appointment.locked_until is None or appointment.locked_until <= now:
                self._mark_cancelled(appointment, ReleaseReason.EXPIRED, now)
                self._appointments[appointment.appointment_id] = appointment
                self._journal(appointment, SlotState.LOCKED, SlotState.AVAILABLE, ReleaseReason.EXPIRED)
                continue
            elif appointment.user_id in self._locked_by_user:
                logger.warning(
                    "restore_skipped_second_lock",
                    extra={"appointment_id": appointment.appointment_id},
                )
                continue
            else:
                target = SlotState.LOCKED

            outcome = await self.store.try_transition(
                appointment.slot_key, SlotState.AVAILABLE, target, appointment,
            )
            if isinstance(outcome, Conflict):
                logger.warning(
                    "restore_slot_conflict",
                    extra={"appointment_id": appointment.appointment_id},
                )
                continue
            self._appointments[appointment.appointment_id] = appointment
            if target is SlotState.LOCKED:
                self._locked_by_user[appointment.user_id] = appointment.appointment_id
            else:
                self._confirmed_by_user[_confirmed_index(appointment)] = appointment.appointment_id
            restored += 1
        logger.info("appointments_restored", extra={"count": restored})
        return restored

    # --- Internals ---

    def _reject_reason(self, key: SlotKey) -> RejectionReason | None:
        if not self.store.grid.contains(key.time_range):
            return RejectionReason.UNKNOWN_SLOT
        if not self.allow_past_slots and key.starts_at <= self.clock():
            return RejectionReason.SLOT_IN_PAST
        return None

    def _classify(
        self,
        requestor: Requestor,
        key: SlotKey,
        slot: Slot,
    ) -> ConflictDetail | None:
        confirmed_id = self._confirmed_by_user.get(
            (requestor.user_id, key.staff_id, key.date),
        )
        return self.resolver.classify(
            requestor,
            slot,
            slot_appointment=(
                self._appointments.get(slot.appointment_id) if slot.appointment_id else None
            ),
            own_lock=self.locked_appointment_for(requestor.user_id),
            own_confirmed=self._appointments.get(confirmed_id) if confirmed_id else None,
        )

    async def _reclaim_if_expired(self, appointment: Appointment | None) -> None:
        """Expire a lapsed lease the reaper has not reached yet."""
        if appointment is not None and not appointment.is_terminal:
            await self.expire(appointment.appointment_id)

    async def _release(self, appointment: Appointment, reason: ReleaseReason) -> bool:
        """LOCKED -> AVAILABLE via CAS. False if another caller got there first."""
        outcome = await self.store.try_transition(
            appointment.slot_key,
            SlotState.LOCKED,
            SlotState.AVAILABLE,
            appointment,
            expected_appointment_id=appointment.appointment_id,
        )
        if isinstance(outcome, Conflict):
            logger.debug(
                "release_lost_race",
                extra={"appointment_id": appointment.appointment_id, "reason": reason.value},
            )
            return False

        now = self.clock()
        self._mark_cancelled(appointment, reason, now)

        released = SlotReleased(
            slot=outcome,
            occurred_at=now,
            appointment_id=appointment.appointment_id,
            reason=reason,
        )
        self.broadcaster.publish(appointment.staff_id, released)
        self.broadcaster.publish_user(
            appointment.user_id,
            PreviousSlotReleased(
                slot=outcome,
                occurred_at=now,
                appointment_id=appointment.appointment_id,
                session_id=appointment.session_id,
                reason=reason,
            ),
        )
        self._journal(appointment, SlotState.LOCKED, SlotState.AVAILABLE, reason)
        logger.info(
            "slot_released",
            extra={"appointment_id": appointment.appointment_id, "reason": reason.value},
        )
        return True

    def _mark_cancelled(
        self,
        appointment: Appointment,
        reason: ReleaseReason,
        now: datetime,
    ) -> None:
        appointment.status = AppointmentStatus.CANCELLED
        appointment.locked_until = None
        appointment.cancelled_at = now
        appointment.updated_at = now
        appointment.release_reason = reason
        self._drop_user_lock(appointment)

    def _drop_user_lock(self, appointment: Appointment) -> None:
        if self._locked_by_user.get(appointment.user_id) == appointment.appointment_id:
            del self._locked_by_user[appointment.user_id]

    def _emit(self, appointment: Appointment, event: SlotLocked | SlotConfirmed) -> None:
        self.broadcaster.publish(appointment.staff_id, event)
        self.broadcaster.publish_user(appointment.user_id, event)

    def _journal(
        self,
        appointment: Appointment,
        previous: SlotState,
        current: SlotState,
        reason: ReleaseReason | None = None,
    ) -> None:
        if self.journal is not None:
            self.journal.record(appointment.model_copy(), previous, current, reason)


def _confirmed_index(appointment: Appointment) -> tuple[str, str, date]:
    return (appointment.user_id, appointment.staff_id, appointment.date)


def _locked_result(appointment: Appointment, message: str) -> ReserveResult:
    return ReserveResult(
        locked=True,
        appointment_id=appointment.appointment_id,
        locked_until=appointment.locked_until,
        message=message,
    )


def _conflict_result(conflict: ConflictDetail) -> ReserveResult:
    return ReserveResult(
        locked=False,
        error_kind=ErrorKind.CONFLICT,
        conflict=conflict,
        message=conflict.message,
    )


def _terminal_confirm_result(appointment: Appointment) -> ConfirmResult:
    """Map a finished appointment to the confirm outcome it implies."""
    if appointment.status is AppointmentStatus.CONFIRMED:
        outcome = ConfirmOutcome.CONFIRMED
    elif appointment.release_reason is ReleaseReason.EXPIRED:
        outcome = ConfirmOutcome.EXPIRED
    else:
        outcome = ConfirmOutcome.CANCELLED
    return ConfirmResult(
        outcome=outcome,
        appointment_id=appointment.appointment_id,
        confirmed_at=appointment.confirmed_at,
    )
