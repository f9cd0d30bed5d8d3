"""ConflictResolver: classify reservation conflicts and run the single retry.

Classification is pure: it looks at the requester, the target slot and
the requester's own appointments and returns the highest-precedence
ConflictCategory that applies. Only SELF_LOCKED_ELSEWHERE is
resolvable: the requester's prior lock is released and the
reservation retried exactly once. A failure after that retry is a
hard rejection.
"""

import logging
from collections.abc import Awaitable, Callable

from src.shared.domain import Appointment, ReservationRequest, Requestor, Slot
from src.shared.response_models import ConflictDetail, ReserveResult
from src.shared.types import (
    CONFLICT_PRECEDENCE,
    RESOLVABLE_CATEGORIES,
    USER_MESSAGES,
    ConflictCategory,
    ErrorKind,
    SlotState,
)

logger = logging.getLogger(__name__)

ReserveFn = Callable[[ReservationRequest], Awaitable[ReserveResult]]
ReleasePriorFn = Callable[[str, str], Awaitable[Appointment | None]]
DecideFn = Callable[[ConflictDetail], Awaitable[bool]]


class ConflictResolver:
    """Classifies conflicts and performs the bounded auto-resolution."""

    def classify(
        self,
        requester: Requestor,
        slot: Slot,
        *,
        slot_appointment: Appointment | None = None,
        own_lock: Appointment | None = None,
        own_confirmed: Appointment | None = None,
    ) -> ConflictDetail | None:
        """Return the highest-precedence conflict for a request, if any.

        Args:
            requester: User and session asking for the slot.
            slot: Current entry of the target slot.
            slot_appointment: Appointment currently referencing the slot.
            own_lock: The requester's LOCKED appointment, if any.
            own_confirmed: The requester's CONFIRMED appointment with the
                same staff member on the same date, if any.

        Returns:
            ConflictDetail, or None when the request is unobstructed.
        """
        owner = slot_appointment.user_id if slot_appointment else None
        applies = {
            ConflictCategory.SELF_LOCKED_ELSEWHERE: (
                own_lock is not None and not _is_same_hold(own_lock, slot, requester)
            ),
            ConflictCategory.SELF_CONFIRMED_OVERLAP: own_confirmed is not None,
            ConflictCategory.FOREIGN_LOCK: (
                slot.state is SlotState.LOCKED and owner != requester.user_id
            ),
            ConflictCategory.FOREIGN_CONFIRMED: (
                slot.state is SlotState.CONFIRMED and owner != requester.user_id
            ),
        }
        for category in CONFLICT_PRECEDENCE:
            if applies[category]:
                return self.detail(category, slot, existing=own_lock)
        return None

    def detail(
        self,
        category: ConflictCategory,
        slot: Slot,
        *,
        existing: Appointment | None = None,
        resolvable: bool | None = None,
    ) -> ConflictDetail:
        """Build the caller-facing description of a conflict.

        Identifiers are only exposed for resolvable conflicts.
        """
        if resolvable is None:
            resolvable = category in RESOLVABLE_CATEGORIES
        return ConflictDetail(
            category=category,
            resolvable=resolvable,
            current_state=slot.state,
            existing_appointment_id=existing.appointment_id if resolvable and existing else None,
            appointment_date=existing.date if resolvable and existing else None,
            message=USER_MESSAGES[category],
        )

    async def resolve(
        self,
        request: ReservationRequest,
        *,
        reserve: ReserveFn,
        release_prior: ReleasePriorFn,
        decide: DecideFn | None = None,
    ) -> ReserveResult:
        """Reserve, and on a resolvable conflict release and retry once.

        Args:
            request: The reservation request.
            reserve: Reservation operation to call.
            release_prior: Releases the requester's prior lock.
            decide: Asks the user whether to release the prior lock.
                Without it, request.replace_existing is the answer.

        Returns:
            The first successful ReserveResult, the unresolved conflict
            when the user declined, or a hard rejection after the retry.
        """
        first = await reserve(request)
        if first.locked or first.conflict is None or not first.conflict.resolvable:
            return first

        accepted = await decide(first.conflict) if decide else request.replace_existing
        if not accepted:
            logger.info(
                "conflict_resolution_declined",
                extra={"user_id": request.user_id},
            )
            return first

        released = await release_prior(request.user_id, request.session_id)
        logger.info(
            "conflict_resolution_retry",
            extra={
                "user_id": request.user_id,
                "released_appointment_id": released.appointment_id if released else None,
            },
        )
        second = await reserve(request)
        if second.locked:
            return second.model_copy(update={"retried": True})

        conflict = second.conflict
        if conflict is not None and conflict.resolvable:
            conflict = conflict.model_copy(
                update={
                    "resolvable": False,
                    "existing_appointment_id": None,
                    "appointment_date": None,
                },
            )
        logger.warning(
            "conflict_resolution_failed",
            extra={
                "user_id": request.user_id,
                "category": conflict.category.value if conflict else None,
            },
        )
        return second.model_copy(
            update={
                "conflict": conflict,
                "error_kind": second.error_kind or ErrorKind.CONFLICT,
                "retried": True,
            },
        )


def _is_same_hold(own_lock: Appointment, slot: Slot, requester: Requestor) -> bool:
    """True if the requester's lock is on this very slot from this session."""
    return (
        slot.appointment_id == own_lock.appointment_id
        and own_lock.session_id == requester.session_id
    )
