"""Journal persistence: append transitions and reload active appointments."""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models import AppointmentRecord, SlotTransition
from src.shared.domain import Appointment
from src.shared.types import AppointmentStatus, ReleaseReason, SlotState


async def append_transition(
    session: AsyncSession,
    *,
    appointment: Appointment,
    previous: SlotState,
    current: SlotState,
    reason: ReleaseReason | None = None,
) -> SlotTransition:
    """Upsert the appointment row and append one transition row.

    Args:
        session: Active database session.
        appointment: Appointment as it stands after the transition.
        previous: Slot state before the transition.
        current: Slot state after the transition.
        reason: Release reason for LOCKED -> AVAILABLE.

    Returns:
        The created SlotTransition.
    """
    await session.merge(to_record(appointment))
    transition = SlotTransition(
        transition_id=uuid.uuid4(),
        appointment_id=appointment.appointment_id,
        staff_id=appointment.staff_id,
        slot_date=appointment.date,
        time_range=appointment.time_range,
        from_state=previous.value,
        to_state=current.value,
        reason=reason.value if reason else None,
        occurred_at=appointment.updated_at,
    )
    session.add(transition)
    await session.flush()
    return transition


async def load_active_appointments(session: AsyncSession) -> list[Appointment]:
    """Return every LOCKED or CONFIRMED appointment, oldest first.

    Args:
        session: Active database session.

    Returns:
        Domain appointments ready for ReservationManager.restore.
    """
    result = await session.execute(
        select(AppointmentRecord)
        .where(
            AppointmentRecord.status.in_([
                AppointmentStatus.LOCKED.value,
                AppointmentStatus.CONFIRMED.value,
            ]),
        )
        .order_by(AppointmentRecord.created_at)
    )
    return [to_domain(row) for row in result.scalars().all()]


def to_record(appointment: Appointment) -> AppointmentRecord:
    """Map a domain appointment to its ORM row."""
    return AppointmentRecord(
        appointment_id=appointment.appointment_id,
        user_id=appointment.user_id,
        session_id=appointment.session_id,
        staff_id=appointment.staff_id,
        slot_date=appointment.date,
        time_range=appointment.time_range,
        status=appointment.status.value,
        locked_until=appointment.locked_until,
        release_reason=appointment.release_reason.value if appointment.release_reason else None,
        created_at=appointment.created_at,
        updated_at=appointment.updated_at,
        confirmed_at=appointment.confirmed_at,
        cancelled_at=appointment.cancelled_at,
    )


def to_domain(row: AppointmentRecord) -> Appointment:
    """Map an ORM row back to a domain appointment."""
    return Appointment(
        appointment_id=row.appointment_id,
        user_id=row.user_id,
        session_id=row.session_id,
        staff_id=row.staff_id,
        date=row.slot_date,
        time_range=row.time_range,
        status=AppointmentStatus(row.status),
        locked_until=row.locked_until,
        release_reason=ReleaseReason(row.release_reason) if row.release_reason else None,
        created_at=row.created_at,
        updated_at=row.updated_at,
        confirmed_at=row.confirmed_at,
        cancelled_at=row.cancelled_at,
    )
