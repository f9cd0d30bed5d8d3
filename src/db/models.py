"""SQLAlchemy ORM models for the reservation journal database."""

import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, Index, String, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from src.shared.types import AppointmentStatus


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class AppointmentRecord(Base):
    """Durable mirror of an in-memory Appointment.

    The partial unique indexes repeat the two core invariants at the
    database level: one non-cancelled appointment per slot, and one
    locked appointment per user.

    Attributes:
        appointment_id: Primary key (opaque string id).
        status: Appointment lifecycle state.
    """

    __tablename__ = "appointments"

    appointment_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(100), index=True)
    session_id: Mapped[str] = mapped_column(String(100))
    staff_id: Mapped[str] = mapped_column(String(100))
    slot_date: Mapped[date] = mapped_column(Date)
    time_range: Mapped[str] = mapped_column(String(11))
    status: Mapped[str] = mapped_column(String(20), default=AppointmentStatus.LOCKED, index=True)
    locked_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    release_reason: Mapped[str | None] = mapped_column(String(20))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index(
            "uq_appointments_active_slot",
            "staff_id",
            "slot_date",
            "time_range",
            unique=True,
            postgresql_where=text("status <> 'cancelled'"),
        ),
        Index(
            "uq_appointments_locked_user",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'locked'"),
        ),
    )

    transitions: Mapped[list["SlotTransition"]] = relationship(back_populates="appointment")


class SlotTransition(Base):
    """Append-only log of accepted slot transitions.

    Attributes:
        transition_id: Primary key UUID.
        reason: Release reason for LOCKED -> AVAILABLE transitions.
    """

    __tablename__ = "slot_transitions"

    transition_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    appointment_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("appointments.appointment_id"), index=True
    )
    staff_id: Mapped[str] = mapped_column(String(100))
    slot_date: Mapped[date] = mapped_column(Date)
    time_range: Mapped[str] = mapped_column(String(11))
    from_state: Mapped[str] = mapped_column(String(20))
    to_state: Mapped[str] = mapped_column(String(20))
    reason: Mapped[str | None] = mapped_column(String(20))
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index(
            "ix_slot_transitions_slot_occurred",
            "staff_id",
            "slot_date",
            "time_range",
            "occurred_at",
        ),
    )

    appointment: Mapped["AppointmentRecord"] = relationship(back_populates="transitions")
