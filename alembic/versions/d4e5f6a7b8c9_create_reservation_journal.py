"""create_reservation_journal

Revision ID: d4e5f6a7b8c9
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "d4e5f6a7b8c9"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create appointments and slot_transitions tables."""
    op.create_table(
        "appointments",
        sa.Column("appointment_id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(100), nullable=False),
        sa.Column("session_id", sa.String(100), nullable=False),
        sa.Column("staff_id", sa.String(100), nullable=False),
        sa.Column("slot_date", sa.Date(), nullable=False),
        sa.Column("time_range", sa.String(11), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("locked_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("release_reason", sa.String(20), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_appointments_user_id", "appointments", ["user_id"])
    op.create_index("ix_appointments_status", "appointments", ["status"])
    op.create_index(
        "uq_appointments_active_slot",
        "appointments",
        ["staff_id", "slot_date", "time_range"],
        unique=True,
        postgresql_where=sa.text("status <> 'cancelled'"),
    )
    op.create_index(
        "uq_appointments_locked_user",
        "appointments",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("status = 'locked'"),
    )

    op.create_table(
        "slot_transitions",
        sa.Column("transition_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "appointment_id",
            sa.String(36),
            sa.ForeignKey("appointments.appointment_id"),
            nullable=False,
        ),
        sa.Column("staff_id", sa.String(100), nullable=False),
        sa.Column("slot_date", sa.Date(), nullable=False),
        sa.Column("time_range", sa.String(11), nullable=False),
        sa.Column("from_state", sa.String(20), nullable=False),
        sa.Column("to_state", sa.String(20), nullable=False),
        sa.Column("reason", sa.String(20), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_slot_transitions_appointment_id", "slot_transitions", ["appointment_id"]
    )
    op.create_index(
        "ix_slot_transitions_slot_occurred",
        "slot_transitions",
        ["staff_id", "slot_date", "time_range", "occurred_at"],
    )


def downgrade() -> None:
    """Drop slot_transitions and appointments tables."""
    op.drop_index("ix_slot_transitions_slot_occurred", table_name="slot_transitions")
    op.drop_index("ix_slot_transitions_appointment_id", table_name="slot_transitions")
    op.drop_table("slot_transitions")
    op.drop_index("uq_appointments_locked_user", table_name="appointments")
    op.drop_index("uq_appointments_active_slot", table_name="appointments")
    op.drop_index("ix_appointments_status", table_name="appointments")
    op.drop_index("ix_appointments_user_id", table_name="appointments")
    op.drop_table("appointments")
