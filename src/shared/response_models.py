"""Pydantic result models returned by the reservation services.

Each model is the typed contract of one service operation. Business
outcomes are always returned, never raised.

All models support dict-style access (result["key"] and "key" in result)
so route handlers and tests can treat them like plain payloads.
"""

from collections.abc import Iterator
from datetime import date, datetime
from typing import Any

from src.shared.domain import Appointment, WireModel
from src.shared.types import (
    CancelOutcome,
    ConfirmOutcome,
    ConflictCategory,
    ErrorKind,
    RejectionReason,
    SlotState,
)


class ServiceResult(WireModel):
    """Base model with dict-compatible access.

    Supports: result["key"], "key" in result, result.get("key"),
    {**result}, and dict(result).
    """

    def __getitem__(self, key: str) -> Any:
        """Support dict-style subscript access.

        Args:
            key: Field name to retrieve.

        Returns:
            Field value.

        Raises:
            AttributeError: If key is not a valid field name.
        """
        return getattr(self, key)

    def __contains__(self, key: str) -> bool:
        """Support 'key in result' membership test.

        Args:
            key: Field name to check.

        Returns:
            True if key is a model field with a non-None value.
        """
        if key not in type(self).model_fields:
            return False
        return getattr(self, key) is not None

    def get(self, key: str, default: Any = None) -> Any:
        """Retrieve a field value by name with an optional default.

        Args:
            key: Field name to look up.
            default: Value to return if key is not a model field.

        Returns:
            Field value if key exists, otherwise default.
        """
        if key in type(self).model_fields:
            return getattr(self, key)
        return default

    def keys(self) -> list[str]:
        """Return all field names for dict unpacking support."""
        return list(type(self).model_fields.keys())

    def __iter__(self) -> Iterator[str]:  # type: ignore[override]
        """Iterate over field names for dict() and {**} unpacking."""
        return iter(type(self).model_fields.keys())


class ConflictDetail(ServiceResult):
    """Classified conflict, as produced by the ConflictResolver.

    existing_appointment_id and appointment_date are only filled for
    resolvable conflicts, where the UI needs them for its prompt.
    """

    category: ConflictCategory
    resolvable: bool
    current_state: SlotState | None = None
    existing_appointment_id: str | None = None
    appointment_date: date | None = None
    message: str = ""


class ValidationResult(ServiceResult):
    """Result of the read-only pre-flight check."""

    ok: bool
    error_kind: ErrorKind | None = None
    reason: RejectionReason | None = None
    conflict: ConflictDetail | None = None
    message: str = ""


class ReserveResult(ServiceResult):
    """Result of a reservation attempt."""

    locked: bool
    appointment_id: str | None = None
    locked_until: datetime | None = None
    error_kind: ErrorKind | None = None
    reason: RejectionReason | None = None
    conflict: ConflictDetail | None = None
    retried: bool = False
    message: str = ""


class CancelResult(ServiceResult):
    """Result of cancelling a locked appointment."""

    outcome: CancelOutcome
    appointment_id: str

    @property
    def succeeded(self) -> bool:
        """RELEASED and NOOP both count as success."""
        return self.outcome in (CancelOutcome.RELEASED, CancelOutcome.NOOP)


class ConfirmResult(ServiceResult):
    """Result of confirming a locked appointment."""

    outcome: ConfirmOutcome
    appointment_id: str
    confirmed_at: datetime | None = None


class SweepResult(ServiceResult):
    """Result of one expiry sweep."""

    scanned: int = 0
    released: int = 0
    appointment_ids: list[str] = []
    pruned: int = 0


class TimeSlotView(WireModel):
    """One grid entry rendered for a specific requester."""

    time_slot: str
    is_available: bool
    is_locked: bool
    locked_by_current_user: bool


class AvailableTimeSlots(WireModel):
    """Grid for a staff member and date, as seen by one requester."""

    staff_id: str
    date: date
    available_slots: list[TimeSlotView]
    user_selected_slot: str | None = None
    locked_appointment_id: str | None = None
    locked_until: datetime | None = None


class AppointmentPage(WireModel):
    """One page of a user's appointments, ordered by slot start."""

    items: list[Appointment] = []
    page: int = 1
    page_size: int = 10
    total_count: int = 0


class ResultEnvelope(WireModel):
    """Response envelope shared by every HTTP endpoint."""

    is_success: bool
    code: int = 200
    message: str = ""
    data: Any = None
