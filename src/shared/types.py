"""Shared types, enums, and constants used across the application."""

import enum


class SlotState(str, enum.Enum):
    """Canonical state of a single calendar slot."""

    AVAILABLE = "available"
    LOCKED = "locked"
    CONFIRMED = "confirmed"


class AppointmentStatus(str, enum.Enum):
    """Appointment lifecycle state.

    CONFIRMED and CANCELLED are terminal.
    """

    LOCKED = "locked"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class ReleaseReason(str, enum.Enum):
    """Why a locked slot went back to available."""

    USER = "user"
    EXPIRED = "expired"
    SUPERSEDED = "superseded"


class ConflictCategory(str, enum.Enum):
    """Conflict classes, listed in precedence order."""

    SELF_LOCKED_ELSEWHERE = "self_locked_elsewhere"
    SELF_CONFIRMED_OVERLAP = "self_confirmed_overlap"
    FOREIGN_LOCK = "foreign_lock"
    FOREIGN_CONFIRMED = "foreign_confirmed"


CONFLICT_PRECEDENCE: tuple[ConflictCategory, ...] = tuple(ConflictCategory)

RESOLVABLE_CATEGORIES = frozenset({ConflictCategory.SELF_LOCKED_ELSEWHERE})


class ErrorKind(str, enum.Enum):
    """Error taxonomy surfaced to callers."""

    VALIDATION_REJECTED = "validation_rejected"
    CONFLICT = "conflict"
    EXPIRED = "expired"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"


ERROR_HTTP_CODES: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION_REJECTED: 400,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.EXPIRED: 410,
}


class RejectionReason(str, enum.Enum):
    """Business-rule reasons a request can be rejected outright."""

    UNKNOWN_SLOT = "unknown_slot"
    SLOT_IN_PAST = "slot_in_past"


class CancelOutcome(str, enum.Enum):
    """Outcome of a cancel request."""

    RELEASED = "released"
    NOOP = "noop"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"


class ConfirmOutcome(str, enum.Enum):
    """Outcome of a confirm request."""

    CONFIRMED = "confirmed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"


USER_MESSAGES: dict[ConflictCategory, str] = {
    ConflictCategory.SELF_LOCKED_ELSEWHERE: (
        "You are already holding another time slot. "
        "Release it to continue with this one?"
    ),
    ConflictCategory.SELF_CONFIRMED_OVERLAP: (
        "You already have a confirmed appointment with this staff member on that date."
    ),
    ConflictCategory.FOREIGN_LOCK: (
        "This time slot is currently being booked by someone else. Please pick another."
    ),
    ConflictCategory.FOREIGN_CONFIRMED: (
        "This time slot has already been taken. Please pick another."
    ),
}
