"""REST endpoints for the appointment slot reservation flow.

Client flow: validate -> (release prior lock) -> reserve -> confirm,
or cancel-lock to abandon. Every endpoint answers with the shared
envelope {isSuccess, code, message, data} and uses `code` as the HTTP
status. Authentication is handled upstream; the requesting user and
session arrive in the request.
"""

import logging
from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from src.services.container import ReservationCore
from src.shared.domain import Requestor, ReservationRequest
from src.shared.response_models import ConflictDetail, ResultEnvelope
from src.shared.types import (
    ERROR_HTTP_CODES,
    AppointmentStatus,
    CancelOutcome,
    ConfirmOutcome,
    ErrorKind,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/appointments", tags=["appointments"])


# --- Request Models ---


class CancelLockRequest(Requestor):
    """Request body for cancelling a locked appointment.

    Attributes:
        appointment_id: Appointment to cancel.
    """

    appointment_id: str


# --- Dependencies & helpers ---


def get_core(request: Request) -> ReservationCore:
    """Return the ReservationCore attached to the running app."""
    return request.app.state.core


def _respond(
    *,
    code: int = 200,
    message: str = "",
    data: Any = None,
) -> JSONResponse:
    """Wrap a payload in the response envelope.

    Args:
        code: Envelope code, also used as HTTP status.
        message: Human-readable message.
        data: Payload (pydantic models are serialized camelCase).

    Returns:
        JSONResponse carrying the envelope.
    """
    envelope = ResultEnvelope(is_success=code < 400, code=code, message=message, data=data)
    return JSONResponse(
        status_code=code,
        content=envelope.model_dump(mode="json", by_alias=True),
    )


def _error(kind: ErrorKind, message: str, data: Any = None) -> JSONResponse:
    return _respond(code=ERROR_HTTP_CODES[kind], message=message, data=data)


def _conflict_data(conflict: ConflictDetail | None) -> dict[str, Any] | None:
    if conflict is None:
        return None
    return conflict.model_dump(mode="json", by_alias=True, exclude_none=True)


# --- Grid Endpoints ---


@router.get("/available-time-slots/{staff_id}/{day}")
async def available_time_slots(
    staff_id: str,
    day: date,
    user_id: str | None = Query(default=None, alias="userId"),
    session_id: str | None = Query(default=None, alias="sessionId"),
    core: ReservationCore = Depends(get_core),
) -> JSONResponse:
    """Return the slot grid for a staff member and date.

    Args:
        staff_id: Staff member identifier.
        day: Calendar date (YYYY-MM-DD).
        user_id: Optional viewer, to flag their own lock.
        session_id: Optional viewer session.
        core: Injected reservation core.

    Returns:
        Envelope with AvailableTimeSlots.
    """
    requestor = None
    if user_id:
        requestor = Requestor(user_id=user_id, session_id=session_id or "-")
    view = core.manager.available_time_slots(staff_id, day, requestor)
    return _respond(message="Time slots retrieved.", data=view)


@router.get("/available-slot-count/{staff_id}/{day}")
async def available_slot_count(
    staff_id: str,
    day: date,
    core: ReservationCore = Depends(get_core),
) -> JSONResponse:
    """Return how many slots are still available.

    Args:
        staff_id: Staff member identifier.
        day: Calendar date (YYYY-MM-DD).
        core: Injected reservation core.

    Returns:
        Envelope with the integer count.
    """
    count = core.manager.available_slot_count(staff_id, day)
    return _respond(message="Slot count retrieved.", data=count)


# --- Reservation Lifecycle ---


@router.post("/validate-appointment")
async def validate_appointment(
    body: ReservationRequest,
    core: ReservationCore = Depends(get_core),
) -> JSONResponse:
    """Pre-flight check; reserve remains authoritative.

    Args:
        body: Reservation request.
        core: Injected reservation core.

    Returns:
        Envelope: 200 when the slot can be reserved, 400 or 409 otherwise.
    """
    result = core.manager.validate(body)
    if result.ok:
        return _respond(message=result.message)
    return _error(result.error_kind, result.message, _conflict_data(result.conflict))


@router.post("/reserve")
async def reserve(
    body: ReservationRequest,
    core: ReservationCore = Depends(get_core),
) -> JSONResponse:
    """Lock a slot for the requester.

    With replaceExisting=true the requester's prior lock is released
    and the reservation retried once.

    Args:
        body: Reservation request.
        core: Injected reservation core.

    Returns:
        Envelope with appointmentId and lockedUntil, or the conflict.
    """
    result = await core.manager.reserve_resolving(body)
    if result.locked:
        return _respond(
            message=result.message,
            data={
                "appointmentId": result.appointment_id,
                "lockedUntil": result.locked_until.isoformat() if result.locked_until else None,
                "retried": result.retried,
            },
        )
    return _error(result.error_kind, result.message, _conflict_data(result.conflict))


@router.post("/cancel-lock")
async def cancel_lock(
    body: CancelLockRequest,
    core: ReservationCore = Depends(get_core),
) -> JSONResponse:
    """Cancel a locked appointment. Repeated calls succeed as no-ops.

    Args:
        body: Appointment id plus requesting user and session.
        core: Injected reservation core.

    Returns:
        Envelope with the cancel outcome.
    """
    result = await core.manager.cancel(body.appointment_id, body)
    data = {"appointmentId": result.appointment_id, "outcome": result.outcome.value}
    if result.outcome is CancelOutcome.RELEASED:
        return _respond(message="Lock released.", data=data)
    if result.outcome is CancelOutcome.NOOP:
        return _respond(message="Appointment is no longer locked.", data=data)
    if result.outcome is CancelOutcome.FORBIDDEN:
        return _error(ErrorKind.FORBIDDEN, "Appointment belongs to another session.")
    return _error(ErrorKind.NOT_FOUND, "Appointment not found.")


@router.post("/release-prior-lock")
async def release_prior_lock(
    body: Requestor,
    core: ReservationCore = Depends(get_core),
) -> JSONResponse:
    """Release whatever slot the user currently holds.

    Args:
        body: Requesting user and session.
        core: Injected reservation core.

    Returns:
        Envelope with the released appointment id, if any.
    """
    released = await core.manager.release_own_prior_lock(body.user_id, body.session_id)
    if released is None:
        return _respond(message="No locked appointment to release.")
    return _respond(
        message="Previous lock released.",
        data={
            "appointmentId": released.appointment_id,
            "appointmentDate": released.date.isoformat(),
        },
    )


@router.post("/cleanup-expired")
async def cleanup_expired(
    core: ReservationCore = Depends(get_core),
) -> JSONResponse:
    """Run one expiry sweep now.

    Args:
        core: Injected reservation core.

    Returns:
        Envelope with the SweepResult.
    """
    result = await core.reaper.sweep()
    return _respond(message=f"Released {result.released} expired lock(s).", data=result)


@router.post("/{appointment_id}/confirm")
async def confirm(
    appointment_id: str,
    body: Requestor,
    core: ReservationCore = Depends(get_core),
) -> JSONResponse:
    """Confirm a locked appointment before its lease expires.

    Args:
        appointment_id: Appointment to confirm.
        body: Requesting user and session.
        core: Injected reservation core.

    Returns:
        Envelope with the confirmed appointment, or 403/404/410.
    """
    result = await core.manager.confirm(appointment_id, body)
    if result.outcome is ConfirmOutcome.CONFIRMED:
        return _respond(
            message="Appointment confirmed.",
            data=core.manager.get_appointment(appointment_id),
        )
    if result.outcome is ConfirmOutcome.EXPIRED:
        return _error(ErrorKind.EXPIRED, "The hold on this slot has expired. Please reserve again.")
    if result.outcome is ConfirmOutcome.CANCELLED:
        return _error(ErrorKind.EXPIRED, "This reservation was cancelled. Please reserve again.")
    if result.outcome is ConfirmOutcome.FORBIDDEN:
        return _error(ErrorKind.FORBIDDEN, "Appointment belongs to another session.")
    return _error(ErrorKind.NOT_FOUND, "Appointment not found.")


@router.get("/user/{user_id}")
async def appointments_for_user(
    user_id: str,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=10, ge=1, le=100, alias="pageSize"),
    status: AppointmentStatus | None = None,
    ascending: bool = True,
    core: ReservationCore = Depends(get_core),
) -> JSONResponse:
    """List the user's appointments, earliest slot first by default.

    Args:
        user_id: User whose appointments to list.
        page: 1-based page number.
        page_size: Items per page.
        status: Optional status filter (locked, confirmed, cancelled).
        ascending: Sort direction by slot start.
        core: Injected reservation core.

    Returns:
        Envelope with an AppointmentPage.
    """
    result = core.manager.appointments_for(
        user_id,
        status=status,
        page=page,
        page_size=page_size,
        ascending=ascending,
    )
    return _respond(message="Appointments retrieved.", data=result)


@router.get("/{appointment_id}")
async def get_appointment(
    appointment_id: str,
    user_id: str = Query(alias="userId"),
    core: ReservationCore = Depends(get_core),
) -> JSONResponse:
    """Return one appointment to the user who made it.

    Args:
        appointment_id: Appointment identifier.
        user_id: Requesting user.
        core: Injected reservation core.

    Returns:
        Envelope with the appointment, or 403/404.
    """
    appointment = core.manager.get_appointment(appointment_id)
    if appointment is None:
        return _error(ErrorKind.NOT_FOUND, "Appointment not found.")
    if appointment.user_id != user_id:
        return _error(ErrorKind.FORBIDDEN, "Appointment belongs to another user.")
    return _respond(message="Appointment retrieved.", data=appointment)
