"""Appointments router - FastAPI endpoints for holds and the appointment lifecycle"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ...auth import get_current_user_id, require_admin
from ...database import get_db
from ...services.notification_service import NotificationDispatcher, get_notification_dispatcher
from ...shared.clock import Clock, get_clock
from .lifecycle import REASON_ADMIN, REASON_USER
from .schemas import (
    AppointmentCreate,
    AppointmentResponse,
    ConfirmationResponse,
    ExpiredHoldsResponse,
    HoldResponse,
    MeetingDetailsUpdate,
)
from .service import AppointmentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["Appointments"])


def get_appointment_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> AppointmentService:
    """Dependency injection for AppointmentService"""
    return AppointmentService(db, clock=clock, dispatcher=dispatcher)


# ============================================================================
# USER ENDPOINTS
# ============================================================================


@router.post("", response_model=HoldResponse, status_code=201)
async def create_hold(
    body: AppointmentCreate,
    user_id: str = Depends(get_current_user_id),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Hold a slot while the user pays"""
    appointment = service.create_hold(user_id, body)
    return HoldResponse(
        appointment_id=appointment.id,
        status=appointment.status,
        appointment_date=appointment.appointment_date,
        start_time=appointment.start_time,
        end_time=appointment.end_time,
        price_amount=appointment.price_amount,
        currency=appointment.currency,
        hold_expires_at=appointment.hold_expires_at,
    )


@router.get("", response_model=List[AppointmentResponse])
async def list_my_appointments(
    user_id: str = Depends(get_current_user_id),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Appointment history of the current user"""
    return service.list_for_user(user_id)


@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: str,
    user_id: str = Depends(get_current_user_id),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Get one appointment; clients poll this for the meeting link"""
    return service.get_for_user(appointment_id, user_id)


@router.post("/{appointment_id}/cancel", response_model=AppointmentResponse)
async def cancel_appointment(
    appointment_id: str,
    user_id: str = Depends(get_current_user_id),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Cancel an appointment and free its slot"""
    service.get_for_user(appointment_id, user_id)
    return await service.cancel(appointment_id, reason=REASON_USER)


@router.post("/{appointment_id}/reschedule-request", response_model=AppointmentResponse)
async def request_reschedule(
    appointment_id: str,
    user_id: str = Depends(get_current_user_id),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Flag a confirmed appointment for rescheduling"""
    service.get_for_user(appointment_id, user_id)
    return service.request_reschedule(appointment_id)


@router.post("/{appointment_id}/reschedule-confirm", response_model=ConfirmationResponse)
async def confirm_reschedule(
    appointment_id: str,
    user_id: str = Depends(get_current_user_id),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Confirm a replacement hold with the payment of the appointment it replaces"""
    result = await service.transfer_payment(appointment_id, user_id)
    return ConfirmationResponse(
        appointment=AppointmentResponse.model_validate(result.appointment), duplicate=result.duplicate
    )


# ============================================================================
# ADMIN ENDPOINTS
# ============================================================================


def _ensure_ended(service: AppointmentService, appointment_id: str) -> None:
    if not service.has_ended(service.get(appointment_id)):
        raise HTTPException(status_code=409, detail="The session has not ended yet")


@router.post(
    "/{appointment_id}/complete",
    response_model=AppointmentResponse,
    dependencies=[Depends(require_admin)],
)
async def mark_completed(
    appointment_id: str,
    service: AppointmentService = Depends(get_appointment_service),
):
    """Mark a past session as completed"""
    _ensure_ended(service, appointment_id)
    return service.mark_completed(appointment_id)


@router.post(
    "/{appointment_id}/missed",
    response_model=AppointmentResponse,
    dependencies=[Depends(require_admin)],
)
async def mark_missed(
    appointment_id: str,
    service: AppointmentService = Depends(get_appointment_service),
):
    """Mark a past session as missed"""
    _ensure_ended(service, appointment_id)
    return service.mark_missed(appointment_id)


@router.put(
    "/{appointment_id}/meeting",
    response_model=AppointmentResponse,
    dependencies=[Depends(require_admin)],
)
async def set_meeting_details(
    appointment_id: str,
    body: MeetingDetailsUpdate,
    service: AppointmentService = Depends(get_appointment_service),
):
    """Set the meeting link by hand"""
    return service.set_meeting_details(appointment_id, body.meeting_link, body.event_id)


@router.post(
    "/{appointment_id}/admin-cancel",
    response_model=AppointmentResponse,
    dependencies=[Depends(require_admin)],
)
async def admin_cancel(
    appointment_id: str,
    service: AppointmentService = Depends(get_appointment_service),
):
    """Cancel any user's appointment"""
    return await service.cancel(appointment_id, reason=REASON_ADMIN)


@router.delete("/{appointment_id}", dependencies=[Depends(require_admin)])
async def delete_appointment(
    appointment_id: str,
    service: AppointmentService = Depends(get_appointment_service),
):
    """Permanently delete an appointment"""
    service.delete(appointment_id)
    return {"message": "Appointment deleted"}


@router.post("/expire-holds", response_model=ExpiredHoldsResponse, dependencies=[Depends(require_admin)])
async def expire_holds(service: AppointmentService = Depends(get_appointment_service)):
    """Run the hold-expiry sweep now"""
    expired = service.expire_stale_holds()
    return ExpiredHoldsResponse(expired=len(expired), appointment_ids=expired)
