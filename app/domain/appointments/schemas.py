"""Appointment domain schemas - Pydantic models for validation"""

from datetime import date, datetime, time
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from ...shared.validators import is_uuid, normalize_email, validate_https_url


class AppointmentCreate(BaseModel):
    """Schema for holding a slot while the user pays"""

    professional_id: int
    appointment_date: date
    start_time: time
    end_time: time
    rescheduled_from_id: Optional[str] = None  # Set when replacing an appointment

    # Intake form
    contact_email: Optional[str] = None
    consultation_goal: Optional[str] = None
    injury_condition: Optional[str] = None
    available_equipment: List[str] = []
    additional_comments: Optional[str] = None

    @field_validator("contact_email")
    @classmethod
    def check_email(cls, v: Optional[str]) -> Optional[str]:
        return normalize_email(v)

    @field_validator("rescheduled_from_id")
    @classmethod
    def check_source_id(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not is_uuid(v):
            raise ValueError("rescheduled_from_id must be an appointment ID")
        return v

    @field_validator("end_time")
    @classmethod
    def check_order(cls, v: time, info) -> time:
        start = info.data.get("start_time")
        if start is not None and start >= v:
            raise ValueError("start_time must be before end_time")
        return v


class HoldResponse(BaseModel):
    appointment_id: str
    status: str
    appointment_date: date
    start_time: time
    end_time: time
    price_amount: int
    currency: str
    hold_expires_at: datetime


class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    professional_id: int
    user_id: str
    appointment_date: date
    start_time: time
    end_time: time
    status: str
    payment_status: str
    price_amount: int
    currency: str
    payment_provider: Optional[str] = None
    hold_expires_at: datetime
    confirmed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    rescheduled_from_id: Optional[str] = None
    external_meeting_link: Optional[str] = None
    contact_email: Optional[str] = None
    consultation_goal: Optional[str] = None
    injury_condition: Optional[str] = None
    available_equipment: Optional[List[str]] = None
    additional_comments: Optional[str] = None


class ConfirmationResponse(BaseModel):
    appointment: AppointmentResponse
    duplicate: bool


class MeetingDetailsUpdate(BaseModel):
    """Schema for setting the meeting link by hand"""

    meeting_link: str
    event_id: Optional[str] = None

    @field_validator("meeting_link")
    @classmethod
    def check_link(cls, v: str) -> str:
        return validate_https_url(v)


class ExpiredHoldsResponse(BaseModel):
    expired: int
    appointment_ids: List[str]
