"""Availability domain schemas - Pydantic models for validation"""

from datetime import date, time
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from ...shared.validators import validate_weekday


class AvailabilityRuleInput(BaseModel):
    """Schema for one weekday of the weekly template"""

    day_of_week: int  # 0 = Monday ... 6 = Sunday
    open_time: time
    close_time: time
    slot_duration_minutes: int = 60
    is_active: bool = True

    @field_validator("day_of_week")
    @classmethod
    def check_weekday(cls, v: int) -> int:
        return validate_weekday(v)


class AvailabilityRulesUpdate(BaseModel):
    """Schema for replacing the whole weekly template"""

    rules: List[AvailabilityRuleInput]

    @field_validator("rules")
    @classmethod
    def unique_weekdays(cls, v: List[AvailabilityRuleInput]) -> List[AvailabilityRuleInput]:
        weekdays = [rule.day_of_week for rule in v]
        if len(weekdays) != len(set(weekdays)):
            raise ValueError("Only one rule per day_of_week is allowed")
        return v


class AvailabilityRuleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    professional_id: int
    day_of_week: int
    open_time: time
    close_time: time
    slot_duration_minutes: int
    is_active: bool


class AvailabilityExceptionCreate(BaseModel):
    """Schema for blocking a whole date or part of it"""

    exception_date: date
    all_day: bool = False
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    reason: Optional[str] = None

    @field_validator("reason")
    @classmethod
    def limit_reason(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) > 500:
            raise ValueError("reason must be at most 500 characters")
        return v


class AvailabilityExceptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    professional_id: int
    exception_date: date
    all_day: bool
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    reason: Optional[str] = None


class SlotResponse(BaseModel):
    start_time: time
    end_time: time


class SlotsResponse(BaseModel):
    professional_id: int
    date: date
    timezone: str
    slots: List[SlotResponse]
