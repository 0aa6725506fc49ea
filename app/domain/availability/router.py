"""Availability router - FastAPI endpoints for slots and schedule administration"""

import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ...auth import require_admin
from ...config import SERVICE_TIMEZONE
from ...database import get_db
from ...services.google_calendar_service import BusyCalendar, GoogleCalendarBusyAdapter
from ...shared.clock import Clock, get_clock
from .schemas import (
    AvailabilityExceptionCreate,
    AvailabilityExceptionResponse,
    AvailabilityRuleResponse,
    AvailabilityRulesUpdate,
    SlotResponse,
    SlotsResponse,
)
from .service import AvailabilityService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Availability"])


def get_busy_calendar(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)) -> BusyCalendar:
    """Dependency injection for the external busy-time source"""
    return GoogleCalendarBusyAdapter(db, clock=clock)


def get_availability_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    calendar: BusyCalendar = Depends(get_busy_calendar),
) -> AvailabilityService:
    """Dependency injection for AvailabilityService"""
    return AvailabilityService(db, clock=clock, calendar=calendar)


# ============================================================================
# PUBLIC SLOT LISTING
# ============================================================================


@router.get("/professionals/{professional_id}/slots", response_model=SlotsResponse)
async def get_slots(
    professional_id: int,
    date: date = Query(..., description="Date in YYYY-MM-DD, service timezone"),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Get bookable slots of a professional for one date"""
    slots = await service.get_slots(professional_id, date)
    return SlotsResponse(
        professional_id=professional_id,
        date=date,
        timezone=SERVICE_TIMEZONE,
        slots=[SlotResponse(start_time=s.start_time, end_time=s.end_time) for s in slots],
    )


# ============================================================================
# ADMIN: WEEKLY RULES
# ============================================================================


@router.get(
    "/professionals/{professional_id}/availability/rules",
    response_model=List[AvailabilityRuleResponse],
    dependencies=[Depends(require_admin)],
)
async def get_rules(
    professional_id: int,
    service: AvailabilityService = Depends(get_availability_service),
):
    """Get the weekly template of a professional"""
    return service.get_rules(professional_id)


@router.put(
    "/professionals/{professional_id}/availability/rules",
    response_model=List[AvailabilityRuleResponse],
    dependencies=[Depends(require_admin)],
)
async def replace_rules(
    professional_id: int,
    body: AvailabilityRulesUpdate,
    service: AvailabilityService = Depends(get_availability_service),
):
    """Replace the weekly template of a professional"""
    return service.replace_rules(professional_id, body)


# ============================================================================
# ADMIN: DATE EXCEPTIONS
# ============================================================================


@router.get(
    "/professionals/{professional_id}/availability/exceptions",
    response_model=List[AvailabilityExceptionResponse],
    dependencies=[Depends(require_admin)],
)
async def get_exceptions(
    professional_id: int,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    service: AvailabilityService = Depends(get_availability_service),
):
    """List date exceptions of a professional"""
    return service.get_exceptions(professional_id, date_from, date_to)


@router.post(
    "/professionals/{professional_id}/availability/exceptions",
    response_model=AvailabilityExceptionResponse,
    status_code=201,
    dependencies=[Depends(require_admin)],
)
async def create_exception(
    professional_id: int,
    body: AvailabilityExceptionCreate,
    service: AvailabilityService = Depends(get_availability_service),
):
    """Block a whole date or part of it"""
    return service.create_exception(professional_id, body)


@router.delete("/availability/exceptions/{exception_id}", dependencies=[Depends(require_admin)])
async def delete_exception(
    exception_id: int,
    service: AvailabilityService = Depends(get_availability_service),
):
    """Remove a date exception"""
    if not service.delete_exception(exception_id):
        raise HTTPException(status_code=404, detail="Availability exception not found")
    return {"message": "Availability exception deleted"}
