"""Availability service - Business logic for schedules and slot listing"""

import logging
from datetime import date, time, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from ...config import BOOKING_HORIZON_DAYS
from ...errors import ProfessionalNotFound, SlotNotOffered
from ...models import AvailabilityException, AvailabilityRule, Professional
from ...services.google_calendar_service import BusyCalendar, GoogleCalendarBusyAdapter
from ...shared.clock import Clock, SystemClock, to_service_time
from ..appointments.repository import BookingRepository
from .repository import AvailabilityRepository
from .schemas import AvailabilityExceptionCreate, AvailabilityRulesUpdate
from .slot_generator import (
    Slot,
    TimeRange,
    generate_slots,
    select_rule,
    validate_exception,
    validate_rule,
)

logger = logging.getLogger(__name__)


class AvailabilityService:
    """Service composing weekly rules, exceptions, bookings and external busy time"""

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        calendar: Optional[BusyCalendar] = None,
    ):
        self.db = db
        self.repo = AvailabilityRepository()
        self.bookings = BookingRepository()
        self.clock = clock or SystemClock()
        self.calendar = calendar or GoogleCalendarBusyAdapter(db, clock=self.clock)

    def get_professional(self, professional_id: int) -> Professional:
        professional = self.repo.get_professional(self.db, professional_id)
        if not professional:
            raise ProfessionalNotFound(f"Professional {professional_id} not found")
        return professional

    def is_bookable_date(self, target_date: date) -> bool:
        """Dates from today (service timezone) up to the booking horizon"""
        today = to_service_time(self.clock.now()).date()
        return today <= target_date <= today + timedelta(days=BOOKING_HORIZON_DAYS)

    def _drop_elapsed(self, target_date: date, slots: List[Slot]) -> List[Slot]:
        local_now = to_service_time(self.clock.now())
        if target_date != local_now.date():
            return slots
        return [slot for slot in slots if slot.start_time > local_now.time()]

    # ------------------------------------------------------------------
    # Slot listing
    # ------------------------------------------------------------------

    async def get_slots(self, professional_id: int, target_date: date) -> List[Slot]:
        """
        Bookable slots of a professional for one date.

        External busy time is advisory: when the calendar cannot be reached
        the slots are computed without it.
        """
        professional = self.get_professional(professional_id)
        if not professional.is_active or not self.is_bookable_date(target_date):
            return []

        rule = select_rule(
            target_date,
            self.repo.get_rules_for_weekday(self.db, professional_id, target_date.weekday()),
        )
        if rule is None:
            return []

        exceptions = self.repo.get_exceptions_for_date(self.db, professional_id, target_date)
        booked = self.bookings.get_blocking_appointments(
            self.db, professional_id, target_date, self.clock.now()
        )
        busy = await self.calendar.fetch_busy_intervals(
            professional_id, target_date, TimeRange(rule.open_time, rule.close_time)
        )

        slots = generate_slots(target_date, [rule], exceptions, booked, busy)
        return self._drop_elapsed(target_date, slots)

    def ensure_slot_offered(
        self, professional_id: int, target_date: date, start_time: time, end_time: time
    ) -> Professional:
        """
        Check that [start_time, end_time) is a template slot not blocked by an
        exception. Bookings are checked at commit by the booking repository.

        Raises:
            ProfessionalNotFound: Unknown professional
            SlotNotOffered: Range is off-grid, blocked, elapsed or beyond the horizon
        """
        professional = self.get_professional(professional_id)
        if not professional.is_active:
            raise SlotNotOffered("Professional is not accepting bookings")
        if not self.is_bookable_date(target_date):
            raise SlotNotOffered(f"{target_date} is outside the booking window")

        rules = self.repo.get_rules_for_weekday(self.db, professional_id, target_date.weekday())
        exceptions = self.repo.get_exceptions_for_date(self.db, professional_id, target_date)
        offered = self._drop_elapsed(target_date, generate_slots(target_date, rules, exceptions))

        if Slot(start_time, end_time) not in offered:
            raise SlotNotOffered(f"{target_date} {start_time}-{end_time} is not an available slot")
        return professional

    # ------------------------------------------------------------------
    # Admin: weekly template and exceptions
    # ------------------------------------------------------------------

    def get_rules(self, professional_id: int) -> List[AvailabilityRule]:
        self.get_professional(professional_id)
        return self.repo.get_rules(self.db, professional_id)

    def replace_rules(self, professional_id: int, body: AvailabilityRulesUpdate) -> List[AvailabilityRule]:
        """Replace the weekly template; every rule is validated before anything is written"""
        self.get_professional(professional_id)
        for rule in body.rules:
            validate_rule(rule)
        rules = self.repo.replace_rules(self.db, professional_id, [rule.model_dump() for rule in body.rules])
        logger.info(f"✅ Weekly availability updated for professional {professional_id}: {len(rules)} rules")
        return rules

    def get_exceptions(
        self, professional_id: int, date_from: Optional[date] = None, date_to: Optional[date] = None
    ) -> List[AvailabilityException]:
        self.get_professional(professional_id)
        return self.repo.get_exceptions(self.db, professional_id, date_from, date_to)

    def create_exception(self, professional_id: int, body: AvailabilityExceptionCreate) -> AvailabilityException:
        self.get_professional(professional_id)
        validate_exception(body)
        data = body.model_dump()
        if body.all_day:
            data["start_time"] = None
            data["end_time"] = None
        exception = self.repo.create_exception(self.db, professional_id, data)
        logger.info(
            f"✅ Availability exception {exception.id} created for professional {professional_id} "
            f"on {exception.exception_date}"
        )
        return exception

    def delete_exception(self, exception_id: int) -> bool:
        exception = self.repo.get_exception(self.db, exception_id)
        if not exception:
            return False
        self.repo.delete_exception(self.db, exception)
        logger.info(f"🗑️ Availability exception {exception_id} deleted")
        return True
