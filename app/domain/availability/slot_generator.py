"""
Slot generation

Pure computation of the bookable slots of one professional for one date:
weekly template, minus date exceptions, minus booked ranges, minus external
busy periods. No storage, network or clock access happens here, so the same
inputs always give the same output.

Rules and exceptions are read by attribute, which lets the ORM rows and the
plain dataclasses below be passed interchangeably.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional, Sequence

from ...errors import InvalidException, InvalidRule

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimeRange:
    """Half-open [start, end) range on a single date"""

    start: time
    end: time

    def overlaps(self, other: "TimeRange") -> bool:
        return self.start < other.end and self.end > other.start


@dataclass(frozen=True)
class Slot:
    start_time: time
    end_time: time

    @property
    def range(self) -> TimeRange:
        return TimeRange(self.start_time, self.end_time)


@dataclass(frozen=True)
class WeeklyRule:
    day_of_week: int
    open_time: time
    close_time: time
    slot_duration_minutes: int
    is_active: bool = True


@dataclass(frozen=True)
class DateException:
    exception_date: date
    all_day: bool
    start_time: Optional[time] = None
    end_time: Optional[time] = None


@dataclass(frozen=True)
class BookedRange:
    appointment_date: date
    start_time: time
    end_time: time


# Busy periods from the external calendar, already clipped to the target date
BusyInterval = TimeRange


def validate_rule(rule) -> None:
    """Raise InvalidRule if the rule cannot produce slots"""
    if rule.day_of_week is None or not 0 <= rule.day_of_week <= 6:
        raise InvalidRule(f"day_of_week out of range: {rule.day_of_week}")
    if rule.open_time is None or rule.close_time is None or rule.open_time >= rule.close_time:
        raise InvalidRule(f"open_time must be before close_time ({rule.open_time} - {rule.close_time})")
    if not rule.slot_duration_minutes or rule.slot_duration_minutes <= 0:
        raise InvalidRule(f"slot_duration_minutes must be positive ({rule.slot_duration_minutes})")


def validate_exception(exception) -> None:
    """Raise InvalidException if a partial exception has no usable range"""
    if exception.all_day:
        return
    if exception.start_time is None or exception.end_time is None:
        raise InvalidException("Partial-day exception requires start_time and end_time")
    if exception.start_time >= exception.end_time:
        raise InvalidException(
            f"Exception start_time must be before end_time ({exception.start_time} - {exception.end_time})"
        )


def select_rule(target_date: date, rules: Iterable) -> Optional[object]:
    """Return the valid, active rule for the weekday of target_date, if any"""
    weekday = target_date.weekday()
    selected = None
    for rule in rules:
        if rule.day_of_week != weekday or not getattr(rule, "is_active", True):
            continue
        try:
            validate_rule(rule)
        except InvalidRule as e:
            logger.warning(f"⚠️ Ignoring invalid availability rule: {e.message}")
            continue
        if selected is None:
            selected = rule
        else:
            logger.warning(f"⚠️ More than one active rule for weekday {weekday}, using the first")
    return selected


def candidate_slots(target_date: date, rule) -> List[Slot]:
    """Fixed-duration slots from open_time, dropping any partial trailing slot"""
    step = timedelta(minutes=rule.slot_duration_minutes)
    close_at = datetime.combine(target_date, rule.close_time)
    current = datetime.combine(target_date, rule.open_time)
    slots = []
    while current + step <= close_at:
        slots.append(Slot(current.time(), (current + step).time()))
        current += step
    return slots


def blocked_ranges(target_date: date, exceptions: Iterable) -> Optional[List[TimeRange]]:
    """
    Partial ranges blocked by exceptions on target_date.

    Returns None when an all-day exception closes the whole date.
    """
    ranges = []
    for exception in exceptions:
        if exception.exception_date != target_date:
            continue
        try:
            validate_exception(exception)
        except InvalidException as e:
            logger.warning(f"⚠️ Ignoring invalid availability exception: {e.message}")
            continue
        if exception.all_day:
            return None
        ranges.append(TimeRange(exception.start_time, exception.end_time))
    return ranges


def generate_slots(
    target_date: date,
    rules: Iterable,
    exceptions: Iterable = (),
    booked: Iterable = (),
    busy: Sequence[TimeRange] = (),
) -> List[Slot]:
    """
    Compute the bookable slots for target_date.

    Args:
        target_date: Date to compute slots for
        rules: Weekly rules of the professional (any weekday)
        exceptions: Date exceptions of the professional (any date)
        booked: Ranges held by active appointments (objects with
            appointment_date, start_time, end_time)
        busy: External busy intervals already clipped to target_date

    Returns:
        Slots in ascending start order; empty when the date is closed
    """
    rule = select_rule(target_date, rules)
    if rule is None:
        return []

    blocked = blocked_ranges(target_date, exceptions)
    if blocked is None:
        return []

    for booking in booked:
        if booking.appointment_date == target_date:
            blocked.append(TimeRange(booking.start_time, booking.end_time))
    blocked.extend(busy)

    return [
        slot
        for slot in candidate_slots(target_date, rule)
        if not any(slot.range.overlaps(other) for other in blocked)
    ]
