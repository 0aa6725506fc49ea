"""Injectable time source"""

from datetime import date, datetime, time, timezone
from typing import Protocol

import pytz

from ..config import SERVICE_TIMEZONE

SERVICE_TZ = pytz.timezone(SERVICE_TIMEZONE)


class Clock(Protocol):
    def now(self) -> datetime:
        """Current instant as naive UTC"""
        ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


def get_clock() -> Clock:
    """Dependency injection for the clock"""
    return SystemClock()


def to_service_time(utc_naive: datetime) -> datetime:
    """Convert a naive UTC instant to naive wall-clock time in the service timezone"""
    return pytz.utc.localize(utc_naive).astimezone(SERVICE_TZ).replace(tzinfo=None)


def service_datetime(day: date, at: time) -> datetime:
    """Localized (aware) datetime for a wall-clock time in the service timezone"""
    return SERVICE_TZ.localize(datetime.combine(day, at))
