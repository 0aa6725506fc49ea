import os

# Must be set before the app modules read their configuration
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("DB_LOG_SLOW_QUERIES", "false")

from datetime import date, datetime, time, timedelta  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

import app.models  # noqa: E402,F401
import app.models_google_calendar  # noqa: E402,F401
from app.database import Base, engine_options  # noqa: E402
from app.models import AvailabilityRule, Professional  # noqa: E402

ADMIN_HEADERS = {"X-Admin-Key": "test-admin-key"}

# Monday 2026-10-19 09:00 in America/Santiago (UTC-3)
NOW = datetime(2026, 10, 19, 12, 0)
TUESDAY = date(2026, 10, 20)


class FixedClock:
    def __init__(self, now: datetime = NOW):
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class RecordingDispatcher:
    def __init__(self):
        self.confirmed = []
        self.cancelled = []
        self.refunds = []

    async def appointment_confirmed(self, notice):
        self.confirmed.append(notice)

    async def appointment_cancelled(self, notice, refund_required=False, external_event_id=None):
        self.cancelled.append((notice, refund_required, external_event_id))

    async def payment_refund_required(self, notice, payment_reference, reason):
        self.refunds.append((notice.appointment_id, payment_reference, reason))


class StubCalendar:
    """Busy-time source returning fixed intervals"""

    def __init__(self, busy=None):
        self.busy = busy or []
        self.calls = []

    async def fetch_busy_intervals(self, professional_id, target_date, window):
        self.calls.append((professional_id, target_date, window))
        return list(self.busy)


@pytest.fixture
def engine(tmp_path):
    url = f"sqlite:///{tmp_path / 'booking.db'}"
    test_engine = create_engine(url, **engine_options(url))
    Base.metadata.create_all(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


def add_professional(db, slot_minutes: int = 60, **fields) -> Professional:
    """Professional open on Tuesdays 09:00-12:00"""
    professional = Professional(
        name=fields.pop("name", "Ana Pérez"),
        contact_email=fields.pop("contact_email", "ana@example.com"),
        price_amount=fields.pop("price_amount", 35000),
        currency="CLP",
        **fields,
    )
    db.add(professional)
    db.flush()
    db.add(
        AvailabilityRule(
            professional_id=professional.id,
            day_of_week=1,
            open_time=time(9, 0),
            close_time=time(12, 0),
            slot_duration_minutes=slot_minutes,
        )
    )
    db.commit()
    db.refresh(professional)
    return professional


@pytest.fixture
def professional(db):
    return add_professional(db)
