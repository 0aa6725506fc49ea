import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_public_id():
    """Generate a unique public ID for secure public access"""
    return str(uuid.uuid4())


class Professional(Base):
    __tablename__ = "professionals"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    title = Column(String(255), nullable=True)  # e.g. "Kinesiólogo"
    specialty = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    contact_email = Column(String(255), nullable=True)  # Invited to the meeting event
    price_amount = Column(Integer, nullable=False, default=35000)  # Minor-less CLP amount
    currency = Column(String(3), nullable=False, default="CLP")
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    availability_rules = relationship(
        "AvailabilityRule", back_populates="professional", cascade="all, delete-orphan"
    )
    availability_exceptions = relationship(
        "AvailabilityException", back_populates="professional", cascade="all, delete-orphan"
    )


class AvailabilityRule(Base):
    """Weekly opening hours for one weekday (0 = Monday ... 6 = Sunday)"""

    __tablename__ = "availability_rules"
    __table_args__ = (
        UniqueConstraint("professional_id", "day_of_week", name="uq_availability_rule_weekday"),
    )

    id = Column(Integer, primary_key=True, index=True)
    professional_id = Column(Integer, ForeignKey("professionals.id"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)
    open_time = Column(Time, nullable=False)
    close_time = Column(Time, nullable=False)
    slot_duration_minutes = Column(Integer, nullable=False, default=60)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    professional = relationship("Professional", back_populates="availability_rules")


class AvailabilityException(Base):
    """Date-specific block. all_day blocks the whole date, otherwise [start_time, end_time)"""

    __tablename__ = "availability_exceptions"

    id = Column(Integer, primary_key=True, index=True)
    professional_id = Column(Integer, ForeignKey("professionals.id"), nullable=False, index=True)
    exception_date = Column(Date, nullable=False, index=True)
    all_day = Column(Boolean, default=False, nullable=False)
    start_time = Column(Time, nullable=True)
    end_time = Column(Time, nullable=True)
    reason = Column(String(500), nullable=True)

    created_at = Column(DateTime, server_default=func.now())

    professional = relationship("Professional", back_populates="availability_exceptions")


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_appointment_time_order"),
        # Second guard behind the day lock: one live appointment per slot start
        Index(
            "uq_appointment_active_slot",
            "professional_id",
            "appointment_date",
            "start_time",
            unique=True,
            postgresql_where=text("status <> 'cancelled'"),
            sqlite_where=text("status <> 'cancelled'"),
        ),
        Index("ix_appointment_professional_date", "professional_id", "appointment_date"),
        Index("ix_appointment_hold_sweep", "status", "hold_expires_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_public_id)
    professional_id = Column(Integer, ForeignKey("professionals.id"), nullable=False)
    user_id = Column(String(255), nullable=False, index=True)  # Subject from the auth gateway

    appointment_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    # pending_payment, confirmed, completed, missed, cancelled, reschedule_requested
    status = Column(String(30), nullable=False, default="pending_payment")
    # pending, paid, refund_pending, transferred
    payment_status = Column(String(30), nullable=False, default="pending")
    price_amount = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="CLP")
    payment_provider = Column(String(30), nullable=True)  # mercadopago, paypal
    payment_reference = Column(String(255), nullable=True)  # Provider payment/capture ID

    hold_expires_at = Column(DateTime, nullable=False)
    confirmed_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(String(50), nullable=True)  # hold_expired, user, admin, rescheduled

    # Reschedule audit trail
    rescheduled_from_id = Column(String(36), ForeignKey("appointments.id"), nullable=True)

    # Meeting details, filled asynchronously after confirmation
    external_meeting_link = Column(String(500), nullable=True)
    external_event_id = Column(String(255), nullable=True)

    # Intake form
    contact_email = Column(String(255), nullable=True)
    consultation_goal = Column(Text, nullable=True)
    injury_condition = Column(Text, nullable=True)
    available_equipment = Column(JSON, default=list, nullable=True)
    additional_comments = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    professional = relationship("Professional")


class ProfessionalDayLock(Base):
    """Row locked by every reservation for (professional, date) to serialize writers"""

    __tablename__ = "professional_day_locks"

    professional_id = Column(Integer, ForeignKey("professionals.id"), primary_key=True)
    lock_date = Column(Date, primary_key=True)
    version = Column(Integer, nullable=False, default=0)
