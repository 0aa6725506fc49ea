"""Booking repository - Database operations for appointments"""

import logging
from datetime import date, datetime, time
from typing import List, Optional, Sequence

from sqlalchemy import and_, not_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...errors import SlotAlreadyTaken
from ...models import Appointment, ProfessionalDayLock
from .lifecycle import ACTIVE_STATUSES, CANCELLED, PENDING_PAYMENT, REASON_HOLD_EXPIRED

logger = logging.getLogger(__name__)


class BookingRepository:
    """Repository for appointment database operations"""

    @staticmethod
    def get_by_id(db: Session, appointment_id: str) -> Optional[Appointment]:
        """Get appointment by ID"""
        return db.query(Appointment).filter(Appointment.id == appointment_id).first()

    @staticmethod
    def list_for_user(db: Session, user_id: str) -> List[Appointment]:
        """Get appointments of a user, most recent first"""
        return (
            db.query(Appointment)
            .filter(Appointment.user_id == user_id)
            .order_by(Appointment.appointment_date.desc(), Appointment.start_time.desc())
            .all()
        )

    @staticmethod
    def list_for_professional(
        db: Session,
        professional_id: int,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        statuses: Optional[Sequence[str]] = None,
    ) -> List[Appointment]:
        query = db.query(Appointment).filter(Appointment.professional_id == professional_id)
        if date_from:
            query = query.filter(Appointment.appointment_date >= date_from)
        if date_to:
            query = query.filter(Appointment.appointment_date <= date_to)
        if statuses:
            query = query.filter(Appointment.status.in_(statuses))
        return query.order_by(Appointment.appointment_date, Appointment.start_time).all()

    @staticmethod
    def get_blocking_appointments(
        db: Session, professional_id: int, target_date: date, now: datetime
    ) -> List[Appointment]:
        """
        Appointments occupying time on a date.

        Holds past their deadline are left out: the next reservation touching
        them cancels them before checking for conflicts.
        """
        return (
            db.query(Appointment)
            .filter(
                Appointment.professional_id == professional_id,
                Appointment.appointment_date == target_date,
                Appointment.status.in_(ACTIVE_STATUSES),
                not_(
                    and_(
                        Appointment.status == PENDING_PAYMENT,
                        Appointment.hold_expires_at <= now,
                    )
                ),
            )
            .order_by(Appointment.start_time)
            .all()
        )

    @staticmethod
    def find_overlapping(
        db: Session, professional_id: int, target_date: date, start_time: time, end_time: time
    ) -> List[Appointment]:
        """Active appointments overlapping [start_time, end_time)"""
        return (
            db.query(Appointment)
            .filter(
                Appointment.professional_id == professional_id,
                Appointment.appointment_date == target_date,
                Appointment.status.in_(ACTIVE_STATUSES),
                Appointment.start_time < end_time,
                Appointment.end_time > start_time,
            )
            .all()
        )

    # ------------------------------------------------------------------
    # Conflict-safe reservation
    # ------------------------------------------------------------------

    @staticmethod
    def _ensure_day_lock(db: Session, professional_id: int, target_date: date) -> None:
        """Create the (professional, date) lock row once, in its own transaction"""
        exists = (
            db.query(ProfessionalDayLock.version)
            .filter(
                ProfessionalDayLock.professional_id == professional_id,
                ProfessionalDayLock.lock_date == target_date,
            )
            .first()
        )
        if exists:
            return
        db.add(ProfessionalDayLock(professional_id=professional_id, lock_date=target_date, version=0))
        try:
            db.commit()
        except IntegrityError:
            # Another request created it first
            db.rollback()

    @staticmethod
    def _lock_day(db: Session, professional_id: int, target_date: date) -> ProfessionalDayLock:
        """
        Take the day lock for the rest of the transaction.

        SELECT ... FOR UPDATE holds the row on PostgreSQL; the version bump is
        the write that takes SQLite's database lock.
        """
        lock = (
            db.query(ProfessionalDayLock)
            .filter(
                ProfessionalDayLock.professional_id == professional_id,
                ProfessionalDayLock.lock_date == target_date,
            )
            .with_for_update()
            .populate_existing()
            .one()
        )
        lock.version = lock.version + 1
        db.flush()
        return lock

    @staticmethod
    def _release_expired_holds(
        db: Session, professional_id: int, target_date: date, start_time: time, end_time: time, now: datetime
    ) -> int:
        """Cancel overlapping holds past their deadline, inside the caller's transaction"""
        released = (
            db.query(Appointment)
            .filter(
                Appointment.professional_id == professional_id,
                Appointment.appointment_date == target_date,
                Appointment.status == PENDING_PAYMENT,
                Appointment.hold_expires_at <= now,
                Appointment.start_time < end_time,
                Appointment.end_time > start_time,
            )
            .update(
                {
                    Appointment.status: CANCELLED,
                    Appointment.cancellation_reason: REASON_HOLD_EXPIRED,
                    Appointment.cancelled_at: now,
                },
                synchronize_session=False,
            )
        )
        if released:
            logger.info(f"⏰ Released {released} expired hold(s) before reserving {target_date} {start_time}")
        return released

    @staticmethod
    def reserve(db: Session, appointment: Appointment, now: datetime) -> Appointment:
        """
        Insert a pending_payment appointment if its range is free.

        Writers for the same professional and date are serialized on the day
        lock row, and the overlap check runs again under that lock. The partial
        unique index on the slot start rejects anything that slips past.

        Raises:
            SlotAlreadyTaken: An active appointment overlaps the range
        """
        BookingRepository._ensure_day_lock(db, appointment.professional_id, appointment.appointment_date)

        try:
            BookingRepository._lock_day(db, appointment.professional_id, appointment.appointment_date)
            BookingRepository._release_expired_holds(
                db,
                appointment.professional_id,
                appointment.appointment_date,
                appointment.start_time,
                appointment.end_time,
                now,
            )
            conflicts = BookingRepository.find_overlapping(
                db,
                appointment.professional_id,
                appointment.appointment_date,
                appointment.start_time,
                appointment.end_time,
            )
            if conflicts:
                raise SlotAlreadyTaken(
                    f"{appointment.appointment_date} {appointment.start_time}-{appointment.end_time} "
                    f"overlaps appointment {conflicts[0].id}"
                )
            db.add(appointment)
            db.flush()
            db.commit()
        except SlotAlreadyTaken:
            db.rollback()
            raise
        except IntegrityError as e:
            db.rollback()
            logger.warning(f"⚠️ Reservation rejected by unique slot index: {e.orig}")
            raise SlotAlreadyTaken(
                f"{appointment.appointment_date} {appointment.start_time} was booked concurrently"
            ) from e

        db.refresh(appointment)
        return appointment

    # ------------------------------------------------------------------
    # Status changes
    # ------------------------------------------------------------------

    @staticmethod
    def transition(
        db: Session, appointment_id: str, from_statuses: Sequence[str], values: dict
    ) -> bool:
        """
        Compare-and-set update: apply values only while the status is still one
        of from_statuses. Returns False when another writer got there first.
        """
        updated = (
            db.query(Appointment)
            .filter(Appointment.id == appointment_id, Appointment.status.in_(from_statuses))
            .update(values, synchronize_session=False)
        )
        db.commit()
        return updated == 1

    @staticmethod
    def get_expired_hold_ids(db: Session, now: datetime) -> List[str]:
        rows = (
            db.query(Appointment.id)
            .filter(Appointment.status == PENDING_PAYMENT, Appointment.hold_expires_at <= now)
            .all()
        )
        return [row.id for row in rows]

    @staticmethod
    def expire_hold(db: Session, appointment_id: str, now: datetime) -> bool:
        """Cancel one hold if it is still pending and past its deadline"""
        updated = (
            db.query(Appointment)
            .filter(
                Appointment.id == appointment_id,
                Appointment.status == PENDING_PAYMENT,
                Appointment.hold_expires_at <= now,
            )
            .update(
                {
                    Appointment.status: CANCELLED,
                    Appointment.cancellation_reason: REASON_HOLD_EXPIRED,
                    Appointment.cancelled_at: now,
                },
                synchronize_session=False,
            )
        )
        db.commit()
        return updated == 1

    @staticmethod
    def update_fields(db: Session, appointment: Appointment, **fields) -> Appointment:
        for key, value in fields.items():
            setattr(appointment, key, value)
        db.commit()
        db.refresh(appointment)
        return appointment

    @staticmethod
    def delete(db: Session, appointment: Appointment) -> None:
        """Hard delete, outside the state machine"""
        db.query(Appointment).filter(Appointment.rescheduled_from_id == appointment.id).update(
            {Appointment.rescheduled_from_id: None}, synchronize_session=False
        )
        db.delete(appointment)
        db.commit()
