"""Availability repository - Database operations for rules and exceptions"""

from datetime import date
from typing import List, Optional

from sqlalchemy.orm import Session

from ...models import AvailabilityException, AvailabilityRule, Professional


class AvailabilityRepository:
    """Repository for availability database operations"""

    @staticmethod
    def get_professional(db: Session, professional_id: int) -> Optional[Professional]:
        """Get professional by ID"""
        return db.query(Professional).filter(Professional.id == professional_id).first()

    # ------------------------------------------------------------------
    # Weekly rules
    # ------------------------------------------------------------------

    @staticmethod
    def get_rules(db: Session, professional_id: int) -> List[AvailabilityRule]:
        """Get all weekly rules of a professional ordered by weekday"""
        return (
            db.query(AvailabilityRule)
            .filter(AvailabilityRule.professional_id == professional_id)
            .order_by(AvailabilityRule.day_of_week)
            .all()
        )

    @staticmethod
    def get_rules_for_weekday(db: Session, professional_id: int, day_of_week: int) -> List[AvailabilityRule]:
        return (
            db.query(AvailabilityRule)
            .filter(
                AvailabilityRule.professional_id == professional_id,
                AvailabilityRule.day_of_week == day_of_week,
            )
            .all()
        )

    @staticmethod
    def replace_rules(db: Session, professional_id: int, rules: List[dict]) -> List[AvailabilityRule]:
        """Replace the weekly template of a professional in one transaction"""
        db.query(AvailabilityRule).filter(
            AvailabilityRule.professional_id == professional_id
        ).delete(synchronize_session=False)
        # Deletes must reach the database before re-inserting the same weekdays
        db.flush()
        created = []
        for data in rules:
            rule = AvailabilityRule(professional_id=professional_id, **data)
            db.add(rule)
            created.append(rule)
        db.commit()
        for rule in created:
            db.refresh(rule)
        return created

    # ------------------------------------------------------------------
    # Date exceptions
    # ------------------------------------------------------------------

    @staticmethod
    def get_exceptions(
        db: Session,
        professional_id: int,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> List[AvailabilityException]:
        """Get exceptions of a professional, optionally within a date range"""
        query = db.query(AvailabilityException).filter(
            AvailabilityException.professional_id == professional_id
        )
        if date_from:
            query = query.filter(AvailabilityException.exception_date >= date_from)
        if date_to:
            query = query.filter(AvailabilityException.exception_date <= date_to)
        return query.order_by(AvailabilityException.exception_date, AvailabilityException.start_time).all()

    @staticmethod
    def get_exceptions_for_date(db: Session, professional_id: int, target_date: date) -> List[AvailabilityException]:
        return (
            db.query(AvailabilityException)
            .filter(
                AvailabilityException.professional_id == professional_id,
                AvailabilityException.exception_date == target_date,
            )
            .all()
        )

    @staticmethod
    def get_exception(db: Session, exception_id: int) -> Optional[AvailabilityException]:
        return db.query(AvailabilityException).filter(AvailabilityException.id == exception_id).first()

    @staticmethod
    def create_exception(db: Session, professional_id: int, data: dict) -> AvailabilityException:
        exception = AvailabilityException(professional_id=professional_id, **data)
        db.add(exception)
        db.commit()
        db.refresh(exception)
        return exception

    @staticmethod
    def delete_exception(db: Session, exception: AvailabilityException) -> None:
        db.delete(exception)
        db.commit()
