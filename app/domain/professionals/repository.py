"""Professional repository - Database operations for the professionals directory"""

from typing import List, Optional

from sqlalchemy.orm import Session

from ...models import Professional


class ProfessionalRepository:
    """Repository for professional database operations"""

    @staticmethod
    def list_active(db: Session) -> List[Professional]:
        return db.query(Professional).filter(Professional.is_active.is_(True)).order_by(Professional.name).all()

    @staticmethod
    def get_by_id(db: Session, professional_id: int) -> Optional[Professional]:
        return db.query(Professional).filter(Professional.id == professional_id).first()

    @staticmethod
    def create(db: Session, data: dict) -> Professional:
        professional = Professional(**data)
        db.add(professional)
        db.commit()
        db.refresh(professional)
        return professional

    @staticmethod
    def update(db: Session, professional: Professional, data: dict) -> Professional:
        for key, value in data.items():
            setattr(professional, key, value)
        db.commit()
        db.refresh(professional)
        return professional
