"""Professionals router - Directory of bookable professionals"""

import logging
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import require_admin
from ...database import get_db
from ...errors import ProfessionalNotFound
from .repository import ProfessionalRepository
from .schemas import ProfessionalCreate, ProfessionalResponse, ProfessionalUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/professionals", tags=["Professionals"])


@router.get("", response_model=List[ProfessionalResponse])
async def list_professionals(db: Session = Depends(get_db)):
    """Active professionals"""
    return ProfessionalRepository.list_active(db)


@router.get("/{professional_id}", response_model=ProfessionalResponse)
async def get_professional(professional_id: int, db: Session = Depends(get_db)):
    professional = ProfessionalRepository.get_by_id(db, professional_id)
    if not professional:
        raise ProfessionalNotFound(f"Professional {professional_id} not found")
    return professional


@router.post(
    "",
    response_model=ProfessionalResponse,
    status_code=201,
    dependencies=[Depends(require_admin)],
)
async def create_professional(body: ProfessionalCreate, db: Session = Depends(get_db)):
    professional = ProfessionalRepository.create(db, body.model_dump())
    logger.info(f"✅ Professional {professional.id} created: {professional.name}")
    return professional


@router.patch(
    "/{professional_id}",
    response_model=ProfessionalResponse,
    dependencies=[Depends(require_admin)],
)
async def update_professional(professional_id: int, body: ProfessionalUpdate, db: Session = Depends(get_db)):
    professional = ProfessionalRepository.get_by_id(db, professional_id)
    if not professional:
        raise ProfessionalNotFound(f"Professional {professional_id} not found")
    return ProfessionalRepository.update(db, professional, body.model_dump(exclude_unset=True))
