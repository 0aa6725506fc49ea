"""Professional domain schemas - Pydantic models for validation"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from ...shared.validators import normalize_email


class ProfessionalCreate(BaseModel):
    name: str
    title: Optional[str] = None
    specialty: Optional[str] = None
    description: Optional[str] = None
    contact_email: Optional[str] = None
    price_amount: int = 35000
    currency: str = "CLP"
    is_active: bool = True

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name is required")
        return v

    @field_validator("contact_email")
    @classmethod
    def check_email(cls, v: Optional[str]) -> Optional[str]:
        return normalize_email(v)

    @field_validator("price_amount")
    @classmethod
    def validate_price(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("price_amount must be positive")
        return v

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        v = v.strip().upper()
        if len(v) != 3:
            raise ValueError("currency must be an ISO 4217 code")
        return v


class ProfessionalUpdate(BaseModel):
    title: Optional[str] = None
    specialty: Optional[str] = None
    description: Optional[str] = None
    contact_email: Optional[str] = None
    price_amount: Optional[int] = None
    is_active: Optional[bool] = None

    @field_validator("contact_email")
    @classmethod
    def check_email(cls, v: Optional[str]) -> Optional[str]:
        return normalize_email(v)


class ProfessionalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    title: Optional[str] = None
    specialty: Optional[str] = None
    description: Optional[str] = None
    price_amount: int
    currency: str
    is_active: bool
