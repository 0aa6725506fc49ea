"""Payment domain schemas - Pydantic models for validation"""

from typing import Optional

from pydantic import BaseModel, field_validator

from .gateway import PROVIDERS


class CheckoutRequest(BaseModel):
    """Schema for starting the payment of a held appointment"""

    provider: str = "mercadopago"  # "mercadopago" | "paypal"

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in PROVIDERS:
            raise ValueError(f"provider must be one of: {', '.join(PROVIDERS)}")
        return v


class CheckoutResponse(BaseModel):
    appointment_id: str
    provider: str
    payment_url: str
    provider_reference: str


class WebhookResult(BaseModel):
    status: str  # confirmed, duplicate, refund_required, ignored, hold_expired, rejected
    appointment_id: Optional[str] = None
