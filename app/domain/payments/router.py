"""Payments router - Checkout start and provider webhooks"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from ...auth import get_current_user_id
from ...config import FRONTEND_URL, MERCADOPAGO_WEBHOOK_SECRET
from ...database import get_db
from ...errors import AppointmentNotFound, HoldExpired, InvalidTransition, PaymentGatewayError
from ...webhook_security import verify_mercadopago_webhook
from ..appointments.router import get_appointment_service
from ..appointments.service import AppointmentService
from .gateway import PaymentGateway, get_payment_gateway
from .schemas import CheckoutRequest, CheckoutResponse, WebhookResult
from .service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Payments"])


def get_payment_service(
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    appointments: AppointmentService = Depends(get_appointment_service),
) -> PaymentService:
    """Dependency injection for PaymentService"""
    return PaymentService(db, gateway, appointments)


@router.post("/appointments/{appointment_id}/payment", response_model=CheckoutResponse)
async def start_checkout(
    appointment_id: str,
    body: CheckoutRequest,
    user_id: str = Depends(get_current_user_id),
    service: PaymentService = Depends(get_payment_service),
):
    """Create a provider checkout for a held appointment and return its URL"""
    session = await service.start_checkout(appointment_id, user_id, body.provider)
    return CheckoutResponse(
        appointment_id=appointment_id,
        provider=session.provider,
        payment_url=session.payment_url,
        provider_reference=session.provider_reference,
    )


# ============================================================================
# WEBHOOKS
# ============================================================================


@router.post("/webhooks/mercadopago", response_model=WebhookResult)
async def mercadopago_webhook(
    request: Request,
    service: PaymentService = Depends(get_payment_service),
):
    """
    MercadoPago payment notifications.

    Notifications that cannot change anything are acknowledged with 200 so the
    provider stops retrying; lookup failures return 502 so it retries later.
    """
    try:
        payload = await request.json()
    except ValueError:
        payload = {}

    event_type = request.query_params.get("type") or payload.get("type")
    data_id: Optional[str] = request.query_params.get("data.id") or str(
        (payload.get("data") or {}).get("id") or ""
    )

    await verify_mercadopago_webhook(request, MERCADOPAGO_WEBHOOK_SECRET, data_id)

    if event_type != "payment" or not data_id:
        logger.info(f"ℹ️ Ignoring MercadoPago notification type={event_type}")
        return WebhookResult(status="ignored")

    try:
        result = await service.handle_mercadopago_payment(data_id)
    except HoldExpired:
        return WebhookResult(status="hold_expired")
    except (AppointmentNotFound, InvalidTransition) as e:
        logger.warning(f"⚠️ MercadoPago payment {data_id} could not be applied: {e.message}")
        return WebhookResult(status="rejected")

    if result is None:
        return WebhookResult(status="ignored")
    if result.refund_required:
        status = "refund_required"
    else:
        status = "duplicate" if result.duplicate else "confirmed"
    return WebhookResult(
        status=status,
        appointment_id=result.appointment.id,
    )


@router.get("/webhooks/paypal/return")
async def paypal_return(
    token: str,
    service: PaymentService = Depends(get_payment_service),
):
    """Payer is back from PayPal: capture the order and send them to the frontend"""
    appointment_id = None
    outcome = "failed"
    try:
        result = await service.handle_paypal_return(token)
        if result is not None:
            appointment_id = result.appointment.id
            outcome = "success"
    except HoldExpired:
        outcome = "expired"
    except (AppointmentNotFound, InvalidTransition, PaymentGatewayError) as e:
        logger.error(f"❌ PayPal order {token} could not be completed: {e.message}")

    if appointment_id:
        return RedirectResponse(service.frontend_url(appointment_id, outcome), status_code=303)
    return RedirectResponse(f"{FRONTEND_URL}/payment/result?status={outcome}&order={token}", status_code=303)
