"""Payment service - Checkout start and provider callbacks"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ...config import FRONTEND_URL, PUBLIC_API_URL
from ...errors import HoldExpired, InvalidTransition
from ...models import Professional
from ..appointments.lifecycle import PENDING_PAYMENT
from ..appointments.repository import BookingRepository
from ..appointments.service import AppointmentService, ConfirmationResult
from .gateway import PAYPAL, CheckoutSession, PaymentGateway

logger = logging.getLogger(__name__)


class PaymentService:
    """Connects checkout providers to the appointment state machine"""

    def __init__(self, db: Session, gateway: PaymentGateway, appointments: AppointmentService):
        self.db = db
        self.gateway = gateway
        self.appointments = appointments
        self.repo = BookingRepository()

    def frontend_url(self, appointment_id: str, outcome: str) -> str:
        return f"{FRONTEND_URL}/appointments/{appointment_id}?payment={outcome}"

    async def start_checkout(self, appointment_id: str, user_id: str, provider: str) -> CheckoutSession:
        """
        Create a checkout for a held appointment.

        Raises:
            InvalidTransition: The appointment is not waiting for payment
            HoldExpired: The hold deadline already passed
        """
        appointment = self.appointments.get_for_user(appointment_id, user_id)
        if appointment.status != PENDING_PAYMENT:
            raise InvalidTransition(appointment.status, "pay for")
        if appointment.hold_expires_at <= self.appointments.clock.now():
            raise HoldExpired(f"Hold {appointment_id} expired at {appointment.hold_expires_at}")

        professional = self.db.query(Professional).filter(Professional.id == appointment.professional_id).first()

        if provider == PAYPAL:
            # PayPal returns the payer to the API, which captures and redirects to the frontend
            success_url = f"{PUBLIC_API_URL}/webhooks/paypal/return"
        else:
            success_url = self.frontend_url(appointment_id, "success")
        failure_url = self.frontend_url(appointment_id, "cancelled")

        session = await self.gateway.create_checkout(provider, appointment, professional, success_url, failure_url)
        self.repo.update_fields(self.db, appointment, payment_provider=provider)
        return session

    async def _confirm_notice(self, notice) -> Optional[ConfirmationResult]:
        if not notice.approved:
            logger.info(
                f"ℹ️ {notice.provider} payment {notice.payment_reference} for appointment "
                f"{notice.appointment_id or '?'} is '{notice.status}', nothing to confirm"
            )
            return None
        return await self.appointments.confirm(notice.appointment_id, notice.payment_reference, notice.provider)

    async def handle_mercadopago_payment(self, payment_id: str) -> Optional[ConfirmationResult]:
        """Confirm the appointment behind a MercadoPago payment notification"""
        notice = await self.gateway.mercadopago.get_payment(payment_id)
        logger.info(f"📥 MercadoPago payment {payment_id}: {notice.status} (appointment {notice.appointment_id})")
        return await self._confirm_notice(notice)

    async def handle_paypal_return(self, order_id: str) -> Optional[ConfirmationResult]:
        """Capture an approved PayPal order and confirm its appointment"""
        notice = await self.gateway.paypal.capture_order(order_id)
        logger.info(f"📥 PayPal order {order_id}: {notice.status} (appointment {notice.appointment_id})")
        return await self._confirm_notice(notice)
