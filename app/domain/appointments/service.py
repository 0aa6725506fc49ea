"""Appointment service - Business logic for holds, payment confirmation and status changes"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from ...config import HOLD_TIMEOUT_MINUTES
from ...errors import AppointmentNotFound, HoldExpired, InvalidTransition, SlotNotOffered
from ...models import Appointment, generate_public_id
from ...services.notification_service import (
    AppointmentNotice,
    LoggingNotificationDispatcher,
    NotificationDispatcher,
)
from ...shared.clock import Clock, SystemClock, to_service_time
from ..availability.service import AvailabilityService
from .lifecycle import (
    CANCELLED,
    COMPLETED,
    CONFIRMED,
    MISSED,
    PAYMENT_PAID,
    PAYMENT_PENDING,
    PAYMENT_REFUND_PENDING,
    PAYMENT_TRANSFERRED,
    PENDING_PAYMENT,
    POST_CONFIRMATION_STATUSES,
    REASON_HOLD_EXPIRED,
    REASON_RESCHEDULED,
    REASON_USER,
    RESCHEDULE_REQUESTED,
    ensure_transition,
)
from .repository import BookingRepository
from .schemas import AppointmentCreate

logger = logging.getLogger(__name__)


@dataclass
class ConfirmationResult:
    appointment: Appointment
    duplicate: bool = False  # Already confirmed earlier: nothing was changed
    refund_required: bool = False  # The payment was not applied and must be returned


class AppointmentService:
    """Service for the appointment state machine"""

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        hold_minutes: int = HOLD_TIMEOUT_MINUTES,
    ):
        self.db = db
        self.repo = BookingRepository()
        self.clock = clock or SystemClock()
        self.dispatcher = dispatcher or LoggingNotificationDispatcher()
        self.hold_minutes = hold_minutes
        self.availability = AvailabilityService(db, clock=self.clock)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, appointment_id: str) -> Appointment:
        appointment = self.repo.get_by_id(self.db, appointment_id)
        if not appointment:
            raise AppointmentNotFound(f"Appointment {appointment_id} not found")
        return appointment

    def get_for_user(self, appointment_id: str, user_id: str) -> Appointment:
        """Get an appointment owned by user_id; other users' appointments look missing"""
        appointment = self.get(appointment_id)
        if appointment.user_id != user_id:
            raise AppointmentNotFound(f"Appointment {appointment_id} not found")
        return appointment

    def list_for_user(self, user_id: str) -> List[Appointment]:
        return self.repo.list_for_user(self.db, user_id)

    def has_ended(self, appointment: Appointment) -> bool:
        """Whether the session end (service timezone) has passed"""
        ends_at = datetime.combine(appointment.appointment_date, appointment.end_time)
        return to_service_time(self.clock.now()) >= ends_at

    # ------------------------------------------------------------------
    # Hold creation
    # ------------------------------------------------------------------

    def create_hold(self, user_id: str, body: AppointmentCreate) -> Appointment:
        """
        Reserve a slot as pending_payment for hold_minutes.

        Raises:
            SlotNotOffered: The range is not an available template slot
            SlotAlreadyTaken: Someone else holds an overlapping range
        """
        professional = self.availability.ensure_slot_offered(
            body.professional_id, body.appointment_date, body.start_time, body.end_time
        )
        price_amount, currency = professional.price_amount, professional.currency

        if body.rescheduled_from_id:
            source = self.get_for_user(body.rescheduled_from_id, user_id)
            if source.status != RESCHEDULE_REQUESTED:
                raise InvalidTransition(source.status, "reschedule")
            if source.professional_id != body.professional_id:
                raise SlotNotOffered("A rescheduled session must keep the same professional")
            price_amount, currency = source.price_amount, source.currency

        now = self.clock.now()
        appointment = Appointment(
            id=generate_public_id(),
            professional_id=body.professional_id,
            user_id=user_id,
            appointment_date=body.appointment_date,
            start_time=body.start_time,
            end_time=body.end_time,
            status=PENDING_PAYMENT,
            payment_status=PAYMENT_PENDING,
            price_amount=price_amount,
            currency=currency,
            hold_expires_at=now + timedelta(minutes=self.hold_minutes),
            rescheduled_from_id=body.rescheduled_from_id,
            contact_email=body.contact_email,
            consultation_goal=body.consultation_goal,
            injury_condition=body.injury_condition,
            available_equipment=body.available_equipment,
            additional_comments=body.additional_comments,
        )
        appointment = self.repo.reserve(self.db, appointment, now)
        logger.info(
            f"✅ Hold {appointment.id} created: professional {appointment.professional_id} "
            f"{appointment.appointment_date} {appointment.start_time}-{appointment.end_time} "
            f"until {appointment.hold_expires_at}"
        )
        return appointment

    # ------------------------------------------------------------------
    # Payment confirmation
    # ------------------------------------------------------------------

    async def confirm(
        self, appointment_id: str, payment_reference: str, payment_provider: Optional[str] = None
    ) -> ConfirmationResult:
        """
        Move a held appointment to confirmed after payment.

        Safe to call any number of times and in any order with other
        callbacks: repeated confirmations are reported as duplicates. A payment
        that cannot be applied is passed to the dispatcher for a refund.

        Raises:
            HoldExpired: The hold was released by expiry before the payment arrived
            InvalidTransition: The appointment was cancelled for another reason
        """
        appointment = self.get(appointment_id)

        if appointment.status == PENDING_PAYMENT:
            confirmed = self.repo.transition(
                self.db,
                appointment_id,
                (PENDING_PAYMENT,),
                {
                    Appointment.status: CONFIRMED,
                    Appointment.payment_status: PAYMENT_PAID,
                    Appointment.payment_reference: payment_reference,
                    Appointment.payment_provider: payment_provider,
                    Appointment.confirmed_at: self.clock.now(),
                },
            )
            self.db.refresh(appointment)
            if confirmed:
                logger.info(f"✅ Appointment {appointment_id} confirmed (payment {payment_reference})")
                await self.dispatcher.appointment_confirmed(AppointmentNotice.from_appointment(appointment))
                return ConfirmationResult(appointment)

        if appointment.status in POST_CONFIRMATION_STATUSES:
            if appointment.payment_reference == payment_reference:
                logger.info(f"ℹ️ Duplicate confirmation for appointment {appointment_id} ignored")
                return ConfirmationResult(appointment, duplicate=True)
            logger.warning(
                f"⚠️ Appointment {appointment_id} already confirmed with payment "
                f"{appointment.payment_reference}, payment {payment_reference} needs a refund"
            )
            await self.dispatcher.payment_refund_required(
                AppointmentNotice.from_appointment(appointment), payment_reference, "already_confirmed"
            )
            return ConfirmationResult(appointment, duplicate=True, refund_required=True)

        if appointment.status == CANCELLED and appointment.cancellation_reason == REASON_HOLD_EXPIRED:
            logger.warning(
                f"⚠️ Payment {payment_reference} arrived after hold {appointment_id} expired, refund required"
            )
            await self.dispatcher.payment_refund_required(
                AppointmentNotice.from_appointment(appointment), payment_reference, REASON_HOLD_EXPIRED
            )
            raise HoldExpired(f"Hold {appointment_id} expired at {appointment.hold_expires_at}")

        if appointment.status == CANCELLED:
            logger.warning(
                f"⚠️ Payment {payment_reference} arrived for cancelled appointment {appointment_id}, refund required"
            )
            await self.dispatcher.payment_refund_required(
                AppointmentNotice.from_appointment(appointment), payment_reference, "cancelled"
            )
        raise InvalidTransition(appointment.status, "confirm")

    async def transfer_payment(self, appointment_id: str, user_id: str) -> ConfirmationResult:
        """
        Confirm a rescheduling hold with the payment of the appointment it replaces.

        The replaced appointment stays reschedule_requested until the caller cancels it.
        """
        appointment = self.get_for_user(appointment_id, user_id)
        if not appointment.rescheduled_from_id:
            raise InvalidTransition(appointment.status, "transfer payment to")
        source = self.get(appointment.rescheduled_from_id)
        if source.status != RESCHEDULE_REQUESTED or source.payment_status != PAYMENT_PAID:
            raise InvalidTransition(source.status, "transfer payment from")
        if appointment.status != PENDING_PAYMENT and appointment.payment_reference != source.payment_reference:
            raise InvalidTransition(appointment.status, "transfer payment to")
        return await self.confirm(appointment_id, source.payment_reference, source.payment_provider)

    # ------------------------------------------------------------------
    # Other transitions
    # ------------------------------------------------------------------

    def _successor_confirmed(self, appointment: Appointment) -> bool:
        return any(
            successor.rescheduled_from_id == appointment.id and successor.status in POST_CONFIRMATION_STATUSES
            for successor in self.repo.list_for_user(self.db, appointment.user_id)
        )

    def _try_move(self, appointment: Appointment, target: str, operation: str, values: Optional[dict] = None) -> bool:
        """
        Compare-and-set status change from the status the caller last read.
        Returns False, with the appointment refreshed, when another writer changed it first.
        """
        ensure_transition(appointment.status, target, operation)
        changes = {Appointment.status: target}
        changes.update(values or {})
        moved = self.repo.transition(self.db, appointment.id, (appointment.status,), changes)
        self.db.refresh(appointment)
        return moved

    def _move(self, appointment: Appointment, target: str, operation: str, values: Optional[dict] = None) -> Appointment:
        if not self._try_move(appointment, target, operation, values):
            raise InvalidTransition(appointment.status, operation)
        return appointment

    def _cancellation_values(self, appointment: Appointment, reason: str):
        if appointment.status == RESCHEDULE_REQUESTED and self._successor_confirmed(appointment):
            reason = REASON_RESCHEDULED

        was_paid = appointment.payment_status == PAYMENT_PAID
        refund_required = was_paid and reason != REASON_RESCHEDULED
        values = {
            Appointment.cancelled_at: self.clock.now(),
            Appointment.cancellation_reason: reason,
        }
        if was_paid:
            values[Appointment.payment_status] = PAYMENT_REFUND_PENDING if refund_required else PAYMENT_TRANSFERRED
        return values, refund_required

    async def cancel(self, appointment_id: str, reason: str = REASON_USER) -> Appointment:
        """
        Cancel and free the slot immediately.

        A reschedule_requested appointment whose replacement is already
        confirmed keeps its payment as transferred; any other paid
        appointment is marked for refund. If a payment lands while the
        cancellation is being written, the payment state is read again.
        """
        appointment = self.get(appointment_id)
        values, refund_required = self._cancellation_values(appointment, reason)
        # Statuses only move forward, so this ends once the appointment is cancelled or terminal
        while not self._try_move(appointment, CANCELLED, "cancel", values):
            logger.info(f"🔁 Appointment {appointment_id} became {appointment.status} while cancelling, retrying")
            values, refund_required = self._cancellation_values(appointment, reason)

        logger.info(f"🚫 Appointment {appointment_id} cancelled ({appointment.cancellation_reason})")
        await self.dispatcher.appointment_cancelled(
            AppointmentNotice.from_appointment(appointment),
            refund_required=refund_required,
            external_event_id=appointment.external_event_id,
        )
        return appointment

    def request_reschedule(self, appointment_id: str) -> Appointment:
        """Flag a confirmed appointment for rescheduling; the slot stays taken"""
        appointment = self._move(self.get(appointment_id), RESCHEDULE_REQUESTED, "request reschedule of")
        logger.info(f"🔄 Reschedule requested for appointment {appointment_id}")
        return appointment

    def mark_completed(self, appointment_id: str) -> Appointment:
        appointment = self._move(
            self.get(appointment_id), COMPLETED, "complete", {Appointment.completed_at: self.clock.now()}
        )
        logger.info(f"✅ Appointment {appointment_id} marked completed")
        return appointment

    def mark_missed(self, appointment_id: str) -> Appointment:
        appointment = self._move(self.get(appointment_id), MISSED, "mark missed")
        logger.info(f"⚠️ Appointment {appointment_id} marked missed")
        return appointment

    def set_meeting_details(
        self, appointment_id: str, meeting_link: str, event_id: Optional[str] = None
    ) -> Appointment:
        """Store the external meeting link; no status change"""
        appointment = self.get(appointment_id)
        if appointment.status not in POST_CONFIRMATION_STATUSES:
            raise InvalidTransition(appointment.status, "set meeting details for")
        fields = {"external_meeting_link": meeting_link}
        if event_id is not None:
            fields["external_event_id"] = event_id
        appointment = self.repo.update_fields(self.db, appointment, **fields)
        logger.info(f"✅ Meeting link stored for appointment {appointment_id}")
        return appointment

    def expire_stale_holds(self) -> List[str]:
        """Cancel every pending_payment appointment past its hold deadline"""
        now = self.clock.now()
        expired = [
            appointment_id
            for appointment_id in self.repo.get_expired_hold_ids(self.db, now)
            if self.repo.expire_hold(self.db, appointment_id, now)
        ]
        if expired:
            logger.info(f"⏰ Expired {len(expired)} unpaid hold(s)")
        return expired

    def delete(self, appointment_id: str) -> None:
        """Hard delete, for admin clean-up only"""
        appointment = self.get(appointment_id)
        self.repo.delete(self.db, appointment)
        logger.info(f"🗑️ Appointment {appointment_id} deleted")
