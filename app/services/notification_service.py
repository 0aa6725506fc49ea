"""
Appointment Notification Dispatcher
Hands confirmed and cancelled appointments to background jobs that manage the
external meeting event. Dispatch is best effort: a failure here never undoes
the status change that triggered it.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import date, time
from typing import Optional, Protocol

from fastapi import Request

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppointmentNotice:
    appointment_id: str
    professional_id: int
    user_id: str
    appointment_date: date
    start_time: time
    end_time: time

    @classmethod
    def from_appointment(cls, appointment) -> "AppointmentNotice":
        return cls(
            appointment_id=appointment.id,
            professional_id=appointment.professional_id,
            user_id=appointment.user_id,
            appointment_date=appointment.appointment_date,
            start_time=appointment.start_time,
            end_time=appointment.end_time,
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["appointment_date"] = self.appointment_date.isoformat()
        data["start_time"] = self.start_time.isoformat()
        data["end_time"] = self.end_time.isoformat()
        return data


class NotificationDispatcher(Protocol):
    async def appointment_confirmed(self, notice: AppointmentNotice) -> None:
        ...

    async def appointment_cancelled(
        self,
        notice: AppointmentNotice,
        refund_required: bool = False,
        external_event_id: Optional[str] = None,
    ) -> None:
        ...

    async def payment_refund_required(self, notice: AppointmentNotice, payment_reference: str, reason: str) -> None:
        ...


class LoggingNotificationDispatcher:
    """Dispatcher used when no job queue is available"""

    async def appointment_confirmed(self, notice: AppointmentNotice) -> None:
        logger.warning(
            f"⚠️ No job queue: meeting link for appointment {notice.appointment_id} must be set manually"
        )

    async def appointment_cancelled(
        self,
        notice: AppointmentNotice,
        refund_required: bool = False,
        external_event_id: Optional[str] = None,
    ) -> None:
        if refund_required:
            logger.warning(f"💸 Refund required for cancelled appointment {notice.appointment_id}")
        if external_event_id:
            logger.warning(
                f"⚠️ No job queue: calendar event {external_event_id} of appointment "
                f"{notice.appointment_id} must be removed manually"
            )

    async def payment_refund_required(self, notice: AppointmentNotice, payment_reference: str, reason: str) -> None:
        logger.warning(
            f"💸 Refund required for payment {payment_reference} of appointment {notice.appointment_id} ({reason})"
        )


class ArqNotificationDispatcher:
    """Enqueues meeting-link jobs on the arq worker"""

    def __init__(self, pool):
        self.pool = pool

    async def appointment_confirmed(self, notice: AppointmentNotice) -> None:
        try:
            # Fixed job id: duplicate confirmations collapse into one job
            job = await self.pool.enqueue_job(
                "create_meeting_link_task",
                notice.appointment_id,
                _job_id=f"meeting-link:{notice.appointment_id}",
            )
            if job is None:
                logger.info(f"ℹ️ Meeting link job already queued for appointment {notice.appointment_id}")
            else:
                logger.info(f"📥 Meeting link job queued for appointment {notice.appointment_id}")
        except Exception as e:
            logger.error(f"❌ Failed to queue meeting link job for {notice.appointment_id}: {e}")

    async def appointment_cancelled(
        self,
        notice: AppointmentNotice,
        refund_required: bool = False,
        external_event_id: Optional[str] = None,
    ) -> None:
        if refund_required:
            logger.warning(f"💸 Refund required for cancelled appointment {notice.appointment_id}")
        if not external_event_id:
            return
        try:
            await self.pool.enqueue_job(
                "cancel_calendar_event_task",
                notice.professional_id,
                external_event_id,
                _job_id=f"calendar-cancel:{notice.appointment_id}",
            )
            logger.info(f"📥 Calendar event removal queued for appointment {notice.appointment_id}")
        except Exception as e:
            logger.error(f"❌ Failed to queue calendar event removal for {notice.appointment_id}: {e}")

    async def payment_refund_required(self, notice: AppointmentNotice, payment_reference: str, reason: str) -> None:
        # Refunds are issued by hand from the provider dashboard
        logger.warning(
            f"💸 Refund required for payment {payment_reference} of appointment {notice.appointment_id} ({reason})"
        )


def get_notification_dispatcher(request: Request) -> NotificationDispatcher:
    """Dependency injection for the dispatcher created at startup"""
    dispatcher = getattr(request.app.state, "notification_dispatcher", None)
    return dispatcher or LoggingNotificationDispatcher()
