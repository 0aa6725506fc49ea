"""
Appointment lifecycle

Status and payment-status values plus the table of allowed transitions.
"""

from ...errors import InvalidTransition

PENDING_PAYMENT = "pending_payment"
CONFIRMED = "confirmed"
COMPLETED = "completed"
MISSED = "missed"
CANCELLED = "cancelled"
RESCHEDULE_REQUESTED = "reschedule_requested"

# Statuses that occupy their time range
ACTIVE_STATUSES = (PENDING_PAYMENT, CONFIRMED, COMPLETED, MISSED, RESCHEDULE_REQUESTED)

# Statuses reachable only through a confirmed payment
POST_CONFIRMATION_STATUSES = (CONFIRMED, COMPLETED, MISSED, RESCHEDULE_REQUESTED)

PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"
PAYMENT_REFUND_PENDING = "refund_pending"
PAYMENT_TRANSFERRED = "transferred"

# Cancellation reasons
REASON_HOLD_EXPIRED = "hold_expired"
REASON_USER = "user"
REASON_ADMIN = "admin"
REASON_RESCHEDULED = "rescheduled"

TRANSITIONS = {
    PENDING_PAYMENT: {CONFIRMED, CANCELLED},
    CONFIRMED: {COMPLETED, MISSED, CANCELLED, RESCHEDULE_REQUESTED},
    RESCHEDULE_REQUESTED: {CANCELLED},
    COMPLETED: set(),
    MISSED: set(),
    CANCELLED: set(),
}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, set())


def ensure_transition(current: str, target: str, operation: str) -> None:
    if not can_transition(current, target):
        raise InvalidTransition(current, operation)
