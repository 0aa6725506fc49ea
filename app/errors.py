"""
Booking domain errors

Every error carries the HTTP status and a stable machine-readable code so the
API layer can translate it without knowing the individual types.
"""

from typing import Optional


class BookingError(Exception):
    """Base class for booking domain errors"""

    status_code = 400
    code = "booking_error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)


class InvalidRule(BookingError):
    """Availability rule is malformed"""

    status_code = 422
    code = "invalid_rule"


class InvalidException(BookingError):
    """Availability exception range is malformed"""

    status_code = 422
    code = "invalid_exception"


class SlotNotOffered(BookingError):
    """Requested range is not a bookable slot"""

    status_code = 422
    code = "slot_not_offered"


class SlotAlreadyTaken(BookingError):
    """The requested slot was booked by someone else"""

    status_code = 409
    code = "slot_already_taken"


class ExternalCalendarUnavailable(BookingError):
    """External calendar could not be queried"""

    status_code = 503
    code = "external_calendar_unavailable"


class HoldExpired(BookingError):
    """The payment hold expired before the payment was confirmed"""

    status_code = 410
    code = "hold_expired"


class InvalidTransition(BookingError):
    """Operation not allowed in the appointment's current status"""

    status_code = 409
    code = "invalid_transition"

    def __init__(self, current_status: str, operation: str):
        self.current_status = current_status
        self.operation = operation
        super().__init__(f"Cannot {operation} an appointment in status '{current_status}'")


class AppointmentNotFound(BookingError):
    """Appointment not found"""

    status_code = 404
    code = "appointment_not_found"


class ProfessionalNotFound(BookingError):
    """Professional not found"""

    status_code = 404
    code = "professional_not_found"


class PaymentGatewayError(BookingError):
    """Payment provider rejected the request or could not be reached"""

    status_code = 502
    code = "payment_gateway_error"
