"""
Error kinds raised by the booking engine.

Every kind is an expected, caller-recoverable condition. Each carries a stable
``code`` for clients and the HTTP status the routes answer with.
"""


class BookingError(Exception):
    code = "BOOKING_ERROR"
    status_code = 400
    default_message = "Booking request failed"

    def __init__(self, message=None, **details):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self):
        return {"error": self.message, "code": self.code, **self.details}


class InvalidInterval(BookingError):
    code = "INVALID_INTERVAL"
    default_message = "Start date must be before end date"


class PastStartDate(BookingError):
    code = "PAST_START_DATE"
    default_message = "Start date cannot be in the past"


class PropertyNotFound(BookingError):
    code = "PROPERTY_NOT_FOUND"
    status_code = 404
    default_message = "Property not found"


class PropertyUnavailable(BookingError):
    code = "PROPERTY_UNAVAILABLE"
    status_code = 409
    default_message = "Property is currently not available for booking"


class SelfBooking(BookingError):
    code = "SELF_BOOKING"
    default_message = "You cannot book your own property"


class OverlapConflict(BookingError):
    code = "OVERLAP_CONFLICT"
    status_code = 409
    default_message = "Property is already booked for the selected period"


class BookingNotFound(BookingError):
    code = "BOOKING_NOT_FOUND"
    status_code = 404
    default_message = "Booking not found"


class AccessDenied(BookingError):
    code = "ACCESS_DENIED"
    status_code = 403
    default_message = "Access denied"


class InvalidTransition(BookingError):
    code = "INVALID_TRANSITION"
    status_code = 409

    def __init__(self, current, requested, message=None):
        self.current = current
        self.requested = requested
        super().__init__(
            message or f"Cannot move booking from {current} to {requested}",
            current_status=current,
            requested_status=requested,
        )


class MissingReason(BookingError):
    code = "MISSING_REASON"
    default_message = "Rejection reason is required"


class StorageUnavailable(BookingError):
    code = "STORAGE_UNAVAILABLE"
    status_code = 503
    default_message = "Booking storage is unavailable, try again later"
