"""Booking domain errors"""


class BookingError(Exception):
    """Base class for business-rule failures surfaced to the caller"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BookingError):
    """A required field is missing or malformed; nothing was changed"""


class ConflictError(BookingError):
    """The job moved on underneath the caller (assignment race lost, no longer pending)"""


class NotFound(BookingError):
    """Job or user id does not exist"""


class TransportError(Exception):
    """A notification gateway could not deliver a message"""
