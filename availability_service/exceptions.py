class AvailabilityError(Exception):
    """Base class for errors raised by the Availability service."""


class InvalidRequestError(AvailabilityError, ValueError):
    """
    Raised when an availability query is malformed.

    Examples: an unparseable ``HH:MM`` start time, a non-positive duration,
    an invalid calendar date or an empty space identifier. These are
    rejected before any repository lookup happens.
    """


class RepositoryError(AvailabilityError):
    """
    Raised when bookings could not be loaded.

    Callers must treat this as "availability unknown", never as "free".
    """


class BookingNotFound(AvailabilityError):
    """Raised when a booking id does not exist."""


class InvalidStatusTransition(AvailabilityError):
    """Raised when a booking status change is not allowed."""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move booking from '{current}' to '{requested}'")
