"""
Domain errors raised by the booking core.

None of these are fatal: the API layer turns them into 4xx/5xx responses and
the user retries with different input.
"""


class BookingError(Exception):
    """Base class for every error the booking core raises on purpose."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BookingError):
    """Input rejected before any persistence call."""


class NotFoundError(ValidationError):
    """A referenced room, squad, booking or series does not exist."""


class ConflictError(BookingError):
    """The proposed interval(s) overlap an existing booking of the same room."""

    default_message = "This time slot is already booked. Please choose a different time."

    def __init__(self, message: str | None = None, conflicts=None):
        super().__init__(message or self.default_message)
        self.conflicts = list(conflicts or [])


class PersistenceError(BookingError):
    """Any other failure reported by the database."""
