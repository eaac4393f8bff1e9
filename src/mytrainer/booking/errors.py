"""Booking error taxonomy.

Every rejection carries a specific, user-facing message plus a stable `code`
and the HTTP status the API layer should answer with. Core operations raise
these; `mytrainer.main` renders them.
"""


class BookingError(Exception):
    """Base class for all booking-engine rejections."""

    status_code = 500
    code = "booking_error"

    def __init__(self, message: str, code: str | None = None) -> None:
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(message)


class ValidationError(BookingError):
    """Missing or malformed input."""

    status_code = 400
    code = "validation_error"


class NotFoundError(BookingError):
    status_code = 404
    code = "not_found"


class AuthorizationError(BookingError):
    """The actor has no permission on this session, client or trainer."""

    status_code = 403
    code = "forbidden"

    def __init__(self, message: str, *, authenticated: bool = True) -> None:
        super().__init__(message)
        if not authenticated:
            self.status_code = 401
            self.code = "unauthorized"


class ConflictError(BookingError):
    """Timeslot occupied or outside the trainer's availability."""

    status_code = 409
    code = "conflict"


class ConcurrencyError(BookingError):
    """A guarded update lost a race; the same request can simply be retried."""

    status_code = 409
    code = "concurrent_modification"


class EntitlementError(BookingError):
    """Pack or subscription exhausted, inactive, or for another service type."""

    status_code = 400
    code = "entitlement_error"


class InternalError(BookingError):
    """Datastore failure. The message is safe to show; details stay in the logs."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = "An unexpected error occurred. Please try again.") -> None:
        super().__init__(message)
