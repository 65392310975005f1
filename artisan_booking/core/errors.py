from fastapi import status


class BookingError(Exception):
    """Base class for every error the booking core reports to its callers.

    ``code`` is the stable machine-readable kind, ``message`` is safe to show to
    the caller and never carries storage details.
    """

    code = "booking_error"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Booking request failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class UnauthenticatedError(BookingError):
    code = "unauthenticated"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Could not validate credentials"


class ForbiddenError(BookingError):
    code = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Not enough permissions"


class NotFoundError(BookingError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"


class InvalidIntervalError(BookingError):
    code = "invalid_interval"
    default_message = "Invalid booking interval"


class ServiceMismatchError(BookingError):
    code = "service_mismatch"
    default_message = "Service does not belong to artisan"


class InactiveArtisanError(BookingError):
    code = "inactive_artisan"
    default_message = "This artisan is not currently accepting bookings"


class SlotConflictError(BookingError):
    code = "slot_conflict"
    status_code = status.HTTP_409_CONFLICT
    default_message = "This time slot is already booked"


class AlreadyHandledError(BookingError):
    code = "already_handled"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Booking already handled"


class InvalidStateError(BookingError):
    code = "invalid_state"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Booking status does not allow this action"


class ModificationConflictError(BookingError):
    code = "modification_conflict"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Modification request state does not allow this action"


class InvalidActionError(BookingError):
    code = "invalid_action"
    default_message = "Invalid action"


class TransientStoreError(BookingError):
    code = "transient_store_error"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Booking is being updated concurrently. Retry the request."
    retry_after_seconds = 1


class InvalidInputError(BookingError):
    code = "invalid_input"
    default_message = "Invalid booking input"
