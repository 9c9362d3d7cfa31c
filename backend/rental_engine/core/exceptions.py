"""
Error taxonomy for the booking engine.

Every failure a state-changing operation can report is a subclass of
BookingEngineError. Each carries a stable machine-readable ``code`` and the
HTTP status the API layer maps it to, so callers always learn whether the
underlying state changed:

  - ValidationError  (400): bad input, never retried
  - ConflictError    (409): terminal for the losing caller, do not retry
  - NotFoundError    (404): terminal
  - TransientError   (503): storage conflict that survived the bounded retries
"""

from typing import Any


class BookingEngineError(Exception):
    code = "booking_engine_error"
    status_code = 500

    def __init__(self, message: str = "", **context: Any):
        self.message = message or self.__class__.__doc__ or self.code
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"error": self.code, "detail": self.message}
        if self.context:
            body["context"] = {k: str(v) for k, v in self.context.items()}
        return body


# Validation ------------------------------------------------------------------

class ValidationError(BookingEngineError):
    code = "validation_error"
    status_code = 400


class InvalidDateRange(ValidationError):
    """Return date must be after pickup date."""
    code = "invalid_date_range"


class InvalidOdometerReading(ValidationError):
    """Odometer reading cannot be lower than the check-in reading."""
    code = "invalid_odometer_reading"


class OdometerRegression(ValidationError):
    """Odometer reading cannot be lower than the vehicle's current odometer."""
    code = "odometer_regression"


class InvalidFuelLevel(ValidationError):
    """Fuel level must be between 0 and 100."""
    code = "invalid_fuel_level"


class PickupNotYetDue(ValidationError):
    """Vehicle cannot be checked in before the pickup date."""
    code = "pickup_not_yet_due"


class MissingDriverDocuments(ValidationError):
    """Either an existing driver or both license and insurance documents are required."""
    code = "missing_driver_documents"


# Conflict --------------------------------------------------------------------

class ConflictError(BookingEngineError):
    code = "conflict"
    status_code = 409


class InvalidTransition(ConflictError):
    """Booking status change is not allowed."""
    code = "invalid_transition"

    def __init__(self, current: Any, target: Any):
        current = getattr(current, "value", current)
        target = getattr(target, "value", target)
        super().__init__(
            f"Cannot move booking from '{current}' to '{target}'",
            current=current,
            target=target,
        )


class InvalidBookingState(ConflictError):
    """Booking is not in a state that allows this operation."""
    code = "invalid_booking_state"


class AlreadyAssigned(ConflictError):
    """Booking request was already accepted by another driver or is closed."""
    code = "already_assigned"


class RequestExpired(ConflictError):
    """Driver request is no longer open."""
    code = "request_expired"


class VehicleUnavailable(ConflictError):
    """Vehicle is not available."""
    code = "vehicle_unavailable"


class DriverNotEligible(ConflictError):
    """Driver is not a verified professional driver."""
    code = "driver_not_eligible"


# Not found -------------------------------------------------------------------

class NotFoundError(BookingEngineError):
    code = "not_found"
    status_code = 404


class BookingNotFound(NotFoundError):
    """Booking not found."""
    code = "booking_not_found"


class DriverNotFound(NotFoundError):
    """Driver not found."""
    code = "driver_not_found"


class VehicleNotFound(NotFoundError):
    """Vehicle not found."""
    code = "vehicle_not_found"


class UserNotFound(NotFoundError):
    """User not found."""
    code = "user_not_found"


# Transient -------------------------------------------------------------------

class TransientError(BookingEngineError):
    code = "transient_error"
    status_code = 503


class TransactionConflict(TransientError):
    """Operation could not be committed because of concurrent updates. Please try again."""
    code = "transaction_conflict"
