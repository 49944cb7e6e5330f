"""Custom exceptions for delivery coordination."""


class CoordinationError(Exception):
    """Base class for every coordination failure surfaced to callers."""
    code = "coordination_error"
    retryable = False


class DeliveryNotFound(CoordinationError):
    """Raised when a delivery cannot be found for the caller."""
    code = "delivery_not_found"


class DriverProfileNotFound(CoordinationError):
    """Raised when the caller has no driver profile."""
    code = "driver_profile_not_found"


class NotVerified(CoordinationError):
    """Raised when an unverified driver tries to go online."""
    code = "not_verified"


class LocationUnavailable(CoordinationError):
    """Raised when no usable GPS fix was supplied."""
    code = "location_unavailable"


class NoEligibleDrivers(CoordinationError):
    """Raised when nobody can be offered a delivery right now.

    The delivery stays pending and is picked up by the next dispatch cycle.
    """
    code = "no_eligible_drivers"
    retryable = True


class OfferExpired(CoordinationError):
    """Raised when an accept/decline lost the race or the offer timed out.

    This is a normal outcome; callers re-fetch the delivery instead of retrying.
    """
    code = "offer_expired"


class TransitionNotAllowed(CoordinationError):
    """Raised when a status change is not an edge of the state machine."""
    code = "transition_not_allowed"

    def __init__(self, message, current_status=None, requested_status=None):
        super().__init__(message)
        self.current_status = current_status
        self.requested_status = requested_status


class PublishFailed(CoordinationError):
    """Raised by best-effort publishers; always logged and dropped."""
    code = "publish_failed"
