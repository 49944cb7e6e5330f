"""HTTP mapping of coordination errors."""

from rest_framework import status
from rest_framework.response import Response

from services.delivery_management.exceptions import (
    CoordinationError,
    DeliveryNotFound,
    DriverProfileNotFound,
    LocationUnavailable,
    NoEligibleDrivers,
    NotVerified,
    OfferExpired,
    TransitionNotAllowed,
)

ERROR_STATUS = {
    NotVerified: status.HTTP_403_FORBIDDEN,
    LocationUnavailable: status.HTTP_400_BAD_REQUEST,
    OfferExpired: status.HTTP_409_CONFLICT,
    TransitionNotAllowed: status.HTTP_409_CONFLICT,
    DeliveryNotFound: status.HTTP_404_NOT_FOUND,
    DriverProfileNotFound: status.HTTP_404_NOT_FOUND,
    NoEligibleDrivers: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def error_response(exc: CoordinationError) -> Response:
    """Response for a coordination error; the client re-fetches state on 409."""
    http_status = ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    body = {"error": str(exc), "code": exc.code}
    if isinstance(exc, TransitionNotAllowed) and exc.current_status:
        body["current_status"] = exc.current_status
    if isinstance(exc, OfferExpired):
        body["error"] = "Offer no longer available"
    return Response(body, status=http_status)
