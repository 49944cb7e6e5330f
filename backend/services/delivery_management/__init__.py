"""
Delivery management service - state machine and error taxonomy.

Lifecycle operations live in ``delivery_lifecycle``; this package exposes the
primitives they are built on.
"""

from .exceptions import (
    CoordinationError,
    DeliveryNotFound,
    DriverProfileNotFound,
    LocationUnavailable,
    NoEligibleDrivers,
    NotVerified,
    OfferExpired,
    PublishFailed,
    TransitionNotAllowed,
)
from .transitions import ALLOWED_TRANSITIONS, check_transition, conditional_update

__all__ = [
    "ALLOWED_TRANSITIONS",
    "check_transition",
    "conditional_update",
    "CoordinationError",
    "DeliveryNotFound",
    "DriverProfileNotFound",
    "LocationUnavailable",
    "NoEligibleDrivers",
    "NotVerified",
    "OfferExpired",
    "PublishFailed",
    "TransitionNotAllowed",
]
