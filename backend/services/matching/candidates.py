"""
Rank drivers for a delivery.

Uses driver locations and distances to build the ordered candidate list
(closest first, lowest driver id on ties).
"""

import logging
from typing import List, Tuple

from django.db.models import Exists, OuterRef

from common.utils import calculate_distance
from deliveries.models import Delivery, DeliveryOffer
from drivers.models import DriverProfile
from drivers.services import eligible_drivers

logger = logging.getLogger(__name__)

# Offers that rule a driver out for the rest of this delivery
EXCLUDING_OFFER_STATUSES = (DeliveryOffer.DECLINED, DeliveryOffer.EXPIRED)


def active_delivery_subquery():
    """Correlated ``EXISTS`` for 'this user already holds a non-terminal delivery'."""
    return Delivery.objects.filter(
        driver_id=OuterRef("user_id"),
        status__in=Delivery.ACTIVE_STATUSES,
    )


def rank_candidates(delivery: Delivery, now=None) -> List[Tuple[DriverProfile, float]]:
    """
    Ordered candidate drivers for one delivery.

    Args:
        delivery: Delivery being dispatched
        now: Reference time for the location freshness check

    Returns:
        List of ``(profile, distance_in_meters)`` sorted by distance
    """
    excluded = DeliveryOffer.objects.filter(
        delivery_id=delivery.id,
        status__in=EXCLUDING_OFFER_STATUSES,
    ).values("driver_id")

    profiles = (
        eligible_drivers(now)
        .select_related("user")
        .exclude(Exists(active_delivery_subquery()))
        .exclude(user_id__in=excluded)
    )

    pickup_lat = float(delivery.pickup_latitude)
    pickup_lon = float(delivery.pickup_longitude)

    candidates: List[Tuple[DriverProfile, float]] = []
    for profile in profiles:
        distance = calculate_distance(
            pickup_lat,
            pickup_lon,
            float(profile.current_latitude),
            float(profile.current_longitude),
        )
        candidates.append((profile, distance))

    # Sort closest -> farthest, then by driver id
    candidates.sort(key=lambda item: (item[1], item[0].user_id))

    logger.debug("Ranked %d candidates for delivery %s", len(candidates), delivery.id)
    return candidates
