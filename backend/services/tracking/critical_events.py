"""
Durable location log for critical delivery events.

Routine GPS samples only go over the broadcast channel; the rows written here
(pickup, delivery, shift start/end) form the auditable trail of a delivery.
"""

import logging
from typing import Optional

from deliveries.models import DriverLocationHistory
from .fixes import GpsFix

logger = logging.getLogger(__name__)


def record_critical_event(
    driver_id: int,
    event_type: str,
    fix: GpsFix,
    delivery_id: Optional[int] = None,
) -> DriverLocationHistory:
    """
    Append one critical-event row.

    Args:
        driver_id: User id of the driver
        event_type: One of DriverLocationHistory.EVENT_CHOICES
        fix: Position at the time of the event
        delivery_id: Delivery the event belongs to (None for shift events)
    """
    event = DriverLocationHistory.objects.create(
        driver_id=driver_id,
        delivery_id=delivery_id,
        event_type=event_type,
        latitude=round(fix.latitude, 7),
        longitude=round(fix.longitude, 7),
        accuracy=fix.accuracy,
        speed_kmh=fix.speed_kmh,
        heading=fix.heading,
        timestamp=fix.recorded_at,
    )
    logger.info(
        "Stored %s location for driver %s (delivery %s)",
        event_type, driver_id, delivery_id,
    )
    return event
