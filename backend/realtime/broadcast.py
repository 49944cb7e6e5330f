"""
Best-effort broadcasting over the channel layer.

Location samples are fire-and-forget: a failed send is logged and dropped
because the next sample supersedes it within seconds. Nothing in this module
writes to the database.
"""

import logging
from typing import Optional

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

from services.delivery_management.exceptions import PublishFailed
from .messages import LocationUpdate, RealtimeMessage
from .subscriptions import driver_location_group

logger = logging.getLogger(__name__)

FLEET_GROUP = "fleet-map"


def send_to_group(group: str, message: RealtimeMessage) -> None:
    """
    Send one typed message to a channel group.

    Raises:
        PublishFailed: if there is no channel layer or the send fails
    """
    channel_layer = get_channel_layer()
    if channel_layer is None:
        raise PublishFailed("No channel layer configured")
    try:
        async_to_sync(channel_layer.group_send)(group, message.to_event())
    except Exception as exc:
        raise PublishFailed(f"Failed to publish {message.TYPE} to {group}") from exc


def broadcast_location(message: LocationUpdate) -> bool:
    """
    Publish a driver position to ``driver-location-{delivery_id}``.

    Returns:
        True if the sample was handed to the channel layer
    """
    group = driver_location_group(message.delivery_id)
    try:
        send_to_group(group, message)
    except PublishFailed as exc:
        logger.warning("Dropped location sample for delivery %s: %s", message.delivery_id, exc)
        return False

    logger.debug(
        "Broadcast location for delivery %s: %.6f, %.6f (%.1f km/h)",
        message.delivery_id, message.latitude, message.longitude, message.speed_kmh,
    )
    return True


def broadcast_driver_status(
    driver_id: int,
    is_online: bool,
    is_available: bool,
    lat: Optional[float] = None,
    lon: Optional[float] = None,
    vehicle_number: Optional[str] = None,
) -> bool:
    """Tell the operators' live map that a driver appeared, moved or left."""
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return False

    payload = {
        "type": "driver_status_changed",
        "driver_id": driver_id,
        "is_online": is_online,
        "is_available": is_available,
        "latitude": lat,
        "longitude": lon,
        "vehicle_number": vehicle_number,
    }
    try:
        async_to_sync(channel_layer.group_send)(FLEET_GROUP, payload)
    except Exception:
        logger.exception("Failed to broadcast status of driver %s", driver_id)
        return False
    return True
