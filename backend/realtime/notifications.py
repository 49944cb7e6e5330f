"""
Notification helpers for delivery lifecycle events.

Every successful mutation of a delivery row publishes the new snapshot:
    - to ``delivery-{id}`` for the customer (and anyone tracking it)
    - to ``driver-deliveries-{driverId}`` when a driver is attached

Delivery notifications are sent after the row is written. A failed send is
logged; clients reconcile against the current delivery state on reconnect.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from django.conf import settings

from services.delivery_management.exceptions import PublishFailed
from .broadcast import send_to_group
from .messages import DeliveryOffered, DeliveryUpdated, OfferWithdrawn, RealtimeMessage
from .subscriptions import delivery_group, driver_deliveries_group

logger = logging.getLogger(__name__)


def _send(group: str, message: RealtimeMessage) -> bool:
    try:
        send_to_group(group, message)
    except PublishFailed:
        logger.exception("WS -> %s: %s not delivered", group, message.TYPE)
        return False
    logger.debug("WS -> %s: %s", group, message.TYPE)
    return True


def delivery_snapshot(delivery) -> Dict[str, Any]:
    from deliveries.serializers import DeliverySerializer

    return dict(DeliverySerializer(delivery).data)


# ---------------------- Driver Notifications ----------------------

def notify_driver_offer(delivery, offer) -> bool:
    """Send a freshly dispatched offer to its driver."""
    timeout = getattr(settings, "OFFER_TIMEOUT_SECONDS", 300)
    sent_at = delivery.offered_at or offer.sent_at
    message = DeliveryOffered(
        delivery_id=delivery.id,
        driver_id=offer.driver_id,
        offer_id=offer.id,
        expires_at=(sent_at + timedelta(seconds=timeout)).isoformat(),
        delivery=delivery_snapshot(delivery),
    )
    return _send(driver_deliveries_group(offer.driver_id), message)


def notify_offer_withdrawn(
    delivery_id: int,
    driver_id: Optional[int],
    reason: str,
    message: str = "",
) -> bool:
    """Tell a driver that the offer they were shown is gone."""
    if not driver_id:
        return False
    return _send(
        driver_deliveries_group(driver_id),
        OfferWithdrawn(delivery_id=delivery_id, driver_id=driver_id, reason=reason, message=message),
    )


# ---------------------- Delivery Notifications ----------------------

def publish_delivery_change(delivery, message: str = "", notify_driver: bool = True) -> bool:
    """
    Publish the current state of a delivery.

    Args:
        delivery: Delivery instance as just written
        message: Optional human-readable text for the clients
        notify_driver: Also send to the attached driver's group

    Returns:
        True if the customer-side send succeeded
    """
    update = DeliveryUpdated(
        delivery_id=delivery.id,
        status=delivery.status,
        driver_id=delivery.driver_id,
        message=message,
        delivery=delivery_snapshot(delivery),
    )
    sent = _send(delivery_group(delivery.id), update)
    if notify_driver and delivery.driver_id:
        _send(driver_deliveries_group(delivery.driver_id), update)
    return sent


def notify_no_drivers(delivery) -> bool:
    """Tell the customer the delivery is still waiting for a driver."""
    return publish_delivery_change(
        delivery,
        "No drivers available nearby yet. We will keep looking.",
        notify_driver=False,
    )
