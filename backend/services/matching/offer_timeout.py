"""Coordinator-side expiry of offers nobody answered."""

import logging
from datetime import timedelta
from typing import Optional, Tuple

from django.conf import settings
from django.db import close_old_connections
from django.utils import timezone

from deliveries.models import Delivery
from services.delivery_management.delivery_lifecycle import expire_offer

logger = logging.getLogger(__name__)


def process_offer_timeouts(timeout_seconds: Optional[int] = None) -> Tuple[int, int]:
    """
    Expire every offer older than ``timeout_seconds`` and re-dispatch its delivery.

    This does not depend on the driver's device or on the per-offer timer; a
    delivery left in ``driver_offered`` by a crashed client is released here.

    Returns a tuple of (expired_count, redispatched_count).
    """
    if timeout_seconds is None:
        timeout_seconds = getattr(settings, "OFFER_TIMEOUT_SECONDS", 300)

    cutoff = timezone.now() - timedelta(seconds=timeout_seconds)
    stale = (
        Delivery.objects.filter(status=Delivery.DRIVER_OFFERED, offered_at__lte=cutoff)
        .order_by("offered_at")
        .values_list("id", "driver_id")
    )

    expired_count = 0
    redispatched_count = 0

    for delivery_id, driver_id in list(stale):
        if not expire_offer(delivery_id, driver_id):
            continue
        expired_count += 1
        if Delivery.objects.filter(id=delivery_id, status=Delivery.DRIVER_OFFERED).exists():
            redispatched_count += 1

    if expired_count:
        logger.info("Offer sweep expired %s, re-dispatched %s", expired_count, redispatched_count)

    # Close stale DB connections for long-running workers
    close_old_connections()
    return expired_count, redispatched_count
