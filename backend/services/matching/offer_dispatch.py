"""
Offer dispatch.

A pending delivery is offered to one driver at a time:
1. Rank the eligible drivers (closest first)
2. Claim the delivery for the best candidate with a conditional update
3. If another dispatch claimed it first, stop; if the candidate got busy, try the next one
4. Publish the offer and schedule its expiry
"""

import logging
from typing import Optional

from django.conf import settings
from django.db import transaction
from django.db.models import Exists
from django.utils import timezone

from deliveries.models import Delivery, DeliveryOffer
from drivers.models import DriverProfile
from realtime.notifications import notify_driver_offer, notify_no_drivers, publish_delivery_change
from services.delivery_management.exceptions import NoEligibleDrivers
from services.delivery_management.transitions import conditional_update
from .candidates import rank_candidates

logger = logging.getLogger(__name__)


def _driver_is_free(driver_id: int):
    """Conditions that must still hold for ``driver_id`` when the claim is written."""
    holds_delivery = Delivery.objects.filter(driver_id=driver_id, status__in=Delivery.ACTIVE_STATUSES)
    still_available = DriverProfile.objects.filter(user_id=driver_id, is_online=True, is_available=True)
    return ~Exists(holds_delivery), Exists(still_available)


def schedule_offer_expiry(offer: DeliveryOffer):
    """Queue the expiry timer once the offer is committed; a rolled-back offer gets none."""
    countdown = getattr(settings, "OFFER_TIMEOUT_SECONDS", 300)

    def send():
        from deliveries.tasks import expire_delivery_offer_task

        try:
            expire_delivery_offer_task.apply_async((offer.id,), countdown=countdown)
        except Exception:
            # The periodic sweep still expires the offer
            logger.exception("Could not schedule expiry of offer %s", offer.id)

    transaction.on_commit(send)


def schedule_dispatch_retry(delivery: Delivery):
    countdown = getattr(settings, "DISPATCH_RETRY_SECONDS", 30)
    delivery_id = delivery.id

    def send():
        from deliveries.tasks import dispatch_delivery_task

        try:
            dispatch_delivery_task.apply_async((delivery_id,), countdown=countdown)
        except Exception:
            logger.exception("Could not schedule dispatch retry for delivery %s", delivery_id)

    transaction.on_commit(send)


def dispatch_delivery(delivery: Delivery) -> Optional[DeliveryOffer]:
    """
    Offer a pending delivery to the nearest eligible driver.

    Args:
        delivery: Delivery to dispatch

    Returns:
        The DeliveryOffer sent, or None if another dispatch claimed the delivery

    Raises:
        NoEligibleDrivers: nobody can take the delivery right now
    """
    candidates = rank_candidates(delivery)
    if not candidates:
        raise NoEligibleDrivers(f"No eligible drivers for delivery {delivery.id}")

    for profile, distance in candidates:
        now = timezone.now()
        claimed = conditional_update(
            delivery.id,
            {"status": Delivery.PENDING},
            {"status": Delivery.DRIVER_OFFERED, "driver_id": profile.user_id, "offered_at": now},
            *_driver_is_free(profile.user_id),
        )

        if not claimed:
            current = Delivery.objects.filter(id=delivery.id).values_list("status", flat=True).first()
            if current != Delivery.PENDING:
                logger.info("Delivery %s already claimed (status=%s)", delivery.id, current)
                return None
            logger.debug("Driver %s no longer free for delivery %s", profile.user_id, delivery.id)
            continue

        offer, _ = DeliveryOffer.objects.update_or_create(
            delivery_id=delivery.id,
            driver_id=profile.user_id,
            defaults={
                "status": DeliveryOffer.OFFERED,
                "distance_meters": round(distance, 1),
                "sent_at": now,
                "responded_at": None,
            },
        )
        delivery.refresh_from_db()

        logger.info(
            "Offered delivery %s to driver %s (%.0fm away)",
            delivery.id, profile.user_id, distance,
        )
        notify_driver_offer(delivery, offer)
        publish_delivery_change(delivery, "Your request has been sent to a nearby driver.", notify_driver=False)
        schedule_offer_expiry(offer)
        return offer

    raise NoEligibleDrivers(f"Every candidate for delivery {delivery.id} became unavailable")


def redispatch(delivery: Delivery) -> Optional[DeliveryOffer]:
    """
    Dispatch, or tell the customer we are still looking and try again later.
    """
    try:
        return dispatch_delivery(delivery)
    except NoEligibleDrivers as exc:
        logger.info("%s; retrying in %ss", exc, getattr(settings, "DISPATCH_RETRY_SECONDS", 30))
        delivery.refresh_from_db()
        notify_no_drivers(delivery)
        schedule_dispatch_retry(delivery)
        return None
