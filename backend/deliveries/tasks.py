"""Celery tasks for delivery-related background processing."""

import logging

from celery import shared_task
from django.conf import settings

logger = logging.getLogger(__name__)


@shared_task
def expire_delivery_offer_task(offer_id: int):
    """
    Expire a delivery offer after the decision window.

    Scheduled when an offer is sent to a driver. If the driver has not
    answered, the delivery goes back to pending and is offered to the next
    driver. Returns True if the offer was expired by this run.
    """
    from deliveries.models import DeliveryOffer
    from services.delivery_management.delivery_lifecycle import expire_offer

    offer = DeliveryOffer.objects.filter(id=offer_id).first()
    if offer is None:
        logger.warning("Offer %s not found for expiry task", offer_id)
        return False

    if offer.status != DeliveryOffer.OFFERED or offer.responded_at is not None:
        logger.info("Offer %s already answered (status: %s)", offer_id, offer.status)
        return False

    logger.info("Expiring offer %s for delivery %s", offer_id, offer.delivery_id)
    return expire_offer(offer.delivery_id, offer.driver_id)


@shared_task
def sweep_expired_offers_task():
    """Periodic backstop: expire every offer older than OFFER_TIMEOUT_SECONDS."""
    from services.matching.offer_timeout import process_offer_timeouts

    expired, redispatched = process_offer_timeouts(settings.OFFER_TIMEOUT_SECONDS)
    return {"expired": expired, "redispatched": redispatched}


@shared_task(bind=True, max_retries=None)
def dispatch_delivery_task(self, delivery_id: int):
    """
    Offer a pending delivery again, retrying while nobody is eligible.

    After DISPATCH_MAX_RETRIES attempts the delivery is marked failed.
    """
    from deliveries.models import Delivery
    from services.delivery_management.delivery_lifecycle import fail_delivery
    from services.delivery_management.exceptions import NoEligibleDrivers, TransitionNotAllowed
    from services.matching import dispatch_delivery

    delivery = Delivery.objects.filter(id=delivery_id).first()
    if delivery is None or delivery.status != Delivery.PENDING:
        return None

    try:
        offer = dispatch_delivery(delivery)
    except NoEligibleDrivers as exc:
        if self.request.retries >= settings.DISPATCH_MAX_RETRIES:
            logger.warning("Giving up on delivery %s after %s attempts", delivery_id, self.request.retries + 1)
            try:
                fail_delivery(delivery_id, "No drivers available")
            except TransitionNotAllowed:
                logger.info("Delivery %s left pending before it could be failed", delivery_id)
            return None
        raise self.retry(exc=exc, countdown=settings.DISPATCH_RETRY_SECONDS)

    return offer.id if offer else None
