"""
Core delivery lifecycle operations.

This module contains the business logic for moving a delivery through its
states, extracted from the views layer for testability and reuse. Every
write is a conditional update guarded by the transition table, so a caller
that lost a race gets an exception instead of a silently ignored change.
"""

import logging
import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional, Tuple

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from common.utils import calculate_distance
from deliveries.models import Delivery, DeliveryOffer, DriverLocationHistory
from drivers.models import DriverProfile
from drivers.services import mark_busy, mark_free
from realtime.notifications import notify_offer_withdrawn, publish_delivery_change
from services.tracking import (
    GpsFix,
    record_critical_event,
    require_fix,
    start_delivery_tracking,
    stop_delivery_tracking,
)
from .exceptions import (
    DeliveryNotFound,
    DriverProfileNotFound,
    LocationUnavailable,
    OfferExpired,
    TransitionNotAllowed,
)
from .transitions import DRIVER_PROGRESSION, check_transition, conditional_update

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")

# Timestamp stamped when a delivery enters each stage
STAGE_TIMESTAMPS = {
    Delivery.DRIVER_ASSIGNED: "assigned_at",
    Delivery.PICKUP_ARRIVED: "arrived_at_pickup_at",
    Delivery.PACKAGE_COLLECTED: "picked_up_at",
    Delivery.IN_TRANSIT: "in_transit_at",
    Delivery.DELIVERED: "delivered_at",
}

STATUS_MESSAGES = {
    Delivery.DRIVER_ASSIGNED: "Your delivery has been accepted. The driver is on the way.",
    Delivery.PICKUP_ARRIVED: "The driver has arrived at the pickup location.",
    Delivery.PACKAGE_COLLECTED: "Your package has been collected.",
    Delivery.IN_TRANSIT: "Your package is on its way.",
    Delivery.DELIVERED: "Your package has been delivered.",
}

# Stages whose position is kept in the critical-event log
CRITICAL_EVENTS = {
    Delivery.PACKAGE_COLLECTED: DriverLocationHistory.PICKUP,
    Delivery.DELIVERED: DriverLocationHistory.DELIVERY,
}

PROOF_FIELDS = ("recipient_name", "proof_photo_url", "delivery_notes", "signature_data")


@dataclass
class DeliveryResult:
    """Result object for delivery operations."""
    success: bool
    delivery: Optional[Delivery] = None
    message: str = ""
    extra: Optional[Dict[str, Any]] = None


# ===================== Helpers =====================

def _get_delivery(delivery_id: int, **filters) -> Delivery:
    delivery = Delivery.objects.filter(id=delivery_id, **filters).first()
    if delivery is None:
        raise DeliveryNotFound("Delivery not found")
    return delivery


def _driver_profile(driver) -> DriverProfile:
    try:
        return driver.driver_profile
    except DriverProfile.DoesNotExist:
        raise DriverProfileNotFound("Driver profile not found")


def _current_status(delivery_id: int) -> Optional[str]:
    return Delivery.objects.filter(id=delivery_id).values_list("status", flat=True).first()


def _resolve_fix(driver_id: int, fix: Optional[GpsFix]) -> GpsFix:
    """Use the supplied fix, falling back to the driver's last stored position."""
    if fix is not None:
        return require_fix(fix)
    profile = DriverProfile.objects.filter(user_id=driver_id).first()
    if profile is None or not profile.has_location:
        raise LocationUnavailable("A GPS fix is required for this step")
    return GpsFix(float(profile.current_latitude), float(profile.current_longitude))


def estimate_delivery(vehicle_type, pickup: Tuple[float, float], dropoff: Tuple[float, float]):
    """
    Distance, duration and price of a delivery.

    Returns:
        ``(distance_km, estimated_minutes, total_price)``
    """
    meters = calculate_distance(pickup[0], pickup[1], dropoff[0], dropoff[1])
    distance_km = Decimal(str(meters / 1000)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)

    speed = getattr(settings, "ESTIMATED_SPEED_KMH", 25)
    minutes = max(1, math.ceil(float(distance_km) / speed * 60))

    if vehicle_type is None:
        price = Decimal("0.00")
    else:
        price = (vehicle_type.base_price + vehicle_type.price_per_km * distance_km).quantize(
            TWO_PLACES, rounding=ROUND_HALF_UP
        )
    return distance_km, minutes, price


# ===================== Customer Operations =====================

@transaction.atomic
def create_delivery(customer, vehicle_type=None, **fields) -> DeliveryResult:
    """
    Book a delivery and offer it to the nearest eligible driver.

    Args:
        customer: User placing the order
        vehicle_type: Optional VehicleType used for pricing
        **fields: Delivery model fields (pickup/delivery coordinates required)

    Returns:
        DeliveryResult with the created delivery
    """
    distance_km, minutes, price = estimate_delivery(
        vehicle_type,
        (float(fields["pickup_latitude"]), float(fields["pickup_longitude"])),
        (float(fields["delivery_latitude"]), float(fields["delivery_longitude"])),
    )
    delivery = Delivery.objects.create(
        customer=customer,
        vehicle_type=vehicle_type,
        distance_km=distance_km,
        estimated_duration=minutes,
        total_price=price,
        status=Delivery.PENDING,
        **fields,
    )
    logger.info("Delivery %s created by customer %s (%s km)", delivery.id, customer.id, distance_km)

    from services.matching import redispatch

    offer = redispatch(delivery)
    delivery.refresh_from_db()

    if offer:
        message = "Looking for a driver. Your request has been sent to a nearby driver."
    else:
        message = "No drivers available nearby yet. We will keep looking."

    return DeliveryResult(
        success=True,
        delivery=delivery,
        message=message,
        extra={"driver_offered": offer is not None},
    )


@transaction.atomic
def cancel_delivery(actor, delivery_id: int, reason: str = "No reason provided") -> DeliveryResult:
    """
    Cancel a delivery on behalf of its customer or an operator.

    Raises:
        DeliveryNotFound: the delivery does not exist or belongs to someone else
        TransitionNotAllowed: the delivery is already finished, or changed meanwhile
    """
    delivery = _get_delivery(delivery_id)
    if not getattr(actor, "is_operator", False) and delivery.customer_id != actor.id:
        raise DeliveryNotFound("Delivery not found")

    current = delivery.status
    driver_id = delivery.driver_id
    check_transition(current, Delivery.CANCELLED)

    cancelled = conditional_update(
        delivery_id,
        {"status": current, "driver_id": driver_id},
        {
            "status": Delivery.CANCELLED,
            "cancelled_at": timezone.now(),
            "cancellation_reason": reason or "",
        },
    )
    if not cancelled:
        raise TransitionNotAllowed(
            "Delivery changed while cancelling; reload it and try again",
            current_status=_current_status(delivery_id),
            requested_status=Delivery.CANCELLED,
        )

    if driver_id:
        if current == Delivery.DRIVER_OFFERED:
            _close_offer(delivery_id, driver_id, DeliveryOffer.WITHDRAWN)
            notify_offer_withdrawn(delivery_id, driver_id, "cancelled", "The customer cancelled this delivery.")
        else:
            mark_free(driver_id)
            stop_delivery_tracking(delivery_id)

    delivery.refresh_from_db()
    logger.info("Delivery %s cancelled by user %s (was %s)", delivery_id, actor.id, current)
    publish_delivery_change(delivery, "This delivery has been cancelled.")

    return DeliveryResult(
        success=True,
        delivery=delivery,
        message="Delivery cancelled successfully",
        extra={"had_driver": driver_id is not None},
    )


def get_customer_active_deliveries(customer):
    return (
        Delivery.objects.filter(customer=customer)
        .exclude(status__in=Delivery.TERMINAL_STATUSES)
        .select_related("driver__driver_profile", "vehicle_type")
    )


# ===================== Driver Operations =====================

@transaction.atomic
def accept_offer(driver, delivery_id: int) -> DeliveryResult:
    """
    Accept the delivery currently offered to this driver.

    Raises:
        OfferExpired: the offer was taken, declined, timed out or never ours
    """
    profile = _driver_profile(driver)
    now = timezone.now()

    accepted = conditional_update(
        delivery_id,
        {"status": Delivery.DRIVER_OFFERED, "driver_id": driver.id},
        {"status": Delivery.DRIVER_ASSIGNED, "assigned_at": now},
    )
    if not accepted:
        if _current_status(delivery_id) is None:
            raise DeliveryNotFound("Delivery not found")
        raise OfferExpired("This delivery offer is no longer available")

    mark_busy(driver.id)
    DeliveryOffer.objects.filter(delivery_id=delivery_id, driver_id=driver.id).update(
        status=DeliveryOffer.ACCEPTED,
        responded_at=now,
    )

    fix = None
    if profile.has_location:
        fix = GpsFix(float(profile.current_latitude), float(profile.current_longitude))
    start_delivery_tracking(driver.id, delivery_id, fix)

    delivery = _get_delivery(delivery_id)
    logger.info("Driver %s accepted delivery %s", driver.id, delivery_id)
    publish_delivery_change(delivery, STATUS_MESSAGES[Delivery.DRIVER_ASSIGNED])

    return DeliveryResult(
        success=True,
        delivery=delivery,
        message="Delivery accepted. Navigate to the pickup location.",
    )


def _close_offer(delivery_id: int, driver_id: int, status: str):
    DeliveryOffer.objects.filter(
        delivery_id=delivery_id,
        driver_id=driver_id,
        status=DeliveryOffer.OFFERED,
    ).update(status=status, responded_at=timezone.now())


def _release_offer(delivery_id: int, driver_id: int, offer_status: str) -> Delivery:
    """
    Hand an offered delivery back to the pool.

    Declines and timeouts both end here, so they leave the delivery row in
    exactly the same state: pending, no driver, no offer timestamp.
    """
    released = conditional_update(
        delivery_id,
        {"status": Delivery.DRIVER_OFFERED, "driver_id": driver_id},
        {"status": Delivery.PENDING, "driver_id": None, "offered_at": None},
    )
    if not released:
        raise OfferExpired("This delivery offer is no longer available")

    _close_offer(delivery_id, driver_id, offer_status)
    delivery = _get_delivery(delivery_id)

    reason = "declined" if offer_status == DeliveryOffer.DECLINED else "expired"
    notify_offer_withdrawn(
        delivery_id,
        driver_id,
        reason,
        "You declined this delivery." if reason == "declined" else "Your delivery offer has timed out.",
    )
    publish_delivery_change(delivery, "Looking for another driver.", notify_driver=False)
    logger.info("Offer of delivery %s to driver %s %s", delivery_id, driver_id, reason)
    return delivery


@transaction.atomic
def decline_offer(driver, delivery_id: int) -> DeliveryResult:
    """
    Decline the delivery offered to this driver and offer it to someone else.

    Raises:
        OfferExpired: the offer is no longer held by this driver
    """
    if _current_status(delivery_id) is None:
        raise DeliveryNotFound("Delivery not found")
    delivery = _release_offer(delivery_id, driver.id, DeliveryOffer.DECLINED)

    from services.matching import redispatch

    offer = redispatch(delivery)
    delivery.refresh_from_db()
    return DeliveryResult(
        success=True,
        delivery=delivery,
        message="Offer declined." + (" The next available driver has been notified." if offer else ""),
        extra={"redispatched": offer is not None},
    )


@transaction.atomic
def expire_offer(delivery_id: int, driver_id: int) -> bool:
    """
    Time out the offer of ``delivery_id`` to ``driver_id`` and re-dispatch.

    Returns:
        False if the offer had already been answered or released
    """
    try:
        delivery = _release_offer(delivery_id, driver_id, DeliveryOffer.EXPIRED)
    except OfferExpired:
        return False

    from services.matching import redispatch

    redispatch(delivery)
    return True


@transaction.atomic
def advance_status(driver, delivery_id: int, new_status: str, fix: Optional[GpsFix] = None, **proof) -> DeliveryResult:
    """
    Move an assigned delivery one stage forward.

    Args:
        driver: Assigned driver
        delivery_id: Delivery to advance
        new_status: The next stage; stages cannot be skipped
        fix: Current GPS fix; used for the pickup and delivery records
        **proof: Proof-of-delivery fields, stored when ``new_status`` is delivered

    Raises:
        DeliveryNotFound: the delivery is not assigned to this driver
        TransitionNotAllowed: ``new_status`` is not the next stage
        LocationUnavailable: no position is known for a critical event
    """
    delivery = _get_delivery(delivery_id, driver=driver)
    current = delivery.status

    if new_status not in DRIVER_PROGRESSION[1:]:
        raise TransitionNotAllowed(
            f"Drivers cannot set status {new_status}",
            current_status=current,
            requested_status=new_status,
        )
    check_transition(current, new_status)

    event_type = CRITICAL_EVENTS.get(new_status)
    if event_type:
        fix = _resolve_fix(driver.id, fix)

    changes = {"status": new_status, STAGE_TIMESTAMPS[new_status]: timezone.now()}
    if new_status == Delivery.DELIVERED:
        changes.update({name: proof[name] for name in PROOF_FIELDS if proof.get(name)})

    advanced = conditional_update(delivery_id, {"status": current, "driver_id": driver.id}, changes)
    if not advanced:
        raise TransitionNotAllowed(
            "Delivery changed meanwhile; reload it and try again",
            current_status=_current_status(delivery_id),
            requested_status=new_status,
        )

    if event_type:
        record_critical_event(driver.id, event_type, fix, delivery_id=delivery_id)

    if new_status == Delivery.DELIVERED:
        stop_delivery_tracking(delivery_id)
        mark_free(driver.id)
        get_user_model().objects.filter(id__in=[driver.id, delivery.customer_id]).update(
            completed_deliveries=F("completed_deliveries") + 1
        )

    delivery.refresh_from_db()
    logger.info("Delivery %s: %s -> %s by driver %s", delivery_id, current, new_status, driver.id)
    publish_delivery_change(delivery, STATUS_MESSAGES[new_status])

    return DeliveryResult(success=True, delivery=delivery, message=f"Status updated to {new_status}")


def complete_delivery(
    driver,
    delivery_id: int,
    fix: Optional[GpsFix] = None,
    recipient_name: str = "",
    proof_photo_url: str = "",
    delivery_notes: str = "",
    signature_data: str = "",
) -> DeliveryResult:
    """Confirm the hand-over with proof of delivery."""
    result = advance_status(
        driver,
        delivery_id,
        Delivery.DELIVERED,
        fix=fix,
        recipient_name=recipient_name,
        proof_photo_url=proof_photo_url,
        delivery_notes=delivery_notes,
        signature_data=signature_data,
    )
    result.message = "Delivery completed successfully"
    result.extra = {"earnings": result.delivery.driver_earnings}
    return result


def get_driver_active_deliveries(driver):
    return (
        Delivery.objects.filter(driver=driver, status__in=Delivery.ACTIVE_STATUSES)
        .select_related("customer", "vehicle_type")
        .order_by("offered_at")
    )


def get_driver_history(driver, limit: int = 50):
    return (
        Delivery.objects.filter(driver=driver, status__in=Delivery.TERMINAL_STATUSES)
        .select_related("customer", "vehicle_type")
        .order_by("-updated_at")[:limit]
    )


# ===================== System Operations =====================

@transaction.atomic
def fail_delivery(delivery_id: int, reason: str) -> DeliveryResult:
    """Give up on a delivery that never got a driver."""
    delivery = _get_delivery(delivery_id)
    current = delivery.status
    driver_id = delivery.driver_id
    check_transition(current, Delivery.FAILED)

    failed = conditional_update(
        delivery_id,
        {"status": current, "driver_id": driver_id},
        {"status": Delivery.FAILED, "failure_reason": reason},
    )
    if not failed:
        raise TransitionNotAllowed(
            "Delivery changed meanwhile",
            current_status=_current_status(delivery_id),
            requested_status=Delivery.FAILED,
        )

    if driver_id:
        _close_offer(delivery_id, driver_id, DeliveryOffer.WITHDRAWN)
        notify_offer_withdrawn(delivery_id, driver_id, "cancelled", "This delivery is no longer available.")

    delivery.refresh_from_db()
    logger.warning("Delivery %s failed: %s", delivery_id, reason)
    publish_delivery_change(delivery, "We could not find a driver for this delivery.")
    return DeliveryResult(success=True, delivery=delivery, message=reason)
