"""
Driver availability ledger.

Owns the online / available / verified flags and the last known position of
every driver. A driver may only receive offers while ``is_eligible`` holds:
online, available, verified and with coordinates fresher than
``DRIVER_LOCATION_MAX_AGE_SECONDS``.
"""

import logging
from datetime import timedelta
from typing import Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from deliveries.models import Delivery, DriverLocationHistory
from drivers.models import DriverProfile
from realtime.broadcast import broadcast_driver_status
from services.delivery_management.exceptions import NotVerified
from services.tracking import (
    GpsFix,
    get_publisher_registry,
    record_critical_event,
    require_fix,
    start_delivery_tracking,
    stop_driver_tracking,
)

logger = logging.getLogger(__name__)


def location_max_age() -> timedelta:
    return timedelta(seconds=getattr(settings, "DRIVER_LOCATION_MAX_AGE_SECONDS", 300))


def _assigned_delivery_ids(driver_id: int):
    return list(
        Delivery.objects.filter(driver_id=driver_id, status__in=Delivery.ASSIGNED_STATUSES)
        .values_list("id", flat=True)
    )


def _broadcast_status(profile: DriverProfile):
    broadcast_driver_status(
        driver_id=profile.user_id,
        is_online=profile.is_online,
        is_available=profile.is_available,
        lat=float(profile.current_latitude) if profile.current_latitude is not None else None,
        lon=float(profile.current_longitude) if profile.current_longitude is not None else None,
        vehicle_number=profile.vehicle_number,
    )


# ---------------------- Online / Offline ----------------------

@transaction.atomic
def set_online(profile: DriverProfile, fix: Optional[GpsFix]) -> DriverProfile:
    """
    Put a driver online at the position of ``fix``.

    A driver that still holds an accepted delivery comes back busy and its
    position streaming resumes; an open offer alone leaves it available.

    Raises:
        NotVerified: the driver has not been verified by an operator
        LocationUnavailable: no usable GPS fix was supplied
    """
    if not profile.is_verified:
        raise NotVerified("Your account must be verified before going online")
    fix = require_fix(fix)

    was_online = profile.is_online
    assigned = _assigned_delivery_ids(profile.user_id)
    DriverProfile.objects.filter(pk=profile.pk).update(
        is_online=True,
        is_available=not assigned,
        current_latitude=round(fix.latitude, 6),
        current_longitude=round(fix.longitude, 6),
        last_location_update=timezone.now(),
    )
    profile.refresh_from_db()

    if not was_online:
        record_critical_event(profile.user_id, DriverLocationHistory.SHIFT_START, fix)
    get_publisher_registry().feed(profile.user_id, fix)
    for delivery_id in assigned:
        start_delivery_tracking(profile.user_id, delivery_id, fix)

    logger.info("Driver %s online at %.6f, %.6f", profile.user_id, fix.latitude, fix.longitude)
    _broadcast_status(profile)
    return profile


@transaction.atomic
def set_offline(profile: DriverProfile, fix: Optional[GpsFix] = None) -> DriverProfile:
    """Take a driver offline, stop their publishers and forget their position."""
    stopped = stop_driver_tracking(profile.user_id)
    if stopped:
        logger.info("Stopped location publishing for driver %s: deliveries %s", profile.user_id, stopped)

    if profile.is_online:
        if fix is None and profile.has_location:
            fix = GpsFix(float(profile.current_latitude), float(profile.current_longitude))
        if fix is not None:
            record_critical_event(profile.user_id, DriverLocationHistory.SHIFT_END, fix)

    DriverProfile.objects.filter(pk=profile.pk).update(
        is_online=False,
        is_available=False,
        current_latitude=None,
        current_longitude=None,
        last_location_update=None,
    )
    profile.refresh_from_db()

    logger.info("Driver %s offline", profile.user_id)
    _broadcast_status(profile)
    return profile


# ---------------------- Busy / Free ----------------------

def mark_busy(driver_id: int) -> bool:
    return DriverProfile.objects.filter(user_id=driver_id).update(is_available=False) == 1


def mark_free(driver_id: int) -> bool:
    """Make the driver available again; an offline driver stays unavailable."""
    return DriverProfile.objects.filter(user_id=driver_id, is_online=True).update(is_available=True) == 1


# ---------------------- Location ----------------------

def update_driver_location(profile: DriverProfile, fix: GpsFix) -> bool:
    """
    Refresh the position of an online driver.

    The fix also feeds any running location publisher of the driver.

    Returns:
        False if the driver is offline (nothing is stored)
    """
    fix = require_fix(fix)
    updated = DriverProfile.objects.filter(pk=profile.pk, is_online=True).update(
        current_latitude=round(fix.latitude, 6),
        current_longitude=round(fix.longitude, 6),
        last_location_update=timezone.now(),
    )
    if not updated:
        logger.debug("Ignored location of offline driver %s", profile.user_id)
        return False

    get_publisher_registry().feed(profile.user_id, fix)
    profile.refresh_from_db()
    return True


# ---------------------- Eligibility ----------------------

def eligible_drivers(now=None):
    """Driver profiles that may receive an offer right now."""
    now = now or timezone.now()
    return DriverProfile.objects.filter(
        is_online=True,
        is_available=True,
        is_verified=True,
        current_latitude__isnull=False,
        current_longitude__isnull=False,
        last_location_update__gte=now - location_max_age(),
    )


def is_eligible(profile: DriverProfile, now=None) -> bool:
    now = now or timezone.now()
    return bool(
        profile.is_online
        and profile.is_available
        and profile.is_verified
        and profile.has_location
        and profile.last_location_update is not None
        and profile.last_location_update >= now - location_max_age()
    )
