"""
Delivery state machine.

The transition table is the single source of allowed edges; every mutation
goes through ``conditional_update`` so that a write only lands if the row is
still in the state the caller read.
"""

import logging
from typing import Any, Dict, FrozenSet

from django.utils import timezone

from deliveries.models import Delivery
from .exceptions import TransitionNotAllowed

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    Delivery.PENDING: frozenset({Delivery.DRIVER_OFFERED, Delivery.CANCELLED, Delivery.FAILED}),
    Delivery.DRIVER_OFFERED: frozenset({
        Delivery.DRIVER_ASSIGNED,
        Delivery.PENDING,
        Delivery.CANCELLED,
        Delivery.FAILED,
    }),
    Delivery.DRIVER_ASSIGNED: frozenset({Delivery.PICKUP_ARRIVED, Delivery.CANCELLED}),
    Delivery.PICKUP_ARRIVED: frozenset({Delivery.PACKAGE_COLLECTED, Delivery.CANCELLED}),
    Delivery.PACKAGE_COLLECTED: frozenset({Delivery.IN_TRANSIT, Delivery.CANCELLED}),
    Delivery.IN_TRANSIT: frozenset({Delivery.DELIVERED, Delivery.CANCELLED}),
    Delivery.DELIVERED: frozenset(),
    Delivery.CANCELLED: frozenset(),
    Delivery.FAILED: frozenset(),
}

# Forward path driven by the assigned driver
DRIVER_PROGRESSION = (
    Delivery.DRIVER_ASSIGNED,
    Delivery.PICKUP_ARRIVED,
    Delivery.PACKAGE_COLLECTED,
    Delivery.IN_TRANSIT,
    Delivery.DELIVERED,
)


def can_transition(current: str, new: str) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, frozenset())


def check_transition(current: str, new: str) -> None:
    """
    Raises:
        TransitionNotAllowed: if ``current -> new`` is not in the table
    """
    if not can_transition(current, new):
        raise TransitionNotAllowed(
            f"Cannot move delivery from {current} to {new}",
            current_status=current,
            requested_status=new,
        )


def next_driver_status(current: str):
    """The stage that follows ``current`` on the driver's path, or None."""
    try:
        index = DRIVER_PROGRESSION.index(current)
    except ValueError:
        return None
    if index + 1 >= len(DRIVER_PROGRESSION):
        return None
    return DRIVER_PROGRESSION[index + 1]


def conditional_update(delivery_id: int, expected: Dict[str, Any], changes: Dict[str, Any], *conditions) -> bool:
    """
    Compare-and-swap on one delivery row.

    Issues a single ``UPDATE ... WHERE id = ? AND <expected>``.

    Args:
        delivery_id: Row to update
        expected: Field lookups the row must still match (e.g. ``{"status": "pending"}``)
        changes: Field values to write
        *conditions: Extra Q objects or boolean expressions the update requires

    Returns:
        True if exactly one row was updated, False if the row had moved on
    """
    new_status = changes.get("status")
    old_status = expected.get("status")
    if new_status is not None and isinstance(old_status, str):
        check_transition(old_status, new_status)

    changes = {**changes, "updated_at": changes.get("updated_at") or timezone.now()}
    updated = Delivery.objects.filter(*conditions, id=delivery_id, **expected).update(**changes)
    if not updated:
        logger.debug("Conditional update of delivery %s lost: expected %s", delivery_id, expected)
    return updated == 1
