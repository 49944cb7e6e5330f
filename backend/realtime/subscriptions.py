"""
Channel group names and explicit subscription handles.

A consumer never joins a group directly: it acquires a ``Subscription`` through
its ``SubscriptionSet`` and the set releases every handle it owns when the
connection goes away.
"""

import logging
from typing import Dict, List

logger = logging.getLogger(__name__)


# ---------------------- Group Names ----------------------

def driver_deliveries_group(driver_id: int) -> str:
    """Offers and updates for deliveries whose driver is ``driver_id``."""
    return f"driver-deliveries-{driver_id}"


def delivery_group(delivery_id: int) -> str:
    """Lifecycle updates of one delivery (customer side)."""
    return f"delivery-{delivery_id}"


def driver_location_group(delivery_id: int) -> str:
    """Broadcast-only driver positions for one delivery."""
    return f"driver-location-{delivery_id}"


# ---------------------- Handles ----------------------

class Subscription:
    """Membership of one channel in one group."""

    def __init__(self, channel_layer, group: str, channel_name: str):
        self.channel_layer = channel_layer
        self.group = group
        self.channel_name = channel_name
        self.active = False

    async def acquire(self) -> "Subscription":
        if not self.active:
            await self.channel_layer.group_add(self.group, self.channel_name)
            self.active = True
        return self

    async def release(self) -> None:
        if self.active:
            await self.channel_layer.group_discard(self.group, self.channel_name)
            self.active = False

    async def __aenter__(self):
        return await self.acquire()

    async def __aexit__(self, exc_type, exc, tb):
        await self.release()

    def __repr__(self):
        state = "active" if self.active else "released"
        return f"<Subscription {self.group} ({state})>"


class SubscriptionSet:
    """All subscriptions owned by one connection."""

    def __init__(self, channel_layer, channel_name: str):
        self.channel_layer = channel_layer
        self.channel_name = channel_name
        self._subscriptions: Dict[str, Subscription] = {}

    async def subscribe(self, group: str) -> Subscription:
        subscription = self._subscriptions.get(group)
        if subscription is None:
            subscription = Subscription(self.channel_layer, group, self.channel_name)
            self._subscriptions[group] = subscription
        return await subscription.acquire()

    async def unsubscribe(self, group: str) -> bool:
        subscription = self._subscriptions.pop(group, None)
        if subscription is None:
            return False
        await subscription.release()
        return True

    async def release_all(self) -> None:
        """Release every handle; keeps going if one release fails."""
        for group in list(self._subscriptions):
            try:
                await self.unsubscribe(group)
            except Exception:
                logger.exception("Failed to leave group %s", group)
                self._subscriptions.pop(group, None)

    @property
    def groups(self) -> List[str]:
        return sorted(self._subscriptions)

    def __contains__(self, group: str) -> bool:
        return group in self._subscriptions

    def __len__(self):
        return len(self._subscriptions)
