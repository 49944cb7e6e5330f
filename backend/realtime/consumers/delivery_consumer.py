"""Delivery tracking WebSocket consumer (customers, drivers and operators)."""

import logging
from typing import Any, Dict, List, Optional

from channels.db import database_sync_to_async
from django.db.models import Q

from realtime.broadcast import FLEET_GROUP
from realtime.subscriptions import delivery_group, driver_location_group
from .base import BaseConsumer

logger = logging.getLogger(__name__)


class DeliveryConsumer(BaseConsumer):
    """
    Track one or more deliveries.

    Client -> server:
        {"type": "track_delivery", "delivery_id": 12}
        {"type": "untrack_delivery", "delivery_id": 12}
        {"type": "reconcile"}

    Server -> client: ``delivery_updated`` and ``location_update`` for every
    tracked delivery; operators also get ``driver_status_changed``. A driver
    whose offer was released loses the delivery: the next event for it ends
    the tracking with ``tracking_revoked`` instead of being forwarded.
    """

    allowed_roles = ("customer", "driver", "operator")

    async def on_connect(self):
        if self.role == "operator":
            await self.subscriptions.subscribe(FLEET_GROUP)

        await self.send_json({
            "type": "connection_established",
            "user_id": self.user_id,
            "role": self.role,
        })
        await self._send_reconcile()

    async def handle_message(self, msg_type: str, data: Dict[str, Any]):
        if msg_type == "track_delivery":
            await self._track(data.get("delivery_id"))
        elif msg_type == "untrack_delivery":
            await self._untrack(data.get("delivery_id"))
        elif msg_type == "reconcile":
            await self._send_reconcile()
        elif msg_type == "ping":
            await self.send_success("pong")
        else:
            await self.send_error(f"Unknown message type: {msg_type}")

    async def _track(self, delivery_id):
        try:
            delivery_id = int(delivery_id)
        except (TypeError, ValueError):
            await self.send_error("delivery_id is required")
            return

        snapshot = await self._visible_delivery(delivery_id)
        if snapshot is None:
            await self.send_error("Delivery not found", code="delivery_not_found")
            return

        await self.subscriptions.subscribe(delivery_group(delivery_id))
        await self.subscriptions.subscribe(driver_location_group(delivery_id))
        logger.debug("User %s tracking delivery %s", self.user_id, delivery_id)

        await self.send_json({"type": "tracking_started", "delivery_id": delivery_id, "delivery": snapshot})

    async def _untrack(self, delivery_id, event_type="tracking_stopped"):
        try:
            delivery_id = int(delivery_id)
        except (TypeError, ValueError):
            await self.send_error("delivery_id is required")
            return

        await self.subscriptions.unsubscribe(delivery_group(delivery_id))
        await self.subscriptions.unsubscribe(driver_location_group(delivery_id))
        await self.send_json({"type": event_type, "delivery_id": delivery_id})

    def _still_visible(self, event) -> bool:
        # Customers keep their own deliveries; a driver only the one it holds
        if self.role != "driver":
            return True
        return event.get("driver_id") == self.user_id

    async def _send_reconcile(self):
        deliveries = await self._current_deliveries()
        await self.send_json({"type": "reconcile", "deliveries": deliveries})

    # ---------------------- Event Handlers (from group_send) ----------------------

    async def delivery_updated(self, event):
        if not self._still_visible(event):
            logger.debug("User %s lost delivery %s", self.user_id, event.get("delivery_id"))
            await self._untrack(event.get("delivery_id"), "tracking_revoked")
            return
        await self.forward_event(event)

    async def location_update(self, event):
        if not self._still_visible(event):
            await self._untrack(event.get("delivery_id"), "tracking_revoked")
            return
        await self.forward_event(event)

    async def driver_status_changed(self, event):
        await self.send_json({
            "type": "driver_status_changed",
            "driver_id": event.get("driver_id"),
            "is_online": event.get("is_online"),
            "is_available": event.get("is_available"),
            "latitude": event.get("latitude"),
            "longitude": event.get("longitude"),
            "vehicle_number": event.get("vehicle_number"),
        })

    # ---------------------- Database Helpers ----------------------

    def _visible_deliveries(self):
        from deliveries.models import Delivery

        deliveries = Delivery.objects.select_related("customer", "driver__driver_profile", "vehicle_type")
        if self.role == "operator":
            return deliveries
        return deliveries.filter(Q(customer_id=self.user_id) | Q(driver_id=self.user_id))

    @database_sync_to_async
    def _visible_delivery(self, delivery_id: int) -> Optional[Dict[str, Any]]:
        from deliveries.serializers import DeliverySerializer

        delivery = self._visible_deliveries().filter(id=delivery_id).first()
        if delivery is None:
            return None
        return DeliverySerializer(delivery).data

    @database_sync_to_async
    def _current_deliveries(self) -> List[Dict[str, Any]]:
        from deliveries.models import Delivery
        from deliveries.serializers import DeliverySerializer

        deliveries = self._visible_deliveries().exclude(status__in=Delivery.TERMINAL_STATUSES)
        if self.role == "operator":
            deliveries = deliveries[:100]
        return DeliverySerializer(deliveries, many=True).data
