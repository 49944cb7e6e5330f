"""Driver WebSocket consumer for delivery offers and GPS uploads."""

import logging
from typing import Any, Dict, List

from channels.db import database_sync_to_async

from realtime.subscriptions import driver_deliveries_group
from services.delivery_management.exceptions import CoordinationError, LocationUnavailable
from services.tracking import GpsFix
from .base import BaseConsumer

logger = logging.getLogger(__name__)


class DriverConsumer(BaseConsumer):
    """
    WebSocket consumer for drivers.

    Handles:
        - Offers and updates for deliveries held by this driver
        - Raw GPS uploads (stored on the availability row, fed to the publisher)
        - Accept / decline over the socket
        - Reconcile snapshot on (re)connect
    """

    allowed_roles = ("driver",)

    async def on_connect(self):
        await self.subscriptions.subscribe(driver_deliveries_group(self.user_id))

        await self.send_json({
            "type": "connection_established",
            "user_id": self.user_id,
            "role": self.role,
            "message": "Driver connected successfully",
        })
        await self._send_reconcile()

    async def handle_message(self, msg_type: str, data: Dict[str, Any]):
        if msg_type == "location_update":
            await self._handle_location_update(data)
        elif msg_type == "accept_offer":
            await self._handle_offer_response(data, accept=True)
        elif msg_type == "decline_offer":
            await self._handle_offer_response(data, accept=False)
        elif msg_type == "reconcile":
            await self._send_reconcile()
        elif msg_type == "ping":
            await self.send_success("pong")
        else:
            await self.send_error(f"Unknown message type: {msg_type}")

    # ---------------------- Message Handlers ----------------------

    async def _handle_location_update(self, data: Dict[str, Any]):
        try:
            fix = GpsFix.from_data(data)
        except LocationUnavailable as exc:
            await self.send_error(str(exc), code=exc.code)
            return

        stored = await self._store_location(fix)
        if not stored:
            await self.send_error("Go online before sending your location", code="driver_offline")
            return

        logger.debug("Driver %s location %.6f, %.6f", self.user_id, fix.latitude, fix.longitude)

    async def _handle_offer_response(self, data: Dict[str, Any], accept: bool):
        delivery_id = data.get("delivery_id")
        if not delivery_id:
            await self.send_error("delivery_id is required")
            return

        try:
            delivery_id = int(delivery_id)
            status = await self._respond_to_offer(delivery_id, accept)
        except (TypeError, ValueError):
            await self.send_error("delivery_id must be an integer")
            return
        except CoordinationError as exc:
            # Lost race or timed out: the client re-reads its deliveries
            await self.send_error(str(exc), code=exc.code)
            await self._send_reconcile()
            return

        await self.send_success(
            "offer_accepted" if accept else "offer_declined",
            delivery_id=delivery_id,
            status=status,
        )

    async def _send_reconcile(self):
        deliveries = await self._active_deliveries()
        await self.send_json({"type": "reconcile", "deliveries": deliveries})

    # ---------------------- Event Handlers (from group_send) ----------------------

    async def delivery_offered(self, event):
        await self.forward_event(event)

    async def offer_withdrawn(self, event):
        await self.forward_event(event)

    # ---------------------- Database Helpers ----------------------

    @database_sync_to_async
    def _store_location(self, fix: GpsFix) -> bool:
        from drivers.models import DriverProfile
        from drivers.services import update_driver_location

        profile = DriverProfile.objects.filter(user_id=self.user_id).first()
        if profile is None:
            return False
        return update_driver_location(profile, fix)

    @database_sync_to_async
    def _respond_to_offer(self, delivery_id: int, accept: bool) -> str:
        from services.delivery_management import delivery_lifecycle as lifecycle

        if accept:
            result = lifecycle.accept_offer(self.user, delivery_id)
        else:
            result = lifecycle.decline_offer(self.user, delivery_id)
        return result.delivery.status

    @database_sync_to_async
    def _active_deliveries(self) -> List[Dict[str, Any]]:
        from deliveries.serializers import DeliverySerializer
        from services.delivery_management.delivery_lifecycle import get_driver_active_deliveries

        deliveries = get_driver_active_deliveries(self.user)
        return DeliverySerializer(deliveries, many=True).data
