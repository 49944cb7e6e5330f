"""Base WebSocket consumer with shared functionality for all consumers."""

import logging
from typing import Any, Dict

from channels.generic.websocket import AsyncJsonWebsocketConsumer

from realtime.messages import MalformedMessage, parse_message
from realtime.subscriptions import SubscriptionSet

logger = logging.getLogger(__name__)


class BaseConsumer(AsyncJsonWebsocketConsumer):
    """
    Base consumer with shared connection management and helper methods.

    Every group membership is held through ``self.subscriptions`` and
    released on disconnect.

    Subclasses should override:
        - on_connect(): join groups and send the reconcile snapshot
        - handle_message(msg_type, data): handle incoming messages
    """

    allowed_roles = None

    async def connect(self):
        self.user = self.scope["user"]

        if self.user.is_anonymous:
            await self.close()
            return

        self.user_id = getattr(self.user, "id", None)
        self.role = getattr(self.user, "role", None)

        if self.allowed_roles and self.role not in self.allowed_roles:
            await self.close(code=4003)
            return

        self.subscriptions = SubscriptionSet(self.channel_layer, self.channel_name)

        await self.accept()
        await self.on_connect()

    async def on_connect(self):
        """Override in subclass for custom connect logic."""
        await self.send_json({
            "type": "connection_established",
            "user_id": self.user_id,
            "role": self.role,
        })

    async def disconnect(self, close_code):
        """Release every subscription of this connection."""
        subscriptions = getattr(self, "subscriptions", None)
        if subscriptions is None:
            return
        try:
            await subscriptions.release_all()
            await self.on_disconnect(close_code)
        except Exception:
            logger.exception("Error during disconnect for user %s", getattr(self, "user_id", "unknown"))

    async def on_disconnect(self, close_code):
        """Override in subclass for custom disconnect logic."""
        pass

    async def receive_json(self, data: Dict[str, Any]):
        """Route incoming messages to appropriate handlers."""
        msg_type = data.get("type") if isinstance(data, dict) else None
        if not msg_type:
            await self.send_error("Message type is required")
            return

        try:
            await self.handle_message(msg_type, data)
        except Exception:
            logger.exception("Error handling message type %s", msg_type)
            await self.send_error(f"Error processing {msg_type}")

    async def handle_message(self, msg_type: str, data: Dict[str, Any]):
        """Override in subclass to handle specific message types."""
        await self.send_error(f"Unknown message type: {msg_type}")

    # ---------------------- Response Helpers ----------------------

    async def send_error(self, message: str, code: str = None):
        payload = {"type": "error", "message": message}
        if code:
            payload["code"] = code
        await self.send_json(payload)

    async def send_success(self, event_type: str, **kwargs):
        await self.send_json({"type": event_type, **kwargs})

    async def forward_event(self, event: Dict[str, Any]):
        """Validate a group event against its message variant and pass it on."""
        try:
            message = parse_message(event)
        except MalformedMessage as exc:
            logger.warning("Dropped malformed %s event: %s", event.get("type"), exc)
            return
        await self.send_json(message.to_event())

    # ---------------------- Group Event Handlers ----------------------
    # These handle group_send events from server-side code

    async def delivery_updated(self, event):
        await self.forward_event(event)
