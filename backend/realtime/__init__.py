"""
Realtime app for WebSocket communication.

This app provides:
- WebSocket consumers for drivers and delivery tracking
- Typed realtime messages and explicit group subscriptions
- Notification helpers for delivery lifecycle events
- Best-effort location broadcasting
- JWT authentication middleware for WebSocket connections

Key Components:
    - messages.py: Closed set of message variants with payload validation
    - subscriptions.py: Group names and subscription handles
    - broadcast.py: Location and driver-status broadcasting
    - notifications.py: Offer and delivery-change notifications
    - consumers/: WebSocket consumers (driver, delivery)
"""
