"""WebSocket URL routing for the realtime app."""

from django.urls import re_path

from .consumers.delivery_consumer import DeliveryConsumer
from .consumers.driver_consumer import DriverConsumer

websocket_urlpatterns = [
    # Driver-specific WebSocket endpoint
    # URL: ws://localhost:8000/ws/driver/?token=<access>
    re_path(
        r"ws/driver/$",
        DriverConsumer.as_asgi(),
        name="driver-ws"
    ),

    # Delivery tracking endpoint (customers, drivers and operators)
    # URL: ws://localhost:8000/ws/delivery/?token=<access>
    re_path(
        r"ws/delivery/$",
        DeliveryConsumer.as_asgi(),
        name="delivery-ws"
    ),
]
