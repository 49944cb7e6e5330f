"""Realtime consumers for WebSocket communication."""

from .base import BaseConsumer
from .delivery_consumer import DeliveryConsumer
from .driver_consumer import DriverConsumer

__all__ = [
    "BaseConsumer",
    "DeliveryConsumer",
    "DriverConsumer",
]
