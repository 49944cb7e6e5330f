"""Driver position handling: fixes, critical-event log and live publishing."""

from .critical_events import record_critical_event
from .fixes import GpsFix, require_fix
from .publisher import (
    LatestFixProvider,
    LocationPublisher,
    PublisherRegistry,
    get_publisher_registry,
    sampling_interval,
    start_delivery_tracking,
    stop_delivery_tracking,
    stop_driver_tracking,
)

__all__ = [
    "GpsFix",
    "require_fix",
    "record_critical_event",
    "LatestFixProvider",
    "LocationPublisher",
    "PublisherRegistry",
    "get_publisher_registry",
    "sampling_interval",
    "start_delivery_tracking",
    "stop_delivery_tracking",
    "stop_driver_tracking",
]
