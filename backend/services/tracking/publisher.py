"""
Background publishing of driver positions while a delivery is active.

One ``LocationPublisher`` thread runs per delivery. It samples the driver's
latest fix at an interval that adapts to speed and hands it to the broadcast
channel. Once ``stop()`` returns no further sample is published.

A publisher also checks on every tick that its driver still holds the
delivery and exits by itself once it does not, so a stop issued in another
process cannot leave it running.
"""

import logging
import threading
from typing import Callable, Dict, List, Optional

from django.conf import settings
from django.db import close_old_connections, transaction

from .fixes import GpsFix

logger = logging.getLogger(__name__)

IDLE_INTERVAL_SECONDS = 300


def sampling_interval(speed_kmh: float, delivering: bool = True) -> int:
    """Seconds to wait before the next sample."""
    if not delivering:
        return IDLE_INTERVAL_SECONDS
    if speed_kmh > 50:
        return 5
    if speed_kmh > 20:
        return 10
    if speed_kmh > 5:
        return 20
    return 60


class LatestFixProvider:
    """Holds the most recent fix reported by one driver's device."""

    def __init__(self, fix: Optional[GpsFix] = None):
        self._lock = threading.Lock()
        self._fix = fix

    def update(self, fix: GpsFix) -> None:
        with self._lock:
            self._fix = fix

    def latest(self) -> Optional[GpsFix]:
        with self._lock:
            return self._fix


def delivery_is_trackable(delivery_id: int, driver_id: int) -> bool:
    """True while ``driver_id`` holds ``delivery_id`` between acceptance and hand-over."""
    from deliveries.models import Delivery

    try:
        return Delivery.objects.filter(
            id=delivery_id,
            driver_id=driver_id,
            status__in=Delivery.ASSIGNED_STATUSES,
        ).exists()
    finally:
        close_old_connections()


def _default_publish(message) -> bool:
    from realtime.broadcast import broadcast_location

    return broadcast_location(message)


class LocationPublisher:
    def __init__(
        self,
        driver_id: int,
        delivery_id: int,
        provider: LatestFixProvider,
        publish: Optional[Callable] = None,
        interval_func: Callable[[float], float] = sampling_interval,
        is_active: Optional[Callable[[int, int], bool]] = None,
    ):
        self.driver_id = driver_id
        self.delivery_id = delivery_id
        self.provider = provider
        self.publish = publish or _default_publish
        self.interval_func = interval_func
        self.is_active = is_active
        self.published = 0
        self._stop_event = threading.Event()
        self._publish_lock = threading.Lock()
        self._last_fix: Optional[GpsFix] = None
        self._thread = threading.Thread(
            target=self._run,
            name=f"location-publisher-{delivery_id}",
            daemon=True,
        )

    @property
    def running(self) -> bool:
        return self._thread.is_alive() and not self._stop_event.is_set()

    def start(self):
        if not self._thread.is_alive() and not self._stop_event.is_set():
            logger.info(
                "Starting location publisher for delivery %s (driver %s)",
                self.delivery_id,
                self.driver_id,
            )
            self._thread.start()

    def stop(self, timeout: Optional[float] = 5.0):
        self._stop_event.set()
        # An in-flight publish finishes before stop() returns
        with self._publish_lock:
            pass
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        logger.info("Stopped location publisher for delivery %s", self.delivery_id)

    def _still_owned(self) -> bool:
        if self.is_active is None:
            return True
        try:
            return self.is_active(self.delivery_id, self.driver_id)
        except Exception:
            logger.exception("Could not check delivery %s; publishing continues", self.delivery_id)
            return True

    def _run(self):
        interval = 0
        while not self._stop_event.wait(interval):
            if not self._still_owned():
                logger.info(
                    "Delivery %s no longer held by driver %s; publisher exiting",
                    self.delivery_id,
                    self.driver_id,
                )
                self._stop_event.set()
                break
            fix = self.provider.latest()
            if fix is None:
                interval = self.interval_func(0.0)
                continue
            interval = self.interval_func(fix.speed_kmh)
            if fix == self._last_fix:
                continue
            try:
                self._publish(fix)
            except Exception:  # pragma: no cover - best effort logging
                logger.exception("Location publisher for delivery %s failed", self.delivery_id)

    def _publish(self, fix: GpsFix):
        from realtime.messages import LocationUpdate

        message = LocationUpdate(
            driver_id=self.driver_id,
            delivery_id=self.delivery_id,
            latitude=fix.latitude,
            longitude=fix.longitude,
            timestamp=fix.recorded_at.isoformat(),
            speed_kmh=fix.speed_kmh,
            heading=fix.heading,
            accuracy=fix.accuracy,
        )
        with self._publish_lock:
            if self._stop_event.is_set():
                return
            self.publish(message)
            self.published += 1
            self._last_fix = fix


class PublisherRegistry:
    """Running publishers keyed by delivery id, plus one fix provider per driver."""

    def __init__(
        self,
        publish: Optional[Callable] = None,
        interval_func: Callable = sampling_interval,
        is_active: Optional[Callable[[int, int], bool]] = delivery_is_trackable,
    ):
        self.publish = publish
        self.interval_func = interval_func
        self.is_active = is_active
        self._lock = threading.Lock()
        self._publishers: Dict[int, LocationPublisher] = {}
        self._providers: Dict[int, LatestFixProvider] = {}

    def provider_for(self, driver_id: int) -> LatestFixProvider:
        with self._lock:
            provider = self._providers.get(driver_id)
            if provider is None:
                provider = LatestFixProvider()
                self._providers[driver_id] = provider
            return provider

    def feed(self, driver_id: int, fix: GpsFix) -> None:
        """Record a fresh fix; running publishers pick it up on their next tick."""
        self.provider_for(driver_id).update(fix)

    def start(self, driver_id: int, delivery_id: int, fix: Optional[GpsFix] = None) -> LocationPublisher:
        provider = self.provider_for(driver_id)
        if fix is not None:
            provider.update(fix)

        with self._lock:
            publisher = self._publishers.get(delivery_id)
            if publisher is not None and publisher.running:
                return publisher
            publisher = LocationPublisher(
                driver_id,
                delivery_id,
                provider,
                publish=self.publish,
                interval_func=self.interval_func,
                is_active=self.is_active,
            )
            self._publishers[delivery_id] = publisher
        publisher.start()
        return publisher

    def stop(self, delivery_id: int) -> bool:
        with self._lock:
            publisher = self._publishers.pop(delivery_id, None)
        if publisher is None:
            return False
        publisher.stop()
        return True

    def stop_for_driver(self, driver_id: int) -> List[int]:
        """Stop every publisher of one driver, returning the affected delivery ids."""
        with self._lock:
            delivery_ids = [
                delivery_id
                for delivery_id, publisher in self._publishers.items()
                if publisher.driver_id == driver_id
            ]
        for delivery_id in delivery_ids:
            self.stop(delivery_id)
        return delivery_ids

    def active_deliveries(self) -> List[int]:
        with self._lock:
            return sorted(d for d, p in self._publishers.items() if p.running)

    def stop_all(self):
        with self._lock:
            delivery_ids = list(self._publishers)
        for delivery_id in delivery_ids:
            self.stop(delivery_id)


_registry = PublisherRegistry()


def get_publisher_registry() -> PublisherRegistry:
    return _registry


def start_delivery_tracking(driver_id: int, delivery_id: int, fix: Optional[GpsFix] = None) -> None:
    """
    Start publishing positions for a delivery once the driver owns it.

    The publisher starts when the current transaction commits, so its first
    ownership check sees the accepted delivery.
    """
    if not getattr(settings, "LOCATION_PUBLISHING_ENABLED", True):
        return
    transaction.on_commit(lambda: get_publisher_registry().start(driver_id, delivery_id, fix))


def stop_delivery_tracking(delivery_id: int) -> bool:
    return get_publisher_registry().stop(delivery_id)


def stop_driver_tracking(driver_id: int) -> List[int]:
    return get_publisher_registry().stop_for_driver(driver_id)
