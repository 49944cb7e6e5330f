from django.db import models
from django.conf import settings
from django.utils import timezone


class VehicleType(models.Model):
    """Vehicle class a delivery is booked for; drives the price."""

    name = models.CharField(max_length=50, unique=True)
    description = models.TextField(blank=True, default='')
    max_weight_kg = models.DecimalField(max_digits=7, decimal_places=2, default=20)
    base_price = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    price_per_km = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = 'vehicle_types'
        ordering = ['base_price']

    def __str__(self):
        return self.name


class Delivery(models.Model):
    """One shipment request and the offer/assignment state of its driver."""

    PENDING = 'pending'
    DRIVER_OFFERED = 'driver_offered'
    DRIVER_ASSIGNED = 'driver_assigned'
    PICKUP_ARRIVED = 'pickup_arrived'
    PACKAGE_COLLECTED = 'package_collected'
    IN_TRANSIT = 'in_transit'
    DELIVERED = 'delivered'
    CANCELLED = 'cancelled'
    FAILED = 'failed'

    STATUS_CHOICES = [
        (PENDING, 'Pending'),
        (DRIVER_OFFERED, 'Delivery Offered'),
        (DRIVER_ASSIGNED, 'Driver Assigned'),
        (PICKUP_ARRIVED, 'Arrived at Pickup'),
        (PACKAGE_COLLECTED, 'Package Collected'),
        (IN_TRANSIT, 'In Transit'),
        (DELIVERED, 'Delivered'),
        (CANCELLED, 'Cancelled'),
        (FAILED, 'Failed'),
    ]

    TERMINAL_STATUSES = (DELIVERED, CANCELLED, FAILED)

    # A driver holding one of these cannot be offered another delivery
    ACTIVE_STATUSES = (DRIVER_OFFERED, DRIVER_ASSIGNED, PICKUP_ARRIVED, PACKAGE_COLLECTED, IN_TRANSIT)

    # Accepted and not yet finished: the driver is busy
    ASSIGNED_STATUSES = (DRIVER_ASSIGNED, PICKUP_ARRIVED, PACKAGE_COLLECTED, IN_TRANSIT)

    # Foreign keys
    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='deliveries'
    )

    driver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='assigned_deliveries'
    )

    vehicle_type = models.ForeignKey(
        VehicleType,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='deliveries'
    )

    # Pickup
    pickup_address = models.TextField(blank=True, default='')
    pickup_latitude = models.DecimalField(max_digits=9, decimal_places=6)
    pickup_longitude = models.DecimalField(max_digits=9, decimal_places=6)
    pickup_contact_name = models.CharField(max_length=100, blank=True, default='')
    pickup_contact_phone = models.CharField(max_length=20, blank=True, default='')
    pickup_instructions = models.TextField(blank=True, default='')

    # Drop-off
    delivery_address = models.TextField(blank=True, default='')
    delivery_latitude = models.DecimalField(max_digits=9, decimal_places=6)
    delivery_longitude = models.DecimalField(max_digits=9, decimal_places=6)
    delivery_contact_name = models.CharField(max_length=100, blank=True, default='')
    delivery_contact_phone = models.CharField(max_length=20, blank=True, default='')
    delivery_instructions = models.TextField(blank=True, default='')

    # Package
    package_description = models.TextField(blank=True, default='')
    package_weight = models.DecimalField(max_digits=7, decimal_places=2, null=True, blank=True)
    package_value = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)

    # Computed at booking time
    distance_km = models.DecimalField(max_digits=8, decimal_places=2, default=0)
    estimated_duration = models.PositiveIntegerField(null=True, blank=True)  # minutes
    total_price = models.DecimalField(max_digits=10, decimal_places=2, default=0)

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=PENDING)

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    offered_at = models.DateTimeField(null=True, blank=True)
    assigned_at = models.DateTimeField(null=True, blank=True)
    arrived_at_pickup_at = models.DateTimeField(null=True, blank=True)
    picked_up_at = models.DateTimeField(null=True, blank=True)
    in_transit_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    cancellation_reason = models.TextField(blank=True, default='')
    failure_reason = models.TextField(blank=True, default='')

    # Proof of delivery
    proof_photo_url = models.URLField(max_length=500, blank=True, default='')
    recipient_name = models.CharField(max_length=100, blank=True, default='')
    delivery_notes = models.TextField(blank=True, default='')
    signature_data = models.TextField(blank=True, default='')

    class Meta:
        db_table = 'deliveries'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'offered_at'], name='delivery_status_offered_idx'),
            models.Index(fields=['driver', 'status'], name='delivery_driver_status_idx'),
        ]

    def __str__(self):
        return f"Delivery #{self.id} - {self.customer} - {self.status}"

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    @property
    def driver_earnings(self):
        return round(float(self.total_price) * settings.DRIVER_COMMISSION_RATE, 2)


class DeliveryOffer(models.Model):
    """Ledger of which drivers were offered a delivery and how they answered."""

    OFFERED = 'offered'
    ACCEPTED = 'accepted'
    DECLINED = 'declined'
    EXPIRED = 'expired'
    WITHDRAWN = 'withdrawn'

    delivery = models.ForeignKey(
        Delivery,
        on_delete=models.CASCADE,
        related_name='offers'
    )

    driver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='delivery_offers',
        limit_choices_to={'role': 'driver'}
    )

    status = models.CharField(
        max_length=20,
        choices=[
            (OFFERED, 'Offered'),
            (ACCEPTED, 'Accepted'),
            (DECLINED, 'Declined'),
            (EXPIRED, 'Expired'),
            (WITHDRAWN, 'Withdrawn'),
        ],
        default=OFFERED,
    )

    distance_meters = models.FloatField(null=True, blank=True)
    sent_at = models.DateTimeField(default=timezone.now)
    responded_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'delivery_offers'
        ordering = ['sent_at']
        constraints = [
            models.UniqueConstraint(
                fields=['delivery', 'driver'],
                name='unique_delivery_driver_offer'
            )
        ]

    def __str__(self):
        return f"Offer #{self.id} - Delivery {self.delivery_id} -> Driver {self.driver_id} ({self.status})"


class DriverLocationHistory(models.Model):
    """Durable driver positions at critical events only; routine samples are never stored."""

    PICKUP = 'pickup'
    DELIVERY = 'delivery'
    SHIFT_START = 'shift_start'
    SHIFT_END = 'shift_end'

    EVENT_CHOICES = [
        (PICKUP, 'Pickup'),
        (DELIVERY, 'Delivery'),
        (SHIFT_START, 'Shift start'),
        (SHIFT_END, 'Shift end'),
    ]

    driver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='location_history'
    )

    delivery = models.ForeignKey(
        Delivery,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='location_events'
    )

    event_type = models.CharField(max_length=20, choices=EVENT_CHOICES)
    latitude = models.DecimalField(max_digits=10, decimal_places=7)
    longitude = models.DecimalField(max_digits=10, decimal_places=7)
    accuracy = models.FloatField(null=True, blank=True)
    speed_kmh = models.FloatField(null=True, blank=True)
    heading = models.FloatField(null=True, blank=True)
    timestamp = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'driver_location_history'
        ordering = ['-timestamp']
        indexes = [
            models.Index(fields=['driver', '-timestamp'], name='location_driver_time_idx'),
            models.Index(fields=['delivery'], name='location_delivery_idx'),
        ]

    def __str__(self):
        return f"{self.event_type} @ {self.latitude},{self.longitude} (driver {self.driver_id})"
