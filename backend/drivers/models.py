from django.db import models
from django.conf import settings

User = settings.AUTH_USER_MODEL


class DriverProfile(models.Model):
    """Driver details plus the availability row the dispatcher matches against."""

    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='driver_profile')

    # Vehicle details
    vehicle_number = models.CharField(max_length=20, unique=True)
    vehicle_type = models.ForeignKey(
        'deliveries.VehicleType',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='drivers'
    )

    # Availability flags
    is_online = models.BooleanField(default=False)
    is_available = models.BooleanField(default=False)
    is_verified = models.BooleanField(default=False)

    # Last known position; cleared when the driver goes offline
    current_latitude = models.DecimalField(max_digits=10, decimal_places=6, null=True, blank=True)
    current_longitude = models.DecimalField(max_digits=10, decimal_places=6, null=True, blank=True)
    last_location_update = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'driver_profiles'
        indexes = [
            models.Index(fields=['is_online', 'is_available', 'is_verified'], name='driver_availability_idx'),
        ]

    def __str__(self):
        return f"{self.user.username} - {self.vehicle_number}"

    @property
    def has_location(self):
        return self.current_latitude is not None and self.current_longitude is not None
