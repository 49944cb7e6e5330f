from django.db import models
from django.contrib.auth.models import AbstractUser


class User(AbstractUser):
    """Customer, courier driver or dispatch operator."""
    CUSTOMER = 'customer'
    DRIVER = 'driver'
    OPERATOR = 'operator'

    ROLE_CHOICES = [
        (CUSTOMER, 'Customer'),
        (DRIVER, 'Driver'),
        (OPERATOR, 'Operator'),
    ]

    role = models.CharField(max_length=10, choices=ROLE_CHOICES)
    phone_number = models.CharField(max_length=15)
    profile_picture = models.ImageField(upload_to='profile_pictures/', null=True, blank=True)

    # Bumped once per delivered parcel, for both the customer and the driver
    completed_deliveries = models.IntegerField(default=0)

    class Meta:
        db_table = 'users'

    def __str__(self):
        return f"{self.username} ({self.get_role_display()})"

    @property
    def is_operator(self):
        return self.role == self.OPERATOR
