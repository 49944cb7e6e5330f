"""Fixtures shared by the test modules."""

from django.utils import timezone

from accounts.models import User
from deliveries.models import Delivery
from drivers.models import DriverProfile


class RecordingChannelLayer:
    """Channel layer stand-in that keeps every group message it is given."""

    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    async def group_send(self, group, message):
        if self.fail:
            raise ConnectionError("channel layer unavailable")
        self.sent.append((group, message))

    async def group_add(self, group, channel):
        pass

    async def group_discard(self, group, channel):
        pass

    def messages_for(self, group):
        return [message for sent_group, message in self.sent if sent_group == group]

    def types_for(self, group):
        return [message['type'] for message in self.messages_for(group)]


def make_customer(username='customer'):
    return User.objects.create_user(
        username=username,
        password='pass1234',
        role='customer',
        phone_number='9000000000',
    )


def make_driver(username, lat=None, lon=None, verified=True, online=True, available=True, fresh=True):
    user = User.objects.create_user(
        username=username,
        password='driver1234',
        role='driver',
        phone_number='9100000000',
    )
    has_location = lat is not None and lon is not None
    DriverProfile.objects.create(
        user=user,
        vehicle_number='NCR-%s' % username,
        is_verified=verified,
        is_online=online,
        is_available=available,
        current_latitude=lat,
        current_longitude=lon,
        last_location_update=timezone.now() if has_location and fresh else None,
    )
    return user


def make_delivery(customer, **overrides):
    fields = dict(
        customer=customer,
        pickup_address='Ayala Avenue, Makati',
        pickup_latitude=14.5547,
        pickup_longitude=121.0244,
        delivery_address='Bonifacio High Street, Taguig',
        delivery_latitude=14.5509,
        delivery_longitude=121.0503,
        status=Delivery.PENDING,
    )
    fields.update(overrides)
    return Delivery.objects.create(**fields)
