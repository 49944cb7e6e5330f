import asyncio
import threading
import time
from types import SimpleNamespace
from unittest.mock import patch

from asgiref.sync import async_to_sync
from channels.layers import InMemoryChannelLayer
from channels.testing import WebsocketCommunicator
from django.contrib.auth.models import AnonymousUser
from django.test import SimpleTestCase, TestCase
from rest_framework_simplejwt.tokens import AccessToken

from common.testing import RecordingChannelLayer, make_customer, make_delivery, make_driver
from services.tracking import GpsFix, LatestFixProvider, LocationPublisher, sampling_interval
from services.tracking.publisher import delivery_is_trackable

from .broadcast import broadcast_location
from .consumers import DeliveryConsumer, DriverConsumer
from .messages import DeliveryUpdated, LocationUpdate, MalformedMessage, OfferWithdrawn, parse_message
from .middleware import JWTAuthMiddleware
from .notifications import notify_offer_withdrawn, publish_delivery_change
from .subscriptions import SubscriptionSet, delivery_group, driver_location_group


def location(**overrides):
	fields = dict(
		driver_id=7,
		delivery_id=42,
		latitude=14.5995,
		longitude=121.0244,
		timestamp='2024-05-01T08:00:00+00:00',
		speed_kmh=32.0,
	)
	fields.update(overrides)
	return LocationUpdate(**fields)


class MessageParsingTests(SimpleTestCase):
	def test_channel_event_parses_back_to_its_variant(self):
		event = location().to_event()

		self.assertEqual(event['type'], 'location_update')
		self.assertEqual(parse_message(event), location())

	def test_unknown_type_is_rejected(self):
		with self.assertRaises(MalformedMessage):
			parse_message({'type': 'teleport', 'delivery_id': 1})

	def test_missing_required_field_is_rejected(self):
		event = location().to_event()
		del event['delivery_id']

		with self.assertRaises(MalformedMessage):
			parse_message(event)

	def test_out_of_range_coordinates_are_rejected(self):
		with self.assertRaises(MalformedMessage):
			parse_message(location(latitude=123.0).to_event())

	def test_withdrawal_reason_must_be_known(self):
		with self.assertRaises(MalformedMessage):
			parse_message({'type': 'offer_withdrawn', 'delivery_id': 1, 'driver_id': 2, 'reason': 'bored'})

		message = parse_message({'type': 'offer_withdrawn', 'delivery_id': 1, 'driver_id': 2, 'reason': 'expired'})
		self.assertIsInstance(message, OfferWithdrawn)
		self.assertEqual(message.message, '')

	def test_non_object_payload_is_rejected(self):
		with self.assertRaises(MalformedMessage):
			parse_message(['location_update'])


class SubscriptionTests(SimpleTestCase):
	def test_released_subscription_stops_receiving(self):
		layer = InMemoryChannelLayer()

		async def scenario():
			channel = await layer.new_channel()
			subscriptions = SubscriptionSet(layer, channel)
			group = delivery_group(5)

			await subscriptions.subscribe(group)
			await subscriptions.subscribe(group)
			self.assertEqual(subscriptions.groups, [group])

			await layer.group_send(group, {'type': 'delivery_updated', 'delivery_id': 5, 'status': 'pending'})
			received = await asyncio.wait_for(layer.receive(channel), timeout=1)
			self.assertEqual(received['delivery_id'], 5)

			await subscriptions.release_all()
			self.assertEqual(len(subscriptions), 0)
			self.assertNotIn(channel, layer.groups.get(group, {}))

		async_to_sync(scenario)()

	def test_unsubscribe_unknown_group(self):
		layer = InMemoryChannelLayer()
		subscriptions = SubscriptionSet(layer, 'specific.abc')

		self.assertFalse(async_to_sync(subscriptions.unsubscribe)('delivery-1'))


class SamplingIntervalTests(SimpleTestCase):
	def test_interval_follows_speed(self):
		self.assertEqual(sampling_interval(80), 5)
		self.assertEqual(sampling_interval(35), 10)
		self.assertEqual(sampling_interval(12), 20)
		self.assertEqual(sampling_interval(0), 60)

	def test_idle_interval_when_not_delivering(self):
		self.assertEqual(sampling_interval(80, delivering=False), 300)


class LocationPublisherTests(SimpleTestCase):
	def wait_for(self, condition, timeout=2.0):
		deadline = time.monotonic() + timeout
		while not condition() and time.monotonic() < deadline:
			time.sleep(0.01)
		return condition()

	def test_nothing_is_published_after_stop(self):
		sent = []
		provider = LatestFixProvider(GpsFix(14.5995, 121.0244, speed_kmh=40))
		publisher = LocationPublisher(7, 42, provider, publish=sent.append, interval_func=lambda speed: 0.01)

		publisher.start()
		self.assertTrue(self.wait_for(lambda: len(sent) >= 1))
		provider.update(GpsFix(14.6001, 121.0250, speed_kmh=40))
		self.assertTrue(self.wait_for(lambda: len(sent) >= 2))

		publisher.stop()
		published = len(sent)
		provider.update(GpsFix(14.6010, 121.0260, speed_kmh=40))
		time.sleep(0.1)

		self.assertEqual(len(sent), published)
		self.assertFalse(publisher.running)
		self.assertEqual(sent[0].delivery_id, 42)
		self.assertEqual(sent[1].latitude, 14.6001)

	def test_unchanged_fix_is_published_once(self):
		sent = []
		provider = LatestFixProvider(GpsFix(14.5995, 121.0244))
		publisher = LocationPublisher(7, 42, provider, publish=sent.append, interval_func=lambda speed: 0.01)

		publisher.start()
		self.assertTrue(self.wait_for(lambda: sent))
		time.sleep(0.1)
		publisher.stop()

		self.assertEqual(len(sent), 1)

	def test_stopped_publisher_cannot_be_restarted(self):
		sent = []
		publisher = LocationPublisher(7, 42, LatestFixProvider(GpsFix(14.5995, 121.0244)), publish=sent.append)

		publisher.stop()
		publisher.start()
		time.sleep(0.05)

		self.assertEqual(sent, [])

	def test_publisher_exits_once_its_delivery_is_released(self):
		sent = []
		held = threading.Event()
		held.set()
		provider = LatestFixProvider(GpsFix(14.5995, 121.0244, speed_kmh=40))
		publisher = LocationPublisher(
			7, 42, provider,
			publish=sent.append,
			interval_func=lambda speed: 0.01,
			is_active=lambda delivery_id, driver_id: held.is_set(),
		)

		publisher.start()
		self.assertTrue(self.wait_for(lambda: sent))

		# Finished elsewhere; nobody calls stop() on this publisher
		held.clear()
		self.assertTrue(self.wait_for(lambda: not publisher._thread.is_alive()))
		published = len(sent)
		provider.update(GpsFix(14.6010, 121.0260, speed_kmh=40))
		time.sleep(0.05)

		self.assertEqual(len(sent), published)
		self.assertFalse(publisher.running)


class TrackableDeliveryTests(TestCase):
	def test_only_the_holding_driver_of_an_accepted_delivery_is_tracked(self):
		driver = make_driver('driver', 14.5995, 121.0244)
		other = make_driver('other', 14.5995, 121.0244)
		delivery = make_delivery(make_customer(), driver=driver, status='driver_offered')

		self.assertFalse(delivery_is_trackable(delivery.id, driver.id))

		for status in ('driver_assigned', 'in_transit'):
			delivery.status = status
			delivery.save(update_fields=['status'])
			self.assertTrue(delivery_is_trackable(delivery.id, driver.id))
			self.assertFalse(delivery_is_trackable(delivery.id, other.id))

		delivery.status = 'delivered'
		delivery.save(update_fields=['status'])
		self.assertFalse(delivery_is_trackable(delivery.id, driver.id))


class BroadcastTests(TestCase):
	def test_location_broadcast_never_touches_the_database(self):
		layer = RecordingChannelLayer()

		with patch('realtime.broadcast.get_channel_layer', return_value=layer):
			with self.assertNumQueries(0):
				self.assertTrue(broadcast_location(location()))

		self.assertEqual(layer.types_for(driver_location_group(42)), ['location_update'])

	def test_failed_location_broadcast_is_dropped(self):
		with patch('realtime.broadcast.get_channel_layer', return_value=RecordingChannelLayer(fail=True)):
			self.assertFalse(broadcast_location(location()))

		with patch('realtime.broadcast.get_channel_layer', return_value=None):
			self.assertFalse(broadcast_location(location()))


class NotificationTests(TestCase):
	def setUp(self):
		self.layer = RecordingChannelLayer()
		layer_patch = patch('realtime.broadcast.get_channel_layer', return_value=self.layer)
		layer_patch.start()
		self.addCleanup(layer_patch.stop)

	def test_delivery_change_reaches_customer_and_driver(self):
		driver = make_driver('driver', 14.5995, 121.0244)
		delivery = make_delivery(make_customer(), driver=driver, status='driver_assigned')

		self.assertTrue(publish_delivery_change(delivery, 'Driver assigned'))

		self.assertEqual(self.layer.types_for('delivery-%d' % delivery.id), ['delivery_updated'])
		self.assertEqual(self.layer.types_for('driver-deliveries-%d' % driver.id), ['delivery_updated'])

	def test_customer_only_change(self):
		delivery = make_delivery(make_customer())

		publish_delivery_change(delivery, notify_driver=True)

		self.assertEqual([group for group, _ in self.layer.sent], ['delivery-%d' % delivery.id])

	def test_withdrawal_goes_to_the_driver(self):
		notify_offer_withdrawn(42, 7, 'taken')

		message = self.layer.messages_for('driver-deliveries-7')[0]
		self.assertEqual(message['reason'], 'taken')
		self.assertEqual(message['delivery_id'], 42)

	def test_failed_send_is_reported_not_raised(self):
		self.layer.fail = True
		delivery = make_delivery(make_customer())

		self.assertFalse(publish_delivery_change(delivery))


class ConsumerAuthTests(SimpleTestCase):
	def connect(self, consumer, path, user):
		async def scenario():
			communicator = WebsocketCommunicator(consumer.as_asgi(), path)
			communicator.scope['user'] = user
			connected, code = await communicator.connect()
			await communicator.disconnect()
			return connected, code

		return async_to_sync(scenario)()

	def test_anonymous_driver_socket_is_refused(self):
		connected, _ = self.connect(DriverConsumer, '/ws/driver/', AnonymousUser())
		self.assertFalse(connected)

	def test_customer_cannot_open_driver_socket(self):
		customer = SimpleNamespace(is_anonymous=False, id=1, role='customer')

		connected, code = self.connect(DriverConsumer, '/ws/driver/', customer)

		self.assertFalse(connected)
		self.assertEqual(code, 4003)

	def test_anonymous_tracking_socket_is_refused(self):
		connected, _ = self.connect(DeliveryConsumer, '/ws/delivery/', AnonymousUser())
		self.assertFalse(connected)


class JWTAuthMiddlewareTests(TestCase):
	def resolve_user(self, query_string):
		seen = {}

		async def app(scope, receive, send):
			seen['user'] = scope['user']

		async_to_sync(JWTAuthMiddleware(app))({'type': 'websocket', 'query_string': query_string}, None, None)
		return seen['user']

	def test_access_token_authenticates(self):
		driver = make_driver('driver')
		token = AccessToken.for_user(driver)

		self.assertEqual(self.resolve_user(f'token={token}'.encode()), driver)

	def test_bad_or_missing_token_is_anonymous(self):
		self.assertTrue(self.resolve_user(b'token=not-a-jwt').is_anonymous)
		self.assertTrue(self.resolve_user(b'').is_anonymous)


class TrackingRevocationTests(SimpleTestCase):
	def consumer(self, role, user_id, delivery_id=5):
		consumer = DeliveryConsumer()
		consumer.user_id = user_id
		consumer.role = role
		consumer.channel_layer = InMemoryChannelLayer()
		consumer.channel_name = 'specific.tracker'
		consumer.subscriptions = SubscriptionSet(consumer.channel_layer, consumer.channel_name)
		consumer.outbox = []

		async def send_json(content, close=False):
			consumer.outbox.append(content)

		consumer.send_json = send_json
		async_to_sync(consumer.subscriptions.subscribe)(delivery_group(delivery_id))
		async_to_sync(consumer.subscriptions.subscribe)(driver_location_group(delivery_id))
		return consumer

	def released(self):
		return DeliveryUpdated(delivery_id=5, status='pending', driver_id=None, message='Looking for another driver.').to_event()

	def test_released_offer_ends_tracking_for_the_driver(self):
		consumer = self.consumer('driver', 7)

		async_to_sync(consumer.delivery_updated)(self.released())

		self.assertEqual(consumer.outbox, [{'type': 'tracking_revoked', 'delivery_id': 5}])
		self.assertEqual(consumer.subscriptions.groups, [])

	def test_next_drivers_position_is_not_forwarded(self):
		consumer = self.consumer('driver', 7)

		async_to_sync(consumer.location_update)(location(driver_id=8, delivery_id=5).to_event())

		self.assertEqual([m['type'] for m in consumer.outbox], ['tracking_revoked'])
		self.assertEqual(consumer.subscriptions.groups, [])

	def test_holding_driver_keeps_receiving(self):
		consumer = self.consumer('driver', 7)
		assigned = DeliveryUpdated(delivery_id=5, status='driver_assigned', driver_id=7).to_event()

		async_to_sync(consumer.delivery_updated)(assigned)
		async_to_sync(consumer.location_update)(location(driver_id=7, delivery_id=5).to_event())

		self.assertEqual([m['type'] for m in consumer.outbox], ['delivery_updated', 'location_update'])
		self.assertEqual(len(consumer.subscriptions), 2)

	def test_customer_sees_the_release(self):
		consumer = self.consumer('customer', 3)

		async_to_sync(consumer.delivery_updated)(self.released())

		self.assertEqual(consumer.outbox[0]['type'], 'delivery_updated')
		self.assertEqual(consumer.outbox[0]['driver_id'], None)
		self.assertEqual(len(consumer.subscriptions), 2)
