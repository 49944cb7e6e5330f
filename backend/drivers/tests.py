import time
from unittest.mock import patch

from django.test import TestCase
from rest_framework.test import APIClient

from common.testing import RecordingChannelLayer, make_customer, make_delivery, make_driver
from deliveries.models import Delivery, DriverLocationHistory
from drivers import services
from realtime.broadcast import FLEET_GROUP
from services.delivery_management import delivery_lifecycle as lifecycle
from services.delivery_management.exceptions import LocationUnavailable, NotVerified
from services.matching import dispatch_delivery
from services.tracking import GpsFix, PublisherRegistry

MANILA = GpsFix(14.5995, 121.0244)


class AvailabilityTestCase(TestCase):
	def setUp(self):
		self.layer = RecordingChannelLayer()
		layer_patch = patch('realtime.broadcast.get_channel_layer', return_value=self.layer)
		layer_patch.start()
		self.addCleanup(layer_patch.stop)

	def profile(self, user):
		profile = user.driver_profile
		profile.refresh_from_db()
		return profile


class OnlineOfflineTests(AvailabilityTestCase):
	def setUp(self):
		super().setUp()
		self.driver = make_driver('driver', online=False, available=False)

	def test_online_then_offline_round_trip(self):
		profile = services.set_online(self.profile(self.driver), MANILA)

		self.assertTrue(profile.is_online)
		self.assertTrue(profile.is_available)
		self.assertAlmostEqual(float(profile.current_latitude), 14.5995)
		self.assertAlmostEqual(float(profile.current_longitude), 121.0244)
		self.assertTrue(services.is_eligible(profile))
		self.assertIn(profile, services.eligible_drivers())

		profile = services.set_offline(profile)

		self.assertFalse(profile.is_online)
		self.assertFalse(profile.is_available)
		self.assertIsNone(profile.current_latitude)
		self.assertIsNone(profile.current_longitude)
		self.assertFalse(services.is_eligible(profile))
		self.assertNotIn(profile, services.eligible_drivers())

	def test_shift_events_are_recorded_once(self):
		profile = services.set_online(self.profile(self.driver), MANILA)
		services.set_online(profile, GpsFix(14.6000, 121.0250))
		services.set_offline(profile)

		events = DriverLocationHistory.objects.filter(driver=self.driver).order_by('timestamp')
		self.assertEqual(
			[e.event_type for e in events],
			[DriverLocationHistory.SHIFT_START, DriverLocationHistory.SHIFT_END],
		)
		self.assertIsNone(events[0].delivery)

	def test_unverified_driver_cannot_go_online(self):
		unverified = make_driver('unverified', online=False, verified=False)

		with self.assertRaises(NotVerified):
			services.set_online(self.profile(unverified), MANILA)
		self.assertFalse(self.profile(unverified).is_online)

	def test_going_online_requires_a_fix(self):
		with self.assertRaises(LocationUnavailable):
			services.set_online(self.profile(self.driver), None)
		self.assertFalse(self.profile(self.driver).is_online)

	def test_driver_holding_a_delivery_comes_back_busy(self):
		make_delivery(make_customer(), driver=self.driver, status=Delivery.IN_TRANSIT)

		profile = services.set_online(self.profile(self.driver), MANILA)

		self.assertTrue(profile.is_online)
		self.assertFalse(profile.is_available)

	def test_open_offer_leaves_returning_driver_available(self):
		driver = make_driver('offered', 14.5550, 121.0250)
		delivery = make_delivery(make_customer())
		dispatch_delivery(delivery)

		# App resumes and re-sends its status while the offer is still open
		profile = services.set_online(self.profile(driver), MANILA)
		self.assertTrue(profile.is_available)

		with patch('services.matching.redispatch', return_value=None):
			lifecycle.decline_offer(driver, delivery.id)

		profile = self.profile(driver)
		self.assertTrue(profile.is_online)
		self.assertTrue(services.is_eligible(profile))

	def test_status_changes_reach_the_fleet_map(self):
		profile = services.set_online(self.profile(self.driver), MANILA)
		services.set_offline(profile)

		updates = self.layer.messages_for(FLEET_GROUP)
		self.assertEqual([u['is_online'] for u in updates], [True, False])
		self.assertEqual(updates[0]['driver_id'], self.driver.id)


class BusyFreeTests(AvailabilityTestCase):
	def test_busy_driver_is_not_eligible(self):
		driver = make_driver('driver', 14.5995, 121.0244)

		services.mark_busy(driver.id)
		self.assertFalse(services.is_eligible(self.profile(driver)))

		services.mark_free(driver.id)
		self.assertTrue(services.is_eligible(self.profile(driver)))

	def test_offline_driver_stays_unavailable_when_freed(self):
		driver = make_driver('driver', online=False, available=False)

		self.assertFalse(services.mark_free(driver.id))
		self.assertFalse(self.profile(driver).is_available)


class LocationTests(AvailabilityTestCase):
	def test_offline_location_is_ignored(self):
		driver = make_driver('driver', online=False)

		self.assertFalse(services.update_driver_location(self.profile(driver), MANILA))
		self.assertIsNone(self.profile(driver).current_latitude)

	def test_online_location_is_stored_not_logged(self):
		driver = make_driver('driver', 14.5, 121.0)

		self.assertTrue(services.update_driver_location(self.profile(driver), MANILA))

		profile = self.profile(driver)
		self.assertAlmostEqual(float(profile.current_latitude), 14.5995)
		self.assertFalse(DriverLocationHistory.objects.exists())

	def test_going_offline_stops_publishers(self):
		sent = []
		registry = PublisherRegistry(publish=sent.append, interval_func=lambda speed: 0.01, is_active=None)
		driver = make_driver('driver', 14.5995, 121.0244)
		delivery = make_delivery(make_customer(), driver=driver, status=Delivery.IN_TRANSIT)

		with patch('services.tracking.publisher._registry', registry):
			publisher = registry.start(driver.id, delivery.id, MANILA)
			deadline = time.monotonic() + 2
			while not sent and time.monotonic() < deadline:
				services.update_driver_location(self.profile(driver), GpsFix(14.5996 + len(sent) * 1e-4, 121.0244))
				time.sleep(0.02)

			services.set_offline(self.profile(driver))
			published = len(sent)
			time.sleep(0.1)

		self.assertGreater(published, 0)
		self.assertEqual(len(sent), published)
		self.assertFalse(publisher.running)
		self.assertEqual(registry.active_deliveries(), [])
		self.assertEqual(sent[0].delivery_id, delivery.id)

	def test_coming_back_online_resumes_streaming(self):
		sent = []
		registry = PublisherRegistry(publish=sent.append, interval_func=lambda speed: 0.01, is_active=None)
		driver = make_driver('driver', 14.5995, 121.0244)
		delivery = make_delivery(make_customer(), driver=driver, status=Delivery.DRIVER_ASSIGNED)

		with patch('services.tracking.publisher._registry', registry), self.settings(LOCATION_PUBLISHING_ENABLED=True):
			registry.start(driver.id, delivery.id, MANILA)
			services.set_offline(self.profile(driver))
			self.assertEqual(registry.active_deliveries(), [])

			with self.captureOnCommitCallbacks(execute=True):
				profile = services.set_online(self.profile(driver), MANILA)
			self.assertFalse(profile.is_available)
			self.assertEqual(registry.active_deliveries(), [delivery.id])

			services.update_driver_location(profile, GpsFix(14.6001, 121.0250))
			deadline = time.monotonic() + 2
			while not any(m.latitude == 14.6001 for m in sent) and time.monotonic() < deadline:
				time.sleep(0.01)
			registry.stop_all()

		self.assertTrue(any(m.latitude == 14.6001 for m in sent))
		self.assertEqual({m.delivery_id for m in sent}, {delivery.id})


class DriverApiTests(AvailabilityTestCase):
	def setUp(self):
		super().setUp()
		self.client = APIClient()
		self.driver = make_driver('driver', online=False, available=False)
		self.client.force_authenticate(user=self.driver)

	def test_go_online_and_offline(self):
		response = self.client.put('/api/driver/status/', {
			'is_online': True,
			'location': {'latitude': 14.5995, 'longitude': 121.0244},
		}, format='json')

		self.assertEqual(response.status_code, 200)
		self.assertTrue(response.data['is_eligible'])

		response = self.client.put('/api/driver/status/', {'is_online': False}, format='json')
		self.assertEqual(response.status_code, 200)
		self.assertIsNone(response.data['latitude'])

	def test_online_without_location_is_bad_request(self):
		response = self.client.put('/api/driver/status/', {'is_online': True}, format='json')

		self.assertEqual(response.status_code, 400)
		self.assertEqual(response.data['code'], 'location_unavailable')

	def test_unverified_driver_is_forbidden(self):
		unverified = make_driver('unverified', online=False, verified=False)
		self.client.force_authenticate(user=unverified)

		response = self.client.put('/api/driver/status/', {
			'is_online': True,
			'location': {'latitude': 14.5995, 'longitude': 121.0244},
		}, format='json')

		self.assertEqual(response.status_code, 403)

	def test_location_while_offline_is_conflict(self):
		response = self.client.post('/api/driver/location/', {'latitude': 14.5995, 'longitude': 121.0244}, format='json')

		self.assertEqual(response.status_code, 409)

	def test_customers_are_not_drivers(self):
		self.client.force_authenticate(user=make_customer())

		self.assertEqual(self.client.get('/api/driver/status/').status_code, 403)
