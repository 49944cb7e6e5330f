import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from io import StringIO
from unittest.mock import patch

from django.conf import settings
from django.core.management import call_command
from django.db import close_old_connections, transaction
from django.test import TestCase, TransactionTestCase
from django.utils import timezone
from rest_framework.test import APIRequestFactory, force_authenticate

from common.testing import RecordingChannelLayer, make_customer, make_delivery, make_driver
from services.delivery_management import delivery_lifecycle as lifecycle
from services.delivery_management.exceptions import (
	DeliveryNotFound,
	LocationUnavailable,
	NoEligibleDrivers,
	OfferExpired,
	TransitionNotAllowed,
)
from services.delivery_management.transitions import ALLOWED_TRANSITIONS, check_transition, conditional_update
from services.matching import dispatch_delivery, rank_candidates, redispatch
from services.matching.offer_timeout import process_offer_timeouts
from services.tracking import GpsFix

from .models import Delivery, DeliveryOffer, DriverLocationHistory, VehicleType
from .tasks import dispatch_delivery_task, expire_delivery_offer_task, sweep_expired_offers_task
from .views import accept_delivery, create_delivery, update_delivery_status

# Pickup of make_delivery() is 14.5547, 121.0244
NEAR = (14.5550, 121.0250)
FAR = (14.5700, 121.0300)


class CoordinatorTestCase(TestCase):
	"""Records channel traffic and captures Celery scheduling instead of sending it."""

	def setUp(self):
		self.layer = RecordingChannelLayer()
		layer_patch = patch('realtime.broadcast.get_channel_layer', return_value=self.layer)
		expire_patch = patch('deliveries.tasks.expire_delivery_offer_task')
		retry_patch = patch('deliveries.tasks.dispatch_delivery_task')

		layer_patch.start()
		self.expire_timer = expire_patch.start()
		self.dispatch_retry = retry_patch.start()
		for p in (layer_patch, expire_patch, retry_patch):
			self.addCleanup(p.stop)

		self.customer = make_customer()

	def offer_to(self, delivery, driver):
		"""Put ``delivery`` in driver_offered for ``driver`` the way the dispatcher does."""
		now = timezone.now()
		Delivery.objects.filter(id=delivery.id).update(
			status=Delivery.DRIVER_OFFERED, driver=driver, offered_at=now
		)
		DeliveryOffer.objects.create(delivery=delivery, driver=driver, sent_at=now)
		delivery.refresh_from_db()
		return delivery

	def driver_group(self, driver):
		return 'driver-deliveries-%d' % driver.id


class TransitionTableTests(TestCase):
	def test_terminal_states_have_no_outgoing_edges(self):
		for status in Delivery.TERMINAL_STATUSES:
			self.assertEqual(ALLOWED_TRANSITIONS[status], frozenset())

	def test_every_status_has_a_row(self):
		self.assertEqual(set(ALLOWED_TRANSITIONS), {value for value, _ in Delivery.STATUS_CHOICES})

	def test_stages_cannot_be_skipped(self):
		with self.assertRaises(TransitionNotAllowed) as ctx:
			check_transition(Delivery.DRIVER_ASSIGNED, Delivery.DELIVERED)
		self.assertEqual(ctx.exception.current_status, Delivery.DRIVER_ASSIGNED)

		with self.assertRaises(TransitionNotAllowed):
			check_transition(Delivery.PENDING, Delivery.DRIVER_ASSIGNED)

	def test_delivered_cannot_be_cancelled(self):
		with self.assertRaises(TransitionNotAllowed):
			check_transition(Delivery.DELIVERED, Delivery.CANCELLED)

	def test_conditional_update_only_applies_once(self):
		customer = make_customer()
		delivery = make_delivery(customer)

		self.assertTrue(conditional_update(delivery.id, {'status': Delivery.PENDING}, {'status': Delivery.FAILED}))
		self.assertFalse(conditional_update(delivery.id, {'status': Delivery.PENDING}, {'status': Delivery.FAILED}))

		delivery.refresh_from_db()
		self.assertEqual(delivery.status, Delivery.FAILED)


class DispatchTests(CoordinatorTestCase):
	def test_offers_nearest_eligible_driver(self):
		make_driver('far', *FAR)
		near = make_driver('near', *NEAR)
		delivery = make_delivery(self.customer)

		with self.captureOnCommitCallbacks(execute=True):
			offer = dispatch_delivery(delivery)

		delivery.refresh_from_db()
		self.assertEqual(offer.driver, near)
		self.assertEqual(offer.status, DeliveryOffer.OFFERED)
		self.assertEqual(delivery.status, Delivery.DRIVER_OFFERED)
		self.assertEqual(delivery.driver, near)
		self.assertIsNotNone(delivery.offered_at)

		self.expire_timer.apply_async.assert_called_once_with(
			(offer.id,), countdown=settings.OFFER_TIMEOUT_SECONDS
		)
		self.assertEqual(self.layer.types_for(self.driver_group(near)), ['delivery_offered'])
		self.assertEqual(self.layer.types_for('delivery-%d' % delivery.id), ['delivery_updated'])

	def test_equal_distance_goes_to_lowest_driver_id(self):
		first = make_driver('first', *NEAR)
		make_driver('second', *NEAR)
		delivery = make_delivery(self.customer)

		ranked = rank_candidates(delivery)

		self.assertEqual(ranked[0][0].user, first)
		self.assertEqual(dispatch_delivery(delivery).driver, first)

	def test_ineligible_drivers_are_never_selected(self):
		variants = {
			'offline': dict(online=False),
			'unverified': dict(verified=False),
			'unavailable': dict(available=False),
			'no_fix': dict(fresh=False),
		}
		for name, flags in variants.items():
			with self.subTest(name):
				driver = make_driver(name, *NEAR, **flags)
				delivery = make_delivery(self.customer)

				ranked_ids = [profile.user_id for profile, _ in rank_candidates(delivery)]
				self.assertNotIn(driver.id, ranked_ids)
				with self.assertRaises(NoEligibleDrivers):
					dispatch_delivery(delivery)

	def test_stale_location_is_not_eligible(self):
		stale = make_driver('stale', *NEAR)
		stale.driver_profile.last_location_update = timezone.now() - timedelta(
			seconds=settings.DRIVER_LOCATION_MAX_AGE_SECONDS + 60
		)
		stale.driver_profile.save(update_fields=['last_location_update'])
		delivery = make_delivery(self.customer)

		with self.assertRaises(NoEligibleDrivers):
			dispatch_delivery(delivery)

		delivery.refresh_from_db()
		self.assertEqual(delivery.status, Delivery.PENDING)
		self.assertIsNone(delivery.driver)

	def test_only_offline_drivers_raises_retryable_error(self):
		make_driver('offline_one', *NEAR, online=False)
		make_driver('offline_two', *FAR, online=False)
		delivery = make_delivery(self.customer)

		with self.assertRaises(NoEligibleDrivers) as ctx:
			dispatch_delivery(delivery)
		self.assertTrue(ctx.exception.retryable)

	def test_driver_holding_a_delivery_is_skipped(self):
		busy = make_driver('busy', *NEAR)
		free = make_driver('free', *FAR)
		make_delivery(self.customer, driver=busy, status=Delivery.DRIVER_ASSIGNED)
		delivery = make_delivery(self.customer)

		self.assertEqual(dispatch_delivery(delivery).driver, free)

	def test_delivery_claimed_elsewhere_is_left_alone(self):
		first = make_driver('first', *FAR)
		make_driver('second', *NEAR)
		delivery = make_delivery(self.customer)
		stale_copy = Delivery.objects.get(id=delivery.id)

		self.offer_to(delivery, first)

		self.assertIsNone(dispatch_delivery(stale_copy))
		delivery.refresh_from_db()
		self.assertEqual(delivery.driver, first)
		self.assertEqual(DeliveryOffer.objects.filter(delivery=delivery).count(), 1)

	def test_redispatch_without_drivers_schedules_retry(self):
		delivery = make_delivery(self.customer)

		with self.captureOnCommitCallbacks(execute=True):
			self.assertIsNone(redispatch(delivery))

		self.dispatch_retry.apply_async.assert_called_once_with(
			(delivery.id,), countdown=settings.DISPATCH_RETRY_SECONDS
		)
		self.assertEqual(self.layer.types_for('delivery-%d' % delivery.id), ['delivery_updated'])

	def test_rolled_back_dispatch_schedules_no_timer(self):
		make_driver('near', *NEAR)
		delivery = make_delivery(self.customer)

		with self.captureOnCommitCallbacks(execute=True) as callbacks:
			with self.assertRaises(RuntimeError):
				with transaction.atomic():
					dispatch_delivery(delivery)
					raise RuntimeError('booking aborted')

		self.assertEqual(callbacks, [])
		self.expire_timer.apply_async.assert_not_called()
		delivery.refresh_from_db()
		self.assertEqual(delivery.status, Delivery.PENDING)
		self.assertFalse(DeliveryOffer.objects.filter(delivery=delivery).exists())


class OfferRaceTests(CoordinatorTestCase):
	def setUp(self):
		super().setUp()
		self.driver_a = make_driver('driver_a', *NEAR)
		self.driver_b = make_driver('driver_b', *FAR)
		self.delivery = make_delivery(self.customer)
		dispatch_delivery(self.delivery)

	def test_second_driver_to_accept_gets_offer_expired(self):
		result = lifecycle.accept_offer(self.driver_a, self.delivery.id)
		self.assertEqual(result.delivery.status, Delivery.DRIVER_ASSIGNED)

		with self.assertRaises(OfferExpired):
			lifecycle.accept_offer(self.driver_b, self.delivery.id)

		self.delivery.refresh_from_db()
		self.assertEqual(self.delivery.driver, self.driver_a)
		holders = Delivery.objects.filter(
			id=self.delivery.id, status__in=Delivery.ACTIVE_STATUSES
		).values_list('driver_id', flat=True)
		self.assertEqual(list(holders), [self.driver_a.id])

	def test_second_accept_by_winner_is_rejected(self):
		lifecycle.accept_offer(self.driver_a, self.delivery.id)

		with self.assertRaises(OfferExpired):
			lifecycle.accept_offer(self.driver_a, self.delivery.id)

	def test_accept_marks_driver_busy_and_ledger_accepted(self):
		lifecycle.accept_offer(self.driver_a, self.delivery.id)

		profile = self.driver_a.driver_profile
		profile.refresh_from_db()
		offer = DeliveryOffer.objects.get(delivery=self.delivery, driver=self.driver_a)
		self.assertFalse(profile.is_available)
		self.assertEqual(offer.status, DeliveryOffer.ACCEPTED)
		self.assertIsNotNone(offer.responded_at)

	def test_accept_after_decline_is_expired(self):
		with patch('services.matching.redispatch', return_value=None):
			lifecycle.decline_offer(self.driver_a, self.delivery.id)

		with self.assertRaises(OfferExpired):
			lifecycle.accept_offer(self.driver_a, self.delivery.id)


class ConcurrentOfferResponseTests(TransactionTestCase):
	"""Offer answers from separate threads, each on its own database connection."""

	def setUp(self):
		self.layer = RecordingChannelLayer()
		patches = [
			patch('realtime.broadcast.get_channel_layer', return_value=self.layer),
			patch('deliveries.tasks.expire_delivery_offer_task'),
			patch('deliveries.tasks.dispatch_delivery_task'),
			patch('services.matching.redispatch', return_value=None),
		]
		for p in patches:
			p.start()
			self.addCleanup(p.stop)

		self.driver = make_driver('driver', *NEAR)
		self.delivery = make_delivery(make_customer())
		dispatch_delivery(self.delivery)

	def _attempt(self, barrier, respond):
		close_old_connections()
		try:
			barrier.wait(timeout=5)
			outcome = respond()
			return ('ok', outcome)
		except Exception as exc:
			return ('err', repr(exc))
		finally:
			close_old_connections()

	def run_together(self, *responses):
		barrier = threading.Barrier(len(responses))
		with ThreadPoolExecutor(max_workers=len(responses)) as executor:
			futures = [executor.submit(self._attempt, barrier, respond) for respond in responses]
			return [f.result(timeout=20) for f in futures]

	def assert_single_winner(self, results):
		winners = [r for r in results if r[0] == 'ok' and r[1]]
		self.assertEqual(len(winners), 1, results)
		for outcome, detail in results:
			if outcome == 'err':
				self.assertTrue(
					('OfferExpired' in detail) or ('locked' in detail.lower()),
					results,
				)

	def accept(self):
		return lifecycle.accept_offer(self.driver, self.delivery.id).success

	def expire(self):
		return lifecycle.expire_offer(self.delivery.id, self.driver.id)

	def test_double_accept_is_applied_once(self):
		results = self.run_together(self.accept, self.accept)

		self.assert_single_winner(results)
		self.delivery.refresh_from_db()
		self.assertEqual(self.delivery.status, Delivery.DRIVER_ASSIGNED)
		self.assertEqual(
			DeliveryOffer.objects.get(delivery=self.delivery).status,
			DeliveryOffer.ACCEPTED,
		)

	def test_accept_racing_the_timeout_has_one_outcome(self):
		results = self.run_together(self.accept, self.expire)

		self.assert_single_winner(results)
		self.delivery.refresh_from_db()
		offer = DeliveryOffer.objects.get(delivery=self.delivery)
		if self.delivery.status == Delivery.DRIVER_ASSIGNED:
			self.assertEqual(offer.status, DeliveryOffer.ACCEPTED)
		else:
			self.assertEqual(self.delivery.status, Delivery.PENDING)
			self.assertIsNone(self.delivery.driver_id)
			self.assertEqual(offer.status, DeliveryOffer.EXPIRED)


class DeclineAndTimeoutTests(CoordinatorTestCase):
	def setUp(self):
		super().setUp()
		self.driver_x = make_driver('driver_x', *NEAR)
		self.driver_y = make_driver('driver_y', *FAR)

	def test_decline_resets_delivery_to_pending(self):
		delivery = self.offer_to(make_delivery(self.customer), self.driver_x)

		with patch('services.matching.redispatch', return_value=None) as redispatch:
			lifecycle.decline_offer(self.driver_x, delivery.id)
		redispatch.assert_called_once()

		delivery.refresh_from_db()
		self.assertEqual(delivery.status, Delivery.PENDING)
		self.assertIsNone(delivery.driver_id)
		self.assertIsNone(delivery.offered_at)

	def test_decline_redispatches_to_a_different_driver(self):
		delivery = make_delivery(self.customer)
		self.assertEqual(dispatch_delivery(delivery).driver, self.driver_x)

		result = lifecycle.decline_offer(self.driver_x, delivery.id)

		delivery.refresh_from_db()
		self.assertTrue(result.extra['redispatched'])
		self.assertEqual(delivery.status, Delivery.DRIVER_OFFERED)
		self.assertEqual(delivery.driver, self.driver_y)
		self.assertEqual(
			DeliveryOffer.objects.get(delivery=delivery, driver=self.driver_x).status,
			DeliveryOffer.DECLINED,
		)
		withdrawn = self.layer.messages_for(self.driver_group(self.driver_x))[-1]
		self.assertEqual(withdrawn['type'], 'offer_withdrawn')
		self.assertEqual(withdrawn['reason'], 'declined')

	def test_decline_by_other_driver_is_rejected(self):
		delivery = self.offer_to(make_delivery(self.customer), self.driver_x)

		with self.assertRaises(OfferExpired):
			lifecycle.decline_offer(self.driver_y, delivery.id)

		delivery.refresh_from_db()
		self.assertEqual(delivery.driver, self.driver_x)

	def test_timeout_and_decline_leave_the_same_end_state(self):
		declined = self.offer_to(make_delivery(self.customer), self.driver_x)
		expired = self.offer_to(make_delivery(self.customer), self.driver_y)

		with patch('services.matching.redispatch', return_value=None):
			lifecycle.decline_offer(self.driver_x, declined.id)
			self.assertTrue(lifecycle.expire_offer(expired.id, self.driver_y.id))

		declined.refresh_from_db()
		expired.refresh_from_db()
		fields = ('status', 'driver_id', 'offered_at')
		self.assertEqual(
			[getattr(declined, f) for f in fields],
			[getattr(expired, f) for f in fields],
		)
		self.assertEqual(declined.status, Delivery.PENDING)
		self.assertEqual(DeliveryOffer.objects.get(delivery=declined).status, DeliveryOffer.DECLINED)
		self.assertEqual(DeliveryOffer.objects.get(delivery=expired).status, DeliveryOffer.EXPIRED)

	def test_unanswered_offer_returns_to_pool_and_goes_to_next_driver(self):
		delivery = make_delivery(self.customer)
		dispatch_delivery(delivery)
		Delivery.objects.filter(id=delivery.id).update(
			offered_at=timezone.now() - timedelta(seconds=settings.OFFER_TIMEOUT_SECONDS + 1)
		)

		expired, redispatched = process_offer_timeouts()

		self.assertEqual((expired, redispatched), (1, 1))
		delivery.refresh_from_db()
		self.assertEqual(delivery.status, Delivery.DRIVER_OFFERED)
		self.assertEqual(delivery.driver, self.driver_y)
		self.assertEqual(
			DeliveryOffer.objects.get(delivery=delivery, driver=self.driver_x).status,
			DeliveryOffer.EXPIRED,
		)

	def test_sweep_ignores_fresh_offers(self):
		delivery = make_delivery(self.customer)
		dispatch_delivery(delivery)

		self.assertEqual(process_offer_timeouts(), (0, 0))
		delivery.refresh_from_db()
		self.assertEqual(delivery.driver, self.driver_x)

	def test_expire_task_only_expires_its_own_offer(self):
		delivery = make_delivery(self.customer)
		offer = dispatch_delivery(delivery)

		with patch('services.matching.redispatch', return_value=None):
			self.assertTrue(expire_delivery_offer_task(offer.id))
			self.assertFalse(expire_delivery_offer_task(offer.id))

		delivery.refresh_from_db()
		self.assertEqual(delivery.status, Delivery.PENDING)
		self.assertIsNone(delivery.driver)

	def test_expire_task_after_accept_is_a_no_op(self):
		delivery = make_delivery(self.customer)
		offer = dispatch_delivery(delivery)
		lifecycle.accept_offer(self.driver_x, delivery.id)

		self.assertFalse(expire_delivery_offer_task(offer.id))
		delivery.refresh_from_db()
		self.assertEqual(delivery.status, Delivery.DRIVER_ASSIGNED)

	def test_sweep_task_and_command(self):
		delivery = make_delivery(self.customer)
		dispatch_delivery(delivery)
		Delivery.objects.filter(id=delivery.id).update(offered_at=timezone.now() - timedelta(minutes=10))

		with patch('services.matching.redispatch', return_value=None):
			self.assertEqual(sweep_expired_offers_task(), {'expired': 1, 'redispatched': 0})

		out = StringIO()
		call_command('process_offer_timeouts', timeout=300, stdout=out)
		self.assertIn('Expired 0 offer(s)', out.getvalue())


class DispatchTaskTests(CoordinatorTestCase):
	def test_task_offers_pending_delivery(self):
		driver = make_driver('driver', *NEAR)
		delivery = make_delivery(self.customer)

		offer_id = dispatch_delivery_task(delivery.id)

		self.assertEqual(DeliveryOffer.objects.get(id=offer_id).driver, driver)

	def test_task_skips_deliveries_that_are_no_longer_pending(self):
		delivery = make_delivery(self.customer, status=Delivery.CANCELLED)

		self.assertIsNone(dispatch_delivery_task(delivery.id))

	def test_task_fails_delivery_after_last_retry(self):
		delivery = make_delivery(self.customer)

		dispatch_delivery_task.apply(args=(delivery.id,), retries=settings.DISPATCH_MAX_RETRIES)

		delivery.refresh_from_db()
		self.assertEqual(delivery.status, Delivery.FAILED)
		self.assertEqual(delivery.failure_reason, 'No drivers available')


class DeliveryLifecycleTests(CoordinatorTestCase):
	def setUp(self):
		super().setUp()
		self.driver = make_driver('driver', *NEAR)
		self.delivery = make_delivery(self.customer)
		dispatch_delivery(self.delivery)
		lifecycle.accept_offer(self.driver, self.delivery.id)

	def advance(self, status, **kwargs):
		return lifecycle.advance_status(self.driver, self.delivery.id, status, **kwargs)

	def test_full_delivery_writes_only_pickup_and_delivery_events(self):
		self.advance(Delivery.PICKUP_ARRIVED)
		self.advance(Delivery.PACKAGE_COLLECTED, fix=GpsFix(14.5547, 121.0244))
		self.advance(Delivery.IN_TRANSIT)
		result = lifecycle.complete_delivery(
			self.driver,
			self.delivery.id,
			fix=GpsFix(14.5509, 121.0503),
			recipient_name='Maria Santos',
			delivery_notes='Left with the guard',
		)

		delivery = result.delivery
		self.assertEqual(delivery.status, Delivery.DELIVERED)
		self.assertEqual(delivery.recipient_name, 'Maria Santos')
		for stamp in ('assigned_at', 'arrived_at_pickup_at', 'picked_up_at', 'in_transit_at', 'delivered_at'):
			self.assertIsNotNone(getattr(delivery, stamp), stamp)

		events = DriverLocationHistory.objects.filter(delivery=delivery).order_by('timestamp')
		self.assertEqual(
			[e.event_type for e in events],
			[DriverLocationHistory.PICKUP, DriverLocationHistory.DELIVERY],
		)

		profile = self.driver.driver_profile
		profile.refresh_from_db()
		self.driver.refresh_from_db()
		self.customer.refresh_from_db()
		self.assertTrue(profile.is_available)
		self.assertEqual(self.driver.completed_deliveries, 1)
		self.assertEqual(self.customer.completed_deliveries, 1)

	def test_skipping_a_stage_is_rejected(self):
		with self.assertRaises(TransitionNotAllowed):
			self.advance(Delivery.IN_TRANSIT)
		with self.assertRaises(TransitionNotAllowed):
			self.advance(Delivery.DELIVERED)

		self.delivery.refresh_from_db()
		self.assertEqual(self.delivery.status, Delivery.DRIVER_ASSIGNED)

	def test_drivers_cannot_cancel_through_status_updates(self):
		with self.assertRaises(TransitionNotAllowed):
			self.advance(Delivery.CANCELLED)

	def test_other_driver_cannot_advance(self):
		other = make_driver('other', *FAR)
		with self.assertRaises(DeliveryNotFound):
			lifecycle.advance_status(other, self.delivery.id, Delivery.PICKUP_ARRIVED)

	def test_pickup_without_any_position_is_location_unavailable(self):
		self.advance(Delivery.PICKUP_ARRIVED)
		profile = self.driver.driver_profile
		profile.current_latitude = None
		profile.current_longitude = None
		profile.save(update_fields=['current_latitude', 'current_longitude'])

		with self.assertRaises(LocationUnavailable):
			self.advance(Delivery.PACKAGE_COLLECTED)

		self.delivery.refresh_from_db()
		self.assertEqual(self.delivery.status, Delivery.PICKUP_ARRIVED)
		self.assertFalse(DriverLocationHistory.objects.filter(delivery=self.delivery).exists())

	def test_each_step_is_published_to_customer(self):
		self.advance(Delivery.PICKUP_ARRIVED)

		updates = self.layer.messages_for('delivery-%d' % self.delivery.id)
		self.assertEqual(updates[-1]['status'], Delivery.PICKUP_ARRIVED)
		self.assertEqual(updates[-1]['delivery']['id'], self.delivery.id)
		self.assertEqual(updates[-1]['delivery']['next_status'], Delivery.PACKAGE_COLLECTED)


class CancellationTests(CoordinatorTestCase):
	def setUp(self):
		super().setUp()
		self.driver = make_driver('driver', *NEAR)

	def test_cancel_open_offer_withdraws_it(self):
		delivery = self.offer_to(make_delivery(self.customer), self.driver)

		lifecycle.cancel_delivery(self.customer, delivery.id, 'Changed my mind')

		delivery.refresh_from_db()
		self.assertEqual(delivery.status, Delivery.CANCELLED)
		self.assertEqual(delivery.cancellation_reason, 'Changed my mind')
		self.assertEqual(DeliveryOffer.objects.get(delivery=delivery).status, DeliveryOffer.WITHDRAWN)
		self.assertIn('offer_withdrawn', self.layer.types_for(self.driver_group(self.driver)))

	def test_cancel_assigned_delivery_frees_driver(self):
		delivery = self.offer_to(make_delivery(self.customer), self.driver)
		lifecycle.accept_offer(self.driver, delivery.id)

		lifecycle.cancel_delivery(self.customer, delivery.id)

		profile = self.driver.driver_profile
		profile.refresh_from_db()
		self.assertTrue(profile.is_available)

	def test_cannot_cancel_someone_elses_delivery(self):
		delivery = make_delivery(self.customer)
		stranger = make_customer('stranger')

		with self.assertRaises(DeliveryNotFound):
			lifecycle.cancel_delivery(stranger, delivery.id)

	def test_operator_can_cancel(self):
		delivery = make_delivery(self.customer)
		operator = make_customer('operator')
		operator.role = 'operator'
		operator.save(update_fields=['role'])

		result = lifecycle.cancel_delivery(operator, delivery.id, 'Address unreachable')
		self.assertEqual(result.delivery.status, Delivery.CANCELLED)

	def test_finished_delivery_cannot_be_cancelled(self):
		delivery = make_delivery(self.customer, status=Delivery.DELIVERED)

		with self.assertRaises(TransitionNotAllowed):
			lifecycle.cancel_delivery(self.customer, delivery.id)


class DeliveryApiTests(CoordinatorTestCase):
	def setUp(self):
		super().setUp()
		self.factory = APIRequestFactory()
		self.driver = make_driver('driver', *NEAR)
		self.vehicle = VehicleType.objects.create(name='Motorcycle', base_price=49, price_per_km=10)

	def test_customer_books_delivery_and_it_is_offered(self):
		request = self.factory.post('/api/deliveries/customer/request/', {
			'vehicle_type': self.vehicle.id,
			'pickup_latitude': '14.554700',
			'pickup_longitude': '121.024400',
			'delivery_latitude': '14.550900',
			'delivery_longitude': '121.050300',
			'package_description': 'Documents',
		}, format='json')
		force_authenticate(request, user=self.customer)
		response = create_delivery(request)

		self.assertEqual(response.status_code, 201)
		self.assertTrue(response.data['driver_offered'])
		delivery = Delivery.objects.get(id=response.data['delivery']['id'])
		self.assertEqual(delivery.status, Delivery.DRIVER_OFFERED)
		self.assertEqual(delivery.driver, self.driver)
		self.assertGreater(delivery.distance_km, 0)
		self.assertGreater(delivery.total_price, self.vehicle.base_price)

	def test_drivers_cannot_book(self):
		request = self.factory.post('/api/deliveries/customer/request/', {}, format='json')
		force_authenticate(request, user=self.driver)

		self.assertEqual(create_delivery(request).status_code, 403)

	def test_accepting_someone_elses_offer_is_conflict(self):
		other = make_driver('other', *FAR)
		delivery = self.offer_to(make_delivery(self.customer), self.driver)

		request = self.factory.post('/api/deliveries/%d/accept/' % delivery.id)
		force_authenticate(request, user=other)
		response = accept_delivery(request, delivery_id=delivery.id)

		self.assertEqual(response.status_code, 409)
		self.assertEqual(response.data['code'], 'offer_expired')

	def test_skipping_status_is_conflict(self):
		delivery = self.offer_to(make_delivery(self.customer), self.driver)
		lifecycle.accept_offer(self.driver, delivery.id)

		request = self.factory.post(
			'/api/deliveries/%d/status/' % delivery.id,
			{'status': Delivery.IN_TRANSIT},
			format='json',
		)
		force_authenticate(request, user=self.driver)
		response = update_delivery_status(request, delivery_id=delivery.id)

		self.assertEqual(response.status_code, 409)
		self.assertEqual(response.data['current_status'], Delivery.DRIVER_ASSIGNED)


class CleanupCommandTests(CoordinatorTestCase):
	def test_only_old_finished_offers_and_shift_events_are_deleted(self):
		driver = make_driver('driver', *NEAR)
		old = timezone.now() - timedelta(days=45)
		finished = make_delivery(self.customer, driver=driver, status=Delivery.DELIVERED)
		live = make_delivery(self.customer)
		DeliveryOffer.objects.create(delivery=finished, driver=driver, status=DeliveryOffer.ACCEPTED, sent_at=old)
		DeliveryOffer.objects.create(delivery=live, driver=driver, sent_at=old)
		DriverLocationHistory.objects.create(
			driver=driver, event_type=DriverLocationHistory.SHIFT_START, latitude=14.5, longitude=121.0, timestamp=old
		)
		DriverLocationHistory.objects.create(
			driver=driver, delivery=finished, event_type=DriverLocationHistory.DELIVERY,
			latitude=14.5, longitude=121.0, timestamp=old,
		)

		out = StringIO()
		call_command('cleanup_old_data', dry_run=True, stdout=out)
		self.assertIn('Would delete 1 offers and 1 shift events', out.getvalue())
		self.assertEqual(DeliveryOffer.objects.count(), 2)

		call_command('cleanup_old_data', stdout=StringIO())
		self.assertEqual(list(DeliveryOffer.objects.values_list('delivery_id', flat=True)), [live.id])
		self.assertEqual(
			list(DriverLocationHistory.objects.values_list('event_type', flat=True)),
			[DriverLocationHistory.DELIVERY],
		)
