from django.test import TestCase
from rest_framework.test import APIClient

from drivers.models import DriverProfile


class RegistrationTests(TestCase):
	def setUp(self):
		self.client = APIClient()

	def register(self, **overrides):
		body = {
			'username': 'juan',
			'email': 'juan@example.com',
			'password': 'password123',
			'role': 'customer',
			'phone_number': '+639171234567',
		}
		body.update(overrides)
		return self.client.post('/api/auth/register/', body, format='json')

	def test_customer_registers_and_logs_in(self):
		response = self.register()
		self.assertEqual(response.status_code, 201)
		self.assertIn('access', response.data['tokens'])

		response = self.client.post('/api/auth/login/', {'username': 'juan', 'password': 'password123'}, format='json')
		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['user']['role'], 'customer')

	def test_driver_starts_unverified_and_offline(self):
		response = self.register(role='driver', vehicle_number='NCR-1234')

		self.assertEqual(response.status_code, 201)
		self.assertEqual(response.data['driver'], {
			'vehicle_number': 'NCR-1234',
			'is_verified': False,
			'is_online': False,
		})
		self.assertTrue(DriverProfile.objects.filter(user__username='juan').exists())

	def test_driver_needs_a_vehicle(self):
		response = self.register(role='driver')

		self.assertEqual(response.status_code, 400)
		self.assertIn('vehicle_number', response.data)

	def test_operators_cannot_self_register(self):
		self.assertEqual(self.register(role='operator').status_code, 400)

	def test_wrong_password_is_rejected(self):
		self.register()

		response = self.client.post('/api/auth/login/', {'username': 'juan', 'password': 'nope'}, format='json')
		self.assertEqual(response.status_code, 400)
