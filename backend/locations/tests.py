from django.test import TestCase
from rest_framework import status

from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.locations.models import Store


class StoreAPITests(TestCase):

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.admin = TestDataFactory.create_user(is_staff=True)
        self.cashier = TestDataFactory.create_cashier()

    def test_admin_creates_store(self):
        self.client.authenticate_user(self.admin)
        response = self.client.post('/api/v1/stores/', {
            'name': 'Mukono Showroom', 'code': 'MUK', 'address': '123 Furniture Ave'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['store_type'], 'showroom')

    def test_cashier_cannot_create_store(self):
        self.client.authenticate_user(self.cashier)
        response = self.client.post('/api/v1/stores/', {'name': 'X', 'code': 'X1'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_active_filter_hides_deactivated_stores(self):
        open_store = TestDataFactory.create_store(code='OPEN')
        closed_store = TestDataFactory.create_store(code='SHUT')
        self.client.authenticate_user(self.admin)
        response = self.client.delete(f'/api/v1/stores/{closed_store.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(Store.objects.get(pk=closed_store.pk).is_active)

        response = self.client.get('/api/v1/stores/', {'active': 'true'})
        self.assertEqual([store['code'] for store in response.data], [open_store.code])
