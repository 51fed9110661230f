from django.test import TestCase
from rest_framework import status

from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.parties.models import Customer
from backend.parties.services import list_customer_names


class CustomerNamesTests(TestCase):

    def test_company_wins_over_name_and_labels_are_distinct(self):
        TestDataFactory.create_customer(name='Jane Achieng', company='Kampala Interiors')
        TestDataFactory.create_customer(name='Peter Okello', company='Kampala Interiors')
        TestDataFactory.create_customer(name='Amina Nakato')
        TestDataFactory.create_customer(name='Brian Ssali', company='')
        self.assertEqual(list_customer_names(), ['Amina Nakato', 'Brian Ssali', 'Kampala Interiors'])

    def test_inactive_customers_are_excluded(self):
        customer = TestDataFactory.create_customer(name='Gone Ltd')
        customer.is_active = False
        customer.save()
        self.assertEqual(list_customer_names(), [])


class CustomerAPITests(TestCase):

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.cashier = TestDataFactory.create_cashier()
        self.sales = TestDataFactory.create_user(roles=['SalesAgent'])

    def test_sales_agent_creates_customer_without_phone(self):
        self.client.authenticate_user(self.sales)
        for name in ('Walk-up One', 'Walk-up Two'):
            response = self.client.post('/api/v1/customers/', {'name': name, 'phone': ''}, format='json')
            self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(Customer.objects.filter(phone__isnull=True).count(), 2)

    def test_cashier_cannot_create_customer(self):
        self.client.authenticate_user(self.cashier)
        response = self.client.post('/api/v1/customers/', {'name': 'X'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_names_endpoint(self):
        TestDataFactory.create_customer(name='Jane', company='Mukono Hotel')
        self.client.authenticate_user(self.cashier)
        response = self.client.get('/api/v1/customers/names/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['names'], ['Mukono Hotel'])

    def test_search(self):
        TestDataFactory.create_customer(name='Jane', company='Mukono Hotel')
        TestDataFactory.create_customer(name='Paul')
        self.client.authenticate_user(self.cashier)
        response = self.client.get('/api/v1/customers/', {'search': 'hotel'})
        self.assertEqual([c['display_name'] for c in response.data], ['Mukono Hotel'])
