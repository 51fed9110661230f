"""
Tests for categories, products, SKU generation and product search
"""
from decimal import Decimal

from django.test import TestCase
from rest_framework import status

from backend.catalog.models import Product
from backend.catalog.utils import generate_unique_sku, get_prefix
from backend.core.models import AuditLog
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient


class SkuGenerationTests(TestCase):

    def test_prefix_comes_from_category_then_name(self):
        beds = TestDataFactory.create_category(name='Beds')
        self.assertEqual(get_prefix('Oak Frame', beds), 'BED')
        self.assertEqual(get_prefix('Sofa set', None), 'SOF')
        self.assertEqual(get_prefix('', None), 'PRD')

    def test_sku_numbers_continue_after_existing(self):
        beds = TestDataFactory.create_category(name='Beds')
        TestDataFactory.create_product(sku='BED-0007', category=beds)
        self.assertEqual(generate_unique_sku('King bed', beds), 'BED-0008')


class ProductAPITests(TestCase):

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.manager = TestDataFactory.create_user(roles=['StoreManager'])
        self.cashier = TestDataFactory.create_cashier()
        self.store = TestDataFactory.create_store()
        self.category = TestDataFactory.create_category(name='Tables')

    def test_manager_creates_product_with_generated_sku(self):
        self.client.authenticate_user(self.manager)
        response = self.client.post('/api/v1/products/', {
            'name': 'Oak Dining Table', 'category': self.category.id, 'price': '10000.00'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['sku'], 'TAB-0001')
        self.assertTrue(AuditLog.objects.filter(action='create', model_name='Product').exists())

    def test_duplicate_sku_is_rejected_case_insensitively(self):
        TestDataFactory.create_product(sku='TAB-0001')
        self.client.authenticate_user(self.manager)
        response = self.client.post('/api/v1/products/', {
            'name': 'Another table', 'sku': 'tab-0001', 'price': '5.00'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('sku', response.data)

    def test_negative_price_is_rejected(self):
        self.client.authenticate_user(self.manager)
        response = self.client.post('/api/v1/products/', {'name': 'Chair', 'price': '-1'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_cashier_can_list_but_not_create(self):
        self.client.authenticate_user(self.cashier)
        self.assertEqual(self.client.get('/api/v1/products/').status_code, status.HTTP_200_OK)
        response = self.client.post('/api/v1/products/', {'name': 'Chair', 'price': '1'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_search_matches_name_or_sku_case_insensitively(self):
        TestDataFactory.create_product(name='Oak Dining Table', sku='TAB-0001')
        TestDataFactory.create_product(name='Leather Sofa', sku='SOF-0001')
        TestDataFactory.create_product(name='Bar Stool', sku='STO-0001')
        self.client.authenticate_user(self.cashier)

        response = self.client.get('/api/v1/products/', {'search': 'oak'})
        self.assertEqual([p['sku'] for p in response.data['results']], ['TAB-0001'])

        response = self.client.get('/api/v1/products/', {'search': 'sof-'})
        self.assertEqual([p['name'] for p in response.data['results']], ['Leather Sofa'])

    def test_list_reports_on_hand_per_store(self):
        product = TestDataFactory.create_product(name='Wardrobe')
        other_store = TestDataFactory.create_store()
        TestDataFactory.create_stock(product, self.store, quantity=3)
        TestDataFactory.create_stock(product, other_store, quantity=4)
        self.client.authenticate_user(self.cashier)

        response = self.client.get('/api/v1/products/')
        self.assertEqual(response.data['results'][0]['on_hand'], 7)

        response = self.client.get('/api/v1/products/', {'store': self.store.id})
        self.assertEqual(response.data['results'][0]['on_hand'], 3)

    def test_price_change_is_audited(self):
        product = TestDataFactory.create_product(price=Decimal('100.00'))
        self.client.authenticate_user(self.manager)
        response = self.client.patch(f'/api/v1/products/{product.id}/', {'price': '120.00'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        entry = AuditLog.objects.get(action='price_change')
        self.assertEqual(entry.changes['old_price'], '100.00')

    def test_delete_deactivates(self):
        product = TestDataFactory.create_product()
        self.client.authenticate_user(self.manager)
        response = self.client.delete(f'/api/v1/products/{product.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(Product.objects.get(pk=product.pk).is_active)

    def test_lookup_by_sku(self):
        product = TestDataFactory.create_product(sku='BED-0042')
        self.client.authenticate_user(self.cashier)
        response = self.client.get('/api/v1/products/by-sku/bed-0042/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['id'], product.id)
        response = self.client.get('/api/v1/products/by-sku/NOPE/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)


class CategoryAPITests(TestCase):

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(TestDataFactory.create_user(roles=['StoreManager']))

    def test_create_and_list(self):
        response = self.client.post('/api/v1/categories/', {'name': 'Wardrobes'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        response = self.client.get('/api/v1/categories/')
        self.assertIn('Wardrobes', [c['name'] for c in response.data])
