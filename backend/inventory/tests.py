"""
Tests for stock listing and stock adjustments
"""
from django.test import TestCase
from rest_framework import status

from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.inventory.models import Stock, StockAdjustment


class StockAdjustmentAPITests(TestCase):

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.manager = TestDataFactory.create_user(roles=['StoreManager'])
        self.cashier = TestDataFactory.create_cashier()
        self.store = TestDataFactory.create_store()
        self.product = TestDataFactory.create_product(name='Bookshelf')

    def adjust(self, adjustment_type, quantity, reason='restock'):
        return self.client.post('/api/v1/stock-adjustments/', {
            'adjustment_type': adjustment_type,
            'product': self.product.id,
            'store': self.store.id,
            'quantity': quantity,
            'reason': reason,
        }, format='json')

    def test_restock_creates_and_increments_stock(self):
        self.client.authenticate_user(self.manager)
        self.assertEqual(self.adjust('in', 5).status_code, status.HTTP_201_CREATED)
        self.assertEqual(self.adjust('in', 2).status_code, status.HTTP_201_CREATED)
        stock = Stock.objects.get(product=self.product, store=self.store)
        self.assertEqual(stock.quantity, 7)

    def test_stock_out_cannot_go_negative(self):
        TestDataFactory.create_stock(self.product, self.store, quantity=3)
        self.client.authenticate_user(self.manager)
        response = self.adjust('out', 4, reason='damaged')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Insufficient stock')
        self.assertEqual(Stock.objects.get(product=self.product, store=self.store).quantity, 3)
        self.assertFalse(StockAdjustment.objects.exists())

    def test_stock_out_decrements(self):
        TestDataFactory.create_stock(self.product, self.store, quantity=3)
        self.client.authenticate_user(self.manager)
        response = self.adjust('out', 3, reason='damaged')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(Stock.objects.get(product=self.product, store=self.store).quantity, 0)

    def test_zero_quantity_is_rejected(self):
        self.client.authenticate_user(self.manager)
        self.assertEqual(self.adjust('in', 0).status_code, status.HTTP_400_BAD_REQUEST)

    def test_cashier_cannot_restock(self):
        self.client.authenticate_user(self.cashier)
        self.assertEqual(self.adjust('in', 5).status_code, status.HTTP_403_FORBIDDEN)

    def test_stock_list_filters_by_store(self):
        other_store = TestDataFactory.create_store()
        TestDataFactory.create_stock(self.product, self.store, quantity=3)
        TestDataFactory.create_stock(self.product, other_store, quantity=9)
        self.client.authenticate_user(self.cashier)
        response = self.client.get('/api/v1/stock/', {'store_id': self.store.id})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([row['quantity'] for row in response.data], [3])

    def test_low_stock_uses_product_threshold(self):
        # create_product sets low_stock_threshold=2
        TestDataFactory.create_stock(self.product, self.store, quantity=2)
        roomy = TestDataFactory.create_product(name='Armchair')
        TestDataFactory.create_stock(roomy, self.store, quantity=8)
        self.client.authenticate_user(self.cashier)
        response = self.client.get('/api/v1/stock/low/')
        self.assertEqual([row['product_name'] for row in response.data], ['Bookshelf'])
