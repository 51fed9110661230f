"""
Test suite for the point-of-sale flow
Tests: cart rules, held carts, catalog cache, checkout orchestration, receipts,
ORM services and the terminal API
"""
import base64
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal

from django.core.cache import cache
from django.test import SimpleTestCase, TestCase
from rest_framework import status

from backend.core.models import AuditLog
from backend.core.permissions import RequestContext
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.inventory.models import Stock
from backend.pos.cart import Cart, CartWarning, CatalogItem, HoldStack
from backend.pos.catalog_cache import CatalogCache
from backend.pos.checkout import CheckoutOrchestrator, CheckoutState, idempotency_key
from backend.pos.exceptions import (
    CatalogLoadError, CheckoutInProgress, OrderCreationError, ServiceError, StockDecrementError,
)
from backend.pos.models import Order, POSSession
from backend.pos.receipt import SaleReceipt, format_currency, render_image, render_text
from backend.pos.services import (
    CreatedOrder, PosServices, create_order, decrement_stock, list_catalog_items,
)
from backend.pos.terminal import Terminal, catalog_cache_key

TABLE = CatalogItem(id=1, name='Oak Dining Table', sku='TAB-0001', unit_price=Decimal('10000'), on_hand=5, category='Tables')
SOFA = CatalogItem(id=2, name='Leather Sofa', sku='SOF-0001', unit_price=Decimal('2500'), on_hand=1, category='Sofas')
STOOL = CatalogItem(id=3, name='Bar Stool', sku='STO-0001', unit_price=Decimal('750'), on_hand=0, category='Chairs')
FIXED_NOW = datetime(2026, 10, 19, 14, 30)


class FakeServices:
    """In-memory order store and inventory"""

    def __init__(self, items=(TABLE, SOFA, STOOL), customer_names=('Kampala Interiors',)):
        self.items = list(items)
        self.customer_names = list(customer_names)
        self.orders = {}
        self.decrements = []
        self.fail_catalog = False
        self.fail_order = False
        self.fail_decrement = False
        self.fail_customers = False
        self.decrement_error = None

    def list_catalog_items(self):
        if self.fail_catalog:
            raise ServiceError('inventory service unreachable')
        return list(self.items)

    def list_customer_names(self):
        if self.fail_customers:
            raise ServiceError('customer directory unreachable')
        return list(self.customer_names)

    def create_order(self, idempotency_key, **fields):
        if self.fail_order:
            raise OrderCreationError('order store unavailable')
        if idempotency_key in self.orders:
            order = self.orders[idempotency_key]
            return CreatedOrder(order['id'], order['number'], False)
        order_id = len(self.orders) + 1
        self.orders[idempotency_key] = dict(fields, id=order_id, number=f'INV-TEST-{order_id}')
        return CreatedOrder(order_id, f'INV-TEST-{order_id}', True)

    def decrement_stock(self, items):
        if self.decrement_error is not None:
            raise self.decrement_error
        if self.fail_decrement:
            raise StockDecrementError('inventory write failed', failed_items=[items[0]['item_id']])
        self.decrements.append(items)


def rollback_unit_of_work(services):
    """Unit of work that discards orders created inside a failed block"""
    @contextmanager
    def unit_of_work():
        snapshot = dict(services.orders)
        try:
            yield
        except Exception:
            services.orders = snapshot
            raise
    return unit_of_work


class CartTests(SimpleTestCase):
    """Cart quantity and total rules"""

    def test_two_units_at_ten_thousand(self):
        cart = Cart()
        self.assertIsNone(cart.add(TABLE))
        self.assertIsNone(cart.add(TABLE))
        self.assertEqual(cart.subtotal, Decimal('20000'))
        self.assertEqual(cart.tax, Decimal('1600'))
        self.assertEqual(cart.total, Decimal('21600'))

    def test_total_is_subtotal_times_one_point_zero_eight(self):
        cart = Cart()
        cart.add(TABLE)
        cart.add(SOFA)
        self.assertEqual(cart.subtotal, Decimal('12500'))
        self.assertEqual(cart.total, cart.subtotal * Decimal('1.08'))

    def test_add_out_of_stock_item_leaves_cart_unchanged(self):
        cart = Cart()
        cart.add(TABLE)
        before = cart.to_dict()
        warning = cart.add(STOOL)
        self.assertEqual(warning.code, CartWarning.OUT_OF_STOCK)
        self.assertEqual(cart.to_dict(), before)

    def test_add_never_exceeds_on_hand(self):
        cart = Cart()
        self.assertIsNone(cart.add(SOFA))
        warning = cart.add(SOFA)
        self.assertEqual(warning.code, CartWarning.STOCK_LIMIT)
        self.assertIn('Only 1 in stock', warning.message)
        self.assertEqual(cart.quantity_of(SOFA.id), 1)

    def test_lines_are_unique_per_item_and_keep_insertion_order(self):
        cart = Cart()
        cart.add(SOFA)
        cart.add(TABLE)
        cart.add(TABLE)
        self.assertEqual([line.item.id for line in cart], [SOFA.id, TABLE.id])
        self.assertEqual(len(cart), 2)

    def test_adjust_to_zero_removes_line(self):
        cart = Cart()
        cart.add(TABLE)
        cart.add(TABLE)
        self.assertIsNone(cart.adjust_quantity(TABLE.id, -2))
        self.assertIsNone(cart.line(TABLE.id))
        self.assertTrue(cart.is_empty)

    def test_adjust_below_zero_removes_line(self):
        cart = Cart()
        cart.add(TABLE)
        cart.adjust_quantity(TABLE.id, -5)
        self.assertTrue(cart.is_empty)

    def test_adjust_beyond_on_hand_is_rejected(self):
        cart = Cart()
        cart.add(TABLE)
        warning = cart.adjust_quantity(TABLE.id, 5)
        self.assertEqual(warning.code, CartWarning.STOCK_LIMIT)
        self.assertEqual(cart.quantity_of(TABLE.id), 1)
        self.assertIsNone(cart.adjust_quantity(TABLE.id, 4))
        self.assertEqual(cart.quantity_of(TABLE.id), 5)

    def test_adjust_unknown_item(self):
        self.assertEqual(Cart().adjust_quantity(99, 1).code, CartWarning.UNKNOWN_ITEM)

    def test_remove_and_clear(self):
        cart = Cart(customer='Kampala Interiors')
        cart.add(TABLE)
        cart.add(SOFA)
        cart.remove(TABLE.id)
        cart.remove(TABLE.id)
        self.assertEqual([line.item.id for line in cart], [SOFA.id])
        token = cart.token
        cart.clear()
        self.assertTrue(cart.is_empty)
        self.assertEqual(cart.customer, 'Walk-in Customer')
        self.assertNotEqual(cart.token, token)

    def test_copy_is_independent(self):
        cart = Cart()
        cart.add(TABLE)
        copy = cart.copy()
        cart.add(TABLE)
        self.assertEqual(copy.quantity_of(TABLE.id), 1)
        self.assertEqual(cart.quantity_of(TABLE.id), 2)

    def test_dict_round_trip_preserves_money_as_decimal(self):
        cart = Cart(customer='Kampala Interiors', tax_rate=Decimal('0.08'))
        cart.add(TABLE)
        restored = Cart.from_dict(cart.to_dict())
        self.assertEqual(restored, cart)
        self.assertIsInstance(restored.line(TABLE.id).item.unit_price, Decimal)


class HoldStackTests(SimpleTestCase):

    def test_hold_then_resume_restores_identical_cart(self):
        cart = Cart(customer='Kampala Interiors')
        cart.add(TABLE)
        cart.add(TABLE)
        cart.add(SOFA)
        snapshot = cart.copy()

        held = HoldStack()
        self.assertIsNone(held.hold(cart))
        self.assertTrue(cart.is_empty)
        self.assertEqual(len(held), 1)

        resumed = held.resume(0)
        self.assertEqual(resumed, snapshot)
        self.assertEqual(len(held), 0)

    def test_held_cart_is_a_deep_copy(self):
        cart = Cart()
        cart.add(TABLE)
        held = HoldStack()
        held.hold(cart)
        cart.add(TABLE)
        self.assertEqual(list(held)[0].quantity_of(TABLE.id), 1)

    def test_holding_empty_cart_is_a_warning(self):
        held = HoldStack()
        warning = held.hold(Cart())
        self.assertEqual(warning.code, CartWarning.EMPTY_CART)
        self.assertEqual(len(held), 0)

    def test_resume_and_discard_by_index(self):
        held = HoldStack()
        for item in (TABLE, SOFA):
            cart = Cart()
            cart.add(item)
            held.hold(cart)
        held.discard(0)
        self.assertEqual(held.resume(0).lines[0].item.id, SOFA.id)
        with self.assertRaises(IndexError):
            held.resume(0)
        with self.assertRaises(IndexError):
            held.discard(-1)


class CatalogCacheTests(SimpleTestCase):

    def test_load_and_search(self):
        catalog = CatalogCache()
        catalog.load(FakeServices())
        self.assertEqual(len(catalog), 3)
        self.assertEqual(catalog.customer_names, ['Kampala Interiors'])
        self.assertEqual([item.id for item in catalog.search('OAK')], [TABLE.id])
        self.assertEqual([item.id for item in catalog.search('sof-')], [SOFA.id])
        self.assertEqual(len(list(catalog.search(''))), 3)

    def test_search_is_lazy_and_restartable(self):
        catalog = CatalogCache([TABLE, SOFA, STOOL])
        results = catalog.search('o')
        self.assertEqual(next(results), TABLE)
        self.assertEqual([i.id for i in catalog.search('o')], [i.id for i in catalog.search('o')])
        self.assertEqual(len(catalog), 3)

    def test_failed_load_leaves_cache_empty(self):
        services = FakeServices()
        catalog = CatalogCache()
        catalog.load(services)
        services.fail_catalog = True
        with self.assertRaises(CatalogLoadError):
            catalog.load(services)
        self.assertEqual(len(catalog), 0)
        self.assertEqual(catalog.customer_names, [])
        self.assertFalse(catalog.loaded)

    def test_customer_failure_discards_loaded_items(self):
        services = FakeServices()
        services.fail_customers = True
        catalog = CatalogCache()
        with self.assertRaises(CatalogLoadError):
            catalog.load(services)
        self.assertEqual(len(catalog), 0)
        self.assertFalse(catalog.to_dict()['loaded'])

    def test_find_by_sku_ignores_case_and_whitespace(self):
        catalog = CatalogCache([TABLE, SOFA])
        self.assertEqual(catalog.find_by_sku(' tab-0001 '), TABLE)
        self.assertIsNone(catalog.find_by_sku('TAB-9999'))
        self.assertIsNone(catalog.find_by_sku(''))

    def test_apply_sale_subtracts_and_clamps_at_zero(self):
        catalog = CatalogCache([TABLE, SOFA])
        cart = Cart()
        cart.add(TABLE)
        cart.add(TABLE)
        cart.add(SOFA)
        catalog.apply_sale(cart.lines)
        catalog.apply_sale(cart.lines)
        self.assertEqual(catalog.get(TABLE.id).on_hand, 1)
        self.assertEqual(catalog.get(SOFA.id).on_hand, 0)


class CheckoutOrchestratorTests(SimpleTestCase):

    def setUp(self):
        self.services = FakeServices()
        self.catalog = CatalogCache()
        self.catalog.load(self.services)
        self.cart = Cart()
        self.cart.add(self.catalog.get(TABLE.id))
        self.cart.add(self.catalog.get(TABLE.id))
        self.cart.add(self.catalog.get(SOFA.id))

    def orchestrator(self, **kwargs):
        return CheckoutOrchestrator(self.services, self.catalog, clock=lambda: FIXED_NOW, **kwargs)

    def test_checkout_of_two_items(self):
        checkout = self.orchestrator()
        result = checkout.submit(self.cart, 'card')

        self.assertTrue(result.ok)
        self.assertEqual(checkout.state, CheckoutState.SUCCEEDED)
        self.assertEqual(len(self.services.orders), 1)
        order = list(self.services.orders.values())[0]
        self.assertEqual(order['status'], 'Processing')
        self.assertEqual(order['payment_method'], 'card')
        self.assertEqual(order['customer'], 'Walk-in Customer')
        self.assertEqual(order['date'], FIXED_NOW.date())
        self.assertEqual(order['total'], Decimal('24300'))
        self.assertEqual(order['line_items'], [
            {'item_id': 1, 'description': 'Oak Dining Table', 'sku': 'TAB-0001', 'quantity': 2, 'unit_price': Decimal('10000')},
            {'item_id': 2, 'description': 'Leather Sofa', 'sku': 'SOF-0001', 'quantity': 1, 'unit_price': Decimal('2500')},
        ])
        self.assertEqual(self.services.decrements, [[{'item_id': 1, 'quantity': 2}, {'item_id': 2, 'quantity': 1}]])
        self.assertEqual(self.catalog.get(TABLE.id).on_hand, 3)
        self.assertEqual(self.catalog.get(SOFA.id).on_hand, 0)

        self.assertEqual(result.receipt.order_number, 'INV-TEST-1')
        self.assertEqual(result.receipt.total, Decimal('24300'))
        # The cart is only cleared when the next sale starts
        self.assertEqual(len(self.cart), 2)

    def test_decrement_failure_without_unit_of_work_leaves_order_behind(self):
        self.services.fail_decrement = True
        checkout = self.orchestrator()
        result = checkout.submit(self.cart, 'cash')

        self.assertFalse(result.ok)
        self.assertEqual(result.error_code, 'stock_decrement_failed')
        self.assertEqual(checkout.state, CheckoutState.FAILED)
        self.assertEqual(len(self.services.orders), 1)
        self.assertEqual(self.catalog.get(TABLE.id).on_hand, 5)
        self.assertEqual(self.catalog.get(SOFA.id).on_hand, 1)
        self.assertEqual(len(self.cart), 2)

    def test_retry_after_gap_reuses_order_and_decrements(self):
        self.services.fail_decrement = True
        checkout = self.orchestrator()
        checkout.submit(self.cart, 'cash')
        self.services.fail_decrement = False

        result = checkout.submit(self.cart, 'cash')
        self.assertTrue(result.ok)
        self.assertFalse(result.replayed)
        self.assertEqual(len(self.services.orders), 1)
        self.assertEqual(len(self.services.decrements), 1)
        self.assertEqual(self.catalog.get(TABLE.id).on_hand, 3)

    def test_decrement_failure_inside_unit_of_work_rolls_order_back(self):
        self.services.fail_decrement = True
        checkout = self.orchestrator(unit_of_work=rollback_unit_of_work(self.services), atomic=True)
        result = checkout.submit(self.cart, 'cash')

        self.assertFalse(result.ok)
        self.assertEqual(self.services.orders, {})
        self.assertEqual(self.catalog.get(TABLE.id).on_hand, 5)
        # Nothing is left waiting for a decrement once the order is rolled back
        self.assertIsNone(checkout.pending_order_id)
        self.assertIsNone(checkout.to_dict()['pending_order_id'])

    def test_unexpected_decrement_error_is_decremented_on_retry(self):
        self.services.decrement_error = ConnectionError('inventory connection reset')
        checkout = self.orchestrator()
        with self.assertRaises(ConnectionError):
            checkout.submit(self.cart, 'cash')
        self.assertEqual(checkout.state, CheckoutState.FAILED)
        self.assertEqual(checkout.pending_order_id, 1)
        self.assertEqual(self.services.decrements, [])

        self.services.decrement_error = None
        restored = self.orchestrator(**CheckoutOrchestrator.state_from_dict(checkout.to_dict()))
        result = restored.submit(self.cart, 'cash')
        self.assertTrue(result.ok)
        self.assertFalse(result.replayed)
        self.assertEqual(result.receipt.order_number, 'INV-TEST-1')
        self.assertEqual(len(self.services.orders), 1)
        self.assertEqual(self.services.decrements, [[{'item_id': 1, 'quantity': 2}, {'item_id': 2, 'quantity': 1}]])
        self.assertEqual(self.catalog.get(TABLE.id).on_hand, 3)
        self.assertEqual(self.catalog.get(SOFA.id).on_hand, 0)
        self.assertIsNone(restored.pending_order_id)

    def test_cart_edited_after_gap_gets_its_own_order(self):
        self.services.fail_decrement = True
        checkout = self.orchestrator()
        checkout.submit(self.cart, 'cash')
        self.services.fail_decrement = False

        self.assertIsNone(self.cart.adjust_quantity(TABLE.id, -1))
        result = checkout.submit(self.cart, 'cash')

        self.assertTrue(result.ok)
        self.assertEqual(len(self.services.orders), 2)
        self.assertEqual(result.receipt.order_number, 'INV-TEST-2')
        order = [o for o in self.services.orders.values() if o['id'] == 2][0]
        self.assertEqual(
            [(entry['item_id'], entry['quantity']) for entry in order['line_items']],
            [(TABLE.id, 1), (SOFA.id, 1)],
        )
        self.assertEqual(
            [(line.sku, line.quantity) for line in result.receipt.lines],
            [('TAB-0001', 1), ('SOF-0001', 1)],
        )
        self.assertEqual(order['total'], Decimal('13500'))
        self.assertEqual(result.receipt.total, order['total'])
        self.assertEqual(self.services.decrements, [[{'item_id': 1, 'quantity': 1}, {'item_id': 2, 'quantity': 1}]])
        self.assertEqual(self.catalog.get(TABLE.id).on_hand, 4)

    def test_idempotency_key_follows_cart_contents(self):
        key = idempotency_key(self.cart)
        self.assertTrue(key.startswith(self.cart.token))
        self.assertLessEqual(len(key), 64)
        self.assertEqual(idempotency_key(self.cart.copy()), key)
        self.cart.customer = 'Kampala Interiors'
        self.assertNotEqual(idempotency_key(self.cart), key)

    def test_order_failure_skips_decrement(self):
        self.services.fail_order = True
        checkout = self.orchestrator()
        result = checkout.submit(self.cart, 'mobile')
        self.assertEqual(result.error_code, 'order_creation_failed')
        self.assertEqual(self.services.decrements, [])
        self.assertEqual(len(self.cart), 2)

    def test_failure_then_dismiss_keeps_cart(self):
        self.services.fail_order = True
        checkout = self.orchestrator()
        checkout.submit(self.cart, 'cash')
        checkout.new_sale(self.cart)
        self.assertEqual(checkout.state, CheckoutState.IDLE)
        self.assertEqual(len(self.cart), 2)

    def test_empty_cart_and_bad_payment_method_are_warnings(self):
        checkout = self.orchestrator()
        result = checkout.submit(Cart(), 'cash')
        self.assertEqual(result.warning.code, CartWarning.EMPTY_CART)
        result = checkout.submit(self.cart, 'cheque')
        self.assertEqual(result.warning.code, CartWarning.INVALID_PAYMENT_METHOD)
        self.assertEqual(checkout.state, CheckoutState.IDLE)
        self.assertEqual(self.services.orders, {})

    def test_repeat_submission_while_submitting_is_rejected(self):
        checkout = self.orchestrator(state=CheckoutState.SUBMITTING)
        with self.assertRaises(CheckoutInProgress):
            checkout.submit(self.cart, 'cash')
        with self.assertRaises(CheckoutInProgress):
            checkout.new_sale(self.cart)

    def test_resubmitting_completed_sale_replays_receipt(self):
        checkout = self.orchestrator()
        first = checkout.submit(self.cart, 'card')
        second = checkout.submit(self.cart, 'card')
        self.assertTrue(second.replayed)
        self.assertEqual(second.receipt, first.receipt)
        self.assertEqual(len(self.services.orders), 1)
        self.assertEqual(len(self.services.decrements), 1)

    def test_receipt_shown_then_new_sale(self):
        checkout = self.orchestrator()
        self.assertIsNone(checkout.show_receipt())
        checkout.submit(self.cart, 'card')
        receipt = checkout.show_receipt()
        self.assertEqual(checkout.state, CheckoutState.RECEIPT_SHOWN)
        self.assertEqual(receipt.payment_method_label, 'Card')

        checkout.new_sale(self.cart)
        self.assertEqual(checkout.state, CheckoutState.IDLE)
        self.assertTrue(self.cart.is_empty)
        self.assertIsNone(checkout.receipt)

    def test_state_survives_persistence(self):
        checkout = self.orchestrator()
        checkout.submit(self.cart, 'card')
        restored = CheckoutOrchestrator(
            self.services, self.catalog, **CheckoutOrchestrator.state_from_dict(checkout.to_dict())
        )
        self.assertEqual(restored.state, CheckoutState.SUCCEEDED)
        self.assertEqual(restored.receipt, checkout.receipt)

    def test_interrupted_submission_restores_as_failed(self):
        state = CheckoutOrchestrator.state_from_dict({'state': 'submitting'})
        self.assertEqual(state['state'], CheckoutState.FAILED)


class ReceiptTests(SimpleTestCase):

    def setUp(self):
        cart = Cart()
        cart.add(TABLE)
        cart.add(TABLE)
        self.receipt = SaleReceipt.from_cart(
            cart, order_id=7, order_number='INV-20261019-ABCD1234',
            payment_method='card', issued_at=FIXED_NOW,
        )

    def test_format_currency(self):
        self.assertEqual(format_currency(Decimal('21600.00')), 'UGX 21,600')
        self.assertEqual(format_currency(Decimal('1234.5'), 'USD'), 'USD 1,234.50')

    def test_text_receipt(self):
        text = render_text(self.receipt)
        lines = text.splitlines()
        self.assertEqual(lines[0].strip(), 'Footsteps Furniture')
        self.assertEqual(lines[1].strip(), '123 Furniture Ave, Mukono, Uganda')
        self.assertEqual(lines[2].strip(), 'Sale Receipt')
        self.assertIn('Date: 2026-10-19 14:30', lines)
        self.assertIn('Customer: Walk-in Customer', lines)
        self.assertIn('Transaction ID: INV-20261019-ABCD1234', lines)
        self.assertIn('Oak Dining Table', lines)
        self.assertRegex(text, r'  2 x UGX 10,000 +UGX 20,000\n')
        self.assertRegex(text, r'Subtotal +UGX 20,000\n')
        self.assertRegex(text, r'Tax \(8%\) +UGX 1,600\n')
        self.assertIn('TOTAL'.ljust(30) + 'UGX 21,600', lines)
        self.assertIn('Payment Method: Card', lines)
        self.assertEqual(lines[-1].strip(), 'Thank you for your business!')
        self.assertTrue(all(len(line) <= 40 for line in lines))

    def test_custom_header_and_width(self):
        text = render_text(self.receipt, width=32, header=['Branch 2'])
        lines = text.splitlines()
        self.assertEqual(lines[0].strip(), 'Branch 2')
        self.assertTrue(all(len(line) <= 32 for line in lines))

    def test_image_receipt_is_png_data_url(self):
        data_url = render_image(self.receipt)
        prefix = 'data:image/png;base64,'
        self.assertTrue(data_url.startswith(prefix))
        self.assertEqual(base64.b64decode(data_url[len(prefix):])[:8], b'\x89PNG\r\n\x1a\n')

    def test_dict_round_trip(self):
        self.assertEqual(SaleReceipt.from_dict(self.receipt.to_dict()), self.receipt)


class PosServicesTests(TestCase):
    """ORM-backed catalog reads, stock decrement and order creation"""

    def setUp(self):
        self.user = TestDataFactory.create_cashier()
        self.store = TestDataFactory.create_store()
        self.other_store = TestDataFactory.create_store()
        self.table = TestDataFactory.create_product(name='Oak Dining Table', sku='TAB-0001', price=Decimal('10000'))
        self.sofa = TestDataFactory.create_product(name='Leather Sofa', sku='SOF-0001', price=Decimal('2500'))
        TestDataFactory.create_stock(self.table, self.store, quantity=5)
        TestDataFactory.create_stock(self.table, self.other_store, quantity=50)
        TestDataFactory.create_stock(self.sofa, self.store, quantity=1)

    def test_catalog_items_use_store_stock(self):
        TestDataFactory.create_product(name='Retired Chair', is_active=False)
        unstocked = TestDataFactory.create_product(name='Zebra Rug')
        items = {item.id: item for item in list_catalog_items(self.store)}
        self.assertEqual(set(items), {self.table.id, self.sofa.id, unstocked.id})
        self.assertEqual(items[self.table.id].on_hand, 5)
        self.assertEqual(items[self.table.id].unit_price, Decimal('10000.00'))
        self.assertEqual(items[unstocked.id].on_hand, 0)

    def test_decrement_is_all_or_nothing(self):
        with self.assertRaises(StockDecrementError) as ctx:
            decrement_stock(self.store, [
                {'item_id': self.table.id, 'quantity': 2},
                {'item_id': self.sofa.id, 'quantity': 2},
            ])
        self.assertEqual(ctx.exception.failed_items, [self.sofa.id])
        self.assertEqual(Stock.objects.get(product=self.table, store=self.store).quantity, 5)

    def test_decrement_combines_repeated_items(self):
        decrement_stock(self.store, [
            {'item_id': self.table.id, 'quantity': 2},
            {'item_id': self.table.id, 'quantity': 3},
        ], user=self.user)
        self.assertEqual(Stock.objects.get(product=self.table, store=self.store).quantity, 0)
        self.assertEqual(Stock.objects.get(product=self.table, store=self.other_store).quantity, 50)
        self.assertTrue(AuditLog.objects.filter(action='stock_sale', user=self.user).exists())

    def test_decrement_of_unstocked_item_fails(self):
        chair = TestDataFactory.create_product(name='Chair')
        with self.assertRaises(StockDecrementError):
            decrement_stock(self.store, [{'item_id': chair.id, 'quantity': 1}])

    def test_create_order_snapshots_lines_and_is_idempotent(self):
        kwargs = dict(
            customer='Kampala Interiors',
            date=FIXED_NOW.date(),
            line_items=[{'item_id': self.table.id, 'description': 'Oak Dining Table', 'sku': 'TAB-0001',
                         'quantity': 2, 'unit_price': Decimal('10000')}],
            status='Processing',
            payment_method='cash',
            subtotal=Decimal('20000'),
            tax=Decimal('1600'),
            total=Decimal('21600'),
            idempotency_key='sale-1',
            user=self.user,
        )
        first = create_order(self.store, **kwargs)
        second = create_order(self.store, **kwargs)
        self.assertTrue(first.created)
        self.assertFalse(second.created)
        self.assertEqual(first.order_id, second.order_id)
        self.assertEqual(Order.objects.count(), 1)

        order = Order.objects.get()
        self.assertTrue(order.order_number.startswith('INV-'))
        self.assertEqual(order.total, Decimal('21600.00'))
        self.assertEqual(order.tax_amount, Decimal('1600.00'))
        item = order.items.get()
        self.assertEqual((item.description, item.quantity, item.line_total), ('Oak Dining Table', 2, Decimal('20000.00')))

        # Later catalog changes do not touch the snapshot
        self.table.name = 'Renamed Table'
        self.table.price = Decimal('1')
        self.table.save()
        item.refresh_from_db()
        self.assertEqual((item.description, item.unit_price), ('Oak Dining Table', Decimal('10000.00')))

    def test_pos_services_bind_store(self):
        services = PosServices(store=self.store, user=self.user)
        self.assertEqual(len(services.list_catalog_items()), 2)
        services.decrement_stock([{'item_id': self.sofa.id, 'quantity': 1}])
        self.assertEqual(Stock.objects.get(product=self.sofa, store=self.store).quantity, 0)


class TerminalCatalogTests(TestCase):
    """Catalog snapshot kept in the Django cache per session"""

    def setUp(self):
        cache.clear()
        cashier = TestDataFactory.create_cashier()
        self.session = TestDataFactory.create_pos_session(cashier)
        self.context = RequestContext(user=cashier)

    def test_failed_load_is_not_cached(self):
        services = FakeServices()
        services.fail_customers = True
        with self.assertRaises(CatalogLoadError):
            Terminal(self.session, self.context, services=services).catalog
        self.assertIsNone(cache.get(catalog_cache_key(self.session)))

        services.fail_customers = False
        terminal = Terminal(self.session, self.context, services=services)
        self.assertEqual(len(terminal.search()), 3)
        self.assertIsNone(terminal.add_item(TABLE.id))
        self.assertTrue(cache.get(catalog_cache_key(self.session))['loaded'])

    def test_unloaded_snapshot_in_cache_is_reloaded(self):
        cache.set(catalog_cache_key(self.session), CatalogCache().to_dict())
        terminal = Terminal(self.session, self.context, services=FakeServices())
        self.assertEqual(len(terminal.catalog), 3)
        self.assertEqual(terminal.customer_options(), ['Walk-in Customer', 'Kampala Interiors'])

    def test_failed_reload_drops_previous_snapshot(self):
        services = FakeServices()
        terminal = Terminal(self.session, self.context, services=services)
        terminal.load_catalog()
        self.assertIsNotNone(cache.get(catalog_cache_key(self.session)))

        services.fail_catalog = True
        with self.assertRaises(CatalogLoadError):
            terminal.load_catalog()
        self.assertIsNone(cache.get(catalog_cache_key(self.session)))


class PosAPITestCase(TestCase):
    """Shared fixtures for terminal API tests"""

    def setUp(self):
        cache.clear()
        self.client = AuthenticatedAPIClient()
        self.cashier = TestDataFactory.create_cashier()
        self.store = TestDataFactory.create_store(name='Mukono Showroom')
        self.table = TestDataFactory.create_product(name='Oak Dining Table', sku='TAB-0001', price=Decimal('10000'))
        self.sofa = TestDataFactory.create_product(name='Leather Sofa', sku='SOF-0001', price=Decimal('2500'))
        self.stool = TestDataFactory.create_product(name='Bar Stool', sku='STO-0001', price=Decimal('750'))
        TestDataFactory.create_stock(self.table, self.store, quantity=5)
        TestDataFactory.create_stock(self.sofa, self.store, quantity=1)
        TestDataFactory.create_stock(self.stool, self.store, quantity=0)
        TestDataFactory.create_customer(name='Jane Achieng', company='Kampala Interiors')
        self.client.authenticate_user(self.cashier)
        response = self.client.post('/api/v1/pos/sessions/', {'store': self.store.id}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.session_id = response.data['id']
        self.base = f'/api/v1/pos/sessions/{self.session_id}'

    def add(self, product):
        return self.client.post(f'{self.base}/cart/items/', {'item_id': product.id}, format='json')

    def fill_cart(self):
        self.add(self.table)
        self.add(self.table)
        return self.add(self.sofa)


class PosSessionAPITests(PosAPITestCase):

    def test_open_session_is_reused(self):
        response = self.client.post('/api/v1/pos/sessions/', {'store': self.store.id}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['id'], self.session_id)
        self.assertTrue(AuditLog.objects.filter(action='session_open').exists())

    def test_sales_agent_cannot_open_session(self):
        agent = TestDataFactory.create_user(roles=['SalesAgent'])
        self.client.authenticate_user(agent)
        response = self.client.post('/api/v1/pos/sessions/', {'store': self.store.id}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_other_cashier_cannot_use_session(self):
        self.client.authenticate_user(TestDataFactory.create_cashier())
        self.assertEqual(self.client.get(f'{self.base}/cart/').status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(self.client.get('/api/v1/pos/sessions/').data, [])

    def test_manager_can_inspect_any_session(self):
        self.client.authenticate_user(TestDataFactory.create_user(roles=['StoreManager']))
        self.assertEqual(self.client.get(f'{self.base}/').status_code, status.HTTP_200_OK)

    def test_closed_session_rejects_cart_changes(self):
        response = self.client.post(f'{self.base}/close/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'closed')
        self.assertEqual(self.add(self.table).status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(POSSession.objects.get(pk=self.session_id).status, 'closed')


class PosCartAPITests(PosAPITestCase):

    def test_catalog_search_and_customers(self):
        response = self.client.get(f'{self.base}/catalog/', {'search': 'oak'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([item['sku'] for item in response.data['results']], ['TAB-0001'])
        self.assertEqual(response.data['results'][0]['on_hand'], 5)

        response = self.client.get(f'{self.base}/customers/')
        self.assertEqual(response.data['customers'], ['Walk-in Customer', 'Kampala Interiors'])

    def test_add_two_tables(self):
        self.add(self.table)
        response = self.add(self.table)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        cart = response.data['cart']
        self.assertEqual(cart['lines'][0]['quantity'], 2)
        self.assertEqual(cart['subtotal'], '20000.00')
        self.assertEqual(cart['tax'], '1600.00')
        self.assertEqual(cart['total'], '21600.00')
        self.assertTrue(AuditLog.objects.filter(action='cart_add', object_id=str(self.session_id)).exists())

    def test_out_of_stock_and_stock_limit_warnings(self):
        response = self.add(self.stool)
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'out_of_stock')
        self.assertEqual(response.data['error'], 'Out of stock')

        self.add(self.sofa)
        response = self.add(self.sofa)
        self.assertEqual(response.data['code'], 'stock_limit')
        cart = self.client.get(f'{self.base}/cart/').data['cart']
        self.assertEqual([(l['sku'], l['quantity']) for l in cart['lines']], [('SOF-0001', 1)])

    def test_invalid_item_id(self):
        response = self.client.post(f'{self.base}/cart/items/', {'item_id': 'abc'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        response = self.client.post(f'{self.base}/cart/items/', {'item_id': 999999}, format='json')
        self.assertEqual(response.data['code'], 'unknown_item')

    def test_scan_by_sku(self):
        response = self.client.post(f'{self.base}/cart/scan/', {'sku': 'tab-0001'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['cart']['lines'][0]['item_id'], self.table.id)
        response = self.client.post(f'{self.base}/cart/scan/', {'sku': 'NOPE-1'}, format='json')
        self.assertEqual(response.data['code'], 'unknown_item')

    def test_adjust_and_remove_lines(self):
        self.fill_cart()
        response = self.client.patch(f'{self.base}/cart/items/{self.table.id}/', {'delta': 3}, format='json')
        self.assertEqual(response.data['cart']['lines'][0]['quantity'], 5)
        response = self.client.patch(f'{self.base}/cart/items/{self.table.id}/', {'delta': 1}, format='json')
        self.assertEqual(response.data['code'], 'stock_limit')
        response = self.client.patch(f'{self.base}/cart/items/{self.table.id}/', {'delta': -5}, format='json')
        self.assertEqual([l['sku'] for l in response.data['cart']['lines']], ['SOF-0001'])
        response = self.client.delete(f'{self.base}/cart/items/{self.sofa.id}/')
        self.assertEqual(response.data['cart']['lines'], [])

    def test_customer_and_clear(self):
        self.fill_cart()
        response = self.client.patch(f'{self.base}/cart/customer/', {'customer': 'Kampala Interiors'}, format='json')
        self.assertEqual(response.data['cart']['customer'], 'Kampala Interiors')
        response = self.client.post(f'{self.base}/cart/clear/')
        self.assertEqual(response.data['cart']['lines'], [])
        self.assertEqual(response.data['cart']['customer'], 'Walk-in Customer')

    def test_hold_and_resume(self):
        self.fill_cart()
        before = self.client.get(f'{self.base}/cart/').data['cart']

        response = self.client.post(f'{self.base}/hold/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['cart']['lines'], [])
        self.assertEqual(len(response.data['held']), 1)

        response = self.client.post(f'{self.base}/held/0/resume/')
        self.assertEqual(response.data['cart'], before)
        self.assertEqual(response.data['held'], [])

        self.assertEqual(self.client.post(f'{self.base}/held/3/resume/').status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(self.client.post(f'{self.base}/hold/').status_code, status.HTTP_200_OK)
        self.assertEqual(self.client.post(f'{self.base}/hold/').data['code'], 'empty_cart')

    def test_discard_held_cart(self):
        self.add(self.table)
        self.client.post(f'{self.base}/hold/')
        response = self.client.delete(f'{self.base}/held/0/')
        self.assertEqual(response.data['held'], [])
        self.assertEqual(self.client.get(f'{self.base}/held/').data, [])
        self.assertTrue(AuditLog.objects.filter(action='cart_discard').exists())


class PosCheckoutAPITests(PosAPITestCase):

    def test_checkout_two_items(self):
        self.fill_cart()
        response = self.client.post(f'{self.base}/checkout/', {'payment_method': 'card'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['checkout_state'], 'succeeded')
        receipt = response.data['receipt']
        self.assertEqual(receipt['total'], '24300.00')
        self.assertEqual(receipt['payment_method'], 'Card')

        order = Order.objects.get()
        self.assertEqual(order.order_number, receipt['order_number'])
        self.assertEqual(order.status, 'Processing')
        self.assertEqual(order.customer, 'Walk-in Customer')
        self.assertEqual(order.created_by, self.cashier)
        self.assertEqual(order.items.count(), 2)

        self.assertEqual(Stock.objects.get(product=self.table, store=self.store).quantity, 3)
        self.assertEqual(Stock.objects.get(product=self.sofa, store=self.store).quantity, 0)

        results = self.client.get(f'{self.base}/catalog/').data['results']
        on_hand = {item['id']: item['on_hand'] for item in results}
        self.assertEqual(on_hand[self.table.id], 3)
        self.assertEqual(on_hand[self.sofa.id], 0)
        self.assertTrue(AuditLog.objects.filter(action='cart_checkout').exists())

    def test_receipt_and_new_sale(self):
        self.fill_cart()
        self.client.post(f'{self.base}/checkout/', {'payment_method': 'cash'}, format='json')

        # The completed sale must be dismissed before the cart changes again
        self.assertEqual(self.add(self.table).data['code'], 'sale_completed')

        response = self.client.get(f'{self.base}/receipt/', {'render': 'text'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response['Content-Type'], 'text/plain; charset=utf-8')
        text = response.content.decode()
        self.assertIn('Payment Method: Cash', text)
        self.assertIn('UGX 24,300', text)
        self.assertEqual(self.client.get(f'{self.base}/cart/').data['checkout_state'], 'receipt_shown')

        response = self.client.get(f'{self.base}/receipt/', {'render': 'image'})
        self.assertTrue(response.data['image'].startswith('data:image/png;base64,'))

        response = self.client.post(f'{self.base}/new-sale/')
        self.assertEqual(response.data['checkout_state'], 'idle')
        self.assertEqual(response.data['cart']['lines'], [])
        self.assertEqual(self.client.get(f'{self.base}/receipt/').status_code, status.HTTP_404_NOT_FOUND)

    def test_repeated_checkout_is_idempotent(self):
        self.fill_cart()
        first = self.client.post(f'{self.base}/checkout/', {'payment_method': 'card'}, format='json')
        second = self.client.post(f'{self.base}/checkout/', {'payment_method': 'card'}, format='json')
        self.assertEqual(second.status_code, status.HTTP_200_OK)
        self.assertEqual(second.data['receipt']['order_number'], first.data['receipt']['order_number'])
        self.assertEqual(Order.objects.count(), 1)
        self.assertEqual(Stock.objects.get(product=self.table, store=self.store).quantity, 3)

    def test_stock_sold_elsewhere_rolls_order_back(self):
        self.fill_cart()
        # Another terminal sold tables after this terminal loaded its catalog
        Stock.objects.filter(product=self.table, store=self.store).update(quantity=1)

        response = self.client.post(f'{self.base}/checkout/', {'payment_method': 'card'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'Payment failed')
        self.assertEqual(response.data['code'], 'stock_decrement_failed')
        self.assertEqual(response.data['checkout_state'], 'failed')

        self.assertEqual(Order.objects.count(), 0)
        self.assertEqual(Stock.objects.get(product=self.table, store=self.store).quantity, 1)
        self.assertEqual(Stock.objects.get(product=self.sofa, store=self.store).quantity, 1)
        self.assertEqual(len(response.data['cart']['lines']), 2)
        self.assertTrue(AuditLog.objects.filter(action='checkout_failed').exists())
        checkout_state = POSSession.objects.get(pk=self.session_id).state['checkout']
        self.assertIsNone(checkout_state['pending_order_id'])

        results = self.client.get(f'{self.base}/catalog/').data['results']
        self.assertEqual({i['id']: i['on_hand'] for i in results}[self.table.id], 5)

        # After a refresh the cashier can fix the cart and retry
        self.client.post(f'{self.base}/catalog/refresh/')
        self.client.patch(f'{self.base}/cart/items/{self.table.id}/', {'delta': -1}, format='json')
        response = self.client.post(f'{self.base}/checkout/', {'payment_method': 'card'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(Stock.objects.get(product=self.table, store=self.store).quantity, 0)

    def test_empty_cart_and_invalid_payment_method(self):
        response = self.client.post(f'{self.base}/checkout/', {'payment_method': 'cash'}, format='json')
        self.assertEqual(response.data['code'], 'empty_cart')
        self.add(self.table)
        response = self.client.post(f'{self.base}/checkout/', {'payment_method': 'barter'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'invalid_payment_method')
        self.assertFalse(Order.objects.exists())


class OrderAPITests(PosAPITestCase):

    def setUp(self):
        super().setUp()
        self.fill_cart()
        response = self.client.post(f'{self.base}/checkout/', {'payment_method': 'mobile'}, format='json')
        self.order_id = response.data['receipt']['order_id']

    def test_list_and_detail(self):
        response = self.client.get('/api/v1/pos/orders/', {'status': 'Processing'})
        self.assertEqual([o['id'] for o in response.data], [self.order_id])
        response = self.client.get(f'/api/v1/pos/orders/{self.order_id}/')
        self.assertEqual(response.data['payment_method'], 'mobile')
        self.assertEqual([i['sku'] for i in response.data['items']], ['TAB-0001', 'SOF-0001'])

    def test_status_change_requires_orders_manage(self):
        url = f'/api/v1/pos/orders/{self.order_id}/status/'
        response = self.client.patch(url, {'status': 'Delivered'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.client.authenticate_user(TestDataFactory.create_user(roles=['StoreManager']))
        response = self.client.patch(url, {'status': 'Delivered'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(Order.objects.get(pk=self.order_id).status, 'Delivered')
        entry = AuditLog.objects.get(action='order_status')
        self.assertEqual(entry.changes, {'old_status': 'Processing', 'new_status': 'Delivered'})

        response = self.client.patch(url, {'status': 'Lost'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
