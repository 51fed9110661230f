"""
A POS terminal bound to one POSSession.

The cart, held carts and checkout state are stored on the session row; the
catalog snapshot lives in the Django cache under a per-session key and is
reloaded from the database on a cache miss.
"""
import logging

from django.conf import settings
from django.core.cache import cache
from django.db import transaction
from django.utils import timezone

from backend.core.cache_utils import make_cache_key
from .cart import Cart, CartWarning, HoldStack
from .catalog_cache import CatalogCache
from .checkout import CheckoutOrchestrator
from .exceptions import CatalogLoadError
from .services import PosServices

logger = logging.getLogger(__name__)

SALE_COMPLETED = 'sale_completed'


def catalog_cache_key(session):
    return make_cache_key('pos_catalog', session.pk, session.session_number)


class Terminal:
    def __init__(self, session, context, services=None):
        self.session = session
        self.context = context
        self.services = services or PosServices(store=session.store, session=session, user=context.user)
        self.walk_in_label = settings.POS_WALK_IN_CUSTOMER
        self.tax_rate = settings.POS_TAX_RATE

        state = session.state or {}
        self.cart = Cart.from_dict(state['cart']) if state.get('cart') else self.new_cart()
        self.held = HoldStack.from_list(state.get('held'))
        # The catalog is attached on first use so cart-only requests skip the cache read
        self.checkout = CheckoutOrchestrator(
            self.services,
            None,
            unit_of_work=transaction.atomic,
            atomic=True,
            clock=timezone.localtime,
            currency=settings.POS_CURRENCY,
            **CheckoutOrchestrator.state_from_dict(state.get('checkout')),
        )
        self._catalog = None

    def new_cart(self):
        return Cart(customer=self.walk_in_label, tax_rate=self.tax_rate, walk_in_label=self.walk_in_label)

    # Catalog

    @property
    def catalog(self) -> CatalogCache:
        if self._catalog is None:
            cached = cache.get(catalog_cache_key(self.session))
            if cached is not None and cached.get('loaded'):
                self._catalog = CatalogCache.from_dict(cached)
            else:
                logger.debug("Catalog cache miss for session %s", self.session.session_number)
                self.load_catalog()
        return self._catalog

    def load_catalog(self):
        """(Re)load the catalog snapshot; raises CatalogLoadError and leaves it empty on failure"""
        if self._catalog is None:
            self._catalog = CatalogCache()
        try:
            self._catalog.load(self.services)
        except CatalogLoadError:
            cache.delete(catalog_cache_key(self.session))
            raise
        self._store_catalog()
        self.cart.refresh_items(self._catalog.get)
        return self._catalog

    def _store_catalog(self):
        cache.set(
            catalog_cache_key(self.session),
            self._catalog.to_dict(),
            settings.POS_CATALOG_CACHE_TTL,
        )

    def search(self, query=''):
        return list(self.catalog.search(query))

    def customer_options(self):
        names = [name for name in self.catalog.customer_names if name != self.walk_in_label]
        return [self.walk_in_label] + names

    # Checkout

    def submit_checkout(self, payment_method):
        self.checkout.catalog = self.catalog
        result = self.checkout.submit(self.cart, payment_method)
        if result.ok and not result.replayed:
            self._store_catalog()
        return result

    def show_receipt(self):
        return self.checkout.show_receipt()

    def new_sale(self):
        self.checkout.new_sale(self.cart)

    def _locked(self):
        """Warning while a completed sale is waiting to be dismissed"""
        if self.checkout.is_completed:
            return CartWarning(SALE_COMPLETED, 'This sale is complete. Start a new sale first.')
        return None

    # Cart

    def add_item(self, item_id):
        warning = self._locked()
        if warning:
            return warning
        item = self.catalog.get(item_id)
        if item is None:
            return CartWarning(CartWarning.UNKNOWN_ITEM, f"Item {item_id} is not in the catalog.")
        return self.cart.add(item)

    def scan(self, sku):
        warning = self._locked()
        if warning:
            return warning
        item = self.catalog.find_by_sku(sku)
        if item is None:
            return CartWarning(CartWarning.UNKNOWN_ITEM, f"No product with SKU '{sku}'.")
        return self.cart.add(item)

    def adjust_quantity(self, item_id, delta):
        return self._locked() or self.cart.adjust_quantity(item_id, delta)

    def remove_item(self, item_id):
        warning = self._locked()
        if warning:
            return warning
        self.cart.remove(item_id)
        return None

    def clear_cart(self):
        warning = self._locked()
        if warning:
            return warning
        self.cart.clear()
        return None

    def set_customer(self, customer):
        warning = self._locked()
        if warning:
            return warning
        self.cart.customer = (customer or '').strip() or self.walk_in_label
        return None

    # Held carts

    def hold(self):
        return self._locked() or self.held.hold(self.cart)

    def resume(self, index):
        """Make a held cart active; the current cart is discarded. Raises IndexError."""
        warning = self._locked()
        if warning:
            return warning
        self.cart = self.held.resume(index)
        return None

    def discard(self, index):
        self.held.discard(index)

    # Persistence

    def save(self, *extra_fields):
        self.session.state = {
            'cart': self.cart.to_dict(),
            'held': self.held.to_list(),
            'checkout': self.checkout.to_dict(),
        }
        self.session.save(update_fields=['state', 'updated_at', *extra_fields])

    def close(self):
        cache.delete(catalog_cache_key(self.session))
        self.session.status = 'closed'
        self.session.closed_at = timezone.now()
        self.save('status', 'closed_at')
