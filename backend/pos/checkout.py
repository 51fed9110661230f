"""
Checkout orchestration for one terminal.

    IDLE -> SUBMITTING -> SUCCEEDED -> RECEIPT_SHOWN -> (new sale) IDLE
                       -> FAILED -> (dismiss or retry) IDLE

Order creation and the stock decrement run inside ``unit_of_work``. With the
default (no transaction) a decrement failure leaves the created order in
place and the catalog cache untouched; a retry of the unchanged cart reuses
that order and decrements again. Passing ``django.db.transaction.atomic``
with ``atomic=True`` rolls the order back instead.

The idempotency key is the cart token plus a digest of the customer and
lines, so an edited cart never reuses an order made for different lines.
"""
import hashlib
import logging
from contextlib import nullcontext
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from .cart import CartWarning, quantize_money
from .exceptions import CheckoutInProgress, OrderCreationError, ServiceError, StockDecrementError
from .receipt import SaleReceipt

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ('cash', 'card', 'mobile')
ORDER_STATUS_ON_CHECKOUT = 'Processing'


class CheckoutState(str, Enum):
    IDLE = 'idle'
    SUBMITTING = 'submitting'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'
    RECEIPT_SHOWN = 'receipt_shown'


COMPLETED_STATES = (CheckoutState.SUCCEEDED, CheckoutState.RECEIPT_SHOWN)


def idempotency_key(cart) -> str:
    """Cart token plus a digest of what is sold to whom"""
    content = '|'.join([cart.customer] + [
        f"{line.item.id}:{line.quantity}:{quantize_money(line.item.unit_price)}" for line in cart
    ])
    digest = hashlib.sha256(content.encode('utf-8')).hexdigest()[:16]
    return f"{cart.token}-{digest}"


@dataclass
class CheckoutResult:
    state: CheckoutState
    receipt: Optional[SaleReceipt] = None
    warning: Optional[CartWarning] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    replayed: bool = False

    @property
    def ok(self) -> bool:
        return self.state in COMPLETED_STATES


class CheckoutOrchestrator:
    def __init__(self, services, catalog, unit_of_work=nullcontext, clock=datetime.now,
                 currency='UGX', state=CheckoutState.IDLE, receipt=None, error=None,
                 pending_order_id=None, atomic=False):
        self.services = services
        self.catalog = catalog
        self.unit_of_work = unit_of_work
        # True when unit_of_work discards its writes on error
        self.atomic = atomic
        self.clock = clock
        self.currency = currency
        self.state = CheckoutState(state)
        self.receipt = receipt
        self.error = error
        # Order that exists without its stock decrement
        self.pending_order_id = pending_order_id

    @property
    def is_busy(self) -> bool:
        return self.state == CheckoutState.SUBMITTING

    @property
    def is_completed(self) -> bool:
        return self.state in COMPLETED_STATES

    def submit(self, cart, payment_method) -> CheckoutResult:
        """
        Create the order, decrement stock, patch the catalog cache and build the
        receipt. Validation problems come back as warnings; service failures move
        the checkout to FAILED with the cart left as it was.
        """
        if self.state == CheckoutState.SUBMITTING:
            raise CheckoutInProgress('A checkout is already in progress')
        if self.is_completed:
            # Same sale submitted again before a new sale was started
            return CheckoutResult(self.state, receipt=self.receipt, replayed=True)

        method = (payment_method or '').strip().lower()
        if method not in PAYMENT_METHODS:
            return CheckoutResult(self.state, warning=CartWarning(
                CartWarning.INVALID_PAYMENT_METHOD,
                f"Payment method must be one of: {', '.join(PAYMENT_METHODS)}.",
            ))
        if cart.is_empty:
            return CheckoutResult(self.state, warning=CartWarning(
                CartWarning.EMPTY_CART, 'Cart is empty. Add items before checking out.',
            ))

        self.state = CheckoutState.SUBMITTING
        self.error = None
        issued_at = self.clock()
        key = idempotency_key(cart)
        logger.info("Checkout %s: %d lines, total %s, %s", key, len(cart), cart.total, method)

        try:
            with self.unit_of_work():
                order = self.services.create_order(
                    customer=cart.customer,
                    date=issued_at.date(),
                    line_items=[
                        {
                            'item_id': line.item.id,
                            'description': line.item.name,
                            'sku': line.item.sku,
                            'quantity': line.quantity,
                            'unit_price': line.item.unit_price,
                        }
                        for line in cart
                    ],
                    status=ORDER_STATUS_ON_CHECKOUT,
                    payment_method=method,
                    subtotal=cart.subtotal,
                    tax=cart.tax,
                    total=cart.total,
                    idempotency_key=key,
                )
                logger.info("Checkout %s: order %s (created=%s)", key, order.order_number, order.created)
                if self.pending_order_id not in (None, order.order_id):
                    logger.warning(
                        "Cart %s changed after order %s was left without a stock decrement",
                        cart.token, self.pending_order_id,
                    )
                # Until the decrement succeeds the order exists without its stock movement
                self.pending_order_id = order.order_id
                self.services.decrement_stock(
                    [{'item_id': line.item.id, 'quantity': line.quantity} for line in cart]
                )
        except ServiceError as e:
            self._fail(str(e))
            error_code = 'stock_decrement_failed' if isinstance(e, StockDecrementError) else (
                'order_creation_failed' if isinstance(e, OrderCreationError) else 'service_error'
            )
            logger.error("Checkout %s failed (%s): %s", key, error_code, e)
            return CheckoutResult(self.state, error=self.error, error_code=error_code)
        except Exception:
            self._fail('Unexpected checkout error')
            raise

        self.pending_order_id = None
        self.catalog.apply_sale(cart.lines)
        self.receipt = SaleReceipt.from_cart(
            cart,
            order_id=order.order_id,
            order_number=order.order_number,
            payment_method=method,
            issued_at=issued_at,
            currency=self.currency,
        )
        self.state = CheckoutState.SUCCEEDED
        logger.info("Checkout %s succeeded: %s", key, order.order_number)
        return CheckoutResult(self.state, receipt=self.receipt)

    def _fail(self, error):
        self.state = CheckoutState.FAILED
        self.error = error
        if self.atomic:
            # The unit of work discarded the order along with everything else
            self.pending_order_id = None

    def show_receipt(self) -> Optional[SaleReceipt]:
        if self.state == CheckoutState.SUCCEEDED:
            self.state = CheckoutState.RECEIPT_SHOWN
        return self.receipt if self.is_completed else None

    def new_sale(self, cart) -> None:
        """
        Dismiss the outcome of the last checkout. After a completed sale the
        cart is cleared; after a failure it is kept for another attempt.
        """
        if self.state == CheckoutState.SUBMITTING:
            raise CheckoutInProgress('A checkout is still in progress')
        if self.is_completed:
            cart.clear()
            self.receipt = None
        self.error = None
        self.state = CheckoutState.IDLE

    def to_dict(self) -> dict:
        return {
            'state': self.state.value,
            'receipt': self.receipt.to_dict() if self.receipt else None,
            'error': self.error,
            'pending_order_id': self.pending_order_id,
        }

    @staticmethod
    def state_from_dict(data) -> dict:
        """Constructor keyword arguments for a persisted orchestrator state"""
        data = data or {}
        state = CheckoutState(data.get('state', CheckoutState.IDLE.value))
        if state == CheckoutState.SUBMITTING:
            # The request that started this checkout never finished
            state = CheckoutState.FAILED
        receipt = data.get('receipt')
        return {
            'state': state,
            'receipt': SaleReceipt.from_dict(receipt) if receipt else None,
            'error': data.get('error'),
            'pending_order_id': data.get('pending_order_id'),
        }
