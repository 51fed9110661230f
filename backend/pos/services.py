"""
ORM-backed collaborators of the terminal: catalog and customer reads, order
creation and the stock decrement. Every read is a filtered query scoped to
the terminal's store.
"""
import logging
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from decimal import Decimal
from typing import List, NamedTuple

from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from backend.catalog.models import Product
from backend.catalog.utils import annotate_on_hand
from backend.core.utils import create_audit_log
from backend.inventory.models import Stock
from backend.parties.services import list_customer_names as query_customer_names
from .cart import CatalogItem
from .exceptions import OrderCreationError, ServiceError, StockDecrementError
from .models import Order, OrderItem

logger = logging.getLogger(__name__)


class CreatedOrder(NamedTuple):
    order_id: int
    order_number: str
    created: bool


def generate_order_number():
    return f"INV-{timezone.now().strftime('%Y%m%d')}-{str(uuid.uuid4())[:8].upper()}"


def list_catalog_items(store) -> List[CatalogItem]:
    """Active products with their on-hand quantity at ``store``"""
    try:
        products = annotate_on_hand(
            Product.objects.filter(is_active=True).select_related('category'),
            store_id=store.pk,
        ).order_by('name', 'id')
        return [
            CatalogItem(
                id=product.id,
                name=product.name,
                sku=product.sku,
                unit_price=product.price,
                on_hand=int(product.annotated_on_hand),
                category=product.category.name if product.category else '',
            )
            for product in products
        ]
    except DatabaseError as e:
        raise ServiceError(f"Catalog query failed: {e}") from e


def list_customer_names() -> List[str]:
    try:
        return query_customer_names()
    except DatabaseError as e:
        raise ServiceError(f"Customer query failed: {e}") from e


def decrement_stock(store, items, user=None):
    """
    Subtract sold quantities from ``store``'s stock in one transaction.

    Each row is decremented only while it still holds enough units, so stock
    never goes negative even when another terminal sold the same item. If any
    line cannot be decremented nothing is written and StockDecrementError
    lists the offending item ids.
    """
    totals = OrderedDict()
    for entry in items:
        totals[entry['item_id']] = totals.get(entry['item_id'], 0) + int(entry['quantity'])

    try:
        with transaction.atomic():
            failed = []
            now = timezone.now()
            for item_id, quantity in totals.items():
                updated = Stock.objects.filter(
                    store=store, product_id=item_id, quantity__gte=quantity,
                ).update(quantity=F('quantity') - quantity, updated_at=now)
                if not updated:
                    failed.append(item_id)
            if failed:
                raise StockDecrementError(
                    f"Insufficient stock for item(s) {', '.join(str(i) for i in failed)}",
                    failed_items=failed,
                )
    except DatabaseError as e:
        raise StockDecrementError(f"Stock update failed: {e}") from e

    for item_id, quantity in totals.items():
        create_audit_log(
            user=user,
            action='stock_sale',
            model_name='Stock',
            object_id=item_id,
            object_reference=store.code,
            changes={'quantity_sold': quantity, 'store': store.code},
        )
    logger.info("Decremented stock at %s for %d item(s)", store.code, len(totals))


def create_order(store, customer, date, line_items, status, payment_method, total,
                 subtotal=None, tax=None, idempotency_key=None, session=None, user=None) -> CreatedOrder:
    """
    Create an order with snapshotted lines. A repeated ``idempotency_key``
    returns the order created the first time instead of a new one.
    """
    idempotency_key = idempotency_key or uuid.uuid4().hex
    existing = Order.objects.filter(idempotency_key=idempotency_key).first()
    if existing is not None:
        logger.info("Order %s already exists for key %s", existing.order_number, idempotency_key)
        return CreatedOrder(existing.id, existing.order_number, False)

    rows = []
    for entry in line_items:
        unit_price = Decimal(str(entry['unit_price']))
        quantity = int(entry['quantity'])
        rows.append(OrderItem(
            product_id=entry.get('item_id'),
            description=entry['description'],
            sku=entry.get('sku', ''),
            quantity=quantity,
            unit_price=unit_price,
            line_total=unit_price * quantity,
        ))

    try:
        with transaction.atomic():
            order = Order.objects.create(
                order_number=generate_order_number(),
                idempotency_key=idempotency_key,
                customer=customer,
                date=date,
                status=status,
                payment_method=payment_method,
                subtotal=subtotal if subtotal is not None else sum((r.line_total for r in rows), Decimal('0')),
                tax_amount=tax if tax is not None else Decimal('0.00'),
                total=total,
                store=store,
                session=session,
                created_by=user,
            )
            for row in rows:
                row.order = order
            OrderItem.objects.bulk_create(rows)
    except IntegrityError as e:
        existing = Order.objects.filter(idempotency_key=idempotency_key).first()
        if existing is not None:
            return CreatedOrder(existing.id, existing.order_number, False)
        raise OrderCreationError(f"Order could not be created: {e}") from e
    except DatabaseError as e:
        raise OrderCreationError(f"Order could not be created: {e}") from e

    create_audit_log(
        user=user,
        action='order_create',
        model_name='Order',
        object_id=order.id,
        object_name=customer,
        object_reference=order.order_number,
        sku=', '.join(row.sku for row in rows if row.sku)[:1000] or None,
        changes={
            'customer': customer,
            'payment_method': payment_method,
            'total': str(total),
            'lines': len(rows),
        },
    )
    return CreatedOrder(order.id, order.order_number, True)


@dataclass
class PosServices:
    """The collaborators of one terminal, bound to its store, session and user"""
    store: object
    session: object = None
    user: object = None

    def list_catalog_items(self):
        return list_catalog_items(self.store)

    def list_customer_names(self):
        return list_customer_names()

    def create_order(self, **kwargs):
        return create_order(self.store, session=self.session, user=self.user, **kwargs)

    def decrement_stock(self, items):
        return decrement_stock(self.store, items, user=self.user)
