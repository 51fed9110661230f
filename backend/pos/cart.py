"""
Cart and held-cart stack for a point-of-sale terminal.

Quantities are whole units and money is Decimal. Stock-limit and
out-of-stock rejections are returned as CartWarning values and leave the
cart unchanged.
"""
import uuid
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterator, List, Optional

DEFAULT_TAX_RATE = Decimal('0.08')
WALK_IN_CUSTOMER = 'Walk-in Customer'
CENTS = Decimal('0.01')


def quantize_money(amount) -> Decimal:
    return Decimal(amount).quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class CatalogItem:
    """A sellable item as seen by the terminal, with its on-hand quantity"""
    id: int
    name: str
    sku: str
    unit_price: Decimal
    on_hand: int
    category: str = ''

    def with_on_hand(self, on_hand: int) -> 'CatalogItem':
        return CatalogItem(self.id, self.name, self.sku, self.unit_price, on_hand, self.category)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'sku': self.sku,
            'category': self.category,
            'unit_price': str(self.unit_price),
            'on_hand': self.on_hand,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'CatalogItem':
        return cls(
            id=data['id'],
            name=data['name'],
            sku=data['sku'],
            unit_price=Decimal(str(data['unit_price'])),
            on_hand=int(data['on_hand']),
            category=data.get('category') or '',
        )


@dataclass(frozen=True)
class CartWarning:
    code: str
    message: str

    OUT_OF_STOCK = 'out_of_stock'
    STOCK_LIMIT = 'stock_limit'
    EMPTY_CART = 'empty_cart'
    UNKNOWN_ITEM = 'unknown_item'
    INVALID_PAYMENT_METHOD = 'invalid_payment_method'

    def to_dict(self) -> dict:
        return {'code': self.code, 'message': self.message}


@dataclass
class CartLine:
    item: CatalogItem
    quantity: int

    @property
    def line_total(self) -> Decimal:
        return self.item.unit_price * self.quantity

    def to_dict(self) -> dict:
        return {'item': self.item.to_dict(), 'quantity': self.quantity}

    @classmethod
    def from_dict(cls, data: dict) -> 'CartLine':
        return cls(item=CatalogItem.from_dict(data['item']), quantity=int(data['quantity']))


def _stock_limit(item: CatalogItem) -> CartWarning:
    return CartWarning(
        CartWarning.STOCK_LIMIT,
        f"Cannot add more {item.name}. Only {item.on_hand} in stock.",
    )


class Cart:
    """
    Lines are unique per item id and kept in insertion order. Totals are
    computed on every read and never stored.

    ``token`` identifies one sale; it prefixes the idempotency key of its checkout
    and is replaced whenever the cart is cleared.
    """

    def __init__(self, customer: str = WALK_IN_CUSTOMER, tax_rate: Decimal = DEFAULT_TAX_RATE,
                 token: Optional[str] = None, walk_in_label: str = WALK_IN_CUSTOMER):
        self._lines: Dict[int, CartLine] = {}
        self.walk_in_label = walk_in_label
        self.customer = customer or walk_in_label
        self.tax_rate = Decimal(tax_rate)
        self.token = token or uuid.uuid4().hex

    def __iter__(self) -> Iterator[CartLine]:
        return iter(self._lines.values())

    def __len__(self) -> int:
        return len(self._lines)

    @property
    def lines(self) -> List[CartLine]:
        return list(self._lines.values())

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def line(self, item_id) -> Optional[CartLine]:
        return self._lines.get(item_id)

    def quantity_of(self, item_id) -> int:
        line = self._lines.get(item_id)
        return line.quantity if line else 0

    def add(self, item: CatalogItem) -> Optional[CartWarning]:
        """Add one unit of ``item``. Returns a warning and changes nothing when stock is exhausted."""
        line = self._lines.get(item.id)
        if line is not None:
            if line.quantity >= item.on_hand:
                return _stock_limit(item)
            line.quantity += 1
            line.item = item
            return None
        if item.on_hand <= 0:
            return CartWarning(CartWarning.OUT_OF_STOCK, f"{item.name} is out of stock.")
        self._lines[item.id] = CartLine(item=item, quantity=1)
        return None

    def adjust_quantity(self, item_id, delta: int) -> Optional[CartWarning]:
        """Change a line by ``delta``; a result of zero or less removes the line."""
        line = self._lines.get(item_id)
        if line is None:
            return CartWarning(CartWarning.UNKNOWN_ITEM, f"Item {item_id} is not in the cart.")
        new_quantity = line.quantity + int(delta)
        if new_quantity > line.item.on_hand:
            return _stock_limit(line.item)
        if new_quantity <= 0:
            del self._lines[item_id]
        else:
            line.quantity = new_quantity
        return None

    def remove(self, item_id) -> None:
        self._lines.pop(item_id, None)

    def clear(self) -> None:
        self._lines.clear()
        self.customer = self.walk_in_label
        self.token = uuid.uuid4().hex

    def refresh_items(self, lookup) -> None:
        """Replace line snapshots with current catalog data from ``lookup(item_id)``"""
        for item_id, line in self._lines.items():
            current = lookup(item_id)
            if current is not None:
                line.item = current

    @property
    def subtotal(self) -> Decimal:
        return sum((line.line_total for line in self._lines.values()), Decimal('0'))

    @property
    def tax(self) -> Decimal:
        return quantize_money(self.subtotal * self.tax_rate)

    @property
    def total(self) -> Decimal:
        return self.subtotal + self.tax

    def copy(self) -> 'Cart':
        return Cart.from_dict(self.to_dict())

    def to_dict(self) -> dict:
        return {
            'token': self.token,
            'customer': self.customer,
            'walk_in_label': self.walk_in_label,
            'tax_rate': str(self.tax_rate),
            'lines': [line.to_dict() for line in self._lines.values()],
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Cart':
        cart = cls(
            customer=data.get('customer'),
            tax_rate=Decimal(str(data.get('tax_rate', DEFAULT_TAX_RATE))),
            token=data.get('token'),
            walk_in_label=data.get('walk_in_label', WALK_IN_CUSTOMER),
        )
        for line_data in data.get('lines', []):
            line = CartLine.from_dict(line_data)
            cart._lines[line.item.id] = line
        return cart

    def __eq__(self, other):
        if not isinstance(other, Cart):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self):
        return f"<Cart {self.token[:8]} lines={len(self)} total={self.total}>"


class HoldStack:
    """Parked carts, oldest first"""

    def __init__(self, held: Optional[List[Cart]] = None):
        self._held: List[Cart] = list(held or [])

    def __len__(self):
        return len(self._held)

    def __iter__(self):
        return iter(self._held)

    def hold(self, cart: Cart) -> Optional[CartWarning]:
        """Park a copy of ``cart`` and clear it. An empty cart is not held."""
        if cart.is_empty:
            return CartWarning(CartWarning.EMPTY_CART, 'Cannot hold an empty cart.')
        self._held.append(cart.copy())
        cart.clear()
        return None

    def resume(self, index: int) -> Cart:
        """Remove and return the held cart at ``index``; raises IndexError if out of range"""
        self._check_index(index)
        return self._held.pop(index)

    def discard(self, index: int) -> None:
        self._check_index(index)
        del self._held[index]

    def _check_index(self, index):
        if not 0 <= index < len(self._held):
            raise IndexError(f"No held cart at position {index}")

    def to_list(self) -> List[dict]:
        return [cart.to_dict() for cart in self._held]

    @classmethod
    def from_list(cls, data) -> 'HoldStack':
        return cls([Cart.from_dict(entry) for entry in data or []])
