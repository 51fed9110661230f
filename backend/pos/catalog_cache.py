"""
Terminal-side snapshot of the sellable catalog and customer names.

The cache is loaded once per terminal session, searched locally and patched
after each sale. It never re-reads the source on its own; ``load()`` is the
only way to refresh it.
"""
import logging
from typing import Iterable, Iterator, List, Optional

from .cart import CatalogItem
from .exceptions import CatalogLoadError, ServiceError

logger = logging.getLogger(__name__)


class CatalogCache:
    def __init__(self, items: Optional[Iterable[CatalogItem]] = None,
                 customer_names: Optional[Iterable[str]] = None):
        self._items: List[CatalogItem] = list(items or [])
        self.customer_names: List[str] = list(customer_names or [])
        self.loaded = bool(self._items or self.customer_names)

    def __len__(self):
        return len(self._items)

    @property
    def items(self) -> List[CatalogItem]:
        return list(self._items)

    def load(self, services) -> None:
        """
        Fetch catalog items and customer names from ``services``.
        If either read fails the cache is left empty and CatalogLoadError is raised.
        """
        try:
            items = list(services.list_catalog_items())
            names = list(services.list_customer_names())
        except ServiceError as e:
            self._reset()
            logger.error("Catalog load failed: %s", e)
            raise CatalogLoadError(f"Could not load catalog: {e}") from e
        self._items = items
        self.customer_names = names
        self.loaded = True
        logger.debug("Catalog loaded: %d items, %d customers", len(items), len(names))

    def _reset(self):
        self._items = []
        self.customer_names = []
        self.loaded = False

    def search(self, query: str = '') -> Iterator[CatalogItem]:
        """Items whose name or SKU contains ``query``, case-insensitively. Blank query yields everything."""
        needle = (query or '').strip().lower()
        for item in self._items:
            if not needle or needle in item.name.lower() or needle in item.sku.lower():
                yield item

    def find_by_sku(self, sku: str) -> Optional[CatalogItem]:
        wanted = (sku or '').strip().lower()
        if not wanted:
            return None
        for item in self._items:
            if item.sku.lower() == wanted:
                return item
        return None

    def get(self, item_id) -> Optional[CatalogItem]:
        for item in self._items:
            if item.id == item_id:
                return item
        return None

    def apply_sale(self, lines) -> None:
        """Subtract sold quantities from the cached on-hand values, never below zero"""
        sold = {}
        for line in lines:
            sold[line.item.id] = sold.get(line.item.id, 0) + line.quantity
        self._items = [
            item.with_on_hand(max(item.on_hand - sold[item.id], 0)) if item.id in sold else item
            for item in self._items
        ]

    def to_dict(self) -> dict:
        return {
            'items': [item.to_dict() for item in self._items],
            'customer_names': list(self.customer_names),
            'loaded': self.loaded,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'CatalogCache':
        cache = cls(
            items=[CatalogItem.from_dict(entry) for entry in data.get('items', [])],
            customer_names=data.get('customer_names', []),
        )
        cache.loaded = bool(data.get('loaded', cache.loaded))
        return cache
