"""
Utility functions for catalog operations
"""
import re

from django.db.models import IntegerField, Q, Sum
from django.db.models.functions import Coalesce

from backend.catalog.models import Product


def get_prefix(name=None, category=None):
    """3-character SKU prefix from the category name, else the product name"""
    for source in (getattr(category, 'name', None), name):
        if source:
            letters = re.sub(r'[^A-Z]', '', source.upper())
            if len(letters) >= 3:
                return letters[:3]
    return 'PRD'


def get_max_number_for_prefix(prefix):
    """Largest number already used in SKUs of the form PREFIX-NUMBER"""
    max_number = 0
    for sku in Product.objects.filter(sku__startswith=f'{prefix}-').values_list('sku', flat=True):
        parts = sku.split('-', 1)
        if len(parts) == 2 and parts[1].isdigit():
            max_number = max(max_number, int(parts[1]))
    return max_number


def generate_unique_sku(name=None, category=None):
    """
    Generate a category-based SKU.
    Format: PREFIX-NUMBER (e.g., BED-0007), 5 digits past 9999
    """
    prefix = get_prefix(name, category)
    next_number = get_max_number_for_prefix(prefix) + 1
    sku = f"{prefix}-{next_number:04d}"
    while Product.objects.filter(sku=sku).exists():
        next_number += 1
        sku = f"{prefix}-{next_number:04d}"
    return sku


def annotate_on_hand(queryset, store_id=None):
    """Attach total stock across stores (or for one store) as annotated_on_hand"""
    stock_filter = Q(stock_entries__store_id=store_id) if store_id else Q()
    return queryset.annotate(
        annotated_on_hand=Coalesce(
            Sum('stock_entries__quantity', filter=stock_filter), 0, output_field=IntegerField()
        )
    )
