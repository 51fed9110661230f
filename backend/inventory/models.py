from django.db import models
from backend.catalog.models import Product
from backend.locations.models import Store


class Stock(models.Model):
    """On-hand quantity of one product at one store"""
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name='stock_entries')
    store = models.ForeignKey(Store, on_delete=models.CASCADE, related_name='stock_entries')
    quantity = models.PositiveIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.product.sku} @ {self.store.code}: {self.quantity}"

    class Meta:
        db_table = 'stock'
        unique_together = [['product', 'store']]
        indexes = [
            models.Index(fields=['store'], name='idx_stock_store'),
        ]


class StockAdjustment(models.Model):
    """Stock adjustments (in/out)"""
    ADJUSTMENT_TYPE_CHOICES = [
        ('in', 'Stock In'),
        ('out', 'Stock Out'),
    ]

    REASON_CHOICES = [
        ('restock', 'Restock'),
        ('damaged', 'Damaged'),
        ('found', 'Found'),
        ('theft', 'Theft'),
        ('correction', 'Correction'),
        ('other', 'Other'),
    ]

    adjustment_type = models.CharField(max_length=10, choices=ADJUSTMENT_TYPE_CHOICES)
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name='adjustments')
    store = models.ForeignKey(Store, on_delete=models.CASCADE, related_name='adjustments')
    quantity = models.PositiveIntegerField()
    reason = models.CharField(max_length=50, choices=REASON_CHOICES)
    notes = models.TextField(blank=True)
    created_by = models.ForeignKey('core.User', on_delete=models.SET_NULL, null=True, related_name='stock_adjustments')
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.get_adjustment_type_display()} {self.quantity} x {self.product.sku}"

    class Meta:
        db_table = 'stock_adjustments'
        ordering = ['-created_at']
