from django.db import models
from decimal import Decimal
from backend.catalog.models import Product
from backend.locations.models import Store
from backend.core.models import User


class POSSession(models.Model):
    """A terminal session: one cashier selling from one store"""
    STATUS_CHOICES = [
        ('open', 'Open'),
        ('closed', 'Closed'),
    ]

    session_number = models.CharField(max_length=100, unique=True)
    store = models.ForeignKey(Store, on_delete=models.CASCADE, related_name='pos_sessions')
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='pos_sessions')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='open')
    # Active cart, held carts, checkout state and last receipt
    state = models.JSONField(default=dict, blank=True)
    opened_at = models.DateTimeField(auto_now_add=True)
    closed_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.session_number

    @property
    def is_open(self):
        return self.status == 'open'

    class Meta:
        db_table = 'pos_sessions'
        ordering = ['-opened_at']


class Order(models.Model):
    """Sale record created at checkout. Lines are snapshots, not live product references."""
    STATUS_CHOICES = [
        ('Pending', 'Pending'),
        ('Processing', 'Processing'),
        ('Shipped', 'Shipped'),
        ('Delivered', 'Delivered'),
        ('Cancelled', 'Cancelled'),
        ('Awaiting Payment', 'Awaiting Payment'),
    ]

    PAYMENT_METHOD_CHOICES = [
        ('cash', 'Cash'),
        ('card', 'Card'),
        ('mobile', 'Mobile Money'),
    ]

    order_number = models.CharField(max_length=100, unique=True)
    idempotency_key = models.CharField(max_length=64, unique=True)
    customer = models.CharField(max_length=200)
    date = models.DateField()
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='Processing')
    payment_method = models.CharField(max_length=20, choices=PAYMENT_METHOD_CHOICES)
    subtotal = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0.00'))
    tax_amount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0.00'))
    total = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0.00'))
    store = models.ForeignKey(Store, on_delete=models.PROTECT, related_name='orders')
    session = models.ForeignKey(POSSession, on_delete=models.SET_NULL, null=True, blank=True, related_name='orders')
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, related_name='orders')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.order_number

    class Meta:
        db_table = 'orders'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['date'], name='idx_orders_date'),
            models.Index(fields=['status'], name='idx_orders_status'),
        ]


class OrderItem(models.Model):
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='items')
    product = models.ForeignKey(Product, on_delete=models.SET_NULL, null=True, blank=True, related_name='order_items')
    description = models.CharField(max_length=200)
    sku = models.CharField(max_length=100, blank=True)
    quantity = models.PositiveIntegerField()
    unit_price = models.DecimalField(max_digits=14, decimal_places=2)
    line_total = models.DecimalField(max_digits=14, decimal_places=2)

    def __str__(self):
        return f"{self.quantity} x {self.description}"

    class Meta:
        db_table = 'order_items'
        ordering = ['id']
