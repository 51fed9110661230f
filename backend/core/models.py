from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """Staff user; roles are Django groups (see backend.core.permissions)"""
    phone = models.CharField(max_length=20, blank=True, null=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'users'


class AuditLog(models.Model):
    """Audit log for critical operations"""
    ACTION_CHOICES = [
        ('create', 'Create'),
        ('update', 'Update'),
        ('delete', 'Delete'),
        ('stock_adjust', 'Stock Adjustment'),
        ('stock_sale', 'Stock Removed (Sale)'),
        ('price_change', 'Price Change'),
        ('session_open', 'POS Session Opened'),
        ('session_close', 'POS Session Closed'),
        ('cart_add', 'Add to Cart'),
        ('cart_remove', 'Remove from Cart'),
        ('cart_update', 'Cart Update'),
        ('cart_clear', 'Cart Cleared'),
        ('cart_hold', 'Cart Held'),
        ('cart_resume', 'Held Cart Resumed'),
        ('cart_discard', 'Held Cart Discarded'),
        ('cart_checkout', 'Cart Checkout'),
        ('checkout_failed', 'Checkout Failed'),
        ('barcode_scan', 'Barcode Scanned'),
        ('order_create', 'Order Created'),
        ('order_status', 'Order Status Changed'),
    ]

    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, related_name='audit_logs')
    action = models.CharField(max_length=50, choices=ACTION_CHOICES)
    model_name = models.CharField(max_length=100)
    object_id = models.CharField(max_length=100)
    object_name = models.CharField(max_length=255, blank=True, null=True, help_text="Human-readable name of the object (e.g., product name, order number)")
    object_reference = models.CharField(max_length=255, blank=True, null=True, help_text="Reference identifier (e.g., order number, session number)")
    sku = models.CharField(max_length=1000, blank=True, null=True, help_text="SKU if applicable (can contain multiple comma-separated SKUs)")
    changes = models.JSONField(default=dict, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['-created_at'], name='audit_logs_created_idx'),
            models.Index(fields=['action'], name='audit_logs_action_idx'),
            models.Index(fields=['model_name'], name='audit_logs_model_idx'),
            models.Index(fields=['object_reference'], name='audit_logs_ref_idx'),
        ]
