from django.contrib import admin
from .models import POSSession, Order, OrderItem


@admin.register(POSSession)
class POSSessionAdmin(admin.ModelAdmin):
    list_display = ['session_number', 'store', 'user', 'status', 'opened_at', 'closed_at']
    list_filter = ['status', 'store']
    search_fields = ['session_number', 'user__username']
    readonly_fields = ['state', 'opened_at', 'updated_at']


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ['product', 'description', 'sku', 'quantity', 'unit_price', 'line_total']


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ['order_number', 'customer', 'date', 'status', 'payment_method', 'total', 'store', 'created_by']
    list_filter = ['status', 'payment_method', 'store', 'date']
    search_fields = ['order_number', 'customer']
    readonly_fields = ['idempotency_key', 'created_at', 'updated_at']
    inlines = [OrderItemInline]
