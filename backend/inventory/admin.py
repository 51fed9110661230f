from django.contrib import admin
from .models import Stock, StockAdjustment


@admin.register(Stock)
class StockAdmin(admin.ModelAdmin):
    list_display = ['product', 'store', 'quantity', 'updated_at']
    list_filter = ['store']
    search_fields = ['product__name', 'product__sku']


@admin.register(StockAdjustment)
class StockAdjustmentAdmin(admin.ModelAdmin):
    list_display = ['product', 'store', 'adjustment_type', 'quantity', 'reason', 'created_by', 'created_at']
    list_filter = ['adjustment_type', 'reason', 'store']
    search_fields = ['product__name', 'product__sku', 'notes']
    readonly_fields = ['created_at']
