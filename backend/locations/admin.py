from django.contrib import admin
from .models import Store


@admin.register(Store)
class StoreAdmin(admin.ModelAdmin):
    list_display = ['name', 'code', 'store_type', 'phone', 'email', 'is_active', 'created_at']
    list_filter = ['store_type', 'is_active', 'created_at']
    search_fields = ['name', 'code', 'email']
    ordering = ['name']
