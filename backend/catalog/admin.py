from django.contrib import admin
from .models import Category, Product


@admin.register(Category)
class CategoryAdmin(admin.ModelAdmin):
    list_display = ['name', 'is_active', 'created_at']
    list_filter = ['is_active']
    search_fields = ['name']
    ordering = ['name']


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ['name', 'sku', 'category', 'price', 'is_active', 'updated_at']
    list_filter = ['is_active', 'category']
    search_fields = ['name', 'sku']
    ordering = ['name']
    readonly_fields = ['created_at', 'updated_at']
