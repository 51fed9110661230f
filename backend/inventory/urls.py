from django.urls import path
from .views import (
    stock_list, stock_low,
    stock_adjustment_list_create, stock_adjustment_detail,
)

urlpatterns = [
    # Stock endpoints
    path('stock/', stock_list, name='stock-list'),
    path('stock/low/', stock_low, name='stock-low'),

    # StockAdjustment endpoints
    path('stock-adjustments/', stock_adjustment_list_create, name='stock-adjustment-list-create'),
    path('stock-adjustments/<int:pk>/', stock_adjustment_detail, name='stock-adjustment-detail'),
]
