from django.urls import path
from .views import (
    pos_session_list_create, pos_session_detail, pos_session_close,
    session_catalog, session_catalog_refresh, session_customers,
    session_cart, cart_add_item, cart_scan, cart_item_update, cart_clear, cart_customer,
    held_list, cart_hold, held_resume, held_discard,
    checkout, receipt, new_sale,
    order_list, order_detail, order_status_update,
)

urlpatterns = [
    # POSSession endpoints
    path('pos/sessions/', pos_session_list_create, name='pos-session-list-create'),
    path('pos/sessions/<int:pk>/', pos_session_detail, name='pos-session-detail'),
    path('pos/sessions/<int:pk>/close/', pos_session_close, name='pos-session-close'),

    # Catalog snapshot endpoints
    path('pos/sessions/<int:pk>/catalog/', session_catalog, name='pos-session-catalog'),
    path('pos/sessions/<int:pk>/catalog/refresh/', session_catalog_refresh, name='pos-session-catalog-refresh'),
    path('pos/sessions/<int:pk>/customers/', session_customers, name='pos-session-customers'),

    # Cart endpoints
    path('pos/sessions/<int:pk>/cart/', session_cart, name='pos-cart'),
    path('pos/sessions/<int:pk>/cart/items/', cart_add_item, name='pos-cart-add-item'),
    path('pos/sessions/<int:pk>/cart/items/<int:item_id>/', cart_item_update, name='pos-cart-item-update'),
    path('pos/sessions/<int:pk>/cart/scan/', cart_scan, name='pos-cart-scan'),
    path('pos/sessions/<int:pk>/cart/clear/', cart_clear, name='pos-cart-clear'),
    path('pos/sessions/<int:pk>/cart/customer/', cart_customer, name='pos-cart-customer'),

    # Held cart endpoints
    path('pos/sessions/<int:pk>/held/', held_list, name='pos-held-list'),
    path('pos/sessions/<int:pk>/hold/', cart_hold, name='pos-cart-hold'),
    path('pos/sessions/<int:pk>/held/<int:index>/resume/', held_resume, name='pos-held-resume'),
    path('pos/sessions/<int:pk>/held/<int:index>/', held_discard, name='pos-held-discard'),

    # Checkout endpoints
    path('pos/sessions/<int:pk>/checkout/', checkout, name='pos-checkout'),
    path('pos/sessions/<int:pk>/receipt/', receipt, name='pos-receipt'),
    path('pos/sessions/<int:pk>/new-sale/', new_sale, name='pos-new-sale'),

    # Order endpoints
    path('pos/orders/', order_list, name='order-list'),
    path('pos/orders/<int:pk>/', order_detail, name='order-detail'),
    path('pos/orders/<int:pk>/status/', order_status_update, name='order-status-update'),
]
