from django.urls import path
from .views import customer_list_create, customer_detail, customer_names

urlpatterns = [
    # Customer endpoints
    path('customers/', customer_list_create, name='customer-list-create'),
    path('customers/names/', customer_names, name='customer-names'),
    path('customers/<int:pk>/', customer_detail, name='customer-detail'),
]
