"""
Test utilities and factories for creating test data
"""
from django.contrib.auth import get_user_model
from django.contrib.auth.models import Group
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken
from backend.locations.models import Store
from backend.catalog.models import Category, Product
from backend.inventory.models import Stock
from backend.parties.models import Customer
from backend.pos.models import POSSession
from decimal import Decimal
from django.utils import timezone
import random
import string
import uuid

User = get_user_model()


class TestDataFactory:
    """Factory class for creating test data"""

    @staticmethod
    def random_string(length=10):
        """Generate a random string"""
        return ''.join(random.choices(string.ascii_letters + string.digits, k=length))

    @staticmethod
    def create_user(username=None, email=None, password='testpass123', is_staff=False,
                    is_superuser=False, roles=None):
        """Create a test user, optionally in the given role groups"""
        if not username:
            username = f'testuser_{TestDataFactory.random_string(6)}'
        if not email:
            email = f'{username}@test.com'
        user = User.objects.create_user(
            username=username,
            email=email,
            password=password,
            is_staff=is_staff,
            is_superuser=is_superuser
        )
        for role in roles or []:
            group, _ = Group.objects.get_or_create(name=role)
            user.groups.add(group)
        return user

    @staticmethod
    def create_cashier(**kwargs):
        return TestDataFactory.create_user(roles=['Cashier'], **kwargs)

    @staticmethod
    def create_store(name=None, address=None, code=None):
        """Create a test store"""
        if not name:
            name = f'Store_{TestDataFactory.random_string(6)}'
        if not code:
            code = f'ST{TestDataFactory.random_string(6).upper()}'
        return Store.objects.create(
            name=name,
            code=code,
            address=address or f'Test Address {name}',
            phone='0700000000'
        )

    @staticmethod
    def create_category(name=None, description=None):
        """Create a test category"""
        if not name:
            name = f'Category_{TestDataFactory.random_string(6)}'
        return Category.objects.create(
            name=name,
            description=description or f'Test category {name}'
        )

    @staticmethod
    def create_product(name=None, sku=None, category=None, price=None, is_active=True):
        """Create a test product"""
        if not name:
            name = f'Product_{TestDataFactory.random_string(6)}'
        if not sku:
            sku = f'SKU-{TestDataFactory.random_string(8).upper()}'
        if not category:
            category = TestDataFactory.create_category()
        if price is None:
            price = Decimal('10000.00')
        return Product.objects.create(
            name=name,
            sku=sku,
            category=category,
            price=price,
            is_active=is_active,
            low_stock_threshold=2
        )

    @staticmethod
    def create_stock(product, store, quantity=10):
        """Create or overwrite the stock row of a product at a store"""
        stock, _ = Stock.objects.update_or_create(
            product=product,
            store=store,
            defaults={'quantity': quantity}
        )
        return stock

    @staticmethod
    def create_customer(name=None, company='', phone=None, email=None):
        """Create a test customer"""
        if not name:
            name = f'Customer_{TestDataFactory.random_string(6)}'
        if not phone:
            phone = f'07{random.randint(10000000, 99999999)}'
        if not email:
            email = f'{name.lower().replace(" ", ".")}@test.com'
        return Customer.objects.create(
            name=name,
            company=company,
            phone=phone,
            email=email
        )

    @staticmethod
    def create_pos_session(user, store=None):
        """Create an open POS session"""
        if not store:
            store = TestDataFactory.create_store()
        session_number = f"POS-{timezone.now().strftime('%Y%m%d')}-{str(uuid.uuid4())[:8].upper()}"
        return POSSession.objects.create(
            session_number=session_number,
            store=store,
            user=user,
        )


class AuthenticatedAPIClient(APIClient):
    """APIClient with authentication helper"""

    def authenticate_user(self, user):
        """Authenticate the client with a user"""
        refresh = RefreshToken.for_user(user)
        self.credentials(HTTP_AUTHORIZATION=f'Bearer {refresh.access_token}')
        return self

    def logout(self):
        """Remove authentication"""
        self.credentials()
