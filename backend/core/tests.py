"""
Tests for authentication, capabilities and the audit log
"""
from io import StringIO

from django.contrib.auth.models import Group
from django.core.management import call_command
from django.test import RequestFactory, TestCase
from rest_framework import status

from backend.catalog.models import Category
from backend.core.management.commands.add_categories import CATEGORIES
from backend.core.models import AuditLog
from backend.core.permissions import Capability, ROLE_CAPABILITIES, RequestContext, capabilities_for
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.core.utils import create_audit_log, get_client_ip


class CapabilityTests(TestCase):
    """Role to capability resolution"""

    def test_cashier_can_sell_but_not_manage_catalog(self):
        user = TestDataFactory.create_cashier()
        capabilities = capabilities_for(user)
        self.assertIn(Capability.POS_SELL, capabilities)
        self.assertIn(Capability.POS_HOLD, capabilities)
        self.assertNotIn(Capability.CATALOG_MANAGE, capabilities)
        self.assertNotIn(Capability.AUDIT_VIEW, capabilities)

    def test_capabilities_are_union_of_roles(self):
        user = TestDataFactory.create_user(roles=['SalesAgent', 'ProcurementOfficer'])
        capabilities = capabilities_for(user)
        self.assertEqual(capabilities, ROLE_CAPABILITIES['SalesAgent'] | ROLE_CAPABILITIES['ProcurementOfficer'])
        self.assertNotIn(Capability.POS_SELL, capabilities)

    def test_superuser_has_every_capability(self):
        user = TestDataFactory.create_user(is_superuser=True)
        self.assertEqual(capabilities_for(user), Capability.all())

    def test_unknown_group_grants_nothing(self):
        user = TestDataFactory.create_user(roles=['Visitor'])
        self.assertEqual(capabilities_for(user), frozenset())

    def test_request_context_is_built_once_per_request(self):
        user = TestDataFactory.create_cashier()
        request = RequestFactory().get('/', REMOTE_ADDR='10.0.0.5')
        request.user = user
        context = RequestContext.from_request(request)
        self.assertIs(RequestContext.from_request(request), context)
        self.assertEqual(context.ip_address, '10.0.0.5')
        self.assertTrue(context.can(Capability.POS_SELL))


class AuthAPITests(TestCase):
    """JWT login and the current-user endpoint"""

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.user = TestDataFactory.create_cashier(username='cashier1', password='s3cret-pass')

    def test_login_returns_tokens(self):
        response = self.client.post('/api/v1/auth/login/', {
            'username': 'cashier1', 'password': 's3cret-pass'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('access', response.data)
        self.assertIn('refresh', response.data)

    def test_login_with_wrong_password_is_rejected(self):
        response = self.client.post('/api/v1/auth/login/', {
            'username': 'cashier1', 'password': 'wrong'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_me_lists_capabilities(self):
        self.client.authenticate_user(self.user)
        response = self.client.get('/api/v1/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['roles'], ['Cashier'])
        self.assertIn('pos.sell', response.data['capabilities'])
        self.assertTrue(response.data['can_sell'])
        self.assertFalse(response.data['can_manage_catalog'])

    def test_me_requires_authentication(self):
        response = self.client.get('/api/v1/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_admin_creates_user_with_roles(self):
        admin = TestDataFactory.create_user(is_staff=True, is_superuser=True)
        self.client.authenticate_user(admin)
        response = self.client.post('/api/v1/users/', {
            'username': 'manager1',
            'password': 'Furn1ture-Pass!',
            'password_confirm': 'Furn1ture-Pass!',
            'roles': ['StoreManager'],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['roles'], ['StoreManager'])

    def test_unknown_role_is_rejected(self):
        admin = TestDataFactory.create_user(is_staff=True, is_superuser=True)
        self.client.authenticate_user(admin)
        response = self.client.post('/api/v1/users/', {
            'username': 'someone',
            'password': 'Furn1ture-Pass!',
            'password_confirm': 'Furn1ture-Pass!',
            'roles': ['Overlord'],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('roles', response.data)

    def test_list_by_role_and_deactivate(self):
        admin = TestDataFactory.create_user(is_staff=True, is_superuser=True)
        cashier = TestDataFactory.create_cashier()
        TestDataFactory.create_user(roles=['SalesAgent'])
        self.client.authenticate_user(admin)

        response = self.client.get('/api/v1/users/', {'role': 'Cashier'})
        self.assertEqual([u['id'] for u in response.data], [cashier.id])

        response = self.client.delete(f'/api/v1/users/{cashier.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        cashier.refresh_from_db()
        self.assertFalse(cashier.is_active)
        self.assertTrue(AuditLog.objects.filter(action='delete', model_name='User').exists())

        response = self.client.delete(f'/api/v1/users/{admin.id}/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class AuditLogTests(TestCase):
    """Audit log helper and listing"""

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.cashier = TestDataFactory.create_cashier()
        self.manager = TestDataFactory.create_user(roles=['GeneralManager'])

    def test_create_audit_log_skips_incomplete_entries(self):
        self.assertIsNone(create_audit_log(action='cart_add', model_name='POSSession'))
        self.assertEqual(AuditLog.objects.count(), 0)

    def test_create_audit_log_records_user_and_ip(self):
        request = RequestFactory().post('/', HTTP_X_FORWARDED_FOR='41.210.1.1, 10.0.0.1')
        request.user = self.cashier
        entry = create_audit_log(
            request=request, action='cart_add', model_name='POSSession', object_id=7,
            object_reference='POS-1', sku='BED-0001', changes={'item_id': 3},
        )
        self.assertEqual(entry.user, self.cashier)
        self.assertEqual(entry.object_id, '7')
        self.assertEqual(entry.ip_address, '41.210.1.1')
        self.assertEqual(get_client_ip(request), '41.210.1.1')

    def test_cashier_sees_only_own_entries(self):
        create_audit_log(user=self.cashier, action='cart_add', model_name='POSSession', object_id=1)
        create_audit_log(user=self.manager, action='order_status', model_name='Order', object_id=2)
        self.client.authenticate_user(self.cashier)
        response = self.client.get('/api/v1/audit-logs/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]['action'], 'cart_add')

    def test_manager_filters_by_action(self):
        create_audit_log(user=self.cashier, action='cart_add', model_name='POSSession', object_id=1)
        create_audit_log(user=self.cashier, action='cart_hold', model_name='POSSession', object_id=1)
        self.client.authenticate_user(self.manager)
        response = self.client.get('/api/v1/audit-logs/', {'action': 'cart_hold'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([entry['action'] for entry in response.data], ['cart_hold'])

    def test_other_users_entry_is_forbidden_without_audit_view(self):
        entry = create_audit_log(user=self.manager, action='order_status', model_name='Order', object_id=2)
        self.client.authenticate_user(self.cashier)
        response = self.client.get(f'/api/v1/audit-logs/{entry.id}/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class CreateUserGroupsCommandTests(TestCase):

    def test_creates_one_group_per_role(self):
        out = StringIO()
        call_command('create_user_groups', stdout=out)
        self.assertEqual(
            set(Group.objects.values_list('name', flat=True)),
            set(ROLE_CAPABILITIES),
        )
        call_command('create_user_groups', stdout=out)
        self.assertEqual(Group.objects.count(), len(ROLE_CAPABILITIES))


class AddCategoriesCommandTests(TestCase):

    def test_seeds_and_reactivates(self):
        out = StringIO()
        call_command('add_categories', stdout=out)
        self.assertEqual(Category.objects.count(), len(CATEGORIES))

        Category.objects.filter(name='Sofas').update(is_active=False)
        call_command('add_categories', stdout=out)
        self.assertTrue(Category.objects.get(name='Sofas').is_active)
        self.assertEqual(Category.objects.count(), len(CATEGORIES))

    def test_clear_keeps_categories_in_use(self):
        used = TestDataFactory.create_category(name='Lighting')
        TestDataFactory.create_product(category=used)
        TestDataFactory.create_category(name='Discontinued')
        call_command('add_categories', '--clear', stdout=StringIO())
        names = set(Category.objects.values_list('name', flat=True))
        self.assertIn('Lighting', names)
        self.assertNotIn('Discontinued', names)
