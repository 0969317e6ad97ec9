"""
Flash Express Core Tests
========================

Tests for:
1. Custom User Model (creation, roles, fee policy default)
2. Role capabilities & authorization helpers
3. Client flat rate updates
4. Business exception rendering
"""

from decimal import Decimal
from django.db import IntegrityError
from django.test import TestCase, override_settings
from rest_framework import status
from rest_framework.test import APIClient

from core.exceptions import (
    CourierRestrictedError,
    InvalidAmountError,
    InvalidTransitionError,
    PermissionDeniedError,
    TransactionNotFoundError,
    business_exception_handler,
)
from core.models import User, UserRole, update_client_flat_rate
from core.permissions import (
    Permission,
    can_access_admin_financials,
    get_capabilities,
    has_permission,
    require_permission,
)
from core.utils import parse_amount


class TestUserModel(TestCase):
    """Tests for the custom User model."""

    def setUp(self):
        self.admin = User.objects.create_user(
            email='admin@flash.test',
            password='testpass123',
            role=UserRole.ADMIN,
            full_name='Admin Test',
        )
        self.client_user = User.objects.create_user(
            email='client@flash.test',
            password='testpass123',
            role=UserRole.CLIENT,
            full_name='Client Test',
        )

    def test_user_creation_with_email(self):
        """User should be created with a normalized email."""
        user = User.objects.create_user(email='Someone@Flash.TEST', password='x-pass-123')
        self.assertEqual(user.email, 'Someone@flash.test')
        self.assertTrue(user.check_password('x-pass-123'))

    def test_email_required(self):
        with self.assertRaises(ValueError):
            User.objects.create_user(email='', password='testpass123')

    def test_duplicate_email_rejected(self):
        """Email must be unique."""
        with self.assertRaises(IntegrityError):
            User.objects.create_user(email='client@flash.test', password='testpass123')

    def test_default_role_is_client(self):
        user = User.objects.create_user(email='new@flash.test', password='testpass123')
        self.assertEqual(user.role, UserRole.CLIENT)
        self.assertTrue(user.is_client)

    @override_settings(DEFAULT_CLIENT_FLAT_RATE_FEE=Decimal('75.00'))
    def test_default_flat_rate_fee(self):
        """New clients get the configured flat rate."""
        user = User.objects.create_user(email='fresh@flash.test', password='testpass123')
        self.assertEqual(user.flat_rate_fee, Decimal('75.00'))

    def test_superuser_creation(self):
        su = User.objects.create_superuser(email='root@flash.test', password='rootpass123')
        self.assertTrue(su.is_staff)
        self.assertTrue(su.is_superuser)
        self.assertEqual(su.role, UserRole.ADMIN)


class TestCapabilities(TestCase):
    """Tests for role → capability mapping."""

    def setUp(self):
        self.users = {
            role: User.objects.create_user(
                email=f'{role.lower()}@flash.test',
                password='testpass123',
                role=role,
            )
            for role in UserRole.values
        }

    def test_admin_has_every_capability(self):
        admin = self.users[UserRole.ADMIN]
        for permission in Permission.values:
            self.assertTrue(has_permission(admin, permission), permission)

    def test_super_user_cannot_view_admin_financials(self):
        """Super users have everything but admin financials and fee edits."""
        su = self.users[UserRole.SUPER_USER]
        self.assertFalse(has_permission(su, Permission.VIEW_ADMIN_FINANCIALS))
        self.assertFalse(has_permission(su, Permission.EDIT_SHIPMENT_FEES))
        self.assertFalse(can_access_admin_financials(su))
        self.assertTrue(has_permission(su, Permission.VIEW_ALL_SHIPMENTS))
        self.assertTrue(has_permission(su, Permission.MANAGE_COURIER_PAYOUTS))

    def test_client_capabilities(self):
        client = self.users[UserRole.CLIENT]
        self.assertTrue(has_permission(client, Permission.CREATE_SHIPMENTS))
        self.assertTrue(has_permission(client, Permission.VIEW_OWN_SHIPMENTS))
        self.assertFalse(has_permission(client, Permission.VIEW_ALL_SHIPMENTS))
        self.assertFalse(has_permission(client, Permission.UPDATE_SHIPMENT_STATUS))

    def test_courier_capabilities(self):
        courier = self.users[UserRole.COURIER]
        self.assertTrue(has_permission(courier, Permission.UPDATE_SHIPMENT_STATUS))
        self.assertTrue(has_permission(courier, Permission.VIEW_COURIER_EARNINGS))
        self.assertFalse(has_permission(courier, Permission.ASSIGN_SHIPMENTS))

    def test_assigning_user_capabilities(self):
        assigner = self.users[UserRole.ASSIGNING_USER]
        self.assertEqual(
            get_capabilities(assigner),
            frozenset({Permission.ASSIGN_SHIPMENTS, Permission.VIEW_ALL_SHIPMENTS})
        )

    def test_only_admin_accesses_admin_financials(self):
        for role, user in self.users.items():
            self.assertEqual(can_access_admin_financials(user), role == UserRole.ADMIN, role)

    def test_inactive_user_has_no_capabilities(self):
        admin = self.users[UserRole.ADMIN]
        admin.is_active = False
        self.assertEqual(get_capabilities(admin), frozenset())

    def test_capabilities_follow_role_change(self):
        """The per-instance cache is keyed by role."""
        user = self.users[UserRole.CLIENT]
        self.assertFalse(has_permission(user, Permission.ASSIGN_SHIPMENTS))
        user.role = UserRole.ASSIGNING_USER
        self.assertTrue(has_permission(user, Permission.ASSIGN_SHIPMENTS))

    def test_require_permission_raises(self):
        with self.assertRaises(PermissionDeniedError) as ctx:
            require_permission(self.users[UserRole.COURIER], Permission.MANAGE_USERS)
        self.assertEqual(ctx.exception.code, 'PERMISSION_DENIED')
        self.assertEqual(ctx.exception.details['role'], UserRole.COURIER)


class TestClientFlatRate(TestCase):
    """Tests for update_client_flat_rate."""

    def setUp(self):
        self.admin = User.objects.create_user(
            email='admin@flash.test', password='testpass123', role=UserRole.ADMIN
        )
        self.super_user = User.objects.create_user(
            email='super@flash.test', password='testpass123', role=UserRole.SUPER_USER
        )
        self.client_user = User.objects.create_user(
            email='client@flash.test', password='testpass123', role=UserRole.CLIENT
        )

    def test_admin_updates_flat_rate(self):
        update_client_flat_rate(self.admin, self.client_user, '20.50')
        self.client_user.refresh_from_db()
        self.assertEqual(self.client_user.flat_rate_fee, Decimal('20.50'))

    def test_negative_flat_rate_rejected(self):
        with self.assertRaises(InvalidAmountError):
            update_client_flat_rate(self.admin, self.client_user, '-1')

    def test_super_user_cannot_update_flat_rate(self):
        with self.assertRaises(PermissionDeniedError):
            update_client_flat_rate(self.super_user, self.client_user, '10')

    def test_flat_rate_api(self):
        api = APIClient()
        api.force_authenticate(self.admin)
        response = api.put(
            f'/api/clients/{self.client_user.pk}/flat-rate/',
            {'flat_rate_fee': '12.00'},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['flat_rate_fee'], '12.00')


class TestParseAmount(TestCase):
    """Tests for money input coercion."""

    def test_rounds_half_up(self):
        self.assertEqual(parse_amount('10.005'), Decimal('10.01'))

    def test_rejects_garbage(self):
        for value in ('abc', None, 'NaN', 'Infinity', True):
            with self.assertRaises(InvalidAmountError, msg=repr(value)):
                parse_amount(value)

    def test_zero_policy(self):
        self.assertEqual(parse_amount(0), Decimal('0.00'))
        with self.assertRaises(InvalidAmountError):
            parse_amount(0, allow_zero=False)

    def test_sub_cent_amount_counts_as_zero(self):
        self.assertEqual(parse_amount('0.004'), Decimal('0.00'))
        for value in ('0.001', '0.004'):
            with self.assertRaises(InvalidAmountError, msg=value):
                parse_amount(value, allow_zero=False)
        self.assertEqual(parse_amount('0.005', allow_zero=False), Decimal('0.01'))

    def test_negative_sub_cent_rejected(self):
        with self.assertRaises(InvalidAmountError):
            parse_amount('-0.001')


class TestBusinessExceptionHandler(TestCase):
    """Business errors map to JSON payloads with a meaningful HTTP status."""

    def test_status_codes(self):
        cases = [
            (InvalidTransitionError('DELIVERED', 'IN_TRANSIT'), 400),
            (CourierRestrictedError('c-1', 'too many failures'), 409),
            (TransactionNotFoundError('tx-1'), 404),
            (PermissionDeniedError('manage_users'), 403),
        ]
        for exc, expected in cases:
            response = business_exception_handler(exc, {})
            self.assertEqual(response.status_code, expected)
            self.assertEqual(response.data['code'], exc.code)

    def test_invalid_transition_details(self):
        exc = InvalidTransitionError('DELIVERED', 'IN_TRANSIT')
        self.assertEqual(exc.details['current_status'], 'DELIVERED')
        self.assertEqual(exc.details['attempted_status'], 'IN_TRANSIT')


class TestUserAPI(TestCase):
    """Tests for /api/users/."""

    def setUp(self):
        self.api = APIClient()
        self.admin = User.objects.create_user(
            email='admin@flash.test', password='testpass123', role=UserRole.ADMIN
        )
        self.courier = User.objects.create_user(
            email='courier@flash.test', password='testpass123', role=UserRole.COURIER
        )

    def test_me_lists_capabilities(self):
        self.api.force_authenticate(self.courier)
        response = self.api.get('/api/users/me/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('update_shipment_status', response.data['permissions'])
        self.assertNotIn('flat_rate_fee', response.data)

    def test_non_manager_sees_only_self(self):
        self.api.force_authenticate(self.courier)
        response = self.api.get('/api/users/')
        self.assertEqual(response.data['count'], 1)

    def test_admin_creates_courier_with_stats(self):
        """Creating a courier account also creates its ledger stats."""
        from finance.models import CourierStats

        self.api.force_authenticate(self.admin)
        response = self.api.post('/api/users/', {
            'email': 'rider@flash.test',
            'password': 'Str0ng-Pass-2026',
            'full_name': 'Rider',
            'role': UserRole.COURIER,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(CourierStats.objects.filter(courier__email='rider@flash.test').exists())

    def test_courier_cannot_create_users(self):
        self.api.force_authenticate(self.courier)
        response = self.api.post('/api/users/', {
            'email': 'x@flash.test', 'password': 'Str0ng-Pass-2026'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_obtain_jwt_token(self):
        response = self.api.post('/api/auth/token/', {
            'email': 'admin@flash.test', 'password': 'testpass123'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('access', response.data)
