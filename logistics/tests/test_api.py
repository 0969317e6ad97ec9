"""
Shipments API tests: creation, listing, transitions, fee edits, penalties.
"""

from datetime import timedelta
from decimal import Decimal

from django.test import TestCase
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient

from core.models import UserRole
from finance.models import CourierStats
from finance.services import CourierLedger
from logistics.models import Shipment, ShipmentStatus
from logistics.tests.helpers import advance, make_shipment, make_staff, make_user

SHIPMENTS_URL = '/api/shipments/'


def detail_url(shipment_id, suffix=''):
    return f'{SHIPMENTS_URL}{shipment_id}/{suffix}'


class ShipmentAPITestCase(TestCase):

    def setUp(self):
        self.api = APIClient()
        self.admin, self.super_user, self.assigner = make_staff()
        self.client_user = make_user('client@flash.test', UserRole.CLIENT, flat_rate_fee=Decimal('15.00'))
        self.courier = make_user('courier@flash.test', UserRole.COURIER)


class ShipmentCreateAPITest(ShipmentAPITestCase):

    payload = {
        'recipient_name': 'Mona Adel',
        'recipient_phone': '+201001234567',
        'dropoff_address': '12 Tahrir St, Cairo',
        'destination_city': 'GIZA',
        'price': '250.00',
        'package_value': '100.00',
    }

    def test_client_creates_shipment(self):
        self.api.force_authenticate(self.client_user)
        response = self.api.post(SHIPMENTS_URL, self.payload, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(response.data['id'].startswith('GIZ-'))
        self.assertEqual(response.data['status'], ShipmentStatus.WAITING_FOR_PACKAGING)
        self.assertEqual(response.data['client'], self.client_user.pk)
        self.assertIn('client_flat_rate_fee', response.data)
        self.assertNotIn('courier_commission', response.data)
        self.assertNotIn('net_profit', response.data)

    def test_non_positive_price_rejected(self):
        self.api.force_authenticate(self.client_user)
        response = self.api.post(SHIPMENTS_URL, dict(self.payload, price='0.00'), format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'INVALID_AMOUNT')
        self.assertFalse(Shipment.objects.exists())

    def test_courier_cannot_create(self):
        self.api.force_authenticate(self.courier)
        response = self.api.post(SHIPMENTS_URL, self.payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_staff_creates_for_client(self):
        self.api.force_authenticate(self.super_user)
        response = self.api.post(
            SHIPMENTS_URL, dict(self.payload, client=str(self.client_user.pk)), format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(Shipment.objects.get().client, self.client_user)

    def test_anonymous_rejected(self):
        response = self.api.post(SHIPMENTS_URL, self.payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)


class ShipmentReadAPITest(ShipmentAPITestCase):

    def setUp(self):
        super().setUp()
        self.own = advance(self.admin, make_shipment(self.client_user), self.courier,
                           ShipmentStatus.ASSIGNED_TO_COURIER)
        self.other = make_shipment(make_user('other@shop.test', UserRole.CLIENT))

    def test_client_lists_own(self):
        self.api.force_authenticate(self.client_user)
        response = self.api.get(SHIPMENTS_URL)
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['id'], self.own.pk)
        self.assertEqual(response.data['results'][0]['client_flat_rate_fee'], '15.00')

    def test_hidden_shipment_is_404(self):
        self.api.force_authenticate(self.client_user)
        response = self.api.get(detail_url(self.other.pk))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_admin_sees_profit(self):
        self.api.force_authenticate(self.admin)
        response = self.api.get(detail_url(self.own.pk))
        self.assertEqual(response.data['net_profit'], '-15.00')
        self.assertEqual(response.data['courier_commission'], '30.00')

    def test_status_bucket(self):
        self.api.force_authenticate(self.admin)
        packaged = make_shipment(self.client_user)
        self.api.post(detail_url(packaged.pk, 'transition/'),
                      {'status': ShipmentStatus.PACKAGED_AND_WAITING_FOR_ASSIGNMENT}, format='json')

        response = self.api.get(detail_url(packaged.pk))
        self.assertEqual(response.data['status'], ShipmentStatus.PACKAGED_AND_WAITING_FOR_ASSIGNMENT)
        self.assertEqual(response.data['status_bucket'], 'PENDING_ASSIGNMENT')

    def test_filter_by_status(self):
        self.api.force_authenticate(self.admin)
        response = self.api.get(SHIPMENTS_URL, {'status': ShipmentStatus.ASSIGNED_TO_COURIER})
        self.assertEqual([row['id'] for row in response.data['results']], [self.own.pk])

    def test_overdue_listing(self):
        stale = make_shipment(self.client_user, creation_date=timezone.now() - timedelta(days=3))
        self.api.force_authenticate(self.assigner)
        response = self.api.get(f'{SHIPMENTS_URL}overdue/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([row['id'] for row in response.data['results']], [stale.pk])
        self.assertTrue(response.data['results'][0]['is_overdue'])


class ShipmentTransitionAPITest(ShipmentAPITestCase):

    def setUp(self):
        super().setUp()
        self.shipment = make_shipment(self.client_user)

    def post_status(self, user, target, **extra):
        self.api.force_authenticate(user)
        return self.api.post(
            detail_url(self.shipment.pk, 'transition/'), dict(status=target, **extra), format='json'
        )

    def test_full_delivery_over_api(self):
        self.post_status(self.assigner, ShipmentStatus.PACKAGED_AND_WAITING_FOR_ASSIGNMENT)
        response = self.post_status(
            self.assigner, ShipmentStatus.ASSIGNED_TO_COURIER, courier=str(self.courier.pk)
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['courier'], self.courier.pk)

        for target in (ShipmentStatus.IN_TRANSIT, ShipmentStatus.OUT_FOR_DELIVERY, ShipmentStatus.DELIVERED):
            response = self.post_status(self.courier, target)
            self.assertEqual(response.status_code, status.HTTP_200_OK)

        self.assertEqual(response.data['status'], ShipmentStatus.DELIVERED)
        self.assertIsNotNone(response.data['delivery_date'])
        self.assertEqual(response.data['courier_commission'], '30.00')
        self.assertNotIn('client_flat_rate_fee', response.data)
        self.assertEqual(CourierStats.objects.get(courier=self.courier).current_balance, Decimal('30.00'))

    def test_invalid_transition_is_400(self):
        response = self.post_status(self.admin, ShipmentStatus.DELIVERED)
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'INVALID_TRANSITION')
        self.assertEqual(response.data['details']['current_status'], ShipmentStatus.WAITING_FOR_PACKAGING)

    def test_restricted_courier_is_409(self):
        stats = CourierLedger.get_stats(self.courier)
        stats.is_restricted = True
        stats.save()

        self.post_status(self.admin, ShipmentStatus.PACKAGED_AND_WAITING_FOR_ASSIGNMENT)
        response = self.post_status(
            self.admin, ShipmentStatus.ASSIGNED_TO_COURIER, courier=str(self.courier.pk)
        )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'COURIER_RESTRICTED')

    def test_client_forbidden_to_package(self):
        response = self.post_status(self.client_user, ShipmentStatus.PACKAGED_AND_WAITING_FOR_ASSIGNMENT)
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['code'], 'PERMISSION_DENIED')


class ShipmentFeesAPITest(ShipmentAPITestCase):

    def setUp(self):
        super().setUp()
        self.shipment = advance(self.admin, make_shipment(self.client_user), self.courier,
                                ShipmentStatus.OUT_FOR_DELIVERY)

    def test_admin_overrides_fees(self):
        self.api.force_authenticate(self.admin)
        response = self.api.put(
            detail_url(self.shipment.pk, 'fees/'), {'courier_commission': '25.00'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['courier_commission'], '25.00')
        self.assertEqual(response.data['client_flat_rate_fee'], '15.00')

    def test_empty_fee_edit_rejected(self):
        self.api.force_authenticate(self.admin)
        response = self.api.put(detail_url(self.shipment.pk, 'fees/'), {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_locked_fees_are_409(self):
        self.api.force_authenticate(self.admin)
        self.api.post(detail_url(self.shipment.pk, 'transition/'),
                      {'status': ShipmentStatus.DELIVERED}, format='json')
        response = self.api.put(
            detail_url(self.shipment.pk, 'fees/'), {'courier_commission': '1.00'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'SHIPMENT_LOCKED')

    def test_failed_delivery_penalty(self):
        self.api.force_authenticate(self.admin)
        self.api.post(detail_url(self.shipment.pk, 'transition/'),
                      {'status': ShipmentStatus.DELIVERY_FAILED, 'failure_reason': 'Refused'},
                      format='json')

        response = self.api.post(detail_url(self.shipment.pk, 'failed-delivery-penalty/'))
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['amount'], '-50.00')

        response = self.api.post(detail_url(self.shipment.pk, 'failed-delivery-penalty/'))
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
