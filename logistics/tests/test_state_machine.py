"""
Shipment State Machine tests.

Covers the transition graph, role checks, assignment side effects,
delivery credit, failure counting, fee locks and ageing.
"""

import re
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from django.test import TestCase, override_settings
from django.utils import timezone

from core.exceptions import (
    BusinessException,
    CourierRestrictedError,
    InvalidAmountError,
    InvalidTransitionError,
    PermissionDeniedError,
    ShipmentLockedError,
    ShipmentNotFoundError,
)
from core.models import UserRole
from finance.models import CommissionType, CourierStats, CourierTransaction
from finance.services import CourierLedger
from logistics.models import City, Shipment, ShipmentStatus
from logistics.services.state_machine import (
    ShipmentWorkflow,
    create_shipment,
    days_in_phase,
    is_overdue,
    overdue_shipments,
    transition_shipment,
    update_shipment_fees,
)
from logistics.tests.helpers import advance, make_shipment, make_staff, make_user


class StateMachineTestCase(TestCase):

    def setUp(self):
        self.admin, self.super_user, self.assigner = make_staff()
        self.client_user = make_user('client@flash.test', UserRole.CLIENT, flat_rate_fee=Decimal('15.00'))
        self.courier = make_user('courier@flash.test', UserRole.COURIER)
        self.shipment = make_shipment(self.client_user)

    def reload(self, shipment=None):
        return Shipment.objects.get(pk=(shipment or self.shipment).pk)


class ShipmentCreationTest(StateMachineTestCase):

    def test_initial_state(self):
        shipment = self.shipment
        self.assertEqual(shipment.status, ShipmentStatus.WAITING_FOR_PACKAGING)
        self.assertEqual(len(shipment.status_history), 1)
        self.assertEqual(shipment.status_history[0]['status'], ShipmentStatus.WAITING_FOR_PACKAGING)
        self.assertIsNone(shipment.courier)
        self.assertIsNone(shipment.client_flat_rate_fee)
        self.assertIsNone(shipment.courier_commission)
        self.assertIsNone(shipment.delivery_date)

    def test_tracking_id_format(self):
        shipment = make_shipment(self.client_user, destination_city=City.ALEXANDRIA)
        self.assertRegex(shipment.pk, r'^ALE-\d{6}-[0-9A-F]{6}$')
        self.assertTrue(re.match(r'^CAI-', self.shipment.pk))

    def test_price_must_be_positive(self):
        with self.assertRaises(InvalidAmountError):
            make_shipment(self.client_user, price='0')

    def test_sub_cent_price_rejected(self):
        with self.assertRaises(InvalidAmountError):
            make_shipment(self.client_user, price='0.004')
        self.assertEqual(Shipment.objects.count(), 1)

    def test_package_value_cannot_be_negative(self):
        with self.assertRaises(InvalidAmountError):
            make_shipment(self.client_user, package_value='-1')

    def test_courier_cannot_create(self):
        with self.assertRaises(PermissionDeniedError):
            create_shipment(self.courier, client=self.client_user, price=Decimal('10'))

    def test_staff_create_for_client(self):
        shipment = create_shipment(
            self.admin, client=self.client_user,
            recipient_name='Omar', recipient_phone='+20100', dropoff_address='Giza',
            price=Decimal('80.00'),
        )
        self.assertEqual(shipment.client, self.client_user)

    def test_client_cannot_create_for_another_client(self):
        other = make_user('other@flash.test', UserRole.CLIENT)
        with self.assertRaises(PermissionDeniedError):
            create_shipment(self.client_user, client=other, price=Decimal('10'))

    def test_shipment_must_belong_to_client(self):
        with self.assertRaises(BusinessException) as ctx:
            create_shipment(self.admin, client=self.courier, price=Decimal('10'))
        self.assertEqual(ctx.exception.code, 'INVALID_CLIENT')


class TransitionGraphTest(StateMachineTestCase):

    def test_allowed_edges(self):
        self.assertTrue(ShipmentWorkflow.can_transition_to(
            ShipmentStatus.OUT_FOR_DELIVERY, ShipmentStatus.DELIVERED))
        self.assertTrue(ShipmentWorkflow.can_transition_to(
            ShipmentStatus.IN_TRANSIT, ShipmentStatus.RETURN_REQUESTED))
        self.assertFalse(ShipmentWorkflow.can_transition_to(
            ShipmentStatus.WAITING_FOR_PACKAGING, ShipmentStatus.DELIVERED))
        self.assertFalse(ShipmentWorkflow.can_transition_to(
            ShipmentStatus.PACKAGED_AND_WAITING_FOR_ASSIGNMENT, ShipmentStatus.RETURN_REQUESTED))

    def test_terminal_states_have_no_exits(self):
        for status in (ShipmentStatus.DELIVERED, ShipmentStatus.DELIVERY_FAILED, ShipmentStatus.RETURNED):
            for target in ShipmentStatus.values:
                self.assertFalse(ShipmentWorkflow.can_transition_to(status, target))

    def test_illegal_transition_leaves_shipment_unchanged(self):
        with self.assertRaises(InvalidTransitionError):
            transition_shipment(self.admin, self.shipment.pk, ShipmentStatus.DELIVERED)

        shipment = self.reload()
        self.assertEqual(shipment.status, ShipmentStatus.WAITING_FOR_PACKAGING)
        self.assertEqual(len(shipment.status_history), 1)

    def test_self_transition_rejected(self):
        with self.assertRaises(InvalidTransitionError):
            transition_shipment(self.admin, self.shipment.pk, ShipmentStatus.WAITING_FOR_PACKAGING)

    def test_unknown_status_rejected(self):
        with self.assertRaises(InvalidTransitionError):
            transition_shipment(self.admin, self.shipment.pk, 'LOST_AT_SEA')

    def test_unknown_shipment(self):
        with self.assertRaises(ShipmentNotFoundError):
            transition_shipment(self.admin, 'CAI-000000-000000', ShipmentStatus.IN_TRANSIT)

    def test_history_follows_every_step(self):
        shipment = advance(self.admin, self.shipment, self.courier, ShipmentStatus.OUT_FOR_DELIVERY)
        statuses = [entry['status'] for entry in shipment.status_history]
        self.assertEqual(statuses, [
            ShipmentStatus.WAITING_FOR_PACKAGING,
            ShipmentStatus.PACKAGED_AND_WAITING_FOR_ASSIGNMENT,
            ShipmentStatus.ASSIGNED_TO_COURIER,
            ShipmentStatus.IN_TRANSIT,
            ShipmentStatus.OUT_FOR_DELIVERY,
        ])
        self.assertEqual(self.reload().status_history[-1]['status'], shipment.status)
        self.assertTrue(shipment.has_reached(ShipmentStatus.IN_TRANSIT))

    def test_return_path(self):
        shipment = advance(self.admin, self.shipment, self.courier, ShipmentStatus.IN_TRANSIT)
        shipment = transition_shipment(self.client_user, shipment.pk, ShipmentStatus.RETURN_REQUESTED)
        shipment = transition_shipment(self.admin, shipment.pk, ShipmentStatus.RETURN_IN_PROGRESS)
        shipment = transition_shipment(self.courier, shipment.pk, ShipmentStatus.RETURNED)

        self.assertEqual(shipment.status, ShipmentStatus.RETURNED)
        self.assertIsNone(shipment.delivery_date)
        self.assertFalse(CourierTransaction.objects.exists())


class TransitionPermissionTest(StateMachineTestCase):

    def test_client_cannot_move_shipment_forward(self):
        with self.assertRaises(PermissionDeniedError):
            transition_shipment(
                self.client_user, self.shipment.pk, ShipmentStatus.PACKAGED_AND_WAITING_FOR_ASSIGNMENT
            )

    def test_assigning_user_assigns(self):
        transition_shipment(
            self.assigner, self.shipment.pk, ShipmentStatus.PACKAGED_AND_WAITING_FOR_ASSIGNMENT
        )
        shipment = transition_shipment(
            self.assigner, self.shipment.pk, ShipmentStatus.ASSIGNED_TO_COURIER, courier=self.courier
        )
        self.assertEqual(shipment.courier, self.courier)

    def test_assigning_user_cannot_deliver(self):
        shipment = advance(self.admin, self.shipment, self.courier, ShipmentStatus.OUT_FOR_DELIVERY)
        with self.assertRaises(PermissionDeniedError):
            transition_shipment(self.assigner, shipment.pk, ShipmentStatus.DELIVERED)

    def test_courier_moves_own_shipment(self):
        shipment = advance(self.admin, self.shipment, self.courier, ShipmentStatus.ASSIGNED_TO_COURIER)
        shipment = transition_shipment(self.courier, shipment.pk, ShipmentStatus.IN_TRANSIT)
        self.assertEqual(shipment.status, ShipmentStatus.IN_TRANSIT)

    def test_other_courier_sees_nothing(self):
        other = make_user('other@flash.test', UserRole.COURIER)
        shipment = advance(self.admin, self.shipment, self.courier, ShipmentStatus.ASSIGNED_TO_COURIER)
        with self.assertRaises(ShipmentNotFoundError):
            transition_shipment(other, shipment.pk, ShipmentStatus.IN_TRANSIT)

    def test_other_client_cannot_request_return(self):
        other = make_user('other@flash.test', UserRole.CLIENT)
        shipment = advance(self.admin, self.shipment, self.courier, ShipmentStatus.ASSIGNED_TO_COURIER)
        with self.assertRaises(ShipmentNotFoundError):
            transition_shipment(other, shipment.pk, ShipmentStatus.RETURN_REQUESTED)


class AssignmentTest(StateMachineTestCase):

    def setUp(self):
        super().setUp()
        transition_shipment(
            self.admin, self.shipment.pk, ShipmentStatus.PACKAGED_AND_WAITING_FOR_ASSIGNMENT
        )

    def test_assignment_stamps_fees(self):
        CourierLedger.update_commission_settings(
            self.admin, self.courier, CommissionType.PERCENTAGE, '10'
        )
        shipment = transition_shipment(
            self.admin, self.shipment.pk, ShipmentStatus.ASSIGNED_TO_COURIER, courier=self.courier
        )
        self.assertEqual(shipment.client_flat_rate_fee, Decimal('15.00'))
        self.assertEqual(shipment.courier_commission, Decimal('10.00'))
        self.assertEqual(shipment.net_profit, Decimal('5.00'))

    def test_assignment_requires_courier(self):
        with self.assertRaises(BusinessException) as ctx:
            transition_shipment(self.admin, self.shipment.pk, ShipmentStatus.ASSIGNED_TO_COURIER)
        self.assertEqual(ctx.exception.code, 'COURIER_REQUIRED')

    def test_restricted_courier_rejected(self):
        CourierLedger.set_restriction(self.admin, self.courier, True, 'Investigation')
        with self.assertRaises(CourierRestrictedError):
            transition_shipment(
                self.admin, self.shipment.pk, ShipmentStatus.ASSIGNED_TO_COURIER, courier=self.courier
            )

        shipment = self.reload()
        self.assertEqual(shipment.status, ShipmentStatus.PACKAGED_AND_WAITING_FOR_ASSIGNMENT)
        self.assertIsNone(shipment.courier)

    def test_manual_fee_survives_assignment(self):
        update_shipment_fees(self.admin, self.shipment.pk, client_flat_rate_fee='20.00')
        shipment = transition_shipment(
            self.admin, self.shipment.pk, ShipmentStatus.ASSIGNED_TO_COURIER, courier=self.courier
        )
        self.assertEqual(shipment.client_flat_rate_fee, Decimal('20.00'))
        self.assertEqual(shipment.courier_commission, Decimal('30.00'))

    def test_client_rate_change_does_not_touch_assigned_shipment(self):
        shipment = transition_shipment(
            self.admin, self.shipment.pk, ShipmentStatus.ASSIGNED_TO_COURIER, courier=self.courier
        )
        self.client_user.flat_rate_fee = Decimal('99.00')
        self.client_user.save()
        self.assertEqual(self.reload(shipment).client_flat_rate_fee, Decimal('15.00'))


class DeliveryTest(StateMachineTestCase):

    def setUp(self):
        super().setUp()
        CourierLedger.update_commission_settings(
            self.admin, self.courier, CommissionType.PERCENTAGE, '10'
        )
        self.shipment = advance(self.admin, self.shipment, self.courier, ShipmentStatus.OUT_FOR_DELIVERY)

    def test_delivery_credits_courier(self):
        shipment = transition_shipment(self.courier, self.shipment.pk, ShipmentStatus.DELIVERED)

        self.assertEqual(shipment.status, ShipmentStatus.DELIVERED)
        self.assertIsNotNone(shipment.delivery_date)
        self.assertEqual(shipment.delivery_date.isoformat(), shipment.status_history[-1]['timestamp'])

        stats = CourierStats.objects.get(courier=self.courier)
        self.assertEqual(stats.current_balance, Decimal('10.00'))
        self.assertEqual(stats.deliveries_completed, 1)
        self.assertEqual(CourierTransaction.objects.filter(shipment=shipment).count(), 1)

    def test_delivery_date_only_on_delivered(self):
        self.assertIsNone(self.reload().delivery_date)

    def test_failed_credit_rolls_back_status(self):
        with patch(
            'logistics.services.state_machine.CourierLedger.credit_earning',
            side_effect=RuntimeError('ledger unavailable'),
        ):
            with self.assertRaises(RuntimeError):
                transition_shipment(self.admin, self.shipment.pk, ShipmentStatus.DELIVERED)

        shipment = self.reload()
        self.assertEqual(shipment.status, ShipmentStatus.OUT_FOR_DELIVERY)
        self.assertIsNone(shipment.delivery_date)
        self.assertEqual(shipment.status_history[-1]['status'], ShipmentStatus.OUT_FOR_DELIVERY)

    def test_delivered_is_final(self):
        transition_shipment(self.admin, self.shipment.pk, ShipmentStatus.DELIVERED)
        with self.assertRaises(InvalidTransitionError):
            transition_shipment(self.admin, self.shipment.pk, ShipmentStatus.RETURN_REQUESTED)

        stats = CourierStats.objects.get(courier=self.courier)
        self.assertEqual(stats.deliveries_completed, 1)

    def test_broadcast_after_commit(self):
        with patch('logistics.services.state_machine.broadcast_shipment_status') as broadcast:
            with self.captureOnCommitCallbacks(execute=True):
                shipment = transition_shipment(self.admin, self.shipment.pk, ShipmentStatus.DELIVERED)

        broadcast.assert_called_once_with(
            shipment.pk, ShipmentStatus.DELIVERED, shipment.status_history[-1]['timestamp']
        )

    def test_no_broadcast_on_failure(self):
        with patch('logistics.services.state_machine.broadcast_shipment_status') as broadcast:
            with self.captureOnCommitCallbacks(execute=True):
                with self.assertRaises(InvalidTransitionError):
                    transition_shipment(self.admin, self.shipment.pk, ShipmentStatus.IN_TRANSIT)
        broadcast.assert_not_called()


@override_settings(COURIER_FAILURE_LIMIT=3)
class DeliveryFailureTest(StateMachineTestCase):

    def fail_one(self):
        shipment = advance(
            self.admin, make_shipment(self.client_user), self.courier, ShipmentStatus.OUT_FOR_DELIVERY
        )
        return transition_shipment(
            self.courier, shipment.pk, ShipmentStatus.DELIVERY_FAILED, failure_reason='Nobody home'
        )

    def test_failure_recorded(self):
        shipment = self.fail_one()
        self.assertEqual(shipment.failure_reason, 'Nobody home')
        self.assertIsNone(shipment.delivery_date)

        stats = CourierStats.objects.get(courier=self.courier)
        self.assertEqual(stats.deliveries_failed, 1)
        self.assertEqual(stats.consecutive_failures, 1)
        self.assertEqual(stats.current_balance, Decimal('0.00'))
        self.assertFalse(stats.is_restricted)

    def test_auto_restriction_after_limit(self):
        for _ in range(3):
            self.fail_one()

        stats = CourierStats.objects.get(courier=self.courier)
        self.assertTrue(stats.is_restricted)
        self.assertEqual(stats.restriction_reason, 'Exceeded failure limit of 3.')

        packaged = transition_shipment(
            self.admin, make_shipment(self.client_user).pk,
            ShipmentStatus.PACKAGED_AND_WAITING_FOR_ASSIGNMENT
        )
        with self.assertRaises(CourierRestrictedError):
            transition_shipment(
                self.admin, packaged.pk, ShipmentStatus.ASSIGNED_TO_COURIER, courier=self.courier
            )

    def test_delivery_breaks_the_streak(self):
        self.fail_one()
        self.fail_one()
        shipment = advance(
            self.admin, make_shipment(self.client_user), self.courier, ShipmentStatus.OUT_FOR_DELIVERY
        )
        transition_shipment(self.courier, shipment.pk, ShipmentStatus.DELIVERED)
        self.fail_one()

        stats = CourierStats.objects.get(courier=self.courier)
        self.assertEqual(stats.consecutive_failures, 1)
        self.assertFalse(stats.is_restricted)


class FeeEditTest(StateMachineTestCase):

    def setUp(self):
        super().setUp()
        self.shipment = advance(self.admin, self.shipment, self.courier, ShipmentStatus.IN_TRANSIT)

    def test_admin_edits_open_shipment(self):
        shipment = update_shipment_fees(
            self.admin, self.shipment.pk, client_flat_rate_fee='18.00', courier_commission='12.00'
        )
        self.assertEqual(shipment.client_flat_rate_fee, Decimal('18.00'))
        self.assertEqual(shipment.courier_commission, Decimal('12.00'))

    def test_delivered_fees_locked(self):
        transition_shipment(self.admin, self.shipment.pk, ShipmentStatus.OUT_FOR_DELIVERY)
        transition_shipment(self.admin, self.shipment.pk, ShipmentStatus.DELIVERED)

        with self.assertRaises(ShipmentLockedError):
            update_shipment_fees(self.admin, self.shipment.pk, courier_commission='1.00')
        self.assertEqual(self.reload().courier_commission, Decimal('30.00'))

    def test_negative_fee_rejected(self):
        with self.assertRaises(InvalidAmountError):
            update_shipment_fees(self.admin, self.shipment.pk, client_flat_rate_fee='-5')

    def test_super_user_cannot_edit_fees(self):
        with self.assertRaises(PermissionDeniedError):
            update_shipment_fees(self.super_user, self.shipment.pk, client_flat_rate_fee='5')


@override_settings(OVERDUE_AFTER_HOURS=60)
class AgeingTest(StateMachineTestCase):

    def test_overdue_after_threshold(self):
        old = make_shipment(self.client_user, creation_date=timezone.now() - timedelta(hours=61))
        fresh = make_shipment(self.client_user, creation_date=timezone.now() - timedelta(hours=59))

        self.assertTrue(is_overdue(old))
        self.assertFalse(is_overdue(fresh))
        self.assertEqual(list(overdue_shipments().values_list('pk', flat=True)), [old.pk])

    def test_terminal_shipment_never_overdue(self):
        shipment = make_shipment(self.client_user, creation_date=timezone.now() - timedelta(days=10))
        shipment = advance(self.admin, shipment, self.courier, ShipmentStatus.OUT_FOR_DELIVERY)
        shipment = transition_shipment(self.admin, shipment.pk, ShipmentStatus.DELIVERED)
        self.assertFalse(is_overdue(shipment))

    def test_days_in_phase(self):
        now = self.shipment.last_status_change() + timedelta(days=3, hours=5)
        self.assertEqual(days_in_phase(self.shipment, now=now), 3)
        self.assertEqual(days_in_phase(self.shipment, now=now - timedelta(days=10)), 0)

    def test_history_timestamps_never_go_backwards(self):
        shipment = self.shipment
        first = shipment.last_status_change()
        at = shipment.append_status(
            ShipmentStatus.PACKAGED_AND_WAITING_FOR_ASSIGNMENT, first - timedelta(minutes=5)
        )
        self.assertEqual(at, first)
        self.assertEqual(shipment.status_history[-1]['timestamp'], first.isoformat())
        self.assertEqual(shipment.status, ShipmentStatus.PACKAGED_AND_WAITING_FOR_ASSIGNMENT)
