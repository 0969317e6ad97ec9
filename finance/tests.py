"""
Flash Express Finance Tests
===========================

Tests for:
1. Courier Ledger (earnings, penalties, payouts, settings, restriction)
2. Balance invariant (stored balance == sum of processed transactions)
3. Financial Aggregator (admin, client, courier summaries)
4. Balance audit task
5. Ledger & report API endpoints
"""

from decimal import Decimal
from django.db import IntegrityError, transaction
from django.test import TestCase, override_settings
from rest_framework import status
from rest_framework.test import APIClient

from core.exceptions import (
    CourierNotFoundError,
    InvalidAmountError,
    PenaltyNotApplicableError,
    PermissionDeniedError,
    TransactionAlreadyProcessedError,
    TransactionNotFoundError,
)
from core.models import UserRole
from finance.models import (
    CommissionType,
    CourierStats,
    CourierTransaction,
    CourierTransactionStatus,
    CourierTransactionType,
)
from finance.reports import (
    FinancialReportService,
    get_admin_financials,
    get_client_financials,
)
from finance.services import CourierLedger
from finance.tasks import audit_courier_balances
from logistics.models import PaymentMethod, ShipmentStatus
from logistics.services.state_machine import transition_shipment
from logistics.tests.helpers import advance, make_shipment, make_staff, make_user


class LedgerTestCase(TestCase):
    """Common fixtures: staff, one client, one courier."""

    def setUp(self):
        self.admin, self.super_user, self.assigner = make_staff()
        self.client_user = make_user('client@flash.test', UserRole.CLIENT, flat_rate_fee=Decimal('15.00'))
        self.courier = make_user('courier@flash.test', UserRole.COURIER)

    def deliver(self, price='100.00', **extra):
        shipment = make_shipment(self.client_user, price=price, **extra)
        shipment = advance(self.admin, shipment, self.courier, ShipmentStatus.OUT_FOR_DELIVERY)
        return transition_shipment(self.admin, shipment.pk, ShipmentStatus.DELIVERED)

    def fund(self, amount):
        """Give the courier a balance through a delivery with a flat commission."""
        CourierLedger.update_commission_settings(
            self.admin, self.courier, CommissionType.FLAT, amount
        )
        return self.deliver()

    def stats(self):
        return CourierStats.objects.get(courier=self.courier)

    def assertBalanceFolds(self):
        self.assertEqual(self.stats().current_balance, CourierLedger.folded_balance(self.courier))


class TestCourierStats(LedgerTestCase):
    """Tests for lazily created stats."""

    @override_settings(DEFAULT_COURIER_COMMISSION_TYPE='FLAT',
                       DEFAULT_COURIER_COMMISSION_VALUE=Decimal('30.00'))
    def test_default_stats_created(self):
        stats = CourierLedger.get_stats(self.courier)
        self.assertEqual(stats.commission_type, CommissionType.FLAT)
        self.assertEqual(stats.commission_value, Decimal('30.00'))
        self.assertEqual(stats.current_balance, Decimal('0.00'))
        self.assertFalse(stats.is_restricted)

    def test_get_stats_is_idempotent(self):
        CourierLedger.get_stats(self.courier)
        CourierLedger.get_stats(self.courier)
        self.assertEqual(CourierStats.objects.filter(courier=self.courier).count(), 1)

    def test_non_courier_has_no_stats(self):
        with self.assertRaises(CourierNotFoundError):
            CourierLedger.get_stats(self.client_user)


class TestEarnings(LedgerTestCase):
    """Tests for credit on DELIVERED."""

    def test_percentage_commission_credited(self):
        """price 100, 10% → 10.00 credited, one delivery counted."""
        CourierLedger.update_commission_settings(
            self.admin, self.courier, CommissionType.PERCENTAGE, '10'
        )
        shipment = self.deliver()

        stats = self.stats()
        self.assertEqual(shipment.client_flat_rate_fee, Decimal('15.00'))
        self.assertEqual(shipment.courier_commission, Decimal('10.00'))
        self.assertEqual(stats.current_balance, Decimal('10.00'))
        self.assertEqual(stats.total_earnings, Decimal('10.00'))
        self.assertEqual(stats.deliveries_completed, 1)

        tx = CourierTransaction.objects.get(courier=self.courier)
        self.assertEqual(tx.transaction_type, CourierTransactionType.EARNING)
        self.assertEqual(tx.status, CourierTransactionStatus.PROCESSED)
        self.assertEqual(tx.amount, Decimal('10.00'))
        self.assertEqual(tx.shipment_id, shipment.pk)
        self.assertBalanceFolds()

    def test_zero_commission_counts_delivery_without_transaction(self):
        CourierLedger.update_commission_settings(self.admin, self.courier, CommissionType.FLAT, '0')
        self.deliver()

        stats = self.stats()
        self.assertEqual(stats.deliveries_completed, 1)
        self.assertEqual(stats.current_balance, Decimal('0.00'))
        self.assertFalse(CourierTransaction.objects.filter(courier=self.courier).exists())

    def test_delivery_resets_failure_streak(self):
        stats = CourierLedger.get_stats(self.courier)
        stats.consecutive_failures = 2
        stats.save()

        self.deliver()
        self.assertEqual(self.stats().consecutive_failures, 0)

    def test_negative_earning_rejected(self):
        shipment = make_shipment(self.client_user)
        with self.assertRaises(InvalidAmountError):
            CourierLedger.credit_earning(self.courier, Decimal('-1'), shipment)


class TestPenalties(LedgerTestCase):
    """Tests for manual and failed-delivery penalties."""

    def test_manual_penalty(self):
        """Penalty 20 on balance 50 → 30, one PENALTY of -20."""
        self.fund('50.00')
        tx = CourierLedger.apply_manual_penalty(self.admin, self.courier, '20', 'Late return')

        stats = self.stats()
        self.assertEqual(stats.current_balance, Decimal('30.00'))
        self.assertEqual(stats.total_earnings, Decimal('30.00'))
        self.assertEqual(tx.amount, Decimal('-20.00'))
        self.assertEqual(tx.transaction_type, CourierTransactionType.PENALTY)
        self.assertEqual(tx.status, CourierTransactionStatus.PROCESSED)
        self.assertEqual(tx.description, 'Late return')
        self.assertBalanceFolds()

    def test_penalty_may_overdraw(self):
        """Penalties are debts: the balance can go negative."""
        CourierLedger.apply_manual_penalty(self.admin, self.courier, '5', 'Damaged parcel')
        self.assertEqual(self.stats().current_balance, Decimal('-5.00'))
        self.assertBalanceFolds()

    def test_penalty_requires_positive_amount(self):
        for amount in ('0', '-3', '0.001'):
            with self.assertRaises(InvalidAmountError, msg=amount):
                CourierLedger.apply_manual_penalty(self.admin, self.courier, amount, 'x')
        self.assertFalse(CourierTransaction.objects.filter(courier=self.courier).exists())

    def test_penalty_requires_reason(self):
        with self.assertRaises(InvalidAmountError):
            CourierLedger.apply_manual_penalty(self.admin, self.courier, '5', '   ')

    def test_courier_cannot_penalize(self):
        with self.assertRaises(PermissionDeniedError):
            CourierLedger.apply_manual_penalty(self.courier, self.courier, '5', 'self')

    def test_failed_delivery_penalty_uses_package_value(self):
        shipment = make_shipment(self.client_user, package_value='120.00')
        shipment = advance(self.admin, shipment, self.courier, ShipmentStatus.OUT_FOR_DELIVERY)
        shipment = transition_shipment(self.admin, shipment.pk, ShipmentStatus.DELIVERY_FAILED)

        tx = CourierLedger.apply_failed_delivery_penalty(self.admin, shipment)
        self.assertEqual(tx.amount, Decimal('-120.00'))
        self.assertEqual(self.stats().current_balance, Decimal('-120.00'))

        with self.assertRaises(PenaltyNotApplicableError):
            CourierLedger.apply_failed_delivery_penalty(self.admin, shipment)

    def test_manual_penalty_does_not_block_failed_delivery_penalty(self):
        shipment = make_shipment(self.client_user, package_value='120.00')
        shipment = advance(self.admin, shipment, self.courier, ShipmentStatus.OUT_FOR_DELIVERY)
        shipment = transition_shipment(self.admin, shipment.pk, ShipmentStatus.DELIVERY_FAILED)

        CourierLedger.apply_manual_penalty(
            self.admin, self.courier, '5', 'Late arrival', shipment=shipment
        )
        tx = CourierLedger.apply_failed_delivery_penalty(self.admin, shipment)

        self.assertTrue(tx.is_failed_delivery_penalty)
        self.assertEqual(tx.amount, Decimal('-120.00'))
        self.assertEqual(self.stats().current_balance, Decimal('-125.00'))
        self.assertBalanceFolds()

    def test_failed_delivery_penalty_reads_current_row(self):
        """A stale instance does not bypass the status check."""
        shipment = make_shipment(self.client_user)
        stale = advance(self.admin, shipment, self.courier, ShipmentStatus.OUT_FOR_DELIVERY)
        stale.status = ShipmentStatus.DELIVERY_FAILED

        with self.assertRaises(PenaltyNotApplicableError):
            CourierLedger.apply_failed_delivery_penalty(self.admin, stale)
        self.assertFalse(CourierTransaction.objects.filter(courier=self.courier).exists())

    def test_one_failed_delivery_penalty_per_shipment_in_database(self):
        shipment = make_shipment(self.client_user, package_value='40.00')
        shipment = advance(self.admin, shipment, self.courier, ShipmentStatus.OUT_FOR_DELIVERY)
        shipment = transition_shipment(self.admin, shipment.pk, ShipmentStatus.DELIVERY_FAILED)
        CourierLedger.apply_failed_delivery_penalty(self.admin, shipment)

        with self.assertRaises(IntegrityError), transaction.atomic():
            CourierLedger.apply_manual_penalty(
                self.admin, self.courier, '40', 'Duplicate', shipment=shipment, failed_delivery=True
            )

    def test_failed_delivery_penalty_needs_failed_shipment(self):
        shipment = make_shipment(self.client_user)
        with self.assertRaises(PenaltyNotApplicableError):
            CourierLedger.apply_failed_delivery_penalty(self.admin, shipment)


class TestPayouts(LedgerTestCase):
    """Tests for withdrawal requests and their processing."""

    def test_full_payout_cycle(self):
        """Payout 30 on balance 30 → PENDING, then PROCESSED with balance 0."""
        self.fund('30.00')
        tx = CourierLedger.request_payout(self.courier, self.courier, '30')

        self.assertEqual(tx.status, CourierTransactionStatus.PENDING)
        self.assertEqual(tx.transaction_type, CourierTransactionType.WITHDRAWAL_REQUEST)
        self.assertEqual(tx.amount, Decimal('-30.00'))
        # Requests do not reserve funds
        self.assertEqual(self.stats().current_balance, Decimal('30.00'))
        self.assertBalanceFolds()

        processed = CourierLedger.process_payout(self.admin, tx.pk)
        self.assertEqual(processed.status, CourierTransactionStatus.PROCESSED)
        self.assertEqual(processed.processed_by, self.admin)
        self.assertIsNotNone(processed.processed_at)
        self.assertEqual(self.stats().current_balance, Decimal('0.00'))
        self.assertBalanceFolds()

    def test_second_processing_rejected(self):
        """Processing twice fails and leaves the balance alone."""
        self.fund('30.00')
        tx = CourierLedger.request_payout(self.courier, self.courier, '10')
        CourierLedger.process_payout(self.admin, tx.pk)

        with self.assertRaises(TransactionAlreadyProcessedError):
            CourierLedger.process_payout(self.admin, tx.pk)
        self.assertEqual(self.stats().current_balance, Decimal('20.00'))

    def test_request_above_balance_rejected(self):
        self.fund('30.00')
        with self.assertRaises(InvalidAmountError):
            CourierLedger.request_payout(self.courier, self.courier, '30.01')

    def test_request_requires_positive_amount(self):
        self.fund('30.00')
        with self.assertRaises(InvalidAmountError):
            CourierLedger.request_payout(self.courier, self.courier, '0')
        with self.assertRaises(InvalidAmountError):
            CourierLedger.request_payout(self.courier, self.courier, '0.001')
        self.assertFalse(CourierTransaction.objects.filter(
            transaction_type=CourierTransactionType.WITHDRAWAL_REQUEST
        ).exists())

    def test_processing_rechecks_balance(self):
        """A penalty between request and processing can make the payout fail."""
        self.fund('30.00')
        tx = CourierLedger.request_payout(self.courier, self.courier, '30')
        CourierLedger.apply_manual_penalty(self.admin, self.courier, '10', 'Late')

        with self.assertRaises(InvalidAmountError):
            CourierLedger.process_payout(self.admin, tx.pk)
        tx.refresh_from_db()
        self.assertEqual(tx.status, CourierTransactionStatus.PENDING)
        self.assertEqual(self.stats().current_balance, Decimal('20.00'))

    def test_stranded_request_processes_once_balance_recovers(self):
        """A request overtaken by a penalty stays PENDING until earnings cover it."""
        self.fund('30.00')
        tx = CourierLedger.request_payout(self.courier, self.courier, '30')
        CourierLedger.apply_manual_penalty(self.admin, self.courier, '10', 'Late')
        with self.assertRaises(InvalidAmountError):
            CourierLedger.process_payout(self.admin, tx.pk)

        self.deliver()
        processed = CourierLedger.process_payout(self.admin, tx.pk)

        self.assertEqual(processed.status, CourierTransactionStatus.PROCESSED)
        self.assertEqual(self.stats().current_balance, Decimal('20.00'))
        self.assertBalanceFolds()

    def test_unknown_transaction(self):
        with self.assertRaises(TransactionNotFoundError):
            CourierLedger.process_payout(self.admin, '00000000-0000-0000-0000-000000000000')
        with self.assertRaises(TransactionNotFoundError):
            CourierLedger.process_payout(self.admin, 'not-a-uuid')

    def test_earning_is_not_a_payout(self):
        self.fund('30.00')
        earning = CourierTransaction.objects.get(transaction_type=CourierTransactionType.EARNING)
        with self.assertRaises(TransactionNotFoundError):
            CourierLedger.process_payout(self.admin, earning.pk)

    def test_courier_cannot_request_for_someone_else(self):
        other = make_user('other@flash.test', UserRole.COURIER)
        with self.assertRaises(PermissionDeniedError):
            CourierLedger.request_payout(self.courier, other, '1')

    def test_courier_cannot_process(self):
        self.fund('30.00')
        tx = CourierLedger.request_payout(self.courier, self.courier, '10')
        with self.assertRaises(PermissionDeniedError):
            CourierLedger.process_payout(self.courier, tx.pk)


class TestSettingsAndRestriction(LedgerTestCase):
    """Tests for commission settings and restriction."""

    def test_percentage_above_hundred_rejected(self):
        CourierLedger.get_stats(self.courier)
        with self.assertRaises(InvalidAmountError):
            CourierLedger.update_commission_settings(
                self.admin, self.courier, CommissionType.PERCENTAGE, '150'
            )
        self.assertEqual(self.stats().commission_type, CommissionType.FLAT)

    def test_negative_commission_rejected(self):
        with self.assertRaises(InvalidAmountError):
            CourierLedger.update_commission_settings(self.admin, self.courier, commission_value='-1')

    def test_unknown_commission_type_rejected(self):
        with self.assertRaises(InvalidAmountError):
            CourierLedger.update_commission_settings(self.admin, self.courier, 'HOURLY')

    def test_settings_do_not_touch_assigned_shipments(self):
        """Changing commission after assignment keeps the stamped value."""
        shipment = make_shipment(self.client_user)
        shipment = advance(self.admin, shipment, self.courier, ShipmentStatus.ASSIGNED_TO_COURIER)
        self.assertEqual(shipment.courier_commission, Decimal('30.00'))

        CourierLedger.update_commission_settings(self.admin, self.courier, CommissionType.FLAT, '99')
        shipment.refresh_from_db()
        self.assertEqual(shipment.courier_commission, Decimal('30.00'))

    def test_lifting_restriction_resets_streak(self):
        stats = CourierLedger.set_restriction(self.admin, self.courier, True, 'Investigation')
        self.assertTrue(stats.is_restricted)
        self.assertEqual(stats.restriction_reason, 'Investigation')

        stats.consecutive_failures = 3
        stats.save()
        stats = CourierLedger.set_restriction(self.admin, self.courier, False)
        self.assertFalse(stats.is_restricted)
        self.assertEqual(stats.consecutive_failures, 0)
        self.assertEqual(stats.restriction_reason, '')


class TestFinancialReports(LedgerTestCase):
    """Tests for the Financial Aggregator."""

    def test_admin_financials(self):
        CourierLedger.update_commission_settings(
            self.admin, self.courier, CommissionType.PERCENTAGE, '10'
        )
        self.deliver(price='100.00')
        self.deliver(price='200.00', payment_method=PaymentMethod.TRANSFER)
        make_shipment(self.client_user, price='500.00', package_value='80.00')

        totals = FinancialReportService.admin_financials()
        self.assertEqual(totals['gross_revenue'], Decimal('300.00'))
        self.assertEqual(totals['total_client_fees'], Decimal('30.00'))
        self.assertEqual(totals['total_courier_payouts'], Decimal('30.00'))
        self.assertEqual(totals['net_revenue'], Decimal('0.00'))
        self.assertEqual(totals['total_orders'], 2)
        self.assertEqual(totals['total_collected_money'], Decimal('100.00'))
        self.assertEqual(totals['undelivered_packages_value'], Decimal('80.00'))
        self.assertEqual(totals['failed_deliveries_value'], Decimal('0.00'))

    def test_admin_financials_empty(self):
        totals = FinancialReportService.admin_financials()
        self.assertEqual(totals['gross_revenue'], Decimal('0.00'))
        self.assertEqual(totals['net_revenue'], Decimal('0.00'))
        self.assertEqual(totals['total_orders'], 0)

    def test_admin_financials_admin_only(self):
        with self.assertRaises(PermissionDeniedError):
            get_admin_financials(self.super_user)

    def test_client_financials_count_all_statuses(self):
        self.deliver(price='100.00')
        make_shipment(self.client_user, price='40.00')
        make_user('idle@flash.test', UserRole.CLIENT, full_name='Idle Shop')

        rows = {row['client_name']: row for row in get_client_financials(self.super_user)}
        self.assertEqual(rows['Client']['total_orders'], 2)
        self.assertEqual(rows['Client']['order_sum'], Decimal('140.00'))
        self.assertEqual(rows['Client']['flat_rate_fee'], Decimal('15.00'))
        self.assertEqual(rows['Idle Shop']['total_orders'], 0)
        self.assertEqual(rows['Idle Shop']['order_sum'], Decimal('0.00'))

    def test_client_financials_require_analytics(self):
        with self.assertRaises(PermissionDeniedError):
            get_client_financials(self.assigner)

    def test_courier_financials(self):
        self.fund('30.00')
        CourierLedger.request_payout(self.courier, self.courier, '10')
        CourierLedger.apply_manual_penalty(self.admin, self.courier, '5', 'Late')

        summary = FinancialReportService.courier_financials(self.courier)
        self.assertEqual(summary['current_balance'], Decimal('25.00'))
        self.assertEqual(summary['pending_withdrawals'], Decimal('10.00'))
        self.assertEqual(summary['total_penalties'], Decimal('5.00'))
        self.assertEqual(summary['deliveries_completed'], 1)


class TestBalanceAudit(LedgerTestCase):
    """Tests for the nightly balance audit task."""

    def test_consistent_ledger_has_no_mismatch(self):
        self.fund('30.00')
        CourierLedger.apply_manual_penalty(self.admin, self.courier, '5', 'Late')
        self.assertEqual(audit_courier_balances(), [])

    def test_folded_balance_keeps_cents(self):
        self.fund('30')
        self.assertEqual(str(CourierLedger.folded_balance(self.courier)), '30.00')

    def test_tampered_balance_reported(self):
        self.fund('30.00')
        CourierStats.objects.filter(courier=self.courier).update(current_balance=Decimal('99.00'))

        mismatches = audit_courier_balances()
        self.assertEqual(len(mismatches), 1)
        self.assertEqual(mismatches[0]['courier_id'], str(self.courier.pk))
        self.assertEqual(mismatches[0]['folded'], '30.00')


class TestLedgerAPI(LedgerTestCase):
    """Tests for courier, payout and financial endpoints."""

    def setUp(self):
        super().setUp()
        self.api = APIClient()

    def test_payout_request_and_processing(self):
        self.fund('30.00')

        self.api.force_authenticate(self.courier)
        response = self.api.post(
            f'/api/couriers/{self.courier.pk}/payouts/', {'amount': '30.00'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        tx_id = response.data['id']

        self.api.force_authenticate(self.admin)
        pending = self.api.get('/api/payouts/')
        self.assertEqual(pending.data['count'], 1)

        response = self.api.post(f'/api/payouts/{tx_id}/process/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], CourierTransactionStatus.PROCESSED)

        response = self.api.post(f'/api/payouts/{tx_id}/process/')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'TRANSACTION_ALREADY_PROCESSED')

    def test_payout_above_balance_is_bad_request(self):
        self.api.force_authenticate(self.courier)
        response = self.api.post(
            f'/api/couriers/{self.courier.pk}/payouts/', {'amount': '1.00'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'INVALID_AMOUNT')

    def test_penalty_endpoint(self):
        self.fund('50.00')
        self.api.force_authenticate(self.admin)
        response = self.api.post(
            f'/api/couriers/{self.courier.pk}/penalty/',
            {'amount': '20.00', 'reason': 'Rude to customer'},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['amount'], '-20.00')

        stats = self.api.get(f'/api/couriers/{self.courier.pk}/stats/')
        self.assertEqual(stats.data['current_balance'], '30.00')

    def test_courier_sees_only_own_transactions(self):
        other = make_user('other@flash.test', UserRole.COURIER)
        self.fund('30.00')
        CourierLedger.apply_manual_penalty(self.admin, other, '5', 'Late')

        self.api.force_authenticate(self.courier)
        response = self.api.get('/api/courier-transactions/')
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['courier'], self.courier.pk)

    def test_courier_cannot_read_other_stats(self):
        other = make_user('other@flash.test', UserRole.COURIER)
        self.api.force_authenticate(self.courier)
        response = self.api.get(f'/api/couriers/{other.pk}/stats/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_admin_financials_endpoint(self):
        self.fund('30.00')
        self.api.force_authenticate(self.admin)
        response = self.api.get('/api/financials/admin/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['gross_revenue'], '100.00')
        self.assertEqual(response.data['net_revenue'], '-15.00')

        self.api.force_authenticate(self.super_user)
        response = self.api.get('/api/financials/admin/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_courier_financials_endpoint(self):
        self.fund('30.00')
        self.api.force_authenticate(self.courier)
        response = self.api.get(f'/api/financials/couriers/{self.courier.pk}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['current_balance'], '30.00')

    def test_settings_endpoint(self):
        self.api.force_authenticate(self.admin)
        response = self.api.put(
            f'/api/couriers/{self.courier.pk}/settings/',
            {'commission_type': 'PERCENTAGE', 'commission_value': '12.50'},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['commission_type'], CommissionType.PERCENTAGE)
        self.assertEqual(response.data['commission_value'], '12.50')
