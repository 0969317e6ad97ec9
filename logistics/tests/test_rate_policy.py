"""
Rate Policy tests: client fee and courier commission derivation.
"""

from decimal import Decimal
from types import SimpleNamespace

from django.test import SimpleTestCase

from finance.models import CommissionType
from logistics.services.rate_policy import compute_client_fee, compute_courier_commission


def shipment(price):
    return SimpleNamespace(price=Decimal(price))


def stats(commission_type, value):
    return SimpleNamespace(commission_type=commission_type, commission_value=Decimal(value))


class ClientFeeTest(SimpleTestCase):

    def test_fee_ignores_price(self):
        client = SimpleNamespace(flat_rate_fee=Decimal('15.00'))
        self.assertEqual(compute_client_fee(shipment('100.00'), client), Decimal('15.00'))
        self.assertEqual(compute_client_fee(shipment('9999.99'), client), Decimal('15.00'))

    def test_fee_is_quantized(self):
        client = SimpleNamespace(flat_rate_fee=Decimal('12.5'))
        self.assertEqual(str(compute_client_fee(shipment('1'), client)), '12.50')


class CourierCommissionTest(SimpleTestCase):

    def test_flat_commission(self):
        self.assertEqual(
            compute_courier_commission(shipment('250.00'), stats(CommissionType.FLAT, '30')),
            Decimal('30.00')
        )

    def test_percentage_commission(self):
        self.assertEqual(
            compute_courier_commission(shipment('100.00'), stats(CommissionType.PERCENTAGE, '10')),
            Decimal('10.00')
        )

    def test_percentage_rounds_half_up(self):
        # 0.125 → 0.13
        self.assertEqual(
            compute_courier_commission(shipment('1.25'), stats(CommissionType.PERCENTAGE, '10')),
            Decimal('0.13')
        )

    def test_zero_commission(self):
        self.assertEqual(
            compute_courier_commission(shipment('100.00'), stats(CommissionType.PERCENTAGE, '0')),
            Decimal('0.00')
        )
