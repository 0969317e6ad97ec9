"""
Rate Policy for Flash Express

Derives the per-shipment fee snapshot taken when a shipment is assigned:
- Client fee: the client's flat rate, independent of price
- Courier commission: flat amount, or percentage of price (half-up, 2 dp)

Both are pure functions of their inputs; nothing here touches the database.
"""

from decimal import Decimal

from core.utils import quantize_money
from finance.models import CommissionType

HUNDRED = Decimal('100')


def compute_client_fee(shipment, client_policy) -> Decimal:
    """
    Fee charged to the client for one shipment.

    Args:
        shipment: Shipment being priced (price is intentionally ignored)
        client_policy: Client user holding flat_rate_fee
    """
    return quantize_money(Decimal(client_policy.flat_rate_fee))


def compute_courier_commission(shipment, courier_stats) -> Decimal:
    """
    Commission owed to the courier for one shipment.

    FLAT       → commission_value
    PERCENTAGE → price * commission_value / 100, rounded half-up to 0.01
    """
    value = Decimal(courier_stats.commission_value)
    if courier_stats.commission_type == CommissionType.PERCENTAGE:
        return quantize_money(Decimal(shipment.price) * value / HUNDRED)
    return quantize_money(value)
