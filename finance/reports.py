"""
FINANCE App - Financial Aggregator for Flash Express

Read-only folds over shipments and courier transactions:
- Admin-wide revenue figures (delivered shipments)
- Per-client order counts and sums
- Per-courier ledger summary

Sums are database aggregates, so results are independent of row order.
"""

from decimal import Decimal

from django.db.models import Count, DecimalField, Q, Sum, Value
from django.db.models.functions import Coalesce

from core.models import User, UserRole
from core.permissions import Permission, require_permission
from finance.models import (
    CourierTransaction,
    CourierTransactionStatus,
    CourierTransactionType,
)
from logistics.models import PaymentMethod, Shipment, ShipmentStatus, TERMINAL_STATUSES

ZERO = Decimal('0.00')
MONEY = DecimalField(max_digits=14, decimal_places=2)


def _sum(field: str, **filter_kwargs):
    """Sum that yields 0.00 instead of NULL on empty sets."""
    condition = Q(**filter_kwargs) if filter_kwargs else None
    return Coalesce(Sum(field, filter=condition), Value(ZERO), output_field=MONEY)


class FinancialReportService:
    """Financial summaries for dashboards and the API."""

    # ===========================================
    # Admin-wide
    # ===========================================

    @classmethod
    def admin_financials(cls) -> dict:
        """
        Revenue figures over DELIVERED shipments, plus exposure figures.

        net_revenue = total_client_fees - total_courier_payouts
        """
        delivered = ShipmentStatus.DELIVERED
        totals = Shipment.objects.aggregate(
            gross_revenue=_sum('price', status=delivered),
            total_client_fees=_sum('client_flat_rate_fee', status=delivered),
            total_courier_payouts=_sum('courier_commission', status=delivered),
            total_orders=Count('id', filter=Q(status=delivered)),
            total_collected_money=_sum(
                'price', status=delivered, payment_method=PaymentMethod.COD
            ),
            failed_deliveries_value=_sum('package_value', status=ShipmentStatus.DELIVERY_FAILED),
            undelivered_packages_value=Coalesce(
                Sum('package_value', filter=~Q(status__in=TERMINAL_STATUSES)),
                Value(ZERO),
                output_field=MONEY,
            ),
        )
        totals['net_revenue'] = totals['total_client_fees'] - totals['total_courier_payouts']
        return totals

    # ===========================================
    # Per client
    # ===========================================

    @classmethod
    def client_financials(cls) -> list:
        """One row per client: all-status order count, price sum, current flat rate."""
        clients = User.objects.filter(role=UserRole.CLIENT).annotate(
            total_orders=Count('client_shipments'),
            order_sum=_sum('client_shipments__price'),
        ).order_by('full_name', 'email')

        return [
            {
                'client_id': str(client.pk),
                'client_name': client.full_name or client.email,
                'total_orders': client.total_orders,
                'order_sum': client.order_sum,
                'flat_rate_fee': client.flat_rate_fee,
            }
            for client in clients
        ]

    # ===========================================
    # Per courier
    # ===========================================

    @classmethod
    def courier_financials(cls, courier) -> dict:
        """Ledger summary for one courier."""
        from finance.services import CourierLedger

        stats = CourierLedger.get_stats(courier)
        totals = CourierTransaction.objects.filter(courier=courier).aggregate(
            pending_withdrawals=_sum(
                'amount',
                transaction_type=CourierTransactionType.WITHDRAWAL_REQUEST,
                status=CourierTransactionStatus.PENDING,
            ),
            total_penalties=_sum('amount', transaction_type=CourierTransactionType.PENALTY),
        )
        return {
            'courier_id': str(courier.pk),
            'current_balance': stats.current_balance,
            'total_earnings': stats.total_earnings,
            'deliveries_completed': stats.deliveries_completed,
            'deliveries_failed': stats.deliveries_failed,
            'success_rate': stats.success_rate,
            'pending_withdrawals': abs(totals['pending_withdrawals']),
            'total_penalties': abs(totals['total_penalties']),
            'is_restricted': stats.is_restricted,
        }


# ===========================================
# Permission-gated entry points
# ===========================================

def get_admin_financials(actor) -> dict:
    require_permission(actor, Permission.VIEW_ADMIN_FINANCIALS)
    return FinancialReportService.admin_financials()


def get_client_financials(actor) -> list:
    require_permission(actor, Permission.VIEW_CLIENT_ANALYTICS)
    return FinancialReportService.client_financials()


def get_courier_financials(actor, courier) -> dict:
    """Couriers see their own summary; payout managers see anyone's."""
    if actor.pk != courier.pk:
        require_permission(actor, Permission.MANAGE_COURIER_PAYOUTS)
    else:
        require_permission(actor, Permission.VIEW_COURIER_EARNINGS)
    return FinancialReportService.courier_financials(courier)
