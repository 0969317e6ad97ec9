"""
Finance App Serializers - Courier Ledger & Financial Reports
"""

from rest_framework import serializers

from .models import CommissionType, CourierStats, CourierTransaction


class CourierStatsSerializer(serializers.ModelSerializer):
    """Serializer for CourierStats model."""

    courier_name = serializers.CharField(source='courier.full_name', read_only=True)
    success_rate = serializers.ReadOnlyField()

    class Meta:
        model = CourierStats
        fields = [
            'courier', 'courier_name', 'commission_type', 'commission_value',
            'total_earnings', 'current_balance',
            'deliveries_completed', 'deliveries_failed', 'consecutive_failures',
            'success_rate', 'last_delivery_date',
            'is_restricted', 'restriction_reason', 'updated_at'
        ]
        read_only_fields = fields


class CourierTransactionSerializer(serializers.ModelSerializer):
    """Serializer for CourierTransaction model."""

    class Meta:
        model = CourierTransaction
        fields = [
            'id', 'courier', 'shipment', 'transaction_type', 'status', 'amount',
            'description', 'is_failed_delivery_penalty', 'timestamp', 'processed_at', 'processed_by'
        ]
        read_only_fields = fields


class PenaltySerializer(serializers.Serializer):
    """Input for a manual penalty. Amount rules are enforced by the ledger."""

    amount = serializers.DecimalField(max_digits=10, decimal_places=2)
    reason = serializers.CharField(max_length=255, allow_blank=True)
    shipment = serializers.CharField(max_length=32, required=False, allow_blank=True)


class PayoutRequestSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=10, decimal_places=2)


class CommissionSettingsSerializer(serializers.Serializer):
    commission_type = serializers.ChoiceField(choices=CommissionType.choices, required=False)
    commission_value = serializers.DecimalField(max_digits=10, decimal_places=2, required=False)


class RestrictionSerializer(serializers.Serializer):
    is_restricted = serializers.BooleanField()
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')


# ===========================================
# REPORTS
# ===========================================

class AdminFinancialsSerializer(serializers.Serializer):
    """Admin-wide figures over delivered shipments."""

    gross_revenue = serializers.DecimalField(max_digits=14, decimal_places=2)
    total_client_fees = serializers.DecimalField(max_digits=14, decimal_places=2)
    total_courier_payouts = serializers.DecimalField(max_digits=14, decimal_places=2)
    net_revenue = serializers.DecimalField(max_digits=14, decimal_places=2)
    total_orders = serializers.IntegerField()
    total_collected_money = serializers.DecimalField(max_digits=14, decimal_places=2)
    undelivered_packages_value = serializers.DecimalField(max_digits=14, decimal_places=2)
    failed_deliveries_value = serializers.DecimalField(max_digits=14, decimal_places=2)


class ClientFinancialsSerializer(serializers.Serializer):
    client_id = serializers.CharField()
    client_name = serializers.CharField()
    total_orders = serializers.IntegerField()
    order_sum = serializers.DecimalField(max_digits=14, decimal_places=2)
    flat_rate_fee = serializers.DecimalField(max_digits=10, decimal_places=2)


class CourierFinancialsSerializer(serializers.Serializer):
    courier_id = serializers.CharField()
    current_balance = serializers.DecimalField(max_digits=12, decimal_places=2)
    total_earnings = serializers.DecimalField(max_digits=12, decimal_places=2)
    deliveries_completed = serializers.IntegerField()
    deliveries_failed = serializers.IntegerField()
    success_rate = serializers.FloatField()
    pending_withdrawals = serializers.DecimalField(max_digits=12, decimal_places=2)
    total_penalties = serializers.DecimalField(max_digits=12, decimal_places=2)
    is_restricted = serializers.BooleanField()
