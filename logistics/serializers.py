"""
Logistics App Serializers - Shipments
"""

from rest_framework import serializers

from .models import City, PaymentMethod, Shipment, ShipmentPriority, status_bucket
from .visibility import project_shipment


class ShipmentSerializer(serializers.ModelSerializer):
    """
    Full serializer for Shipment model.

    Fee fields are dropped per caller in to_representation, so the
    serializer must always receive the request in its context.
    """

    client_name = serializers.CharField(source='client.full_name', read_only=True)
    courier_name = serializers.CharField(source='courier.full_name', read_only=True, default=None)
    net_profit = serializers.DecimalField(max_digits=10, decimal_places=2, read_only=True)
    status_bucket = serializers.SerializerMethodField()
    is_overdue = serializers.SerializerMethodField()
    days_in_phase = serializers.SerializerMethodField()

    class Meta:
        model = Shipment
        fields = [
            'id', 'client', 'client_name', 'courier', 'courier_name',
            'recipient_name', 'recipient_phone', 'pickup_address', 'dropoff_address',
            'destination_city', 'package_description', 'priority',
            'price', 'package_value', 'payment_method',
            'client_flat_rate_fee', 'courier_commission', 'net_profit',
            'status', 'status_bucket', 'status_history', 'failure_reason',
            'creation_date', 'delivery_date', 'is_overdue', 'days_in_phase',
        ]
        read_only_fields = fields

    def get_status_bucket(self, obj):
        return status_bucket(obj.status)

    def get_is_overdue(self, obj):
        from .services.state_machine import is_overdue
        return is_overdue(obj)

    def get_days_in_phase(self, obj):
        from .services.state_machine import days_in_phase
        return days_in_phase(obj)

    def to_representation(self, instance):
        data = super().to_representation(instance)
        request = self.context.get('request')
        return project_shipment(request.user, instance, data)


class ShipmentCreateSerializer(serializers.Serializer):
    """Input for a new shipment. Amount rules are enforced by the service."""

    client = serializers.UUIDField(required=False)
    recipient_name = serializers.CharField(max_length=150)
    recipient_phone = serializers.CharField(max_length=20)
    pickup_address = serializers.CharField(required=False, allow_blank=True, default='')
    dropoff_address = serializers.CharField()
    destination_city = serializers.ChoiceField(choices=City.choices, default=City.CAIRO)
    package_description = serializers.CharField(
        max_length=255, required=False, allow_blank=True, default=''
    )
    priority = serializers.ChoiceField(
        choices=ShipmentPriority.choices,
        default=ShipmentPriority.STANDARD
    )
    price = serializers.DecimalField(max_digits=10, decimal_places=2)
    package_value = serializers.DecimalField(max_digits=10, decimal_places=2, default=0)
    payment_method = serializers.ChoiceField(
        choices=PaymentMethod.choices,
        default=PaymentMethod.COD
    )


class ShipmentTransitionSerializer(serializers.Serializer):
    """Input for a status change; unknown statuses are rejected by the state machine."""

    status = serializers.CharField(max_length=40)
    courier = serializers.UUIDField(required=False, allow_null=True)
    failure_reason = serializers.CharField(
        max_length=255, required=False, allow_blank=True, default=''
    )


class ShipmentFeesSerializer(serializers.Serializer):
    """Manual fee override; negative values are rejected by the service."""

    client_flat_rate_fee = serializers.DecimalField(
        max_digits=10, decimal_places=2, required=False, allow_null=True
    )
    courier_commission = serializers.DecimalField(
        max_digits=10, decimal_places=2, required=False, allow_null=True
    )

    def validate(self, data):
        if data.get('client_flat_rate_fee') is None and data.get('courier_commission') is None:
            raise serializers.ValidationError(
                "Provide client_flat_rate_fee and/or courier_commission."
            )
        return data
