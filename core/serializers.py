"""
Core App Serializers - User Management
"""

from rest_framework import serializers
from django.contrib.auth import get_user_model
from django.contrib.auth.password_validation import validate_password

from .models import UserRole

User = get_user_model()


class UserSerializer(serializers.ModelSerializer):
    """Serializer for User model (read operations)."""

    permissions = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = [
            'id', 'email', 'full_name', 'phone_number', 'role',
            'flat_rate_fee', 'permissions', 'is_active', 'date_joined'
        ]
        read_only_fields = ['id', 'flat_rate_fee', 'date_joined']

    def get_permissions(self, obj):
        from .permissions import get_capabilities
        return sorted(get_capabilities(obj))

    def to_representation(self, instance):
        data = super().to_representation(instance)
        # Fee policy is only meaningful (and shown) for clients
        if instance.role != UserRole.CLIENT:
            data.pop('flat_rate_fee', None)
        return data


class UserCreateSerializer(serializers.ModelSerializer):
    """Serializer for account creation by user managers."""

    password = serializers.CharField(
        write_only=True,
        required=True,
        validators=[validate_password]
    )

    class Meta:
        model = User
        fields = ['id', 'email', 'password', 'full_name', 'phone_number', 'role']
        read_only_fields = ['id']

    def create(self, validated_data):
        from finance.services import CourierLedger

        user = User.objects.create_user(
            email=validated_data['email'],
            password=validated_data['password'],
            full_name=validated_data.get('full_name', ''),
            phone_number=validated_data.get('phone_number', ''),
            role=validated_data.get('role', UserRole.CLIENT)
        )
        if user.role == UserRole.COURIER:
            CourierLedger.get_stats(user)
        return user


class FlatRateSerializer(serializers.Serializer):
    """Input for a client's flat rate fee change."""

    flat_rate_fee = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0)
