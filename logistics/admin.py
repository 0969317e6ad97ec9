"""
Django Admin configuration for LOGISTICS app.
"""

from django.contrib import admin
from .models import Shipment


@admin.register(Shipment)
class ShipmentAdmin(admin.ModelAdmin):
    """Read-mostly admin: status and fees change through the API services."""

    list_display = (
        'id',
        'client',
        'courier',
        'destination_city',
        'status',
        'price',
        'payment_method',
        'client_flat_rate_fee',
        'courier_commission',
        'creation_date',
        'delivery_date',
    )
    list_filter = ('status', 'payment_method', 'destination_city', 'priority')
    search_fields = ('id', 'recipient_name', 'recipient_phone', 'client__email', 'courier__email')
    ordering = ('-creation_date',)
    date_hierarchy = 'creation_date'

    readonly_fields = (
        'id',
        'status',
        'status_history',
        'client_flat_rate_fee',
        'courier_commission',
        'courier',
        'creation_date',
        'delivery_date',
        'failure_reason',
    )

    fieldsets = (
        ('Shipment', {
            'fields': ('id', 'client', 'courier', 'status', 'status_history')
        }),
        ('Recipient', {
            'fields': (
                'recipient_name', 'recipient_phone', 'pickup_address',
                'dropoff_address', 'destination_city',
            )
        }),
        ('Package', {
            'fields': ('package_description', 'priority', 'price', 'package_value', 'payment_method')
        }),
        ('Fees', {
            'fields': ('client_flat_rate_fee', 'courier_commission')
        }),
        ('Timeline', {
            'fields': ('creation_date', 'delivery_date', 'failure_reason')
        }),
    )

    def has_add_permission(self, request):
        """Shipments are created through the API (amount validation, history)."""
        return False
