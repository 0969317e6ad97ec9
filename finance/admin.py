"""
Django Admin configuration for FINANCE app.
"""

from django.contrib import admin, messages

from core.exceptions import BusinessException
from .models import CourierStats, CourierTransaction, CourierTransactionStatus, CourierTransactionType
from .services import CourierLedger


@admin.register(CourierStats)
class CourierStatsAdmin(admin.ModelAdmin):
    """Admin for courier running totals. Balances change through the ledger only."""

    list_display = (
        'courier',
        'commission_type',
        'commission_value',
        'current_balance',
        'total_earnings',
        'deliveries_completed',
        'deliveries_failed',
        'is_restricted',
    )
    list_filter = ('commission_type', 'is_restricted')
    search_fields = ('courier__email', 'courier__full_name')

    readonly_fields = (
        'courier',
        'total_earnings',
        'current_balance',
        'deliveries_completed',
        'deliveries_failed',
        'consecutive_failures',
        'last_delivery_date',
        'is_restricted',
        'restriction_reason',
        'updated_at',
    )

    fieldsets = (
        ('Courier', {
            'fields': ('courier',)
        }),
        ('Commission', {
            'fields': ('commission_type', 'commission_value'),
            'description': 'Applies to shipments assigned after the change'
        }),
        ('Balance', {
            'fields': ('current_balance', 'total_earnings')
        }),
        ('Performance', {
            'fields': (
                'deliveries_completed', 'deliveries_failed', 'consecutive_failures',
                'last_delivery_date', 'is_restricted', 'restriction_reason',
            )
        }),
    )

    def has_add_permission(self, request):
        """Stats are created by the ledger."""
        return False

    def save_model(self, request, obj, form, change):
        # Route through the ledger so the same validation applies
        try:
            CourierLedger.update_commission_settings(
                request.user, obj.courier,
                commission_type=obj.commission_type,
                commission_value=obj.commission_value,
            )
        except BusinessException as e:
            self.message_user(request, e.message, messages.ERROR)


@admin.register(CourierTransaction)
class CourierTransactionAdmin(admin.ModelAdmin):
    """Admin for CourierTransaction with audit trail."""

    list_display = (
        'short_id',
        'courier',
        'transaction_type',
        'formatted_amount',
        'status',
        'shipment',
        'timestamp',
        'processed_at',
    )
    list_filter = ('transaction_type', 'status', 'is_failed_delivery_penalty', 'timestamp')
    search_fields = ('id', 'courier__email', 'description', 'shipment__id')
    ordering = ('-timestamp',)
    date_hierarchy = 'timestamp'

    readonly_fields = (
        'id',
        'courier',
        'shipment',
        'transaction_type',
        'status',
        'amount',
        'description',
        'is_failed_delivery_penalty',
        'timestamp',
        'processed_at',
        'processed_by',
    )

    actions = ['process_payouts']

    def short_id(self, obj):
        return str(obj.id)[:8]
    short_id.short_description = "ID"

    def formatted_amount(self, obj):
        sign = '+' if obj.amount >= 0 else ''
        return f"{sign}{obj.amount} EGP"
    formatted_amount.short_description = "Amount"

    def has_add_permission(self, request):
        """Transactions should be created programmatically only."""
        return False

    def has_delete_permission(self, request, obj=None):
        """Transactions cannot be deleted for audit trail."""
        return False

    @admin.action(description="Process selected withdrawal requests")
    def process_payouts(self, request, queryset):
        processed = 0
        pending = queryset.filter(
            transaction_type=CourierTransactionType.WITHDRAWAL_REQUEST,
            status=CourierTransactionStatus.PENDING,
        )
        for tx in pending:
            try:
                CourierLedger.process_payout(request.user, tx.pk)
                processed += 1
            except BusinessException as e:
                self.message_user(request, f"{str(tx.pk)[:8]}: {e.message}", messages.ERROR)
        self.message_user(request, f"{processed} payout(s) processed.", messages.SUCCESS)
