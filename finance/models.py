"""
FINANCE App - Courier Ledger models for Flash Express

Handles: Courier stats (balance, commission settings, restriction),
Courier transactions (earnings, penalties, withdrawal requests)
"""

import uuid
from decimal import Decimal

from django.conf import settings
from django.db import models


class CommissionType(models.TextChoices):
    """How a courier is paid per delivered shipment."""
    FLAT = 'FLAT', 'Flat amount'
    PERCENTAGE = 'PERCENTAGE', 'Percentage of price'


class CourierStats(models.Model):
    """
    Per-courier running totals and commission settings.

    Key Business Logic:
    - current_balance always equals the sum of PROCESSED transaction
      amounts for the courier (debits are stored negative)
    - only finance.services.CourierLedger mutates this row, under
      select_for_update()
    - is_restricted blocks new assignments, never running ones
    """

    courier = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        primary_key=True,
        related_name='courier_stats',
        verbose_name="Courier"
    )

    # Commission settings (affect future assignments only)
    commission_type = models.CharField(
        max_length=12,
        choices=CommissionType.choices,
        default=CommissionType.FLAT,
        verbose_name="Commission type"
    )
    commission_value = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal('30.00'),
        verbose_name="Commission value (EGP or %)"
    )

    # Running totals
    total_earnings = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
        verbose_name="Total earnings (EGP)"
    )
    current_balance = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
        verbose_name="Current balance (EGP)"
    )
    deliveries_completed = models.PositiveIntegerField(default=0)
    deliveries_failed = models.PositiveIntegerField(default=0)
    consecutive_failures = models.PositiveIntegerField(default=0)
    last_delivery_date = models.DateTimeField(null=True, blank=True)

    # Restriction
    is_restricted = models.BooleanField(default=False, verbose_name="Restricted")
    restriction_reason = models.CharField(max_length=255, blank=True, verbose_name="Restriction reason")

    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Courier stats"
        verbose_name_plural = "Courier stats"

    def __str__(self):
        return f"{self.courier_id} | {self.current_balance} EGP"

    @property
    def success_rate(self) -> float:
        """Percentage of finished deliveries that succeeded."""
        finished = self.deliveries_completed + self.deliveries_failed
        if finished == 0:
            return 0.0
        return round(self.deliveries_completed * 100 / finished, 1)


class CourierTransactionType(models.TextChoices):
    """Transaction type enumeration."""
    # Credits (+)
    EARNING = 'EARNING', 'Delivery earning'

    # Debits (-)
    PENALTY = 'PENALTY', 'Penalty'
    WITHDRAWAL_REQUEST = 'WITHDRAWAL_REQUEST', 'Withdrawal request'
    PAYOUT_PROCESSED = 'PAYOUT_PROCESSED', 'Payout processed'


class CourierTransactionStatus(models.TextChoices):
    PENDING = 'PENDING', 'Pending'
    PROCESSED = 'PROCESSED', 'Processed'


class CourierTransaction(models.Model):
    """
    Courier ledger entry.

    All balance movements must create a CourierTransaction for audit trail.
    Amount is positive (credit) or negative (debit). The courier reference
    carries no database constraint so history outlives the user row.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    courier = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        related_name='courier_transactions',
        verbose_name="Courier"
    )
    shipment = models.ForeignKey(
        'logistics.Shipment',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='courier_transactions',
        verbose_name="Related shipment"
    )

    transaction_type = models.CharField(
        max_length=20,
        choices=CourierTransactionType.choices,
        verbose_name="Type"
    )
    status = models.CharField(
        max_length=10,
        choices=CourierTransactionStatus.choices,
        default=CourierTransactionStatus.PROCESSED,
        verbose_name="Status"
    )
    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        verbose_name="Amount (EGP)"
    )
    description = models.CharField(max_length=255, blank=True, verbose_name="Description")
    # Package-value charge for a DELIVERY_FAILED shipment (at most one per shipment)
    is_failed_delivery_penalty = models.BooleanField(default=False, verbose_name="Failed delivery penalty")

    timestamp = models.DateTimeField(auto_now_add=True)
    processed_at = models.DateTimeField(null=True, blank=True)
    processed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='processed_courier_transactions',
        verbose_name="Processed by"
    )

    class Meta:
        verbose_name = "Courier transaction"
        verbose_name_plural = "Courier transactions"
        ordering = ['-timestamp']
        indexes = [
            models.Index(fields=['courier', 'timestamp'], name='courier_tx_courier_ts_idx'),
            models.Index(fields=['transaction_type', 'status'], name='courier_tx_type_status_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['shipment'],
                condition=models.Q(is_failed_delivery_penalty=True),
                name='courier_tx_one_failed_delivery_penalty',
            ),
        ]

    def __str__(self):
        sign = '+' if self.amount >= 0 else ''
        return f"{self.courier_id} | {sign}{self.amount} EGP | {self.transaction_type}"

    @property
    def is_pending(self) -> bool:
        return self.status == CourierTransactionStatus.PENDING
