"""
LOGISTICS App - Shipment Model for Flash Express

Handles: Shipments, status history, fee snapshot
"""

import secrets
from datetime import datetime
from decimal import Decimal
from typing import Optional

from django.conf import settings
from django.db import models
from django.utils import timezone


class ShipmentStatus(models.TextChoices):
    """Shipment lifecycle status."""
    WAITING_FOR_PACKAGING = 'WAITING_FOR_PACKAGING', 'Waiting for Packaging'
    PACKAGED_AND_WAITING_FOR_ASSIGNMENT = 'PACKAGED_AND_WAITING_FOR_ASSIGNMENT', 'Packaged and Waiting for Assignment'
    ASSIGNED_TO_COURIER = 'ASSIGNED_TO_COURIER', 'Assigned to Courier'
    IN_TRANSIT = 'IN_TRANSIT', 'In Transit'
    OUT_FOR_DELIVERY = 'OUT_FOR_DELIVERY', 'Out for Delivery'
    DELIVERED = 'DELIVERED', 'Delivered'
    DELIVERY_FAILED = 'DELIVERY_FAILED', 'Delivery Failed'
    RETURN_REQUESTED = 'RETURN_REQUESTED', 'Return Requested'
    RETURN_IN_PROGRESS = 'RETURN_IN_PROGRESS', 'Return in Progress'
    RETURNED = 'RETURNED', 'Returned'


TERMINAL_STATUSES = frozenset({
    ShipmentStatus.DELIVERED,
    ShipmentStatus.DELIVERY_FAILED,
    ShipmentStatus.RETURNED,
})

# Fees can no longer be edited once money has (or would have) moved
FEE_LOCKED_STATUSES = frozenset({
    ShipmentStatus.DELIVERED,
    ShipmentStatus.DELIVERY_FAILED,
})

# Reporting bucket name used by dashboards
PENDING_ASSIGNMENT = 'PENDING_ASSIGNMENT'


def status_bucket(status: str) -> str:
    """Collapse statuses into dashboard buckets (only PENDING_ASSIGNMENT differs)."""
    if status == ShipmentStatus.PACKAGED_AND_WAITING_FOR_ASSIGNMENT:
        return PENDING_ASSIGNMENT
    return status


class PaymentMethod(models.TextChoices):
    """How the recipient pays."""
    COD = 'COD', 'Cash on Delivery'
    TRANSFER = 'TRANSFER', 'Bank / Wallet Transfer'


class City(models.TextChoices):
    """Destination cities (first three letters prefix the tracking id)."""
    CAIRO = 'CAIRO', 'Cairo'
    GIZA = 'GIZA', 'Giza'
    ALEXANDRIA = 'ALEXANDRIA', 'Alexandria'
    OTHER = 'OTHER', 'Other'


class ShipmentPriority(models.TextChoices):
    STANDARD = 'STANDARD', 'Standard'
    URGENT = 'URGENT', 'Urgent'
    EXPRESS = 'EXPRESS', 'Express'


def generate_shipment_id(city: str, when: Optional[datetime] = None) -> str:
    """Tracking id: <CITY3>-<YYMMDD>-<6 hex>, e.g. CAI-261019-4F2A9C."""
    when = timezone.localtime(when or timezone.now())
    prefix = (city or City.OTHER)[:3].upper()
    return f"{prefix}-{when:%y%m%d}-{secrets.token_hex(3).upper()}"


class Shipment(models.Model):
    """
    A package moving from a client to a recipient.

    Key Business Logic:
    - status only changes through logistics.services.state_machine
    - status_history is append-only, timestamps never go backwards,
      and its last entry always matches status
    - delivery_date is set once, when DELIVERED is recorded
    - client_flat_rate_fee / courier_commission are stamped on assignment
      and frozen once DELIVERED or DELIVERY_FAILED
    """

    id = models.CharField(max_length=32, primary_key=True, editable=False)

    # Actors
    client = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='client_shipments',
        verbose_name="Client"
    )
    courier = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='courier_shipments',
        verbose_name="Courier"
    )

    # Recipient & route
    recipient_name = models.CharField(max_length=150, verbose_name="Recipient name")
    recipient_phone = models.CharField(max_length=20, verbose_name="Recipient phone")
    pickup_address = models.TextField(blank=True, verbose_name="Pickup address")
    dropoff_address = models.TextField(verbose_name="Delivery address")
    destination_city = models.CharField(
        max_length=20,
        choices=City.choices,
        default=City.CAIRO,
        verbose_name="Destination city"
    )

    # Package
    package_description = models.CharField(max_length=255, blank=True, verbose_name="Package description")
    priority = models.CharField(
        max_length=10,
        choices=ShipmentPriority.choices,
        default=ShipmentPriority.STANDARD,
        verbose_name="Priority"
    )

    # Pricing
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        verbose_name="Price (EGP)"
    )
    package_value = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal('0.00'),
        verbose_name="Declared value (EGP)"
    )
    payment_method = models.CharField(
        max_length=10,
        choices=PaymentMethod.choices,
        default=PaymentMethod.COD,
        verbose_name="Payment method"
    )
    client_flat_rate_fee = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        verbose_name="Client fee (EGP)"
    )
    courier_commission = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        verbose_name="Courier commission (EGP)"
    )

    # Lifecycle
    status = models.CharField(
        max_length=40,
        choices=ShipmentStatus.choices,
        default=ShipmentStatus.WAITING_FOR_PACKAGING,
        verbose_name="Status"
    )
    status_history = models.JSONField(default=list, blank=True, verbose_name="Status history")
    failure_reason = models.CharField(max_length=255, blank=True, verbose_name="Failure reason")

    # Timestamps
    creation_date = models.DateTimeField(default=timezone.now, editable=False)
    delivery_date = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Shipment"
        verbose_name_plural = "Shipments"
        ordering = ['-creation_date']
        indexes = [
            models.Index(fields=['status', 'creation_date'], name='shipment_status_created_idx'),
            models.Index(fields=['client', 'status'], name='shipment_client_status_idx'),
            models.Index(fields=['courier', 'status'], name='shipment_courier_status_idx'),
        ]

    def __str__(self):
        return f"{self.id} | {self.get_status_display()}"

    def save(self, *args, **kwargs):
        # Tracking id is generated once and never changes
        if not self.id:
            self.id = generate_shipment_id(self.destination_city, self.creation_date)
            while Shipment.objects.filter(pk=self.id).exists():
                self.id = generate_shipment_id(self.destination_city, self.creation_date)
        if not self.status_history:
            self.status_history = [{
                'status': self.status,
                'timestamp': self.creation_date.isoformat(),
            }]
        super().save(*args, **kwargs)

    # ============================================
    # Status history
    # ============================================

    def last_status_change(self) -> datetime:
        """Timestamp of the latest history entry (creation_date if empty)."""
        if not self.status_history:
            return self.creation_date
        return datetime.fromisoformat(self.status_history[-1]['timestamp'])

    def append_status(self, status: str, at: Optional[datetime] = None) -> datetime:
        """
        Set status and append a history entry.

        The recorded timestamp is clamped to the previous entry so the
        history stays ordered even if the clock moves backwards.
        """
        at = at or timezone.now()
        previous = self.last_status_change()
        if at < previous:
            at = previous
        self.status = status
        self.status_history = list(self.status_history) + [{
            'status': status,
            'timestamp': at.isoformat(),
        }]
        return at

    def has_reached(self, status: str) -> bool:
        return any(entry['status'] == status for entry in self.status_history)

    # ============================================
    # Derived figures
    # ============================================

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def fees_locked(self) -> bool:
        return self.status in FEE_LOCKED_STATUSES

    @property
    def net_profit(self) -> Optional[Decimal]:
        """Client fee minus courier commission, once both are known."""
        if self.client_flat_rate_fee is None or self.courier_commission is None:
            return None
        return self.client_flat_rate_fee - self.courier_commission
