"""
FINANCE App - Courier Ledger for Flash Express

Every courier balance movement goes through CourierLedger:
- Earnings credited when a shipment is DELIVERED (same DB transaction)
- Manual and failed-delivery penalties
- Withdrawal requests (pending) and their processing (debit)
- Commission settings & restriction management

All operations use transaction.atomic() and lock the courier's stats
row with select_for_update() before touching the balance.
"""

import logging
from decimal import Decimal
from typing import Optional

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from core.exceptions import (
    CourierNotFoundError,
    InvalidAmountError,
    PenaltyNotApplicableError,
    TransactionAlreadyProcessedError,
    TransactionNotFoundError,
)
from core.models import UserRole
from core.permissions import Permission, has_permission, require_permission
from core.utils import parse_amount, quantize_money
from finance.models import (
    CommissionType,
    CourierStats,
    CourierTransaction,
    CourierTransactionStatus,
    CourierTransactionType,
)

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')


class CourierLedger:
    """
    Service class for courier ledger operations.

    Invariant: CourierStats.current_balance == folded_balance(courier).
    """

    # ===========================================
    # Stats access
    # ===========================================

    @staticmethod
    def _ensure_courier(courier):
        if courier is None or courier.role != UserRole.COURIER:
            raise CourierNotFoundError(getattr(courier, 'pk', None))

    @staticmethod
    def get_stats(courier) -> CourierStats:
        """Return the courier's stats, creating them with default commission settings."""
        CourierLedger._ensure_courier(courier)
        stats, created = CourierStats.objects.get_or_create(
            courier=courier,
            defaults={
                'commission_type': settings.DEFAULT_COURIER_COMMISSION_TYPE,
                'commission_value': settings.DEFAULT_COURIER_COMMISSION_VALUE,
            }
        )
        if created:
            logger.info(f"[LEDGER] Created default stats for courier {courier.pk}")
        return stats

    @staticmethod
    def _locked_stats(courier) -> CourierStats:
        # Must be called inside transaction.atomic
        CourierLedger.get_stats(courier)
        return CourierStats.objects.select_for_update().get(courier=courier)

    @staticmethod
    def folded_balance(courier) -> Decimal:
        """Sum of all PROCESSED transaction amounts for the courier."""
        total = CourierTransaction.objects.filter(
            courier=courier,
            status=CourierTransactionStatus.PROCESSED,
        ).aggregate(total=Sum('amount'))['total']
        return quantize_money(total) if total is not None else ZERO

    # ===========================================
    # Delivery outcomes (called by the state machine)
    # ===========================================

    @staticmethod
    @transaction.atomic
    def credit_earning(courier, amount: Decimal, shipment) -> Optional[CourierTransaction]:
        """
        Credit a courier for a delivered shipment.

        Runs inside the caller's transaction when the shipment is marked
        DELIVERED, so the status change and the credit commit together.
        A zero commission records the delivery without a transaction.

        Returns:
            The EARNING transaction, or None when amount is zero
        """
        amount = Decimal(amount or 0)
        if amount < 0:
            raise InvalidAmountError("Earning amount cannot be negative", 'amount', amount)

        stats = CourierLedger._locked_stats(courier)
        now = timezone.now()

        tx = None
        if amount > 0:
            tx = CourierTransaction.objects.create(
                courier=courier,
                shipment=shipment,
                transaction_type=CourierTransactionType.EARNING,
                status=CourierTransactionStatus.PROCESSED,
                amount=amount,
                description=f"Commission for shipment {shipment.pk}",
                processed_at=now,
            )
            stats.total_earnings += amount
            stats.current_balance += amount

        stats.deliveries_completed += 1
        stats.consecutive_failures = 0
        stats.last_delivery_date = shipment.delivery_date or now
        stats.save()

        logger.info(
            f"[LEDGER] Courier {courier.pk} credited {amount} EGP for {shipment.pk} "
            f"(balance {stats.current_balance})"
        )
        return tx

    @staticmethod
    @transaction.atomic
    def record_delivery_failure(courier, shipment) -> CourierStats:
        """
        Count a failed delivery against the courier.

        Reaching COURIER_FAILURE_LIMIT consecutive failures restricts the
        courier from new assignments. No money moves.
        """
        stats = CourierLedger._locked_stats(courier)
        stats.deliveries_failed += 1
        stats.consecutive_failures += 1

        limit = settings.COURIER_FAILURE_LIMIT
        if limit and stats.consecutive_failures >= limit and not stats.is_restricted:
            stats.is_restricted = True
            stats.restriction_reason = f"Exceeded failure limit of {limit}."
            logger.warning(
                f"[LEDGER] Courier {courier.pk} auto-restricted after "
                f"{stats.consecutive_failures} consecutive failures"
            )

        stats.save()
        return stats

    # ===========================================
    # Penalties
    # ===========================================

    @staticmethod
    @transaction.atomic
    def apply_manual_penalty(actor, courier, amount, reason: str,
                             shipment=None, failed_delivery: bool = False) -> CourierTransaction:
        """
        Deduct a penalty from a courier's balance and total earnings.

        Raises:
            PermissionDeniedError: actor cannot manage courier payouts
            InvalidAmountError: amount <= 0 or empty reason
        """
        require_permission(actor, Permission.MANAGE_COURIER_PAYOUTS)
        CourierLedger._ensure_courier(courier)

        amount = parse_amount(amount, allow_zero=False)
        reason = (reason or '').strip()
        if not reason:
            raise InvalidAmountError("A penalty reason is required", 'reason', reason)

        stats = CourierLedger._locked_stats(courier)
        tx = CourierTransaction.objects.create(
            courier=courier,
            shipment=shipment,
            transaction_type=CourierTransactionType.PENALTY,
            status=CourierTransactionStatus.PROCESSED,
            amount=-amount,  # Stored as negative
            description=reason[:255],
            is_failed_delivery_penalty=failed_delivery,
            processed_at=timezone.now(),
            processed_by=actor,
        )
        stats.current_balance -= amount
        stats.total_earnings -= amount
        stats.save(update_fields=['current_balance', 'total_earnings', 'updated_at'])

        logger.info(
            f"[LEDGER] Penalty of {amount} EGP applied to courier {courier.pk} "
            f"by {actor.pk}: {reason}"
        )
        return tx

    @staticmethod
    @transaction.atomic
    def apply_failed_delivery_penalty(actor, shipment, description: str = '') -> CourierTransaction:
        """
        Charge the courier the declared package value of a failed delivery.

        The shipment row is locked so concurrent calls charge at most once.
        Manual penalties linked to the same shipment do not count.

        Raises:
            PenaltyNotApplicableError: shipment not DELIVERY_FAILED, no courier,
                or already penalized
            InvalidAmountError: package value is zero
        """
        from logistics.models import Shipment, ShipmentStatus

        require_permission(actor, Permission.MANAGE_COURIER_PAYOUTS)

        shipment = Shipment.objects.select_for_update(of=('self',)).select_related(
            'courier'
        ).get(pk=shipment.pk)

        if shipment.status != ShipmentStatus.DELIVERY_FAILED:
            raise PenaltyNotApplicableError(shipment.pk, f"status is {shipment.status}")
        if shipment.courier_id is None:
            raise PenaltyNotApplicableError(shipment.pk, "no courier assigned")
        if CourierTransaction.objects.filter(
            shipment=shipment,
            is_failed_delivery_penalty=True,
        ).exists():
            raise PenaltyNotApplicableError(shipment.pk, "penalty already applied")

        reason = description or f"Failed delivery penalty for shipment {shipment.pk}"
        return CourierLedger.apply_manual_penalty(
            actor, shipment.courier, shipment.package_value, reason,
            shipment=shipment, failed_delivery=True,
        )

    # ===========================================
    # Payouts
    # ===========================================

    @staticmethod
    @transaction.atomic
    def request_payout(actor, courier, amount) -> CourierTransaction:
        """
        Create a PENDING withdrawal request.

        The balance is not reserved: it only drops when an admin
        processes the request.

        Raises:
            PermissionDeniedError: actor is neither the courier nor a payout manager
            InvalidAmountError: amount <= 0 or above current balance
        """
        if actor.pk == courier.pk:
            require_permission(actor, Permission.VIEW_COURIER_EARNINGS)
        else:
            require_permission(actor, Permission.MANAGE_COURIER_PAYOUTS)
        CourierLedger._ensure_courier(courier)

        amount = parse_amount(amount, allow_zero=False)
        stats = CourierLedger._locked_stats(courier)
        if amount > stats.current_balance:
            raise InvalidAmountError(
                f"Requested {amount} EGP exceeds balance of {stats.current_balance} EGP",
                'amount', amount
            )

        tx = CourierTransaction.objects.create(
            courier=courier,
            transaction_type=CourierTransactionType.WITHDRAWAL_REQUEST,
            status=CourierTransactionStatus.PENDING,
            amount=-amount,  # Stored as negative
            description=f"Withdrawal request of {amount} EGP",
        )
        logger.info(f"[LEDGER] Courier {courier.pk} requested payout of {amount} EGP ({tx.pk})")
        return tx

    @staticmethod
    @transaction.atomic
    def process_payout(actor, transaction_id) -> CourierTransaction:
        """
        Mark a withdrawal request PROCESSED and debit the courier's balance.

        Raises:
            TransactionNotFoundError: unknown id or not a withdrawal request
            TransactionAlreadyProcessedError: request already processed
            InvalidAmountError: balance no longer covers the request
        """
        require_permission(actor, Permission.MANAGE_COURIER_PAYOUTS)

        try:
            tx = CourierTransaction.objects.select_for_update().get(pk=transaction_id)
        except (CourierTransaction.DoesNotExist, ValidationError, ValueError):
            raise TransactionNotFoundError(transaction_id)

        if tx.transaction_type != CourierTransactionType.WITHDRAWAL_REQUEST:
            raise TransactionNotFoundError(transaction_id)
        if tx.status == CourierTransactionStatus.PROCESSED:
            raise TransactionAlreadyProcessedError(transaction_id)

        amount = -tx.amount
        stats = CourierLedger._locked_stats(tx.courier)

        # Re-verify balance
        if stats.current_balance < amount:
            raise InvalidAmountError(
                f"Balance of {stats.current_balance} EGP no longer covers {amount} EGP",
                'amount', amount
            )

        stats.current_balance -= amount
        stats.save(update_fields=['current_balance', 'updated_at'])

        tx.status = CourierTransactionStatus.PROCESSED
        tx.processed_at = timezone.now()
        tx.processed_by = actor
        tx.save(update_fields=['status', 'processed_at', 'processed_by'])

        logger.info(
            f"[LEDGER] Payout {tx.pk} of {amount} EGP processed for courier "
            f"{tx.courier_id} by {actor.pk}"
        )
        return tx

    # ===========================================
    # Settings & restriction
    # ===========================================

    @staticmethod
    @transaction.atomic
    def update_commission_settings(actor, courier, commission_type: str = None,
                                   commission_value=None) -> CourierStats:
        """
        Change how a courier is paid. Affects future assignments only.

        Raises:
            InvalidAmountError: negative value, percentage above 100, unknown type
        """
        require_permission(actor, Permission.MANAGE_COURIER_PAYOUTS)
        stats = CourierLedger._locked_stats(courier)

        if commission_type is not None:
            if commission_type not in CommissionType.values:
                raise InvalidAmountError(
                    f"Unknown commission type {commission_type}", 'commission_type', commission_type
                )
            stats.commission_type = commission_type
        if commission_value is not None:
            stats.commission_value = parse_amount(commission_value, 'commission_value')

        if (stats.commission_type == CommissionType.PERCENTAGE
                and stats.commission_value > Decimal('100')):
            raise InvalidAmountError(
                "Percentage commission cannot exceed 100", 'commission_value', stats.commission_value
            )

        stats.save(update_fields=['commission_type', 'commission_value', 'updated_at'])
        logger.info(
            f"[LEDGER] Commission for courier {courier.pk} set to "
            f"{stats.commission_type} {stats.commission_value}"
        )
        return stats

    @staticmethod
    @transaction.atomic
    def set_restriction(actor, courier, is_restricted: bool, reason: str = '') -> CourierStats:
        """Restrict or lift restriction; lifting also resets the failure streak."""
        require_permission(actor, Permission.MANAGE_COURIER_PAYOUTS)
        stats = CourierLedger._locked_stats(courier)

        stats.is_restricted = bool(is_restricted)
        if stats.is_restricted:
            stats.restriction_reason = (reason or 'Restricted by administrator')[:255]
        else:
            stats.restriction_reason = ''
            stats.consecutive_failures = 0
        stats.save()

        logger.info(
            f"[LEDGER] Courier {courier.pk} restriction={stats.is_restricted} by {actor.pk}"
        )
        return stats


def visible_transactions(user):
    """Courier transactions the user may list: own rows, or all for payout managers."""
    queryset = CourierTransaction.objects.select_related('shipment')
    if has_permission(user, Permission.MANAGE_COURIER_PAYOUTS):
        return queryset
    if has_permission(user, Permission.VIEW_COURIER_EARNINGS):
        return queryset.filter(courier=user)
    return queryset.none()
