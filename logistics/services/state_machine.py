"""
Shipment State Machine for Flash Express

Moves shipments along the lifecycle graph and applies the side effects
of each step:
- ASSIGNED_TO_COURIER: courier must be unrestricted, fee snapshot stamped
- DELIVERED: delivery_date set, courier credited in the same transaction
- DELIVERY_FAILED: failure counted against the courier (auto-restriction)

Every mutation locks the shipment row and works on a fresh copy, so a
failed call leaves both the database and the caller's instance untouched.
"""

import logging
from datetime import timedelta

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from core.exceptions import (
    BusinessException,
    CourierNotFoundError,
    CourierRestrictedError,
    InvalidTransitionError,
    PermissionDeniedError,
    ShipmentLockedError,
    ShipmentNotFoundError,
)
from core.models import UserRole
from core.permissions import Permission, has_permission, require_permission
from core.utils import parse_amount
from finance.services import CourierLedger
from logistics.events import broadcast_shipment_status
from logistics.models import Shipment, ShipmentStatus, TERMINAL_STATUSES
from logistics.services.rate_policy import compute_client_fee, compute_courier_commission
from logistics.visibility import can_mutate_shipment

logger = logging.getLogger(__name__)


class ShipmentWorkflow:
    """Workflow rules for Shipment state transitions."""

    ALLOWED_TRANSITIONS = {
        ShipmentStatus.WAITING_FOR_PACKAGING: [
            ShipmentStatus.PACKAGED_AND_WAITING_FOR_ASSIGNMENT,
        ],
        ShipmentStatus.PACKAGED_AND_WAITING_FOR_ASSIGNMENT: [
            ShipmentStatus.ASSIGNED_TO_COURIER,
        ],
        ShipmentStatus.ASSIGNED_TO_COURIER: [
            ShipmentStatus.IN_TRANSIT,
            ShipmentStatus.RETURN_REQUESTED,
        ],
        ShipmentStatus.IN_TRANSIT: [
            ShipmentStatus.OUT_FOR_DELIVERY,
            ShipmentStatus.RETURN_REQUESTED,
        ],
        ShipmentStatus.OUT_FOR_DELIVERY: [
            ShipmentStatus.DELIVERED,
            ShipmentStatus.DELIVERY_FAILED,
            ShipmentStatus.RETURN_REQUESTED,
        ],
        ShipmentStatus.RETURN_REQUESTED: [ShipmentStatus.RETURN_IN_PROGRESS],
        ShipmentStatus.RETURN_IN_PROGRESS: [ShipmentStatus.RETURNED],
        ShipmentStatus.DELIVERED: [],  # Final state
        ShipmentStatus.DELIVERY_FAILED: [],  # Final state
        ShipmentStatus.RETURNED: [],  # Final state
    }

    # Any one of the listed capabilities allows moving INTO the status
    REQUIRED_PERMISSIONS = {
        ShipmentStatus.PACKAGED_AND_WAITING_FOR_ASSIGNMENT: (Permission.ASSIGN_SHIPMENTS,),
        ShipmentStatus.ASSIGNED_TO_COURIER: (Permission.ASSIGN_SHIPMENTS,),
        ShipmentStatus.IN_TRANSIT: (Permission.UPDATE_SHIPMENT_STATUS,),
        ShipmentStatus.OUT_FOR_DELIVERY: (Permission.UPDATE_SHIPMENT_STATUS,),
        ShipmentStatus.DELIVERED: (Permission.UPDATE_SHIPMENT_STATUS,),
        ShipmentStatus.DELIVERY_FAILED: (Permission.UPDATE_SHIPMENT_STATUS,),
        ShipmentStatus.RETURN_REQUESTED: (Permission.REQUEST_RETURNS,),
        ShipmentStatus.RETURN_IN_PROGRESS: (Permission.MANAGE_RETURNS,),
        ShipmentStatus.RETURNED: (Permission.MANAGE_RETURNS, Permission.UPDATE_SHIPMENT_STATUS),
    }

    @classmethod
    def validate_transition(cls, current_status: str, new_status: str) -> None:
        """
        Validate if a status transition is allowed.

        Raises:
            InvalidTransitionError: If the edge is not in the graph
                (self-transitions and unknown statuses included)
        """
        allowed_transitions = cls.ALLOWED_TRANSITIONS.get(current_status, [])

        if new_status not in allowed_transitions:
            raise InvalidTransitionError(
                current_status=current_status,
                attempted_status=new_status,
                entity_type="shipment"
            )

    @classmethod
    def can_transition_to(cls, current_status: str, new_status: str) -> bool:
        try:
            cls.validate_transition(current_status, new_status)
            return True
        except InvalidTransitionError:
            return False

    @classmethod
    def check_permission(cls, actor, new_status: str) -> None:
        required = cls.REQUIRED_PERMISSIONS.get(new_status, ())
        if not any(has_permission(actor, permission) for permission in required):
            action = required[0] if required else 'update_shipment_status'
            raise PermissionDeniedError(str(action), actor)


def _get_locked_shipment(actor, shipment_id: str) -> Shipment:
    try:
        shipment = Shipment.objects.select_for_update(of=('self',)).select_related(
            'client', 'courier'
        ).get(pk=shipment_id)
    except Shipment.DoesNotExist:
        raise ShipmentNotFoundError(shipment_id)

    # Shipments outside the actor's scope look like missing ones
    if not can_mutate_shipment(actor, shipment):
        raise ShipmentNotFoundError(shipment_id)
    return shipment


def _schedule_broadcast(shipment_id: str, status: str, timestamp: str):
    transaction.on_commit(lambda: broadcast_shipment_status(shipment_id, status, timestamp))


# ===========================================
# CREATION
# ===========================================

@transaction.atomic
def create_shipment(actor, client=None, **data) -> Shipment:
    """
    Create a shipment in WAITING_FOR_PACKAGING.

    Clients create for themselves; actors holding
    create_shipments_for_others may pass another client.

    Raises:
        PermissionDeniedError: missing create capability
        InvalidAmountError: price <= 0 or package_value < 0
    """
    require_permission(actor, Permission.CREATE_SHIPMENTS)

    if client is None:
        client = actor
    if client.pk != actor.pk:
        require_permission(actor, Permission.CREATE_SHIPMENTS_FOR_OTHERS)
    if client.role != UserRole.CLIENT:
        raise BusinessException(
            "Shipments must belong to a client account",
            "INVALID_CLIENT",
            {"client_id": str(client.pk)},
        )

    data['price'] = parse_amount(data.get('price'), 'price', allow_zero=False)
    data['package_value'] = parse_amount(data.get('package_value', 0), 'package_value')

    shipment = Shipment(client=client, **data)
    shipment.save()

    _schedule_broadcast(shipment.pk, shipment.status, shipment.status_history[-1]['timestamp'])
    logger.info(f"[SHIPMENT] {shipment.pk} created by {actor.pk} for client {client.pk}")
    return shipment


# ===========================================
# TRANSITIONS
# ===========================================

def _assign_courier(shipment: Shipment, courier) -> None:
    courier = courier or shipment.courier
    if courier is None:
        raise BusinessException(
            "A courier is required to assign a shipment",
            "COURIER_REQUIRED",
            {"shipment_id": shipment.pk},
        )
    if courier.role != UserRole.COURIER or not courier.is_active:
        raise CourierNotFoundError(courier.pk)

    stats = CourierLedger.get_stats(courier)
    if stats.is_restricted:
        raise CourierRestrictedError(courier.pk, stats.restriction_reason)

    shipment.courier = courier

    # Snapshot fees once; manual edits survive re-assignment
    if shipment.client_flat_rate_fee is None:
        shipment.client_flat_rate_fee = compute_client_fee(shipment, shipment.client)
    if shipment.courier_commission is None:
        shipment.courier_commission = compute_courier_commission(shipment, stats)


@transaction.atomic
def transition_shipment(actor, shipment_id: str, target_status: str,
                        courier=None, failure_reason: str = '') -> Shipment:
    """
    Move a shipment to target_status and apply the step's side effects.

    Args:
        actor: User performing the change
        shipment_id: Tracking id
        target_status: ShipmentStatus value
        courier: Courier user (ASSIGNED_TO_COURIER only)
        failure_reason: Free text kept on DELIVERY_FAILED

    Returns:
        The updated Shipment (a fresh instance)

    Raises:
        ShipmentNotFoundError, InvalidTransitionError, PermissionDeniedError,
        CourierRestrictedError, CourierNotFoundError
    """
    shipment = _get_locked_shipment(actor, shipment_id)
    previous_status = shipment.status

    ShipmentWorkflow.validate_transition(previous_status, target_status)
    ShipmentWorkflow.check_permission(actor, target_status)

    if target_status == ShipmentStatus.ASSIGNED_TO_COURIER:
        _assign_courier(shipment, courier)

    at = shipment.append_status(target_status)

    if target_status == ShipmentStatus.DELIVERED:
        shipment.delivery_date = at
        shipment.save()
        # Same transaction: a failed credit rolls the status back too
        CourierLedger.credit_earning(
            shipment.courier, shipment.courier_commission or 0, shipment
        )
    elif target_status == ShipmentStatus.DELIVERY_FAILED:
        shipment.failure_reason = (failure_reason or '')[:255]
        shipment.save()
        if shipment.courier is not None:
            CourierLedger.record_delivery_failure(shipment.courier, shipment)
    else:
        shipment.save()

    _schedule_broadcast(shipment.pk, target_status, at.isoformat())
    logger.info(
        f"[SHIPMENT] {shipment.pk}: {previous_status} → {target_status} by {actor.pk}"
    )
    return shipment


# ===========================================
# FEE EDITS
# ===========================================

@transaction.atomic
def update_shipment_fees(actor, shipment_id: str, client_flat_rate_fee=None,
                         courier_commission=None) -> Shipment:
    """
    Manually override the fee snapshot of a shipment.

    Raises:
        ShipmentLockedError: shipment is DELIVERED or DELIVERY_FAILED
        InvalidAmountError: negative or non-numeric value
    """
    require_permission(actor, Permission.EDIT_SHIPMENT_FEES)
    shipment = _get_locked_shipment(actor, shipment_id)

    if shipment.fees_locked:
        raise ShipmentLockedError(shipment.pk, shipment.status)

    update_fields = ['updated_at']
    if client_flat_rate_fee is not None:
        shipment.client_flat_rate_fee = parse_amount(client_flat_rate_fee, 'client_flat_rate_fee')
        update_fields.append('client_flat_rate_fee')
    if courier_commission is not None:
        shipment.courier_commission = parse_amount(courier_commission, 'courier_commission')
        update_fields.append('courier_commission')

    shipment.save(update_fields=update_fields)
    logger.info(
        f"[SHIPMENT] Fees of {shipment.pk} set to client={shipment.client_flat_rate_fee} "
        f"courier={shipment.courier_commission} by {actor.pk}"
    )
    return shipment


# ===========================================
# AGEING
# ===========================================

def _overdue_delta() -> timedelta:
    return timedelta(hours=settings.OVERDUE_AFTER_HOURS)


def is_overdue(shipment: Shipment, now=None) -> bool:
    """Non-terminal and older than OVERDUE_AFTER_HOURS (60h by default)."""
    now = now or timezone.now()
    if shipment.status in TERMINAL_STATUSES:
        return False
    return now - shipment.creation_date > _overdue_delta()


def overdue_shipments(now=None):
    now = now or timezone.now()
    return Shipment.objects.exclude(
        status__in=TERMINAL_STATUSES
    ).filter(creation_date__lt=now - _overdue_delta())


def days_in_phase(shipment: Shipment, now=None) -> int:
    """Whole days since the shipment entered its current status."""
    now = now or timezone.now()
    return max((now - shipment.last_status_change()).days, 0)
