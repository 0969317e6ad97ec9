"""
Business exceptions for Flash Express.

Raised by the service layer, never coerced into return values.
The DRF handler at the bottom renders them as JSON error payloads.
"""

from typing import Dict, Any

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler


class BusinessException(Exception):
    """Base exception for business logic errors."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, code: str = "BUSINESS_ERROR", details: Dict[str, Any] = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class InvalidTransitionError(BusinessException):
    """Raised when a shipment status change is not an edge of the lifecycle graph."""

    def __init__(self, current_status: str, attempted_status: str, entity_type: str = "shipment"):
        message = f"Invalid transition for {entity_type}: cannot move from {current_status} to {attempted_status}"
        super().__init__(message, "INVALID_TRANSITION", {
            "current_status": current_status,
            "attempted_status": attempted_status,
            "entity_type": entity_type,
        })


class CourierRestrictedError(BusinessException):
    """Raised when assigning a shipment to a restricted courier."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, courier_id, reason: str = ""):
        message = f"Courier {courier_id} is restricted and cannot receive shipments"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, "COURIER_RESTRICTED", {
            "courier_id": str(courier_id),
            "reason": reason,
        })


class ShipmentLockedError(BusinessException):
    """Raised when editing fees of a shipment in DELIVERED or DELIVERY_FAILED."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, shipment_id: str, current_status: str):
        message = f"Fees of shipment {shipment_id} are locked in status {current_status}"
        super().__init__(message, "SHIPMENT_LOCKED", {
            "shipment_id": shipment_id,
            "status": current_status,
        })


class InvalidAmountError(BusinessException):
    """Raised when a monetary amount (or its accompanying reason) is not acceptable."""

    def __init__(self, message: str, field: str = "amount", value=None):
        super().__init__(message, "INVALID_AMOUNT", {
            "field": field,
            "value": None if value is None else str(value),
        })


class TransactionNotFoundError(BusinessException):
    """Raised when a payout transaction does not exist (or is not a withdrawal request)."""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, transaction_id):
        super().__init__(
            f"Withdrawal request {transaction_id} not found",
            "TRANSACTION_NOT_FOUND",
            {"transaction_id": str(transaction_id)},
        )


class TransactionAlreadyProcessedError(BusinessException):
    """Raised when processing a withdrawal request twice."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, transaction_id):
        super().__init__(
            f"Withdrawal request {transaction_id} has already been processed",
            "TRANSACTION_ALREADY_PROCESSED",
            {"transaction_id": str(transaction_id)},
        )


class PermissionDeniedError(BusinessException):
    """Raised when the actor lacks the capability for an operation."""

    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, action: str, user=None):
        role = getattr(user, 'role', None)
        super().__init__(
            f"Permission '{action}' is required for this operation",
            "PERMISSION_DENIED",
            {"action": action, "role": role},
        )


class PenaltyNotApplicableError(BusinessException):
    """Raised when a failed-delivery penalty does not apply to a shipment."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, shipment_id: str, reason: str):
        super().__init__(
            f"Cannot penalize shipment {shipment_id}: {reason}",
            "PENALTY_NOT_APPLICABLE",
            {"shipment_id": shipment_id, "reason": reason},
        )


class ShipmentNotFoundError(BusinessException):
    """Raised when a shipment id is unknown or hidden from the caller."""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, shipment_id: str):
        super().__init__(
            f"Shipment {shipment_id} not found",
            "SHIPMENT_NOT_FOUND",
            {"shipment_id": shipment_id},
        )


class CourierNotFoundError(BusinessException):
    """Raised when a user id does not resolve to an active courier."""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, courier_id):
        super().__init__(
            f"Courier {courier_id} not found",
            "COURIER_NOT_FOUND",
            {"courier_id": str(courier_id)},
        )


def business_exception_handler(exc, context):
    """DRF exception handler: BusinessException → {'error', 'code', 'details'}."""
    if isinstance(exc, BusinessException):
        return Response(
            {'error': exc.message, 'code': exc.code, 'details': exc.details},
            status=exc.status_code,
        )
    return exception_handler(exc, context)
