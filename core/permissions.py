"""
CORE App - Role capabilities & authorization checks

Each role maps to a static set of capabilities. Services call
has_permission()/require_permission() before mutating anything; views
use the DRF permission classes below for read-only endpoints.
"""

from django.db import models
from rest_framework import permissions


class Permission(models.TextChoices):
    """Capability names checked throughout the service layer."""
    MANAGE_USERS = 'manage_users', 'Manage users'
    CREATE_SHIPMENTS = 'create_shipments', 'Create shipments'
    CREATE_SHIPMENTS_FOR_OTHERS = 'create_shipments_for_others', 'Create shipments for other clients'
    VIEW_OWN_SHIPMENTS = 'view_own_shipments', 'View own shipments'
    VIEW_ALL_SHIPMENTS = 'view_all_shipments', 'View all shipments'
    VIEW_COURIER_TASKS = 'view_courier_tasks', 'View courier tasks'
    ASSIGN_SHIPMENTS = 'assign_shipments', 'Assign shipments'
    UPDATE_SHIPMENT_STATUS = 'update_shipment_status', 'Update shipment status'
    REQUEST_RETURNS = 'request_returns', 'Request returns'
    MANAGE_RETURNS = 'manage_returns', 'Manage returns'
    EDIT_SHIPMENT_FEES = 'edit_shipment_fees', 'Edit shipment fees'
    VIEW_OWN_FINANCIALS = 'view_own_financials', 'View own financials'
    VIEW_ADMIN_FINANCIALS = 'view_admin_financials', 'View admin financials'
    VIEW_CLIENT_ANALYTICS = 'view_client_analytics', 'View client analytics'
    MANAGE_COURIER_PAYOUTS = 'manage_courier_payouts', 'Manage courier payouts'
    VIEW_COURIER_EARNINGS = 'view_courier_earnings', 'View courier earnings'
    MANAGE_CLIENT_FEES = 'manage_client_fees', 'Manage client fees'


ALL_PERMISSIONS = frozenset(Permission.values)

# Keyed by core.models.UserRole values (plain strings to avoid an import cycle)
ROLE_PERMISSIONS = {
    'ADMIN': ALL_PERMISSIONS,
    'SUPER_USER': ALL_PERMISSIONS - {
        Permission.VIEW_ADMIN_FINANCIALS,
        Permission.EDIT_SHIPMENT_FEES,
        Permission.MANAGE_CLIENT_FEES,
    },
    'CLIENT': frozenset({
        Permission.CREATE_SHIPMENTS,
        Permission.VIEW_OWN_SHIPMENTS,
        Permission.VIEW_OWN_FINANCIALS,
        Permission.REQUEST_RETURNS,
    }),
    'COURIER': frozenset({
        Permission.VIEW_COURIER_TASKS,
        Permission.UPDATE_SHIPMENT_STATUS,
        Permission.VIEW_COURIER_EARNINGS,
    }),
    'ASSIGNING_USER': frozenset({
        Permission.ASSIGN_SHIPMENTS,
        Permission.VIEW_ALL_SHIPMENTS,
    }),
}

_CACHE_ATTR = '_flash_capabilities'


def get_capabilities(user) -> frozenset:
    """
    Return the capability set of a user.

    Computed once per user instance (i.e. once per request) and cached
    on the object. Anonymous or inactive users have no capabilities.
    """
    if user is None or not getattr(user, 'is_authenticated', False) or not user.is_active:
        return frozenset()

    cached = getattr(user, _CACHE_ATTR, None)
    if cached is not None and cached[0] == user.role:
        return cached[1]

    capabilities = ROLE_PERMISSIONS.get(user.role, frozenset())
    setattr(user, _CACHE_ATTR, (user.role, capabilities))
    return capabilities


def has_permission(user, action) -> bool:
    return action in get_capabilities(user)


def can_access_admin_financials(user) -> bool:
    return has_permission(user, Permission.VIEW_ADMIN_FINANCIALS)


def require_permission(user, action):
    """Raise PermissionDeniedError unless the user holds the capability."""
    from core.exceptions import PermissionDeniedError

    if not has_permission(user, action):
        raise PermissionDeniedError(str(action), user)


# ===========================================
# DRF PERMISSION CLASSES
# ===========================================

class HasCapability(permissions.BasePermission):
    """Grant access when request.user holds `capability`."""

    capability = None

    def has_permission(self, request, view):
        return self.capability is not None and has_permission(request.user, self.capability)


def capability_required(action):
    """Build a HasCapability subclass bound to one capability."""
    return type(f'Has_{action}', (HasCapability,), {'capability': action})


class CanAccessAdminFinancials(permissions.BasePermission):
    """Admin-wide financial figures."""

    def has_permission(self, request, view):
        return can_access_admin_financials(request.user)
