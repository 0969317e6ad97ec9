"""
LOGISTICS App - Role-based visibility of shipments

Rows:   admins / super users / assigning users see every shipment,
        clients their own, couriers the ones assigned to them.
Fields: fee columns are removed from serialized shipments unless the
        caller may see them (admin, or the owning client / courier).

Both filters are applied at the API boundary (queryset + serializer).
"""

from django.db.models import Q

from core.models import UserRole
from core.permissions import Permission, can_access_admin_financials, has_permission

CLIENT_FEE_FIELD = 'client_flat_rate_fee'
COMMISSION_FIELD = 'courier_commission'
NET_PROFIT_FIELD = 'net_profit'


def visible_shipments(user) -> Q:
    """Row filter for the shipments a user may read."""
    if has_permission(user, Permission.VIEW_ALL_SHIPMENTS):
        return Q()
    if user.role == UserRole.CLIENT and has_permission(user, Permission.VIEW_OWN_SHIPMENTS):
        return Q(client=user)
    if user.role == UserRole.COURIER and has_permission(user, Permission.VIEW_COURIER_TASKS):
        return Q(courier=user)
    return Q(pk__in=[])


def filter_shipments(user, queryset=None):
    from logistics.models import Shipment

    if queryset is None:
        queryset = Shipment.objects.all()
    return queryset.filter(visible_shipments(user))


def can_view_shipment(user, shipment) -> bool:
    if has_permission(user, Permission.VIEW_ALL_SHIPMENTS):
        return True
    if user.role == UserRole.CLIENT:
        return has_permission(user, Permission.VIEW_OWN_SHIPMENTS) and shipment.client_id == user.pk
    if user.role == UserRole.COURIER:
        return has_permission(user, Permission.VIEW_COURIER_TASKS) and shipment.courier_id == user.pk
    return False


def can_mutate_shipment(user, shipment) -> bool:
    """Visibility is a precondition; couriers only touch shipments assigned to them."""
    return can_view_shipment(user, shipment)


def redacted_fields(user, shipment) -> set:
    """Fee fields the user may not see on this shipment."""
    hidden = set()
    if can_access_admin_financials(user):
        return hidden

    own_client_row = shipment.client_id == user.pk
    own_courier_row = shipment.courier_id is not None and shipment.courier_id == user.pk

    if not (own_client_row and has_permission(user, Permission.VIEW_OWN_FINANCIALS)):
        hidden.add(CLIENT_FEE_FIELD)
    if not (own_courier_row and has_permission(user, Permission.VIEW_COURIER_EARNINGS)):
        hidden.add(COMMISSION_FIELD)
    hidden.add(NET_PROFIT_FIELD)
    return hidden


def project_shipment(user, shipment, data: dict) -> dict:
    """Drop the fields of a serialized shipment that the user may not see."""
    for field in redacted_fields(user, shipment):
        data.pop(field, None)
    return data
