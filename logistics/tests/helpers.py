"""
Shared builders for shipment tests.
"""

from decimal import Decimal

from core.models import User, UserRole
from logistics.models import ShipmentStatus
from logistics.services.state_machine import create_shipment, transition_shipment

PASSWORD = 'testpass123'

DELIVERY_PATH = [
    ShipmentStatus.PACKAGED_AND_WAITING_FOR_ASSIGNMENT,
    ShipmentStatus.ASSIGNED_TO_COURIER,
    ShipmentStatus.IN_TRANSIT,
    ShipmentStatus.OUT_FOR_DELIVERY,
]


def make_user(email, role, **extra_fields):
    extra_fields.setdefault('full_name', email.split('@')[0].title())
    return User.objects.create_user(email=email, password=PASSWORD, role=role, **extra_fields)


def make_staff():
    """Admin, super user and assigning user."""
    return (
        make_user('admin@flash.test', UserRole.ADMIN),
        make_user('super@flash.test', UserRole.SUPER_USER),
        make_user('assigner@flash.test', UserRole.ASSIGNING_USER),
    )


def make_shipment(client, price='100.00', package_value='50.00', **extra):
    data = {
        'recipient_name': 'Mona Adel',
        'recipient_phone': '+201001234567',
        'pickup_address': '5 Nile Corniche, Cairo',
        'dropoff_address': '12 Tahrir St, Cairo',
        'price': Decimal(price),
        'package_value': Decimal(package_value),
    }
    data.update(extra)
    return create_shipment(client, **data)


def advance(actor, shipment, courier, until):
    """Walk the delivery path up to and including `until`."""
    for target in DELIVERY_PATH:
        shipment = transition_shipment(
            actor,
            shipment.pk,
            target,
            courier=courier if target == ShipmentStatus.ASSIGNED_TO_COURIER else None,
        )
        if target == until:
            break
    return shipment
