"""
LOGISTICS App - Real-time Event Broadcasting

Pushes shipment status changes to Django Channels groups.
Called from transaction.on_commit hooks so only committed changes
are announced. Broadcast failures are logged, never raised.
"""

import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

logger = logging.getLogger(__name__)

OPERATIONS_GROUP = 'operations'


def shipment_group(shipment_id: str) -> str:
    return f'shipment_{shipment_id}'


def _send_group_event(group_name: str, event: dict) -> bool:
    """Send event to a channel group."""
    channel_layer = get_channel_layer()
    if not channel_layer:
        return False

    try:
        async_to_sync(channel_layer.group_send)(group_name, event)
        return True
    except Exception as e:
        logger.error(f"[EVENTS] Failed to send to group {group_name}: {e}")
        return False


# ============================================
# SHIPMENT EVENTS
# ============================================

def broadcast_shipment_status(shipment_id: str, new_status: str, timestamp: str):
    """
    Broadcast a shipment status change.

    Notifies:
    - Clients tracking the specific shipment
    - The operations room (admins / assigning users)
    """
    _send_group_event(
        shipment_group(shipment_id),
        {
            'type': 'shipment_status_update',
            'shipment_id': shipment_id,
            'status': new_status,
            'timestamp': timestamp,
        }
    )

    _send_group_event(
        OPERATIONS_GROUP,
        {
            'type': 'shipment_status_change',
            'shipment_id': shipment_id,
            'new_status': new_status,
            'timestamp': timestamp,
        }
    )

    logger.debug(f"[EVENTS] Broadcast status {new_status} for shipment {shipment_id}")
