"""
LOGISTICS App - WebSocket Consumers for Real-time Tracking

Provides real-time updates for:
- Shipment tracking (clients, couriers, operations staff)
- Operations room (every status change, staff only)
"""

import logging
from typing import Any, Dict, Optional

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer

from logistics.events import OPERATIONS_GROUP, shipment_group

logger = logging.getLogger(__name__)


class ShipmentTrackingConsumer(AsyncJsonWebsocketConsumer):
    """
    WebSocket consumer for tracking a specific shipment.

    Clients connect to: ws://host/ws/shipments/<shipment_id>/

    Events received:
    - shipment_status_update: status changed along the lifecycle
    """

    async def connect(self):
        self.shipment_id = self.scope['url_route']['kwargs']['shipment_id']
        self.room_group_name = shipment_group(self.shipment_id)

        # Verify shipment exists and is visible to the connecting user
        shipment = await self.get_shipment()
        if not shipment:
            await self.close(code=4004)
            return

        await self.channel_layer.group_add(
            self.room_group_name,
            self.channel_name
        )

        await self.accept()

        # Send initial state
        await self.send_json({
            'type': 'connection_established',
            'shipment_id': self.shipment_id,
            'status': shipment['status'],
        })

        logger.info(f"[WS] Client connected to shipment {self.shipment_id}")

    async def disconnect(self, close_code):
        if hasattr(self, 'room_group_name'):
            await self.channel_layer.group_discard(
                self.room_group_name,
                self.channel_name
            )
        logger.info(f"[WS] Client disconnected from shipment {getattr(self, 'shipment_id', '?')}")

    async def receive_json(self, content):
        """Handle incoming WebSocket messages from clients."""
        if content.get('type') == 'ping':
            await self.send_json({'type': 'pong'})

    # ============================================
    # Event Handlers (called via channel_layer.group_send)
    # ============================================

    async def shipment_status_update(self, event):
        """Send shipment status update to connected clients."""
        await self.send_json({
            'type': 'status_update',
            'shipment_id': event['shipment_id'],
            'status': event['status'],
            'timestamp': event['timestamp'],
        })

    # ============================================
    # Database helpers
    # ============================================

    @database_sync_to_async
    def get_shipment(self) -> Optional[Dict[str, Any]]:
        """Fetch the shipment if the scope's user may see it."""
        from logistics.models import Shipment
        from logistics.visibility import can_view_shipment

        user = self.scope.get('user')
        if user is None or not user.is_authenticated:
            return None

        try:
            shipment = Shipment.objects.get(pk=self.shipment_id)
        except Shipment.DoesNotExist:
            return None

        if not can_view_shipment(user, shipment):
            return None
        return {'status': shipment.status}


class OperationsConsumer(AsyncJsonWebsocketConsumer):
    """
    WebSocket consumer for the operations room.

    Staff connect to: ws://host/ws/operations/
    Receives every shipment status change.
    """

    async def connect(self):
        if not await self.is_staff_member():
            await self.close(code=4003)
            return

        await self.channel_layer.group_add(OPERATIONS_GROUP, self.channel_name)
        await self.accept()
        logger.info("[WS] Operations monitor connected")

    async def disconnect(self, close_code):
        await self.channel_layer.group_discard(OPERATIONS_GROUP, self.channel_name)

    async def shipment_status_change(self, event):
        await self.send_json({
            'type': 'status_change',
            'shipment_id': event['shipment_id'],
            'status': event['new_status'],
            'timestamp': event['timestamp'],
        })

    @database_sync_to_async
    def is_staff_member(self) -> bool:
        from core.permissions import Permission, has_permission

        user = self.scope.get('user')
        return user is not None and has_permission(user, Permission.VIEW_ALL_SHIPMENTS)
