"""
LOGISTICS App - WebSocket Routing Configuration

Maps WebSocket URLs to consumers for real-time tracking.
"""

from django.urls import re_path
from . import consumers


websocket_urlpatterns = [
    # Track a specific shipment in real-time
    # ws://localhost:8000/ws/shipments/<tracking_id>/
    re_path(
        r'ws/shipments/(?P<shipment_id>[A-Z0-9-]+)/$',
        consumers.ShipmentTrackingConsumer.as_asgi()
    ),

    # Operations room - every status change
    # ws://localhost:8000/ws/operations/
    re_path(
        r'ws/operations/$',
        consumers.OperationsConsumer.as_asgi()
    ),
]
