"""
WebSocket tests for shipment tracking and the operations room.
"""

from asgiref.sync import sync_to_async
from channels.routing import URLRouter
from channels.testing import WebsocketCommunicator
from django.conf import settings
from django.test import TransactionTestCase

from core.models import UserRole
from logistics.events import broadcast_shipment_status
from logistics.routing import websocket_urlpatterns
from logistics.tests.helpers import make_shipment, make_staff, make_user

application = URLRouter(websocket_urlpatterns)


def communicator_for(path, user):
    communicator = WebsocketCommunicator(application, path)
    communicator.scope['user'] = user
    return communicator


class ShipmentTrackingConsumerTest(TransactionTestCase):

    def setUp(self):
        self.admin, self.super_user, self.assigner = make_staff()
        self.client_user = make_user('client@flash.test', UserRole.CLIENT)
        self.stranger = make_user('stranger@flash.test', UserRole.CLIENT)
        self.shipment = make_shipment(self.client_user)
        self.path = f'/ws/shipments/{self.shipment.pk}/'

    async def test_owner_receives_initial_state_and_updates(self):
        communicator = communicator_for(self.path, self.client_user)
        connected, _ = await communicator.connect()
        self.assertTrue(connected)

        message = await communicator.receive_json_from()
        self.assertEqual(message['type'], 'connection_established')
        self.assertEqual(message['status'], 'WAITING_FOR_PACKAGING')

        await sync_to_async(broadcast_shipment_status)(
            self.shipment.pk, 'PACKAGED_AND_WAITING_FOR_ASSIGNMENT', '2026-10-19T10:00:00+02:00'
        )
        message = await communicator.receive_json_from()
        self.assertEqual(message, {
            'type': 'status_update',
            'shipment_id': self.shipment.pk,
            'status': 'PACKAGED_AND_WAITING_FOR_ASSIGNMENT',
            'timestamp': '2026-10-19T10:00:00+02:00',
        })
        await communicator.disconnect()

    async def test_ping(self):
        communicator = communicator_for(self.path, self.client_user)
        await communicator.connect()
        await communicator.receive_json_from()

        await communicator.send_json_to({'type': 'ping'})
        self.assertEqual(await communicator.receive_json_from(), {'type': 'pong'})
        await communicator.disconnect()

    async def test_hidden_shipment_rejected(self):
        communicator = communicator_for(self.path, self.stranger)
        connected, code = await communicator.connect()
        self.assertFalse(connected)
        self.assertEqual(code, 4004)

    async def test_unknown_shipment_rejected(self):
        communicator = communicator_for('/ws/shipments/CAI-000000-000000/', self.admin)
        connected, code = await communicator.connect()
        self.assertFalse(connected)
        self.assertEqual(code, 4004)


class OperationsConsumerTest(TransactionTestCase):

    def setUp(self):
        self.admin, self.super_user, self.assigner = make_staff()
        self.client_user = make_user('client@flash.test', UserRole.CLIENT)

    async def test_staff_receive_every_change(self):
        communicator = communicator_for('/ws/operations/', self.assigner)
        connected, _ = await communicator.connect()
        self.assertTrue(connected)

        await sync_to_async(broadcast_shipment_status)('GIZ-261019-ABC123', 'IN_TRANSIT', 'now')
        message = await communicator.receive_json_from()
        self.assertEqual(message['type'], 'status_change')
        self.assertEqual(message['shipment_id'], 'GIZ-261019-ABC123')
        self.assertEqual(message['status'], 'IN_TRANSIT')
        await communicator.disconnect()

    async def test_client_rejected(self):
        communicator = communicator_for('/ws/operations/', self.client_user)
        connected, code = await communicator.connect()
        self.assertFalse(connected)
        self.assertEqual(code, 4003)


class AsgiStackTest(TransactionTestCase):
    """Connections through the deployed ASGI stack (origin check + session auth)."""

    def setUp(self):
        self.client_user = make_user('client@flash.test', UserRole.CLIENT)
        self.shipment = make_shipment(self.client_user)
        self.path = f'/ws/shipments/{self.shipment.pk}/'

        self.client.force_login(self.client_user)
        self.session_cookie = (
            f'{settings.SESSION_COOKIE_NAME}='
            f'{self.client.cookies[settings.SESSION_COOKIE_NAME].value}'
        )

    def stack_communicator(self, headers):
        from flash_core.asgi import application as asgi_application

        return WebsocketCommunicator(asgi_application, self.path, headers=headers)

    async def test_session_user_connects(self):
        communicator = self.stack_communicator([
            (b'origin', b'http://testserver'),
            (b'cookie', self.session_cookie.encode()),
        ])
        connected, _ = await communicator.connect()
        self.assertTrue(connected)

        message = await communicator.receive_json_from()
        self.assertEqual(message['type'], 'connection_established')
        await communicator.disconnect()

    async def test_anonymous_connection_rejected(self):
        communicator = self.stack_communicator([(b'origin', b'http://testserver')])
        connected, code = await communicator.connect()
        self.assertFalse(connected)
        self.assertEqual(code, 4004)

    async def test_foreign_origin_rejected(self):
        communicator = self.stack_communicator([
            (b'origin', b'http://evil.example'),
            (b'cookie', self.session_cookie.encode()),
        ])
        connected, _ = await communicator.connect()
        self.assertFalse(connected)
