"""
Celery task tests (tasks are called directly, no broker).
"""

from datetime import timedelta

from django.test import TestCase
from django.utils import timezone

from core.models import UserRole
from logistics.tasks import report_overdue_shipments
from logistics.tests.helpers import make_shipment, make_user


class ReportOverdueShipmentsTest(TestCase):

    def setUp(self):
        self.client_user = make_user('client@flash.test', UserRole.CLIENT)

    def test_reports_only_stale_open_shipments(self):
        stale = make_shipment(self.client_user, creation_date=timezone.now() - timedelta(hours=72))
        make_shipment(self.client_user)

        with self.assertLogs('logistics.tasks', level='WARNING') as logs:
            result = report_overdue_shipments()

        self.assertEqual(result, [stale.pk])
        self.assertIn(stale.pk, logs.output[0])

    def test_nothing_overdue(self):
        make_shipment(self.client_user)
        self.assertEqual(report_overdue_shipments(), [])
