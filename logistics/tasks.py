"""
LOGISTICS App - Celery Tasks

Periodic checks on the shipment pipeline.
"""

from celery import shared_task
import logging

logger = logging.getLogger(__name__)


@shared_task(name='logistics.tasks.report_overdue_shipments')
def report_overdue_shipments():
    """
    Log shipments that are still open past the overdue threshold.

    Runs hourly. Returns the overdue tracking ids so callers
    (and the beat log) can see what was flagged.
    """
    from logistics.services.state_machine import overdue_shipments

    overdue_ids = list(overdue_shipments().values_list('id', flat=True))
    if overdue_ids:
        logger.warning(
            f"[OVERDUE TASK] {len(overdue_ids)} overdue shipment(s): "
            f"{', '.join(overdue_ids[:20])}"
        )
    else:
        logger.info("[OVERDUE TASK] No overdue shipments")
    return overdue_ids
