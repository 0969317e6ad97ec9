"""
FINANCE App - Celery Tasks

Nightly reconciliation of courier balances against the transaction log.
"""

import logging
from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task(name='finance.tasks.audit_courier_balances')
def audit_courier_balances():
    """
    Compare each courier's stored balance with the sum of processed transactions.

    Mismatches are logged as errors and returned; nothing is corrected
    automatically.

    Returns:
        List of {courier_id, stored, folded} dicts for mismatching couriers
    """
    from finance.models import CourierStats
    from finance.services import CourierLedger

    mismatches = []
    checked = 0
    for stats in CourierStats.objects.iterator():
        checked += 1
        folded = CourierLedger.folded_balance(stats.courier_id)
        if folded != stats.current_balance:
            mismatches.append({
                'courier_id': str(stats.courier_id),
                'stored': str(stats.current_balance),
                'folded': str(folded),
            })
            logger.error(
                f"[CELERY] Balance mismatch for courier {stats.courier_id}: "
                f"stored {stats.current_balance} EGP, ledger {folded} EGP"
            )

    logger.info(f"[CELERY] Audited {checked} courier balances, {len(mismatches)} mismatch(es)")
    return mismatches
