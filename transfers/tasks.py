"""
Celery tasks for transfer bookkeeping.

Tasks:
    - reconcile_inventory: Replay the transfer log against every branch ledger
    - generate_daily_transfer_report: Log yesterday's transfer totals
"""
import logging
from datetime import timedelta

from celery import shared_task
from django.db.models import Count, Q, Sum
from django.utils import timezone

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    autoretry_for=(ConnectionError,),
    retry_backoff=True
)
def reconcile_inventory(self, branch_code=None):
    """
    Compare each branch ledger with the replayed transfer log.

    Only reports drift; the ledger is never rewritten from the log.

    Args:
        branch_code: Restrict the run to one branch

    Returns:
        Dict with the number of branches checked and drift per branch code
    """
    from inventory.models import Branch
    from transfers.services import reconcile_branch

    branches = Branch.objects.order_by('code')
    if branch_code:
        branches = branches.filter(code=branch_code.strip().upper())

    drift_by_branch = {}
    checked = 0
    for branch in branches:
        result = reconcile_branch(branch)
        checked += 1
        if result['drift']:
            drift_by_branch[branch.code] = result['drift']
            for entry in result['drift']:
                logger.warning(
                    f"[RECONCILE] {branch.code} {entry['item_code']}: "
                    f"ledger {entry['ledger']}, transfer log {entry['replayed']}"
                )

    logger.info(
        f"[RECONCILE] Checked {checked} branches, "
        f"{len(drift_by_branch)} with drift"
    )
    return {'branches_checked': checked, 'drift': drift_by_branch}


@shared_task
def generate_daily_transfer_report():
    """
    Log delivered/cancelled transfer totals for the previous day.

    Scheduled via Celery Beat.
    """
    from transfers.models import Transfer

    yesterday = timezone.now().date() - timedelta(days=1)
    transfers = Transfer.objects.filter(request_date__date=yesterday)

    stats = transfers.aggregate(
        total_transfers=Count('id'),
        delivered=Count('id', filter=Q(status=Transfer.Status.DELIVERED)),
        cancelled=Count('id', filter=Q(status=Transfer.Status.CANCELLED)),
        total_quantity=Sum('quantity', filter=Q(status=Transfer.Status.DELIVERED)),
        from_central=Count('id', filter=Q(from_branch__isnull=True)),
    )
    stats['total_quantity'] = stats['total_quantity'] or 0

    report = f"""
    ===============================================
    DAILY TRANSFER REPORT - {yesterday}
    ===============================================
    Total Transfers: {stats['total_transfers']}
    Delivered: {stats['delivered']}
    Cancelled: {stats['cancelled']}
    From Central Bakery: {stats['from_central']}
    Units Moved: {stats['total_quantity']}
    ===============================================
    """

    logger.info(report)

    return stats
