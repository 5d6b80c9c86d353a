"""
Transfer Service Layer - Atomic stock movement between locations.

A transfer:
1. Validates the request before touching the database
2. Locks the Item row when the central bakery is involved, then the
   ledger rows in branch id order (creating the destination row)
3. Deducts stock with a conditional update so it never goes below zero
4. Credits the destination (ledger row, or Item.stock for the central branch)
5. Appends a DELIVERED Transfer record

All steps share one transaction: if any step fails nothing is written.
Central bakery stock lives only on ``Item.stock``, branch stock only in
the ledger. The ledger is canonical; the transfer log can be replayed to
verify it (see ``reconcile_branch``).
"""
import logging
import time
from collections import defaultdict
from typing import Dict, Optional

from django.conf import settings
from django.db import IntegrityError, OperationalError, connection, transaction
from django.db.models import F, Q, Sum
from django.utils import timezone

from core.exceptions import (
    ConcurrencyConflictError,
    InsufficientStockError,
    NotFoundError,
    OperationTimeoutError,
    SameBranchError,
    StockValidationError,
)
from inventory.models import Branch, Inventory, Item
from inventory.services import (
    get_branch_by_code,
    get_item_by_code,
    lock_ledger_row,
    resolve_branch,
    resolve_item,
)
from inventory.utils import coerce_quantity
from .models import Transfer, generate_tracking_number

logger = logging.getLogger(__name__)

CENTRAL = 'central'

# PostgreSQL SQLSTATEs: serialization failure, deadlock detected
RETRYABLE_SQLSTATES = {'40001', '40P01'}
# lock_not_available (lock_timeout), query_canceled (statement_timeout)
TIMEOUT_SQLSTATES = {'55P03', '57014'}

# Ledger defaults for rows opened by a transfer
TRANSFER_ROW_DEFAULTS = {'reorder_point': 10, 'max_stock_level': 100}

TRACKING_NUMBER_ATTEMPTS = 5


def _sqlstate(exc: Exception) -> Optional[str]:
    cause = exc.__cause__
    return getattr(cause, 'sqlstate', None) or getattr(cause, 'pgcode', None)


def _apply_lock_timeout():
    if connection.vendor == 'postgresql':
        with connection.cursor() as cursor:
            cursor.execute(
                "SELECT set_config('lock_timeout', %s, true)",
                [f"{settings.TRANSFER_LOCK_TIMEOUT_MS}ms"]
            )


def _run_atomically(operation, *args):
    """
    Run ``operation`` in its own transaction with a bounded lock wait.

    Deadlocks and serialization failures are retried; inside an outer
    transaction there is nothing to retry, so a single attempt is made.
    """
    attempts = 1 if connection.in_atomic_block else max(1, settings.TRANSFER_MAX_RETRIES)

    for attempt in range(1, attempts + 1):
        try:
            with transaction.atomic():
                _apply_lock_timeout()
                return operation(*args)
        except OperationalError as exc:
            state = _sqlstate(exc)
            if state in TIMEOUT_SQLSTATES or 'database is locked' in str(exc):
                raise OperationTimeoutError(
                    "Timed out waiting for stock records; the transfer can be retried"
                ) from exc
            if state not in RETRYABLE_SQLSTATES:
                raise
            logger.warning(
                f"Transfer attempt {attempt}/{attempts} hit a concurrency conflict ({state})"
            )
            if attempt < attempts:
                time.sleep(0.05 * attempt)

    raise ConcurrencyConflictError(
        f"Transfer aborted after {attempts} conflicting attempts; the transfer can be retried"
    )


def _lock_item(item: Item) -> Item:
    try:
        return Item.objects.select_for_update().get(pk=item.pk)
    except Item.DoesNotExist:
        raise NotFoundError(f"Item '{item.code}' no longer exists")


def _deduct_central(item: Item, quantity: int, now):
    deducted = Item.objects.filter(pk=item.pk, stock__gte=quantity).update(
        stock=F('stock') - quantity,
        updated_at=now
    )
    if not deducted:
        raise InsufficientStockError(item.code, quantity, item.stock)


def _deduct_branch(item: Item, row: Optional[Inventory], quantity: int, now):
    available = row.current_stock if row is not None else 0
    if row is None or available < quantity:
        raise InsufficientStockError(item.code, quantity, available)

    deducted = Inventory.objects.filter(pk=row.pk, current_stock__gte=quantity).update(
        current_stock=F('current_stock') - quantity,
        last_updated=now
    )
    if not deducted:
        raise InsufficientStockError(item.code, quantity, available)


def _append_transfer(**fields) -> Transfer:
    """Create the transfer record, drawing a new tracking number on a collision."""
    for attempt in range(1, TRACKING_NUMBER_ATTEMPTS + 1):
        tracking_number = generate_tracking_number()
        try:
            with transaction.atomic():
                return Transfer.objects.create(tracking_number=tracking_number, **fields)
        except IntegrityError:
            taken = Transfer.objects.filter(tracking_number=tracking_number).exists()
            if not taken or attempt == TRACKING_NUMBER_ATTEMPTS:
                raise
            logger.warning(f"Tracking number {tracking_number} already used, drawing another")


def _move_stock(item: Item, source: Optional[Branch], destination: Branch, quantity: int, notes: str):
    """
    ``source`` None means the central bakery. A central destination is
    credited on ``Item.stock`` instead of a ledger row.
    """
    now = timezone.now()
    to_central = destination.is_central

    # Lock order: the item row first, then ledger rows by branch id
    central = _lock_item(item) if source is None or to_central else None

    rows = {}
    ledger_branches = [b for b in (source, destination) if b is not None and not b.is_central]
    for branch in sorted(ledger_branches, key=lambda b: b.pk):
        is_destination = branch.pk == destination.pk
        defaults = TRANSFER_ROW_DEFAULTS if is_destination else {}
        rows[branch.pk] = lock_ledger_row(item, branch, create=is_destination, **defaults)

    if source is None:
        _deduct_central(central, quantity, now)
    else:
        _deduct_branch(item, rows[source.pk], quantity, now)

    if to_central:
        Item.objects.filter(pk=item.pk).update(
            stock=F('stock') + quantity,
            updated_at=now
        )
    else:
        Inventory.objects.filter(pk=rows[destination.pk].pk).update(
            current_stock=F('current_stock') + quantity,
            last_restocked=now,
            last_updated=now
        )

    return _append_transfer(
        item=item,
        from_branch=source,
        to_branch=destination,
        quantity=quantity,
        status=Transfer.Status.DELIVERED,
        notes=notes or '',
        request_date=now,
        approved_date=now,
        delivery_date=now
    )


def transfer_stock(item: Item, destination: Branch, quantity, source=CENTRAL, notes: str = '') -> Transfer:
    """
    Move ``quantity`` units of ``item`` from ``source`` to ``destination``.

    Args:
        item: Item being moved
        destination: Receiving branch
        quantity: Whole number >= 1
        source: ``CENTRAL`` for the central bakery stock, or a Branch.
            The central branch on either side is booked on ``Item.stock``.
        notes: Free text stored on the transfer

    Returns:
        The DELIVERED Transfer record

    Raises:
        InvalidQuantityError: quantity is not a whole number >= 1
        SameBranchError: source and destination are the same location
        InsufficientStockError: source holds less than ``quantity``
        ConcurrencyConflictError, OperationTimeoutError: retryable failures
    """
    quantity = coerce_quantity(quantity, minimum=1)

    if isinstance(source, Branch):
        if source.pk == destination.pk:
            raise SameBranchError(f"Cannot transfer from branch {source.code} to itself")
        # The central branch has no ledger rows; its stock is Item.stock
        source_branch = None if source.is_central else source
    elif source in (None, CENTRAL):
        source_branch = None
    else:
        raise StockValidationError(f"Unknown transfer source {source!r}")

    if source_branch is None and destination.is_central:
        raise SameBranchError("The central bakery cannot transfer to itself")

    transfer = _run_atomically(_move_stock, item, source_branch, destination, quantity, notes)

    logger.info(
        f"Transfer {transfer.tracking_number}: {quantity}x {item.code} "
        f"{source_branch.code if source_branch else CENTRAL} -> {destination.code}"
    )
    return transfer


def transfer_by_code(item_code, branch_code, quantity, notes: str = '') -> Transfer:
    """Central bakery to branch transfer addressed by item and branch codes."""
    quantity = coerce_quantity(quantity, minimum=1)
    item = get_item_by_code(item_code)
    branch = get_branch_by_code(branch_code)
    return transfer_stock(item, branch, quantity, source=CENTRAL, notes=notes)


def transfer_between_branches(item_id, from_branch_id, to_branch_id, quantity, notes: str = '') -> Transfer:
    """Branch to branch transfer; returns the transfer with relations loaded."""
    if str(from_branch_id).strip() == str(to_branch_id).strip():
        raise SameBranchError("Source and destination branch must differ")
    quantity = coerce_quantity(quantity, minimum=1)

    item = resolve_item(item_id)
    source = resolve_branch(from_branch_id)
    destination = resolve_branch(to_branch_id)

    transfer = transfer_stock(item, destination, quantity, source=source, notes=notes)
    return Transfer.objects.select_related('item', 'from_branch', 'to_branch').get(pk=transfer.pk)


def get_transfer_history(item_id=None, branch_id=None, status=None):
    """Transfers newest first, filtered by item, branch (either side) and status."""
    queryset = Transfer.objects.select_related('item', 'from_branch', 'to_branch')

    if item_id not in (None, ''):
        queryset = queryset.filter(item=resolve_item(item_id))

    if branch_id not in (None, ''):
        branch = resolve_branch(branch_id)
        queryset = queryset.filter(Q(from_branch=branch) | Q(to_branch=branch))

    if status not in (None, '', 'all'):
        if status not in Transfer.Status.values:
            raise StockValidationError(
                f"Invalid status '{status}'; expected one of {', '.join(Transfer.Status.values)}"
            )
        queryset = queryset.filter(status=status)

    return queryset.order_by('-request_date', '-id')


# =============================================================================
# Reconstruction from the transfer log
# =============================================================================

def replay_branch_inventory(branch: Branch) -> Dict[int, Dict[str, int]]:
    """
    Rebuild per-item quantities of ``branch`` from delivered transfers.

    Returns ``{item_id: {'received', 'sent', 'net'}}``. Direct ledger
    adjustments (``update_stock``) are not in the log, so ``net`` only
    matches the ledger for stock that arrived and left through transfers.
    """
    delivered = Transfer.objects.filter(status=Transfer.Status.DELIVERED).order_by()
    projection = defaultdict(lambda: {'received': 0, 'sent': 0, 'net': 0})

    received = delivered.filter(to_branch=branch).values('item_id').annotate(total=Sum('quantity'))
    for row in received:
        projection[row['item_id']]['received'] = row['total']

    sent = delivered.filter(from_branch=branch).values('item_id').annotate(total=Sum('quantity'))
    for row in sent:
        projection[row['item_id']]['sent'] = row['total']

    for entry in projection.values():
        entry['net'] = entry['received'] - entry['sent']
    return dict(projection)


def reconcile_branch(branch_ref) -> Dict:
    """
    Compare the ledger of a branch with its replayed transfer log.

    Read-only. Returns the branch, whether it is a pure sink (never sent
    stock onward) and one drift entry per item where the two disagree.
    The central branch keeps its stock on ``Item.stock``, so it has no
    ledger to compare.
    """
    branch = resolve_branch(branch_ref)
    if branch.is_central:
        return {'branch': branch, 'is_sink': False, 'items_checked': 0, 'drift': []}

    projection = replay_branch_inventory(branch)
    ledger = {
        row.item_id: row
        for row in Inventory.objects.select_related('item').filter(branch=branch)
    }

    missing_codes = dict(
        Item.objects.filter(pk__in=set(projection) - set(ledger)).values_list('id', 'code')
    )

    drift = []
    for item_id in sorted(set(ledger) | set(projection)):
        ledger_qty = ledger[item_id].current_stock if item_id in ledger else 0
        replayed = projection[item_id]['net'] if item_id in projection else 0
        if ledger_qty != replayed:
            drift.append({
                'item_id': item_id,
                'item_code': ledger[item_id].item.code if item_id in ledger else missing_codes.get(item_id),
                'ledger': ledger_qty,
                'replayed': replayed,
                'difference': ledger_qty - replayed,
            })

    is_sink = not Transfer.objects.filter(
        from_branch=branch,
        status=Transfer.Status.DELIVERED
    ).exists()

    if drift:
        logger.warning(f"Branch {branch.code}: {len(drift)} items drift from the transfer log")

    return {
        'branch': branch,
        'is_sink': is_sink,
        'items_checked': len(set(ledger) | set(projection)),
        'drift': drift,
    }
