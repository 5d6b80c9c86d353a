"""
Inventory Service Layer - Registry lookups and ledger writes.

Every ledger mutation runs inside ``transaction.atomic()`` holding a row
lock on the (item, branch) row, so concurrent writers to the same pair
serialize on that row.
"""
import logging
import random
import re
from decimal import Decimal
from typing import Dict, List, Optional

from django.conf import settings
from django.db import IntegrityError, models, transaction
from django.db.models import Count, F, Q, Sum, Value
from django.db.models.functions import Greatest
from django.utils import timezone

from core.exceptions import (
    DuplicateCodeError,
    InvalidOperationError,
    NotFoundError,
)
from .models import Branch, Inventory, Item
from .utils import coerce_quantity, normalize_code

logger = logging.getLogger(__name__)

STOCK_OPERATIONS = ('add', 'set', 'subtract')


# =============================================================================
# Lookups
# =============================================================================

def _resolve(model, ref, label):
    if isinstance(ref, model):
        return ref
    raw = str(ref if ref is not None else '').strip()
    if not raw:
        raise NotFoundError(f"{label} reference is required")

    if raw.isdigit():
        obj = model.objects.filter(pk=int(raw)).first()
        if obj is not None:
            return obj

    obj = model.objects.filter(code=normalize_code(raw)).first()
    if obj is None:
        raise NotFoundError(f"{label} '{raw}' not found")
    return obj


def resolve_item(ref) -> Item:
    """Find an item by primary key or by (normalized) code."""
    return _resolve(Item, ref, 'Item')


def resolve_branch(ref) -> Branch:
    """Find a branch by primary key or by (normalized) code."""
    return _resolve(Branch, ref, 'Branch')


def get_item_by_code(code) -> Item:
    try:
        return Item.objects.get(code=normalize_code(code))
    except Item.DoesNotExist:
        raise NotFoundError(f"Item with code '{normalize_code(code)}' not found")


def get_branch_by_code(code) -> Branch:
    try:
        return Branch.objects.get(code=normalize_code(code))
    except Branch.DoesNotExist:
        raise NotFoundError(f"Branch with code '{normalize_code(code)}' not found")


# =============================================================================
# Registries
# =============================================================================

def generate_branch_code(name: str) -> str:
    """
    Build a branch code from the first three letters of ``name`` plus a
    random 3-digit suffix, retrying until the code is unused.
    """
    prefix = re.sub(r'[^A-Za-z]', '', name or '')[:3].upper()
    attempts = settings.BRANCH_CODE_ATTEMPTS
    for _ in range(attempts):
        candidate = f"{prefix}{random.randint(0, 999):03d}"
        if not Branch.objects.filter(code=candidate).exists():
            return candidate
    raise DuplicateCodeError(
        f"Could not generate a free branch code for '{name}' after {attempts} attempts"
    )


def reset_all_stocks() -> int:
    """
    Set the central stock of every item to zero.

    Ledger rows are left untouched. Returns the number of items changed.
    """
    modified = Item.objects.exclude(stock=0).update(stock=0, updated_at=timezone.now())
    logger.warning(f"Central stock reset to zero for {modified} items")
    return modified


# =============================================================================
# Ledger
# =============================================================================

def lock_ledger_row(item: Item, branch: Branch, create: bool = False, **defaults) -> Optional[Inventory]:
    """
    Fetch the ledger row for (item, branch) with a row lock.

    With ``create=True`` a missing row is inserted first; a concurrent insert
    of the same pair loses on the unique constraint and re-reads the winner.
    Must be called inside ``transaction.atomic()``.
    """
    queryset = Inventory.objects.select_for_update()
    row = queryset.filter(item=item, branch=branch).first()
    if row is not None or not create:
        return row

    try:
        with transaction.atomic():
            Inventory.objects.create(item=item, branch=branch, current_stock=0, **defaults)
            logger.debug(f"Created ledger row for {item.code} @ {branch.code}")
    except IntegrityError:
        logger.debug(f"Ledger row for {item.code} @ {branch.code} created concurrently")
    return queryset.get(item=item, branch=branch)


def update_stock(item_id, branch_id, quantity, operation: str = 'add') -> Inventory:
    """
    Apply an add/set/subtract to the ledger row of (item, branch).

    A missing row is created against a zero baseline. ``subtract`` floors at
    zero instead of failing.

    Raises:
        InvalidOperationError: unknown operation, or the central branch
        InvalidQuantityError: quantity not a whole number >= 0
        NotFoundError: unknown item or branch
    """
    operation = str(operation or 'add').strip().lower()
    if operation not in STOCK_OPERATIONS:
        raise InvalidOperationError(
            f"Invalid operation '{operation}'; expected one of {', '.join(STOCK_OPERATIONS)}"
        )
    quantity = coerce_quantity(quantity, minimum=0)

    item = resolve_item(item_id)
    branch = resolve_branch(branch_id)
    if branch.is_central:
        raise InvalidOperationError(
            f"Branch {branch.code} is the central bakery; its stock is the item stock"
        )

    if operation == 'add':
        new_stock = F('current_stock') + quantity
    elif operation == 'set':
        new_stock = Value(quantity)
    else:
        new_stock = Greatest(
            F('current_stock') - quantity,
            Value(0),
            output_field=models.IntegerField()
        )

    now = timezone.now()
    with transaction.atomic():
        row = lock_ledger_row(item, branch, create=True)
        Inventory.objects.filter(pk=row.pk).update(
            current_stock=new_stock,
            last_restocked=now,
            last_updated=now
        )
        row.refresh_from_db()

    logger.info(
        f"Stock {operation} {quantity} for {item.code} @ {branch.code}: "
        f"now {row.current_stock}"
    )
    return row


def get_branch_inventory(branch_ref, low_stock_only: bool = False):
    """Ledger rows of a branch, optionally only those at or below reorder point."""
    branch = resolve_branch(branch_ref)
    queryset = Inventory.objects.select_related('item', 'branch').filter(branch=branch)
    if low_stock_only:
        queryset = queryset.filter(current_stock__lte=F('reorder_point'))
    return queryset.order_by('item__name')


def get_central_inventory():
    """Active items with the quantity held at the central bakery."""
    return Item.objects.filter(is_active=True).order_by('name')


def get_alerts(branch_ref=None) -> Dict[str, List[Inventory]]:
    """
    Partition ledger rows into out-of-stock, low-stock and overstocked.
    Rows in a normal state are omitted; each row appears at most once.
    """
    queryset = Inventory.objects.select_related('item', 'branch')
    if branch_ref not in (None, ''):
        queryset = queryset.filter(branch=resolve_branch(branch_ref))

    alerts = {'out_of_stock': [], 'low_stock': [], 'over_stocked': []}
    for row in queryset.order_by('current_stock', 'item__name'):
        if row.current_stock == 0:
            alerts['out_of_stock'].append(row)
        elif row.current_stock <= row.reorder_point:
            alerts['low_stock'].append(row)
        elif row.current_stock >= row.max_stock_level:
            alerts['over_stocked'].append(row)
    return alerts


def stock_value_expression():
    """current_stock x item price, for use in aggregates over Inventory."""
    return models.ExpressionWrapper(
        F('current_stock') * F('item__price'),
        output_field=models.DecimalField(max_digits=14, decimal_places=2)
    )


def compute_summary() -> Dict:
    """Totals over all ledger rows plus a per-category breakdown."""
    totals = Inventory.objects.aggregate(
        total_items=Count('id'),
        total_stock=Sum('current_stock'),
        total_value=Sum(stock_value_expression()),
        low_stock_items=Count('id', filter=Q(current_stock__lte=F('reorder_point'))),
        out_of_stock_items=Count('id', filter=Q(current_stock=0)),
    )
    totals['total_stock'] = totals['total_stock'] or 0
    totals['total_value'] = totals['total_value'] or Decimal('0.00')

    breakdown = Inventory.objects.values(category=F('item__category')).annotate(
        total_items=Count('id'),
        total_stock=Sum('current_stock'),
        total_value=Sum(stock_value_expression()),
    ).order_by('category')

    return {
        'summary': totals,
        'category_breakdown': list(breakdown),
    }
