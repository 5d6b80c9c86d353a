"""
Report Service Layer - Read-only aggregates over the ledger and transfer log.

Financial figures are heuristic estimates derived from stock value and
transfer value, not from sales.
"""
from collections import defaultdict
from datetime import datetime, time
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional

from django.db.models import Count, F, Q, Sum
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from core.exceptions import StockValidationError
from inventory.models import Branch, Inventory, Item
from inventory.services import resolve_branch, stock_value_expression
from transfers.models import Transfer

CENTS = Decimal('0.01')

# Expense estimates: (share of monthly transfer value, monthly floor)
EXPENSE_RULES = {
    'labor': (Decimal('0.30'), Decimal('85000')),
    'utilities': (Decimal('0.05'), Decimal('12000')),
    'rent': (Decimal('0.10'), Decimal('25000')),
    'other': (Decimal('0.05'), Decimal('18000')),
}
INGREDIENT_SHARE = Decimal('0.60')


def _money(value) -> Decimal:
    return Decimal(value or 0).quantize(CENTS, rounding=ROUND_HALF_UP)


def _whole(value) -> int:
    return int(Decimal(value).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def _low_stock_filter():
    return Q(current_stock__lte=F('reorder_point'))


def _transfer_row(transfer: Transfer) -> Dict:
    return {
        'tracking_number': transfer.tracking_number,
        'item': {'id': transfer.item_id, 'code': transfer.item.code, 'name': transfer.item.name},
        'from_branch': (
            {'id': transfer.from_branch_id, 'code': transfer.from_branch.code, 'name': transfer.from_branch.name}
            if transfer.from_branch_id else None
        ),
        'to_branch': {'id': transfer.to_branch_id, 'code': transfer.to_branch.code, 'name': transfer.to_branch.name},
        'quantity': transfer.quantity,
        'status': transfer.status,
        'total_value': _money(transfer.quantity * transfer.item.price),
        'request_date': transfer.request_date,
    }


def dashboard_overview(recent_limit: int = 10) -> Dict:
    """Counts, stock totals, category distribution, branch performance, recent transfers."""
    totals = Inventory.objects.aggregate(
        total_stock=Sum('current_stock'),
        total_value=Sum(stock_value_expression()),
        low_stock_items=Count('id', filter=_low_stock_filter()),
    )

    category_distribution = Inventory.objects.values(category=F('item__category')).annotate(
        count=Count('id'),
        total_stock=Sum('current_stock'),
        total_value=Sum(stock_value_expression()),
    ).order_by('-count', 'category')

    branch_performance = Inventory.objects.values('branch_id', name=F('branch__name')).annotate(
        items=Count('id'),
        total_stock=Sum('current_stock'),
        value=Sum(stock_value_expression()),
        low_stock_items=Count('id', filter=_low_stock_filter()),
    ).order_by('-value', 'name')

    recent = Transfer.objects.select_related('item', 'from_branch', 'to_branch').order_by('-created_at', '-id')

    return {
        'overview': {
            'total_items': Item.objects.filter(is_active=True).count(),
            'total_branches': Branch.objects.filter(status=Branch.Status.ACTIVE).count(),
            'total_stock': totals['total_stock'] or 0,
            'total_value': _money(totals['total_value']),
            'low_stock_items': totals['low_stock_items'],
        },
        'category_distribution': list(category_distribution),
        'branch_performance': list(branch_performance),
        'recent_transfers': [_transfer_row(t) for t in recent[:recent_limit]],
    }


def inventory_report(branch_id=None, category: Optional[str] = None, stock_status: Optional[str] = None) -> Dict:
    """Ledger rows with derived status and value, plus totals over the returned rows."""
    queryset = Inventory.objects.select_related('item', 'branch')
    if branch_id not in (None, ''):
        queryset = queryset.filter(branch=resolve_branch(branch_id))
    if category and category != 'all':
        queryset = queryset.filter(item__category=category)

    if stock_status and stock_status != 'all' and stock_status not in Inventory.StockStatus.values:
        raise StockValidationError(
            f"Invalid stock status '{stock_status}'; expected one of "
            f"{', '.join(Inventory.StockStatus.values)}"
        )

    rows = []
    for row in queryset.order_by('item__name', 'branch__name'):
        status = str(row.stock_status)
        if stock_status and stock_status != 'all' and status != stock_status:
            continue
        rows.append({
            'id': row.pk,
            'item': {'id': row.item_id, 'code': row.item.code, 'name': row.item.name, 'category': row.item.category},
            'branch': {'id': row.branch_id, 'code': row.branch.code, 'name': row.branch.name},
            'current_stock': row.current_stock,
            'reorder_point': row.reorder_point,
            'max_stock_level': row.max_stock_level,
            'stock_status': status,
            'total_value': _money(row.stock_value),
        })

    total_stock = sum(r['current_stock'] for r in rows)
    return {
        'inventory': rows,
        'summary': {
            'total_items': len(rows),
            'total_stock': total_stock,
            'total_value': _money(sum((r['total_value'] for r in rows), Decimal('0'))),
            'avg_stock_level': round(total_stock / len(rows), 2) if rows else 0,
        },
    }


def branch_report() -> List[Dict]:
    """Per active branch metrics with a category breakdown."""
    reports = []
    branches = Branch.objects.filter(status=Branch.Status.ACTIVE).order_by('name')
    for branch in branches:
        metrics = {'total_items': 0, 'total_stock': 0, 'total_value': Decimal('0'), 'low_stock_items': 0}
        categories = defaultdict(lambda: {'count': 0, 'stock': 0, 'value': Decimal('0')})

        for row in branch.inventories.select_related('item'):
            value = row.stock_value
            metrics['total_items'] += 1
            metrics['total_stock'] += row.current_stock
            metrics['total_value'] += value
            if row.is_low_stock:
                metrics['low_stock_items'] += 1

            bucket = categories[row.item.category or 'Uncategorized']
            bucket['count'] += 1
            bucket['stock'] += row.current_stock
            bucket['value'] += value

        metrics['total_value'] = _money(metrics['total_value'])
        reports.append({
            'branch': {
                'id': branch.pk,
                'name': branch.name,
                'code': branch.code,
                'city': branch.city or None,
                'status': branch.status,
            },
            'metrics': metrics,
            'category_breakdown': {
                name: {**bucket, 'value': _money(bucket['value'])}
                for name, bucket in sorted(categories.items())
            },
        })
    return reports


def _parse_bound(value: str, end_of_day: bool):
    day = parse_date(value)
    if day is not None:
        parsed = datetime.combine(day, time.max if end_of_day else time.min)
    else:
        parsed = parse_datetime(value)
        if parsed is None:
            raise ValueError(value)
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


def transfer_report(start_date=None, end_date=None, branch_id=None, status=None) -> Dict:
    """Transfers in a date range touching a branch, with totals by status."""
    queryset = Transfer.objects.select_related('item', 'from_branch', 'to_branch')

    if start_date and end_date:
        try:
            start = _parse_bound(start_date, end_of_day=False)
            end = _parse_bound(end_date, end_of_day=True)
        except ValueError:
            raise StockValidationError("Invalid start_date or end_date")
        queryset = queryset.filter(created_at__gte=start, created_at__lte=end)

    if branch_id not in (None, ''):
        branch = resolve_branch(branch_id)
        queryset = queryset.filter(Q(from_branch=branch) | Q(to_branch=branch))

    if status and status != 'all':
        queryset = queryset.filter(status=status)

    rows = [_transfer_row(t) for t in queryset.order_by('-created_at', '-id')]

    by_status = defaultdict(int)
    for row in rows:
        by_status[row['status'] or 'unknown'] += 1

    return {
        'transfers': rows,
        'summary': {
            'total_transfers': len(rows),
            'total_quantity': sum(r['quantity'] for r in rows),
            'total_value': _money(sum((r['total_value'] for r in rows), Decimal('0'))),
            'by_status': dict(by_status),
        },
    }


def financial_report() -> Dict:
    """Inventory value by branch, transfer statistics and estimated P&L."""
    by_branch = list(
        Inventory.objects.values('branch_id', branch_name=F('branch__name')).annotate(
            total_items=Count('id'),
            total_stock=Sum('current_stock'),
            total_value=Sum(stock_value_expression()),
        ).order_by('-total_value', 'branch_name')
    )
    for entry in by_branch:
        entry['total_value'] = _money(entry['total_value'])
    total_inventory_value = sum((b['total_value'] for b in by_branch), Decimal('0'))

    transfer_values = [
        t.quantity * t.item.price for t in Transfer.objects.select_related('item')
    ]
    transfer_total = sum(transfer_values, Decimal('0'))
    transfer_stats = {
        'total_transfers': len(transfer_values),
        'total_quantity': Transfer.objects.aggregate(q=Sum('quantity'))['q'] or 0,
        'total_value': _money(transfer_total),
        'avg_transfer_value': _money(transfer_total / len(transfer_values)) if transfer_values else _money(0),
    }

    monthly_revenue = transfer_total
    expenses = {'ingredients': _money(total_inventory_value * INGREDIENT_SHARE)}
    for name, (share, floor) in EXPENSE_RULES.items():
        expenses[name] = _money(max(floor, monthly_revenue * share))
    total_expenses = sum(expenses.values(), Decimal('0'))
    net = monthly_revenue - total_expenses

    return {
        'inventory_value': {'total': _money(total_inventory_value), 'by_branch': by_branch},
        'financial': {
            'revenue': {
                'daily': _whole(monthly_revenue / 30),
                'weekly': _whole(monthly_revenue / 4),
                'monthly': _whole(monthly_revenue),
                'yearly': _whole(monthly_revenue * 12),
            },
            'expenses': expenses,
            'profit': {
                'gross': _whole(monthly_revenue - expenses['ingredients']),
                'net': _whole(net),
            },
        },
        'transfer_stats': transfer_stats,
        'trends': {
            'monthly': [
                {'month': label, 'revenue': _whole(monthly_revenue * factor), 'profit': _whole(net * factor)}
                for label, factor in (('Jan', Decimal('0.9')), ('Feb', Decimal('0.95')), ('Mar', Decimal('1')))
            ],
        },
    }


def alerts_report() -> Dict:
    """Critical (empty) and warning (at or below reorder point) ledger rows."""
    queryset = Inventory.objects.select_related('item', 'branch').filter(_low_stock_filter())

    alerts = []
    for row in queryset.order_by('current_stock', 'item__name'):
        alerts.append({
            'id': row.pk,
            'item': {'id': row.item_id, 'code': row.item.code, 'name': row.item.name},
            'branch': {'id': row.branch_id, 'code': row.branch.code, 'name': row.branch.name},
            'current_stock': row.current_stock,
            'reorder_point': row.reorder_point,
            'alert_level': 'critical' if row.current_stock == 0 else 'warning',
        })

    critical = sum(1 for a in alerts if a['alert_level'] == 'critical')
    return {
        'alerts': alerts,
        'summary': {
            'critical': critical,
            'warning': len(alerts) - critical,
            'total': len(alerts),
        },
    }
