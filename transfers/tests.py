"""
Tests for transfer transaction logic and reconciliation.

Test Cases:
1. Central bakery to branch transfer moves stock and logs a DELIVERED transfer
2. Branch to branch transfer conserves the total
3. Rejected transfers change nothing
4. Atomic rollback on error
5. Retryable conflicts surface as ConcurrencyConflict / Timeout
6. Ledger vs transfer log reconciliation
7. Concurrent transfers never oversell the source
8. Returns to the MAIN branch credit the central stock
9. Tracking number collisions draw a new number
"""
import threading
from datetime import timedelta
from decimal import Decimal
from io import StringIO
from unittest import skipUnless
from unittest.mock import MagicMock, patch

from django.core.management import call_command
from django.db import OperationalError, connection
from django.test import TestCase, TransactionTestCase, override_settings, skipUnlessDBFeature
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from core.exceptions import (
    ConcurrencyConflictError,
    InsufficientStockError,
    InvalidQuantityError,
    NotFoundError,
    OperationTimeoutError,
    SameBranchError,
    StockValidationError,
)
from inventory.models import Item, Branch, Inventory
from inventory.services import get_central_inventory, update_stock
from transfers.models import Transfer, generate_tracking_number
from transfers.services import (
    get_transfer_history,
    reconcile_branch,
    replay_branch_inventory,
    transfer_between_branches,
    transfer_by_code,
    transfer_stock,
)
from transfers.tasks import generate_daily_transfer_report, reconcile_inventory


class _DeadlockCause(Exception):
    sqlstate = '40P01'


def _deadlock(*args):
    raise OperationalError('deadlock detected') from _DeadlockCause()


class TransferFixturesMixin:

    def create_fixtures(self):
        self.item = Item.objects.create(
            code='BRD001',
            name='Sourdough Loaf',
            category=Item.Category.BREADS,
            price=Decimal('4.50'),
            stock=100
        )
        self.downtown = Branch.objects.create(
            name='Downtown', code='DTN001', city='New York', phone='555-0101'
        )
        self.riverside = Branch.objects.create(
            name='Riverside', code='RIV001', city='Chicago', phone='555-0102'
        )


class CentralTransferTestCase(TransferFixturesMixin, TestCase):
    """Test cases for transfers out of the central bakery."""

    def setUp(self):
        self.create_fixtures()

    def test_transfer_by_code(self):
        """
        Test: Central stock moves into the branch ledger.

        Given: BRD001 with 100 units at the central bakery
        When: Transferring 20 units to DTN001
        Then: Central stock is 80, ledger is 20, one DELIVERED transfer from central
        """
        transfer = transfer_by_code('brd001', ' dtn001 ', 20)

        self.item.refresh_from_db()
        self.assertEqual(self.item.stock, 80)
        row = Inventory.objects.get(item=self.item, branch=self.downtown)
        self.assertEqual(row.current_stock, 20)

        self.assertIsNone(transfer.from_branch)
        self.assertTrue(transfer.is_from_central)
        self.assertEqual(transfer.to_branch, self.downtown)
        self.assertEqual(transfer.status, Transfer.Status.DELIVERED)
        self.assertIsNotNone(transfer.delivery_date)
        self.assertTrue(transfer.tracking_number.startswith('TRF'))

    def test_new_ledger_row_uses_transfer_defaults(self):
        transfer_by_code('BRD001', 'DTN001', 5)

        row = Inventory.objects.get(item=self.item, branch=self.downtown)
        self.assertEqual(row.reorder_point, 10)
        self.assertEqual(row.max_stock_level, 100)

    def test_exact_stock(self):
        transfer_by_code('BRD001', 'DTN001', 100)

        self.item.refresh_from_db()
        self.assertEqual(self.item.stock, 0)

    def test_insufficient_stock_changes_nothing(self):
        """
        Test: A rejected transfer leaves stock and log untouched.
        """
        with self.assertRaises(InsufficientStockError) as context:
            transfer_by_code('BRD001', 'DTN001', 150)

        self.assertEqual(context.exception.requested, 150)
        self.assertEqual(context.exception.available, 100)
        self.item.refresh_from_db()
        self.assertEqual(self.item.stock, 100)
        self.assertFalse(Inventory.objects.exists())
        self.assertFalse(Transfer.objects.exists())

    def test_invalid_quantity(self):
        for quantity in [0, -5, 2.5, 'ten', True]:
            with self.subTest(quantity=quantity):
                with self.assertRaises(InvalidQuantityError):
                    transfer_by_code('BRD001', 'DTN001', quantity)
        self.assertFalse(Transfer.objects.exists())

    def test_unknown_codes(self):
        with self.assertRaises(NotFoundError):
            transfer_by_code('NOPE', 'DTN001', 1)
        with self.assertRaises(NotFoundError):
            transfer_by_code('BRD001', 'NOPE', 1)

    def test_central_cannot_transfer_to_main(self):
        Branch.objects.create(name='Central Bakery', code='MAIN', city='New York', phone='555-0100')

        with self.assertRaises(SameBranchError):
            transfer_by_code('BRD001', 'main', 5)

        self.item.refresh_from_db()
        self.assertEqual(self.item.stock, 100)

    def test_rollback_when_log_write_fails(self):
        """
        Test: If writing the transfer record fails, the deduction is undone.
        """
        with patch('transfers.services.Transfer.objects.create', side_effect=RuntimeError('disk full')):
            with self.assertRaises(RuntimeError):
                transfer_by_code('BRD001', 'DTN001', 20)

        self.item.refresh_from_db()
        self.assertEqual(self.item.stock, 100)
        self.assertFalse(Inventory.objects.exists())
        self.assertFalse(Transfer.objects.exists())

    def test_deadlock_reported_as_conflict(self):
        with patch('transfers.services._move_stock', side_effect=_deadlock):
            with self.assertRaises(ConcurrencyConflictError) as context:
                transfer_by_code('BRD001', 'DTN001', 1)
        self.assertTrue(context.exception.retryable)

    def test_locked_database_reported_as_timeout(self):
        with patch('transfers.services._move_stock', side_effect=OperationalError('database is locked')):
            with self.assertRaises(OperationTimeoutError):
                transfer_by_code('BRD001', 'DTN001', 1)

    def test_unknown_source(self):
        with self.assertRaises(StockValidationError):
            transfer_stock(self.item, self.downtown, 1, source='warehouse')


class BranchTransferTestCase(TransferFixturesMixin, TestCase):
    """Test cases for transfers between branches."""

    def setUp(self):
        self.create_fixtures()
        transfer_by_code('BRD001', 'DTN001', 20)

    def ledger(self, branch):
        row = Inventory.objects.filter(item=self.item, branch=branch).first()
        return row.current_stock if row else 0

    def test_transfer_conserves_total(self):
        """
        Test: Source loses exactly what the destination gains.

        Given: DTN001 holds 20
        When: Moving 8 to RIV001
        Then: DTN001 12, RIV001 8, central stock unchanged
        """
        transfer = transfer_between_branches(self.item.pk, self.downtown.pk, self.riverside.pk, 8, notes='top-up')

        self.assertEqual(self.ledger(self.downtown), 12)
        self.assertEqual(self.ledger(self.riverside), 8)
        self.item.refresh_from_db()
        self.assertEqual(self.item.stock, 80)

        self.assertEqual(transfer.from_branch, self.downtown)
        self.assertEqual(transfer.to_branch, self.riverside)
        self.assertEqual(transfer.notes, 'top-up')
        self.assertEqual(transfer.source_label, 'Downtown')

    def test_refs_by_code(self):
        transfer_between_branches('brd001', 'dtn001', 'riv001', 5)
        self.assertEqual(self.ledger(self.riverside), 5)

    def test_same_branch(self):
        with self.assertRaises(SameBranchError):
            transfer_between_branches(self.item.pk, self.downtown.pk, self.downtown.pk, 1)
        with self.assertRaises(SameBranchError):
            transfer_between_branches(self.item.pk, 'DTN001', self.downtown.pk, 1)
        self.assertEqual(self.ledger(self.downtown), 20)

    def test_insufficient_at_source(self):
        with self.assertRaises(InsufficientStockError):
            transfer_between_branches(self.item.pk, self.downtown.pk, self.riverside.pk, 21)

        self.assertEqual(self.ledger(self.downtown), 20)
        self.assertFalse(Inventory.objects.filter(branch=self.riverside).exists())
        self.assertEqual(Transfer.objects.count(), 1)

    def test_source_without_row(self):
        with self.assertRaises(InsufficientStockError) as context:
            transfer_between_branches(self.item.pk, self.riverside.pk, self.downtown.pk, 1)

        self.assertEqual(context.exception.available, 0)
        self.assertFalse(Inventory.objects.filter(branch=self.riverside).exists())

    def test_transfer_to_central_branch_returns_stock(self):
        """
        Test: Sending stock back to MAIN credits the central bakery.

        Given: 80 units at the central bakery, DTN001 holds 20
        When: DTN001 sends 5 to MAIN
        Then: Central stock is 85, DTN001 15, MAIN has no ledger row
        """
        main = Branch.objects.create(name='Central Bakery', code='MAIN', city='New York', phone='555-0100')

        transfer = transfer_between_branches(self.item.pk, 'DTN001', 'MAIN', 5)

        self.item.refresh_from_db()
        self.assertEqual(self.item.stock, 85)
        self.assertEqual(self.ledger(self.downtown), 15)
        self.assertFalse(Inventory.objects.filter(branch=main).exists())
        self.assertEqual(get_central_inventory().get(pk=self.item.pk).stock, 85)
        self.assertEqual(transfer.to_branch, main)
        self.assertEqual(reconcile_branch('MAIN')['drift'], [])
        self.assertEqual(reconcile_branch('DTN001')['drift'], [])

    def test_transfer_from_central_branch_uses_item_stock(self):
        main = Branch.objects.create(name='Central Bakery', code='MAIN', city='New York', phone='555-0100')

        transfer = transfer_between_branches(self.item.pk, main.pk, self.riverside.pk, 10)

        self.item.refresh_from_db()
        self.assertEqual(self.item.stock, 70)
        self.assertEqual(self.ledger(self.riverside), 10)
        self.assertIsNone(transfer.from_branch)
        self.assertFalse(Inventory.objects.filter(branch=main).exists())

    def test_central_branch_short_stock(self):
        Branch.objects.create(name='Central Bakery', code='MAIN', city='New York', phone='555-0100')

        with self.assertRaises(InsufficientStockError) as context:
            transfer_between_branches(self.item.pk, 'MAIN', 'RIV001', 81)

        self.assertEqual(context.exception.available, 80)
        self.assertEqual(self.ledger(self.riverside), 0)

    def test_history_filters(self):
        transfer_between_branches(self.item.pk, self.downtown.pk, self.riverside.pk, 8)

        self.assertEqual(get_transfer_history(branch_id='DTN001').count(), 2)
        self.assertEqual(get_transfer_history(branch_id=self.riverside.pk).count(), 1)
        self.assertEqual(get_transfer_history(item_id='BRD001', status='delivered').count(), 2)
        self.assertEqual(get_transfer_history(status='cancelled').count(), 0)

        with self.assertRaises(StockValidationError):
            get_transfer_history(status='lost')

    def test_history_newest_first(self):
        latest = transfer_between_branches(self.item.pk, self.downtown.pk, self.riverside.pk, 1)
        self.assertEqual(get_transfer_history().first().pk, latest.pk)


class ReconciliationTestCase(TransferFixturesMixin, TestCase):
    """Test cases for replaying the transfer log against the ledger."""

    def setUp(self):
        self.create_fixtures()
        transfer_by_code('BRD001', 'DTN001', 20)
        transfer_between_branches(self.item.pk, self.downtown.pk, self.riverside.pk, 8)

    def test_replay(self):
        projection = replay_branch_inventory(self.downtown)
        self.assertEqual(projection[self.item.pk], {'received': 20, 'sent': 8, 'net': 12})

    def test_ledger_matches_log(self):
        result = reconcile_branch('DTN001')

        self.assertEqual(result['drift'], [])
        self.assertFalse(result['is_sink'])
        self.assertEqual(result['items_checked'], 1)

        self.assertTrue(reconcile_branch(self.riverside.pk)['is_sink'])

    def test_direct_adjustment_shows_as_drift(self):
        update_stock(self.item.pk, self.downtown.pk, 5, 'add')

        drift = reconcile_branch(self.downtown)['drift']

        self.assertEqual(len(drift), 1)
        self.assertEqual(drift[0]['item_code'], 'BRD001')
        self.assertEqual(drift[0]['ledger'], 17)
        self.assertEqual(drift[0]['replayed'], 12)
        self.assertEqual(drift[0]['difference'], 5)

    def test_reconcile_task(self):
        update_stock(self.item.pk, self.riverside.pk, 0, 'set')

        result = reconcile_inventory()

        self.assertEqual(result['branches_checked'], 2)
        self.assertEqual(list(result['drift']), ['RIV001'])
        self.assertEqual(result['drift']['RIV001'][0]['difference'], -8)

    def test_reconcile_command(self):
        out = StringIO()
        call_command('reconcile_inventory', stdout=out)
        self.assertIn('All 2 branches consistent', out.getvalue())

    def test_daily_report_task(self):
        Transfer.objects.update(request_date=timezone.now() - timedelta(days=1))

        stats = generate_daily_transfer_report()

        self.assertEqual(stats['total_transfers'], 2)
        self.assertEqual(stats['delivered'], 2)
        self.assertEqual(stats['from_central'], 1)
        self.assertEqual(stats['total_quantity'], 28)


class TrackingNumberTestCase(TransferFixturesMixin, TestCase):

    def test_format(self):
        number = generate_tracking_number()
        self.assertRegex(number, r'^TRF[0-9A-Z]+$')

    def test_distinct(self):
        numbers = {generate_tracking_number() for _ in range(50)}
        self.assertGreater(len(numbers), 45)

    def test_collision_draws_new_number(self):
        """
        Test: A tracking number already in the log is replaced, not a server error.
        """
        self.create_fixtures()
        numbers = ['TRFDUP', 'TRFDUP', 'TRFNEW']

        with patch('transfers.services.generate_tracking_number', side_effect=numbers):
            first = transfer_by_code('BRD001', 'DTN001', 2)
            second = transfer_by_code('BRD001', 'DTN001', 3)

        self.assertEqual(first.tracking_number, 'TRFDUP')
        self.assertEqual(second.tracking_number, 'TRFNEW')
        self.item.refresh_from_db()
        self.assertEqual(self.item.stock, 95)
        self.assertEqual(Transfer.objects.count(), 2)


class TransferAPITestCase(TransferFixturesMixin, APITestCase):
    """API tests for the transfer endpoints."""

    def setUp(self):
        self.create_fixtures()

    def test_central_transfer(self):
        response = self.client.post('/api/transfers/', {
            'item_code': 'brd001',
            'branch_code': 'dtn001',
            'quantity': 20,
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        transfer = response.data['transfer']
        self.assertIsNone(transfer['from_branch'])
        self.assertEqual(transfer['source'], 'Central bakery')
        self.assertEqual(transfer['to_branch']['code'], 'DTN001')
        self.assertEqual(transfer['status'], 'delivered')

    def test_central_transfer_insufficient(self):
        response = self.client.post('/api/transfers/', {
            'item_code': 'BRD001',
            'branch_code': 'DTN001',
            'quantity': 101,
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'InsufficientStock')

    def test_central_transfer_unknown_branch(self):
        response = self.client.post('/api/transfers/', {
            'item_code': 'BRD001',
            'branch_code': 'XXX999',
            'quantity': 1,
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'NotFound')

    def test_fractional_quantity(self):
        response = self.client.post('/api/transfers/', {
            'item_code': 'BRD001',
            'branch_code': 'DTN001',
            'quantity': 2.5,
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'InvalidQuantity')

    def test_missing_fields(self):
        response = self.client.post('/api/transfers/', {'quantity': 1}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'ValidationError')
        self.assertIn('item_code', response.data['detail'])

    def test_unexpected_error(self):
        with patch('transfers.services.Transfer.objects.create', side_effect=RuntimeError('boom')):
            response = self.client.post('/api/transfers/', {
                'item_code': 'BRD001',
                'branch_code': 'DTN001',
                'quantity': 1,
            }, format='json')

        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data['error'], 'ServerError')
        self.item.refresh_from_db()
        self.assertEqual(self.item.stock, 100)

    def test_branch_transfer(self):
        transfer_by_code('BRD001', 'DTN001', 10)

        response = self.client.post('/api/transfers/branch/', {
            'item_id': self.item.pk,
            'from_branch_id': self.downtown.pk,
            'to_branch_id': self.riverside.pk,
            'quantity': 4,
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['transfer']['from_branch']['code'], 'DTN001')

    def test_branch_transfer_same_branch(self):
        response = self.client.post('/api/transfers/branch/', {
            'item_id': self.item.pk,
            'from_branch_id': self.downtown.pk,
            'to_branch_id': self.downtown.pk,
            'quantity': 4,
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'SameBranch')

    def test_history_and_detail(self):
        transfer = transfer_by_code('BRD001', 'DTN001', 10)

        response = self.client.get('/api/transfers/history/', {'branch_id': 'DTN001'})
        self.assertEqual(len(response.data), 1)

        response = self.client.get(f'/api/transfers/{transfer.tracking_number.lower()}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['quantity'], 10)

    def test_history_invalid_status(self):
        response = self.client.get('/api/transfers/history/', {'status': 'lost'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'ValidationError')

    def test_reconcile_endpoint(self):
        transfer_by_code('BRD001', 'DTN001', 10)

        response = self.client.get('/api/transfers/reconcile/dtn001/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['branch']['code'], 'DTN001')
        self.assertEqual(response.data['drift'], [])
        self.assertTrue(response.data['is_sink'])


class TransferRetryTestCase(TransferFixturesMixin, TransactionTestCase):
    """
    Outside a surrounding transaction each transfer gets its own
    transaction, so conflicts can be retried.
    """

    def setUp(self):
        self.create_fixtures()

    @override_settings(TRANSFER_MAX_RETRIES=3)
    def test_conflict_retried_then_reported(self):
        with patch('transfers.services.time.sleep'):
            with patch('transfers.services._move_stock', side_effect=_deadlock) as move:
                with self.assertRaises(ConcurrencyConflictError):
                    transfer_by_code('BRD001', 'DTN001', 1)

        self.assertEqual(move.call_count, 3)

    def test_conflict_then_success(self):
        from transfers import services

        real_move = services._move_stock
        calls = []

        def flaky(*args):
            calls.append(args)
            if len(calls) == 1:
                _deadlock()
            return real_move(*args)

        with patch('transfers.services.time.sleep'):
            with patch('transfers.services._move_stock', side_effect=flaky):
                transfer_by_code('BRD001', 'DTN001', 7)

        self.assertEqual(len(calls), 2)
        self.item.refresh_from_db()
        self.assertEqual(self.item.stock, 93)
        self.assertEqual(Transfer.objects.count(), 1)


class ConcurrentTransferTestCase(TransferFixturesMixin, TransactionTestCase):
    """
    Concurrent transfers must serialize on the locked rows.
    Uses TransactionTestCase for proper multi-threading support.
    """

    def setUp(self):
        self.create_fixtures()
        Item.objects.filter(pk=self.item.pk).update(stock=10)

    @skipUnlessDBFeature('has_select_for_update')
    def test_concurrent_transfers_no_overselling(self):
        """
        Test: Two transfers of 8 from 10 units cannot both succeed.
        """
        results = {}

        def send(key, branch_code):
            try:
                transfer_by_code('BRD001', branch_code, 8)
                results[key] = 'delivered'
            except (InsufficientStockError, ConcurrencyConflictError):
                results[key] = 'rejected'
            finally:
                connection.close()

        threads = [
            threading.Thread(target=send, args=('first', 'DTN001')),
            threading.Thread(target=send, args=('second', 'RIV001')),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        delivered = sum(1 for r in results.values() if r == 'delivered')
        self.assertLessEqual(delivered, 1)

        self.item.refresh_from_db()
        moved = sum(Inventory.objects.filter(item=self.item).values_list('current_stock', flat=True))
        self.assertEqual(self.item.stock + moved, 10)
        self.assertEqual(Transfer.objects.count(), delivered)

    @skipUnless(connection.vendor == 'postgresql', 'needs PostgreSQL row locks')
    def test_opposite_branch_transfers_conserve_total(self):
        """
        Test: Branch transfers in opposite directions neither deadlock nor lose stock.

        Needs PostgreSQL: both ledger rows are locked with SELECT ... FOR UPDATE.

        Given: DTN001 and RIV001 each hold 10
        When: Two threads repeatedly move stock DTN001 -> RIV001 and RIV001 -> DTN001
        Then: No unexpected errors, the two ledgers still total 20
        """
        Inventory.objects.create(item=self.item, branch=self.downtown, current_stock=10)
        Inventory.objects.create(item=self.item, branch=self.riverside, current_stock=10)
        errors = []
        delivered = []

        def shuttle(source, destination):
            try:
                for _ in range(10):
                    try:
                        delivered.append(
                            transfer_between_branches(self.item.pk, source, destination, 3)
                        )
                    except (InsufficientStockError, ConcurrencyConflictError):
                        pass
            except Exception as exc:
                errors.append(exc)
            finally:
                connection.close()

        threads = [
            threading.Thread(target=shuttle, args=('DTN001', 'RIV001')),
            threading.Thread(target=shuttle, args=('RIV001', 'DTN001')),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        stocks = Inventory.objects.filter(item=self.item).values_list('current_stock', flat=True)
        self.assertEqual(sum(stocks), 20)
        self.assertTrue(all(stock >= 0 for stock in stocks))
        self.assertEqual(Transfer.objects.count(), len(delivered))


class TransferRateLimitTestCase(TransferFixturesMixin, APITestCase):
    """The transfer POSTs answer 429 once a client exceeds its window."""

    def setUp(self):
        self.create_fixtures()
        self.redis = MagicMock()
        self.redis.ttl.return_value = 42

    @override_settings(RATE_LIMIT_ENABLED=True, TRANSFER_RATE_LIMIT=30)
    def test_over_limit(self):
        self.redis.incr.return_value = 31

        with patch('core.rate_limiting.get_redis_client', return_value=self.redis):
            response = self.client.post('/api/transfers/', {
                'item_code': 'BRD001',
                'branch_code': 'DTN001',
                'quantity': 1,
            }, format='json')

        self.assertEqual(response.status_code, status.HTTP_429_TOO_MANY_REQUESTS)
        self.assertEqual(response.data['error'], 'RateLimitExceeded')
        self.assertEqual(response['Retry-After'], '42')
        self.assertFalse(Transfer.objects.exists())

    @override_settings(RATE_LIMIT_ENABLED=True, TRANSFER_RATE_LIMIT=30)
    def test_within_limit(self):
        self.redis.incr.return_value = 1

        with patch('core.rate_limiting.get_redis_client', return_value=self.redis):
            response = self.client.post('/api/transfers/', {
                'item_code': 'BRD001',
                'branch_code': 'DTN001',
                'quantity': 1,
            }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response['X-RateLimit-Remaining'], '29')
        self.redis.expire.assert_called_once()
