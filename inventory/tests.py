"""
Tests for the item and branch registries and the stock ledger.

Test Cases:
1. Code normalization and quantity coercion
2. Ledger add / set / subtract, including the zero floor and lazy row creation
3. One ledger row per (item, branch)
4. Central stock reset
5. Registry API errors (duplicate code, missing fields, generated codes)
6. Alerts and summary
7. Item updates never write the central stock
"""
from decimal import Decimal
from unittest.mock import patch

from django.db import IntegrityError, transaction
from django.test import TestCase
from rest_framework import status
from rest_framework.test import APITestCase

from core.exceptions import (
    InvalidOperationError,
    InvalidQuantityError,
    NotFoundError,
)
from inventory.models import Item, Branch, Inventory
from inventory import services
from inventory.utils import coerce_quantity, normalize_code
from transfers.services import transfer_by_code


def make_item(code='BRD001', price='4.50', stock=0, **kwargs):
    kwargs.setdefault('name', f'Item {code}')
    kwargs.setdefault('category', Item.Category.BREADS)
    return Item.objects.create(code=code, price=Decimal(price), stock=stock, **kwargs)


def make_branch(code='DTN001', **kwargs):
    kwargs.setdefault('name', f'Branch {code}')
    kwargs.setdefault('city', 'New York')
    kwargs.setdefault('phone', '555-0101')
    return Branch.objects.create(code=code, **kwargs)


class NormalizationTestCase(TestCase):
    """Test cases for code and quantity input handling."""

    def test_normalize_code_trims_and_uppercases(self):
        self.assertEqual(normalize_code('  brd001 '), 'BRD001')

    def test_normalize_code_is_idempotent(self):
        for raw in ['dtn001', ' Main ', 'BRD001', '']:
            once = normalize_code(raw)
            self.assertEqual(normalize_code(once), once)

    def test_item_code_normalized_on_save(self):
        item = make_item(code=' brd009 ')
        self.assertEqual(item.code, 'BRD009')
        self.assertEqual(services.resolve_item('brd009').pk, item.pk)

    def test_price_rounded_half_up(self):
        item = make_item(price='2.345')
        item.refresh_from_db()
        self.assertEqual(item.price, Decimal('2.35'))

    def test_coerce_quantity_accepts_integral_values(self):
        self.assertEqual(coerce_quantity(5), 5)
        self.assertEqual(coerce_quantity('12'), 12)
        self.assertEqual(coerce_quantity(3.0), 3)
        self.assertEqual(coerce_quantity(0), 0)

    def test_coerce_quantity_rejects_bad_values(self):
        for value in [True, None, 'abc', 2.5, float('nan'), float('inf'), -1]:
            with self.subTest(value=value):
                with self.assertRaises(InvalidQuantityError):
                    coerce_quantity(value)

    def test_coerce_quantity_minimum(self):
        with self.assertRaises(InvalidQuantityError):
            coerce_quantity(0, minimum=1)


class LedgerTestCase(TestCase):
    """Test cases for update_stock and the ledger row constraint."""

    def setUp(self):
        self.item = make_item(code='BRD001', price='2.50')
        self.branch = make_branch(code='DTN001')

    def test_add_creates_missing_row(self):
        """
        Test: The first update of a pair opens its ledger row.

        Given: No ledger row for (item, branch)
        When: Adding 7 units
        Then: A single row holding 7 units exists
        """
        row = services.update_stock(self.item.pk, self.branch.pk, 7, 'add')

        self.assertEqual(row.current_stock, 7)
        self.assertEqual(
            Inventory.objects.filter(item=self.item, branch=self.branch).count(), 1
        )

    def test_add_accumulates(self):
        services.update_stock(self.item.pk, self.branch.pk, 7)
        row = services.update_stock(self.item.pk, self.branch.pk, 3)
        self.assertEqual(row.current_stock, 10)

    def test_set_overwrites(self):
        services.update_stock(self.item.pk, self.branch.pk, 40)
        row = services.update_stock(self.item.pk, self.branch.pk, 12, 'set')
        self.assertEqual(row.current_stock, 12)

    def test_subtract_floors_at_zero(self):
        """
        Test: Subtracting more than is held leaves zero, not an error.
        """
        services.update_stock(self.item.pk, self.branch.pk, 5)
        row = services.update_stock(self.item.pk, self.branch.pk, 10, 'subtract')
        self.assertEqual(row.current_stock, 0)

    def test_subtract_on_missing_row(self):
        row = services.update_stock(self.item.pk, self.branch.pk, 3, 'subtract')
        self.assertEqual(row.current_stock, 0)

    def test_refs_accept_codes(self):
        row = services.update_stock('brd001', ' dtn001 ', 4, 'ADD')
        self.assertEqual(row.item_id, self.item.pk)
        self.assertEqual(row.branch_id, self.branch.pk)

    def test_invalid_operation(self):
        with self.assertRaises(InvalidOperationError):
            services.update_stock(self.item.pk, self.branch.pk, 4, 'multiply')
        self.assertFalse(Inventory.objects.exists())

    def test_negative_quantity(self):
        with self.assertRaises(InvalidQuantityError):
            services.update_stock(self.item.pk, self.branch.pk, -4, 'add')

    def test_unknown_branch(self):
        with self.assertRaises(NotFoundError):
            services.update_stock(self.item.pk, 'NOPE01', 4)

    def test_central_branch_has_no_ledger(self):
        make_branch(code='MAIN')
        with self.assertRaises(InvalidOperationError):
            services.update_stock(self.item.pk, 'main', 4, 'add')
        self.assertFalse(Inventory.objects.exists())

    def test_one_row_per_item_and_branch(self):
        Inventory.objects.create(item=self.item, branch=self.branch, current_stock=1)
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Inventory.objects.create(item=self.item, branch=self.branch, current_stock=2)

    def test_stock_status(self):
        row = Inventory.objects.create(
            item=self.item, branch=self.branch,
            current_stock=0, reorder_point=10, max_stock_level=100
        )
        self.assertEqual(row.stock_status, Inventory.StockStatus.OUT_OF_STOCK)
        row.current_stock = 10
        self.assertEqual(row.stock_status, Inventory.StockStatus.LOW)
        row.current_stock = 50
        self.assertEqual(row.stock_status, Inventory.StockStatus.NORMAL)
        row.current_stock = 100
        self.assertEqual(row.stock_status, Inventory.StockStatus.OVERSTOCKED)

    def test_days_until_reorder(self):
        row = Inventory(item=self.item, branch=self.branch, current_stock=40, reorder_point=10)
        self.assertIsNone(row.days_until_reorder)
        row.daily_consumption = 7
        self.assertEqual(row.days_until_reorder, 4)


class RegistryServiceTestCase(TestCase):
    """Test cases for central stock reset and branch code generation."""

    def test_reset_all_stocks_counts_changed_items(self):
        make_item(code='BRD001', stock=10)
        make_item(code='BRD002', stock=3)
        make_item(code='PST001', stock=1, category=Item.Category.PASTRIES)
        make_item(code='PST002', stock=0, category=Item.Category.PASTRIES)

        self.assertEqual(services.reset_all_stocks(), 3)
        self.assertFalse(Item.objects.exclude(stock=0).exists())

    def test_reset_leaves_ledger_untouched(self):
        item = make_item(stock=10)
        branch = make_branch()
        services.update_stock(item.pk, branch.pk, 6)

        services.reset_all_stocks()

        self.assertEqual(Inventory.objects.get(item=item, branch=branch).current_stock, 6)

    def test_generate_branch_code(self):
        code = services.generate_branch_code('Downtown Bakery')
        self.assertRegex(code, r'^DOW\d{3}$')

    def test_branch_is_central(self):
        self.assertTrue(make_branch(code='main').is_central)
        self.assertFalse(make_branch(code='DTN001').is_central)


class ItemAPITestCase(APITestCase):
    """API tests for the item registry."""

    def setUp(self):
        self.item = make_item(code='BRD001', price='4.50', stock=20)

    def test_create_item(self):
        response = self.client.post('/api/items/', {
            'code': ' cke001 ',
            'name': 'Shortbread',
            'category': 'Cookies',
            'price': '1.50',
            'stock': 30,
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['code'], 'CKE001')
        self.assertEqual(Item.objects.get(code='CKE001').stock, 30)

    def test_duplicate_code_rejected(self):
        response = self.client.post('/api/items/', {
            'code': 'brd001',
            'name': 'Another loaf',
            'category': 'Breads',
            'price': '3.00',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'DuplicateCode')
        self.assertEqual(Item.objects.count(), 1)

    def test_invalid_category_aggregated(self):
        response = self.client.post('/api/items/', {
            'code': 'XYZ001',
            'name': 'Mystery',
            'category': 'Soups',
            'price': '-1',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'ValidationError')
        self.assertIn('category', response.data['detail'])
        self.assertIn('price', response.data['detail'])

    def test_update_does_not_overwrite_concurrent_transfer(self):
        """
        Test: An item update racing a transfer keeps the transferred stock.

        Given: BRD001 with 20 units, loaded by the update view
        When: A 5 unit transfer to DTN001 commits before the update is saved
        Then: Central stock is 15 and the new name is stored
        """
        make_branch(code='DTN001')
        real_save = Item.save
        raced = []

        def save_after_transfer(instance, *args, **kwargs):
            if not raced:
                raced.append(transfer_by_code('BRD001', 'DTN001', 5))
            return real_save(instance, *args, **kwargs)

        with patch.object(Item, 'save', save_after_transfer):
            response = self.client.patch(
                f'/api/items/{self.item.pk}/', {'name': 'Country Loaf'}, format='json'
            )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(raced), 1)
        self.item.refresh_from_db()
        self.assertEqual(self.item.stock, 15)
        self.assertEqual(self.item.name, 'Country Loaf')
        self.assertEqual(Inventory.objects.get(item=self.item).current_stock, 5)

    def test_stock_read_only_on_update(self):
        response = self.client.put(f'/api/items/{self.item.pk}/', {
            'code': 'BRD001',
            'name': 'Sourdough',
            'category': 'Breads',
            'price': '4.75',
            'stock': 500,
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['stock'], 20)
        self.item.refresh_from_db()
        self.assertEqual(self.item.stock, 20)
        self.assertEqual(self.item.price, Decimal('4.75'))

    def test_delete_item(self):
        response = self.client.delete(f'/api/items/{self.item.pk}/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['item']['code'], 'BRD001')
        self.assertFalse(Item.objects.exists())

    def test_missing_item_is_not_found(self):
        response = self.client.get('/api/items/99999/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'NotFound')

    def test_reset_stock_endpoint(self):
        response = self.client.post('/api/items/reset-stock/')
        self.assertEqual(response.data['modified_count'], 1)

    def test_categories(self):
        response = self.client.get('/api/items/categories/')
        self.assertEqual(
            response.data['categories'],
            sorted(['Breads', 'Pastries', 'Cakes', 'Cookies', 'Others'])
        )


class BranchAPITestCase(APITestCase):
    """API tests for the branch registry."""

    def test_create_branch_generates_code(self):
        response = self.client.post('/api/branches/', {
            'name': 'Riverside',
            'city': 'Chicago',
            'phone': '555-0102',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertRegex(response.data['code'], r'^RIV\d{3}$')

    def test_create_branch_keeps_given_code(self):
        response = self.client.post('/api/branches/', {
            'name': 'Downtown',
            'code': 'dtn001',
            'city': 'New York',
            'phone': '555-0101',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['code'], 'DTN001')

    def test_missing_required_fields(self):
        response = self.client.post('/api/branches/', {'name': 'Nowhere'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'MissingRequiredField')
        self.assertIn('city', response.data['detail'])
        self.assertIn('phone', response.data['detail'])

    def test_duplicate_branch_code(self):
        make_branch(code='DTN001')
        response = self.client.post('/api/branches/', {
            'name': 'Downtown 2',
            'code': 'DTN001',
            'city': 'New York',
            'phone': '555-0199',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'DuplicateCode')

    def test_list_is_paginated(self):
        for index in range(3):
            make_branch(code=f'BR{index:04d}')

        response = self.client.get('/api/branches/', {'limit': 2})

        self.assertEqual(len(response.data['results']), 2)
        self.assertEqual(response.data['pagination']['total'], 3)
        self.assertEqual(response.data['pagination']['pages'], 2)

    def test_status_change(self):
        branch = make_branch()
        response = self.client.patch(
            f'/api/branches/{branch.pk}/status/', {'status': 'maintenance'}, format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        branch.refresh_from_db()
        self.assertEqual(branch.status, Branch.Status.MAINTENANCE)


class LedgerAPITestCase(APITestCase):
    """API tests for ledger reads and stock updates."""

    def setUp(self):
        self.bread = make_item(code='BRD001', price='2.50')
        self.cake = make_item(code='CAK001', price='20.00', category=Item.Category.CAKES)
        self.branch = make_branch(code='DTN001')

    def test_update_stock_endpoint(self):
        response = self.client.patch('/api/inventory/update-stock/', {
            'item_id': self.bread.pk,
            'branch_id': 'dtn001',
            'quantity': 5,
            'operation': 'add',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['inventory']['current_stock'], 5)

    def test_update_stock_invalid_operation(self):
        response = self.client.patch('/api/inventory/update-stock/', {
            'item_id': self.bread.pk,
            'branch_id': self.branch.pk,
            'quantity': 5,
            'operation': 'multiply',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'InvalidOperation')

    def test_update_stock_invalid_quantity(self):
        response = self.client.patch('/api/inventory/update-stock/', {
            'item_id': self.bread.pk,
            'branch_id': self.branch.pk,
            'quantity': 'lots',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'InvalidQuantity')

    def test_alerts(self):
        """
        Test: Rows are partitioned by alert kind; normal rows are omitted.

        Given: bread at 5 (reorder 10), cake at 0, a third item overstocked
        Then: one row in each bucket
        """
        Inventory.objects.create(item=self.bread, branch=self.branch, current_stock=5, reorder_point=10)
        Inventory.objects.create(item=self.cake, branch=self.branch, current_stock=0)
        extra = make_item(code='PST001', category=Item.Category.PASTRIES)
        Inventory.objects.create(item=extra, branch=self.branch, current_stock=150, max_stock_level=100)
        other = make_item(code='CKE001', category=Item.Category.COOKIES)
        Inventory.objects.create(item=other, branch=self.branch, current_stock=50)

        response = self.client.get('/api/inventory/alerts/', {'branch_id': 'DTN001'})
        alerts = response.data['alerts']

        self.assertEqual([r['item']['code'] for r in alerts['low_stock']], ['BRD001'])
        self.assertEqual([r['item']['code'] for r in alerts['out_of_stock']], ['CAK001'])
        self.assertEqual([r['item']['code'] for r in alerts['over_stocked']], ['PST001'])

    def test_branch_inventory_low_stock_filter(self):
        Inventory.objects.create(item=self.bread, branch=self.branch, current_stock=5, reorder_point=10)
        Inventory.objects.create(item=self.cake, branch=self.branch, current_stock=50, reorder_point=10)

        response = self.client.get('/api/inventory/branch/DTN001/', {'low_stock': 'true'})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([r['item']['code'] for r in response.data], ['BRD001'])

    def test_summary(self):
        Inventory.objects.create(item=self.bread, branch=self.branch, current_stock=4, reorder_point=10)
        Inventory.objects.create(item=self.cake, branch=self.branch, current_stock=0)

        data = services.compute_summary()

        self.assertEqual(data['summary']['total_items'], 2)
        self.assertEqual(data['summary']['total_stock'], 4)
        self.assertEqual(data['summary']['total_value'], Decimal('10.00'))
        self.assertEqual(data['summary']['low_stock_items'], 2)
        self.assertEqual(data['summary']['out_of_stock_items'], 1)
        self.assertEqual(
            [entry['category'] for entry in data['category_breakdown']],
            ['Breads', 'Cakes']
        )

    def test_central_inventory(self):
        self.bread.stock = 80
        self.bread.save()

        response = self.client.get('/api/inventory/main/')

        stocks = {row['code']: row['stock'] for row in response.data}
        self.assertEqual(stocks['BRD001'], 80)
