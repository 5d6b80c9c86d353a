"""
Tests for the read-only reports.
"""
from datetime import timedelta
from decimal import Decimal

from django.test import TestCase
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from core.exceptions import StockValidationError
from inventory.models import Item, Branch, Inventory
from reports import services
from transfers.services import transfer_by_code


class ReportFixturesMixin:

    def create_fixtures(self):
        self.bread = Item.objects.create(
            code='BRD001', name='Sourdough Loaf', category=Item.Category.BREADS,
            price=Decimal('4.50'), stock=100
        )
        self.cake = Item.objects.create(
            code='CAK001', name='Carrot Cake', category=Item.Category.CAKES,
            price=Decimal('20.00'), stock=10
        )
        self.downtown = Branch.objects.create(name='Downtown', code='DTN001', city='New York', phone='555-0101')
        self.riverside = Branch.objects.create(name='Riverside', code='RIV001', city='Chicago', phone='555-0102')

        # Downtown: 20 bread (normal), Riverside: 2 cakes (low)
        transfer_by_code('BRD001', 'DTN001', 20)
        transfer_by_code('CAK001', 'RIV001', 2)


class ReportServiceTestCase(ReportFixturesMixin, TestCase):

    def setUp(self):
        self.create_fixtures()

    def test_dashboard_overview(self):
        data = services.dashboard_overview()

        self.assertEqual(data['overview']['total_items'], 2)
        self.assertEqual(data['overview']['total_branches'], 2)
        self.assertEqual(data['overview']['total_stock'], 22)
        self.assertEqual(data['overview']['total_value'], Decimal('130.00'))
        self.assertEqual(data['overview']['low_stock_items'], 1)
        self.assertEqual(len(data['recent_transfers']), 2)
        self.assertEqual(data['recent_transfers'][0]['item']['code'], 'CAK001')

    def test_inventory_report_status_filter(self):
        data = services.inventory_report(stock_status='low')

        self.assertEqual([row['item']['code'] for row in data['inventory']], ['CAK001'])
        self.assertEqual(data['summary']['total_stock'], 2)
        self.assertEqual(data['summary']['total_value'], Decimal('40.00'))

    def test_inventory_report_branch_filter(self):
        data = services.inventory_report(branch_id='dtn001')

        self.assertEqual(data['summary']['total_items'], 1)
        self.assertEqual(data['inventory'][0]['stock_status'], 'normal')

    def test_inventory_report_invalid_status(self):
        with self.assertRaises(StockValidationError):
            services.inventory_report(stock_status='bogus')

    def test_branch_report(self):
        reports = {entry['branch']['code']: entry for entry in services.branch_report()}

        downtown = reports['DTN001']
        self.assertEqual(downtown['metrics']['total_stock'], 20)
        self.assertEqual(downtown['metrics']['total_value'], Decimal('90.00'))
        self.assertEqual(downtown['metrics']['low_stock_items'], 0)
        self.assertEqual(list(downtown['category_breakdown']), ['Breads'])
        self.assertEqual(reports['RIV001']['metrics']['low_stock_items'], 1)

    def test_branch_report_skips_inactive(self):
        Branch.objects.filter(pk=self.riverside.pk).update(status=Branch.Status.INACTIVE)
        codes = [entry['branch']['code'] for entry in services.branch_report()]
        self.assertEqual(codes, ['DTN001'])

    def test_transfer_report(self):
        data = services.transfer_report()

        self.assertEqual(data['summary']['total_transfers'], 2)
        self.assertEqual(data['summary']['total_quantity'], 22)
        self.assertEqual(data['summary']['total_value'], Decimal('130.00'))
        self.assertEqual(data['summary']['by_status'], {'delivered': 2})

    def test_transfer_report_date_range(self):
        today = timezone.now().date()
        tomorrow = today + timedelta(days=1)

        data = services.transfer_report(start_date=today.isoformat(), end_date=today.isoformat())
        self.assertEqual(data['summary']['total_transfers'], 2)

        data = services.transfer_report(start_date=tomorrow.isoformat(), end_date=tomorrow.isoformat())
        self.assertEqual(data['summary']['total_transfers'], 0)

    def test_transfer_report_branch(self):
        data = services.transfer_report(branch_id='RIV001')
        self.assertEqual([row['item']['code'] for row in data['transfers']], ['CAK001'])

    def test_transfer_report_invalid_dates(self):
        with self.assertRaises(StockValidationError):
            services.transfer_report(start_date='yesterday', end_date='today')

    def test_financial_report(self):
        data = services.financial_report()

        self.assertEqual(data['inventory_value']['total'], Decimal('130.00'))
        self.assertEqual(data['transfer_stats']['total_transfers'], 2)
        self.assertEqual(data['transfer_stats']['total_quantity'], 22)
        self.assertEqual(data['transfer_stats']['avg_transfer_value'], Decimal('65.00'))
        self.assertEqual(data['financial']['expenses']['ingredients'], Decimal('78.00'))
        self.assertEqual(data['financial']['expenses']['labor'], Decimal('85000.00'))
        self.assertEqual(data['financial']['revenue']['monthly'], 130)
        self.assertEqual(len(data['trends']['monthly']), 3)

    def test_alerts_report(self):
        Inventory.objects.create(item=self.cake, branch=self.downtown, current_stock=0)

        data = services.alerts_report()

        self.assertEqual(data['summary'], {'critical': 1, 'warning': 1, 'total': 2})
        self.assertEqual(data['alerts'][0]['alert_level'], 'critical')


class ReportAPITestCase(ReportFixturesMixin, APITestCase):

    def setUp(self):
        self.create_fixtures()

    def test_endpoints_respond(self):
        for path in [
            '/api/reports/overview/',
            '/api/reports/dashboard/',
            '/api/reports/inventory/',
            '/api/reports/branches/',
            '/api/reports/transfers/',
            '/api/reports/financial/',
            '/api/reports/alerts/',
        ]:
            with self.subTest(path=path):
                response = self.client.get(path)
                self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_invalid_stock_status(self):
        response = self.client.get('/api/reports/inventory/', {'stock_status': 'bogus'})

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'ValidationError')

    def test_unknown_branch(self):
        response = self.client.get('/api/reports/transfers/', {'branch_id': 'NOPE01'})

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'NotFound')
