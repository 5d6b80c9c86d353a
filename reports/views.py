"""
Report API Views.

All reports are read-only and computed on request.
"""
import logging

from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import InventoryError, error_response
from . import services

logger = logging.getLogger(__name__)


class DashboardView(APIView):
    """GET: Totals, category distribution, branch performance and recent transfers."""

    def get(self, request):
        return Response(services.dashboard_overview())


class InventoryReportView(APIView):
    """
    GET: Ledger rows with stock status and value.

    Query Parameters:
        - branch_id: Branch id or code
        - category: Item category ("all" disables the filter)
        - stock_status: out_of_stock / low / overstocked / normal
    """

    def get(self, request):
        params = request.query_params
        try:
            report = services.inventory_report(
                branch_id=params.get('branch_id'),
                category=params.get('category'),
                stock_status=params.get('stock_status')
            )
        except InventoryError as e:
            return error_response(e)
        return Response(report)


class BranchReportView(APIView):
    """GET: Metrics per active branch."""

    def get(self, request):
        return Response({'branch_reports': services.branch_report()})


class TransferReportView(APIView):
    """
    GET: Transfers with totals by status.

    Query Parameters:
        - start_date, end_date: ISO dates, both required to filter
        - branch_id: Branch on either side (id or code)
        - status: Transfer status ("all" disables the filter)
    """

    def get(self, request):
        params = request.query_params
        try:
            report = services.transfer_report(
                start_date=params.get('start_date'),
                end_date=params.get('end_date'),
                branch_id=params.get('branch_id'),
                status=params.get('status')
            )
        except InventoryError as e:
            logger.warning(f"Transfer report rejected: {e}")
            return error_response(e)
        return Response(report)


class FinancialReportView(APIView):
    """GET: Inventory value, transfer statistics and estimated expenses."""

    def get(self, request):
        return Response(services.financial_report())


class AlertsReportView(APIView):
    """GET: Critical and warning stock levels across all branches."""

    def get(self, request):
        return Response(services.alerts_report())
