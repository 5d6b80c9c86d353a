"""
Inventory API Views.

Implements:
- CRUD for Item and Branch, plus the administrative central stock reset
- Branch status changes and city lookup
- Ledger reads (branch inventory, central bakery stock, alerts, summary)
- Stock updates (add / set / subtract) on a single ledger row
"""
import logging

from django.db.models import Q
from rest_framework import generics
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import InventoryError, error_response
from .models import Item, Branch
from .serializers import (
    ItemSerializer,
    CentralStockSerializer,
    BranchSerializer,
    BranchStatusSerializer,
    InventorySerializer,
    StockUpdateSerializer,
)
from . import services

logger = logging.getLogger(__name__)


# =============================================================================
# Item Views
# =============================================================================

class ItemListCreateView(generics.ListCreateAPIView):
    """
    GET: List items
    POST: Create an item

    Query Parameters:
        - search: Substring of code, name or description
        - category: Category name ("all" disables the filter)
        - active: "true" (default), "false" or "all"
    """
    serializer_class = ItemSerializer

    def get_queryset(self):
        queryset = Item.objects.all()

        active = self.request.query_params.get('active', 'true').lower()
        if active == 'true':
            queryset = queryset.filter(is_active=True)
        elif active == 'false':
            queryset = queryset.filter(is_active=False)

        category = self.request.query_params.get('category', '').strip()
        if category and category != 'all':
            queryset = queryset.filter(category=category)

        search = self.request.query_params.get('search', '').strip()
        if search:
            queryset = queryset.filter(
                Q(code__icontains=search) |
                Q(name__icontains=search) |
                Q(description__icontains=search)
            )

        return queryset.order_by('-created_at', '-id')


class ItemDetailView(generics.RetrieveUpdateDestroyAPIView):
    """
    GET: Retrieve an item
    PUT/PATCH: Update an item
    DELETE: Permanently delete an item
    """
    queryset = Item.objects.all()
    serializer_class = ItemSerializer

    def destroy(self, request, *args, **kwargs):
        item = self.get_object()
        data = self.get_serializer(item).data
        item.delete()
        logger.info(f"Item {data['code']} permanently deleted")
        return Response({'message': 'Item permanently deleted', 'item': data})


class ItemCategoriesView(APIView):
    """GET: Known categories merged with those present in the database."""

    def get(self, request):
        in_use = Item.objects.order_by().values_list('category', flat=True).distinct()
        categories = sorted(set(Item.Category.values) | {c for c in in_use if c})
        return Response({'categories': categories})


class ResetStockView(APIView):
    """POST: Set the central stock of every item to zero."""

    def post(self, request):
        modified = services.reset_all_stocks()
        return Response({
            'message': 'All item stocks reset to zero',
            'modified_count': modified
        })


# =============================================================================
# Branch Views
# =============================================================================

class BranchPagination(PageNumberPagination):
    page_size = 10
    page_size_query_param = 'limit'
    max_page_size = 100

    def get_paginated_response(self, data):
        return Response({
            'results': data,
            'pagination': {
                'total': self.page.paginator.count,
                'pages': self.page.paginator.num_pages,
                'current': self.page.number,
                'per_page': self.get_page_size(self.request),
            }
        })


class BranchListCreateView(generics.ListCreateAPIView):
    """
    GET: List branches, paginated
    POST: Create a branch (code generated from the name when omitted)

    Query Parameters:
        - search: Substring of name, city or code
        - status: active / inactive / maintenance ("all" disables the filter)
        - city: Exact city
        - page, limit: Pagination
    """
    serializer_class = BranchSerializer
    pagination_class = BranchPagination

    def get_queryset(self):
        queryset = Branch.objects.all()

        search = self.request.query_params.get('search', '').strip()
        if search:
            queryset = queryset.filter(
                Q(name__icontains=search) |
                Q(city__icontains=search) |
                Q(code__icontains=search)
            )

        status_filter = self.request.query_params.get('status', '').strip()
        if status_filter and status_filter != 'all':
            queryset = queryset.filter(status=status_filter)

        city = self.request.query_params.get('city', '').strip()
        if city:
            queryset = queryset.filter(city=city)

        return queryset.order_by('-created_at', '-id')


class BranchDetailView(generics.RetrieveUpdateDestroyAPIView):
    """
    GET: Retrieve a branch
    PUT/PATCH: Update a branch
    DELETE: Permanently delete a branch
    """
    queryset = Branch.objects.all()
    serializer_class = BranchSerializer


class BranchStatusView(generics.GenericAPIView):
    """PATCH: Change branch status (active / inactive / maintenance)."""
    queryset = Branch.objects.all()
    serializer_class = BranchStatusSerializer

    def patch(self, request, pk):
        branch = self.get_object()
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        branch.status = serializer.validated_data['status']
        branch.save(update_fields=['status', 'updated_at'])
        logger.info(f"Branch {branch.code} status set to {branch.status}")
        return Response(BranchSerializer(branch).data)


class BranchCitiesView(APIView):
    """GET: Distinct branch cities, for filters."""

    def get(self, request):
        cities = Branch.objects.order_by('city').values_list('city', flat=True).distinct()
        return Response({'cities': list(cities)})


# =============================================================================
# Ledger Views
# =============================================================================

class BranchInventoryView(generics.ListAPIView):
    """
    GET: Ledger rows of a branch (by id or code).

    Query Parameters:
        - low_stock: "true" to keep rows at or below their reorder point
    """
    serializer_class = InventorySerializer

    def get_queryset(self):
        low_stock = self.request.query_params.get('low_stock', '').lower() == 'true'
        return services.get_branch_inventory(self.kwargs['branch_ref'], low_stock_only=low_stock)


class CentralInventoryView(generics.ListAPIView):
    """GET: Quantities held at the central bakery."""
    serializer_class = CentralStockSerializer

    def get_queryset(self):
        return services.get_central_inventory()


class StockUpdateView(APIView):
    """
    PATCH: Apply a stock operation to one ledger row.

    Request Body:
    {
        "item_id": 1,
        "branch_id": 2,
        "quantity": 10,
        "operation": "add" | "set" | "subtract"
    }
    """

    def patch(self, request):
        serializer = StockUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            row = services.update_stock(
                data['item_id'],
                data['branch_id'],
                data['quantity'],
                data['operation']
            )
        except InventoryError as e:
            logger.warning(f"Stock update rejected: {e}")
            return error_response(e)

        row = services.get_branch_inventory(row.branch).get(pk=row.pk)
        return Response({
            'message': 'Stock updated successfully',
            'inventory': InventorySerializer(row).data
        })


class InventoryAlertsView(APIView):
    """
    GET: Ledger rows needing attention, partitioned by kind.

    Query Parameters:
        - branch_id: Restrict to one branch (id or code)
    """

    def get(self, request):
        try:
            alerts = services.get_alerts(request.query_params.get('branch_id'))
        except InventoryError as e:
            return error_response(e)

        return Response({
            'alerts': {
                kind: InventorySerializer(rows, many=True).data
                for kind, rows in alerts.items()
            }
        })


class InventorySummaryView(APIView):
    """GET: Ledger totals and category breakdown."""

    def get(self, request):
        return Response(services.compute_summary())
