"""
Transfer API Views.

Implements:
- POST /transfers/ - Central bakery to branch transfer by codes
- POST /transfers/branch/ - Branch to branch transfer
- GET /transfers/history/ - Transfer log, newest first
- GET /transfers/{tracking_number}/ - Single transfer
- GET /transfers/reconcile/{branch}/ - Ledger vs transfer log comparison
"""
import logging

from rest_framework import generics, status
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import InventoryError, error_response
from core.rate_limiting import rate_limit
from .models import Transfer
from .serializers import (
    TransferSerializer,
    TransferByCodeSerializer,
    BranchTransferSerializer,
    ReconciliationSerializer,
)
from . import services

logger = logging.getLogger(__name__)


class TransferCreateView(APIView):
    """
    POST: Move stock from the central bakery to a branch.

    Returns:
        - 201: Transfer delivered
        - 400: Invalid quantity, insufficient central stock, transfer to MAIN
        - 404: Item or branch code not found
        - 409/503: Retryable concurrency conflict or timeout
    """

    @rate_limit(window_seconds=60)
    def post(self, request):
        serializer = TransferByCodeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            transfer = services.transfer_by_code(
                data['item_code'],
                data['branch_code'],
                data['quantity'],
                notes=data['notes']
            )
        except InventoryError as e:
            logger.warning(f"Central transfer rejected: {e}")
            return error_response(e)
        except Exception as e:
            logger.exception(f"Unexpected error creating transfer: {e}")
            return Response(
                {'error': 'ServerError', 'detail': 'An unexpected error occurred'},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR
            )

        transfer = Transfer.objects.select_related('item', 'from_branch', 'to_branch').get(pk=transfer.pk)
        return Response({'transfer': TransferSerializer(transfer).data}, status=status.HTTP_201_CREATED)


class BranchTransferCreateView(APIView):
    """
    POST: Move stock between two branches.

    Returns:
        - 201: Transfer delivered
        - 400: Same branch, invalid quantity or insufficient stock at source
        - 404: Item or branch not found
        - 409/503: Retryable concurrency conflict or timeout
    """

    @rate_limit(window_seconds=60)
    def post(self, request):
        serializer = BranchTransferSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            transfer = services.transfer_between_branches(
                data['item_id'],
                data['from_branch_id'],
                data['to_branch_id'],
                data['quantity'],
                notes=data['notes']
            )
        except InventoryError as e:
            logger.warning(f"Branch transfer rejected: {e}")
            return error_response(e)
        except Exception as e:
            logger.exception(f"Unexpected error creating transfer: {e}")
            return Response(
                {'error': 'ServerError', 'detail': 'An unexpected error occurred'},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR
            )

        return Response({'transfer': TransferSerializer(transfer).data}, status=status.HTTP_201_CREATED)


class TransferHistoryView(generics.ListAPIView):
    """
    GET: Transfer log sorted by request date, newest first.

    Query Parameters:
        - item_id: Filter by item (id or code)
        - branch_id: Filter by branch on either side (id or code)
        - status: pending / in_transit / delivered / cancelled
    """
    serializer_class = TransferSerializer

    def get_queryset(self):
        params = self.request.query_params
        return services.get_transfer_history(
            item_id=params.get('item_id'),
            branch_id=params.get('branch_id'),
            status=params.get('status')
        )


class TransferDetailView(generics.RetrieveAPIView):
    """GET: One transfer by tracking number."""
    serializer_class = TransferSerializer
    lookup_field = 'tracking_number'

    def get_queryset(self):
        return Transfer.objects.select_related('item', 'from_branch', 'to_branch')

    def get_object(self):
        self.kwargs['tracking_number'] = self.kwargs['tracking_number'].strip().upper()
        return super().get_object()


class ReconcileBranchView(APIView):
    """GET: Compare a branch ledger with its replayed transfer log."""

    def get(self, request, branch_ref):
        try:
            result = services.reconcile_branch(branch_ref)
        except InventoryError as e:
            return error_response(e)
        return Response(ReconciliationSerializer(result).data)
