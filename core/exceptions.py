"""
Error taxonomy shared by the inventory, transfer and report apps.

Every domain error carries a machine-readable ``kind`` and the HTTP status
it maps to, so views can answer with ``{"error": kind, "detail": message}``.
"""
import logging

from rest_framework import status
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class InventoryError(Exception):
    """Base class for domain errors raised by the service layer."""
    kind = 'InventoryError'
    status_code = status.HTTP_400_BAD_REQUEST
    retryable = False

    def __init__(self, message: str = ''):
        self.message = message or self.kind
        super().__init__(self.message)

    def as_payload(self) -> dict:
        payload = {'error': self.kind, 'detail': self.message}
        if self.retryable:
            payload['retryable'] = True
        return payload


class NotFoundError(InventoryError):
    kind = 'NotFound'
    status_code = status.HTTP_404_NOT_FOUND


class DuplicateCodeError(InventoryError):
    kind = 'DuplicateCode'


class InvalidQuantityError(InventoryError):
    kind = 'InvalidQuantity'


class InsufficientStockError(InventoryError):
    """Raised when the transfer source holds less than the requested quantity."""
    kind = 'InsufficientStock'

    def __init__(self, item_code: str, requested: int, available: int):
        self.item_code = item_code
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for item {item_code}: "
            f"requested {requested}, available {available}"
        )


class SameBranchError(InventoryError):
    kind = 'SameBranch'


class InvalidOperationError(InventoryError):
    kind = 'InvalidOperation'


class MissingRequiredFieldError(InventoryError):
    kind = 'MissingRequiredField'

    def __init__(self, fields):
        self.fields = list(fields)
        super().__init__(f"Missing required fields: {', '.join(self.fields)}")


class StockValidationError(InventoryError):
    kind = 'ValidationError'


class ConcurrencyConflictError(InventoryError):
    kind = 'ConcurrencyConflict'
    status_code = status.HTTP_409_CONFLICT
    retryable = True


class OperationTimeoutError(InventoryError):
    kind = 'Timeout'
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True


def error_response(exc: InventoryError) -> Response:
    """Render a domain error as a DRF response."""
    return Response(exc.as_payload(), status=exc.status_code)


def _flatten(detail, prefix=''):
    if isinstance(detail, dict):
        messages = []
        for field, value in detail.items():
            label = field if field != 'non_field_errors' else ''
            messages.extend(_flatten(value, f"{prefix}{label}: " if label else prefix))
        return messages
    if isinstance(detail, (list, tuple)):
        messages = []
        for value in detail:
            messages.extend(_flatten(value, prefix))
        return messages
    return [f"{prefix}{detail}"]


def api_exception_handler(exc, context):
    """
    DRF exception handler giving every error the same response shape.

    Domain errors that escape a view (for instance raised from a serializer)
    are rendered directly; DRF validation errors are aggregated into a
    single message.
    """
    if isinstance(exc, InventoryError):
        logger.warning(f"{exc.kind}: {exc.message}")
        return error_response(exc)

    response = exception_handler(exc, context)
    if response is None:
        return None

    if isinstance(exc, ValidationError):
        response.data = {
            'error': 'ValidationError',
            'detail': '; '.join(_flatten(exc.detail)),
        }
    elif response.status_code == status.HTTP_404_NOT_FOUND:
        response.data = {'error': 'NotFound', 'detail': 'Not found.'}
    else:
        detail = response.data.get('detail', '') if isinstance(response.data, dict) else response.data
        response.data = {
            'error': getattr(exc, 'default_code', exc.__class__.__name__),
            'detail': str(detail),
        }
    return response
