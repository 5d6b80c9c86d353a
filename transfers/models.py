"""
Transfer Models - Append-only log of stock movements.

Status Flow:
    PENDING -> IN_TRANSIT -> DELIVERED
    PENDING -> CANCELLED

Transfers created by the orchestrator are written as DELIVERED.
A null ``from_branch`` means the central bakery.
"""
import random
import string
import time

from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone

from inventory.models import Branch, Item

_BASE36 = string.digits + string.ascii_uppercase


def _to_base36(number: int) -> str:
    digits = ''
    while number:
        number, remainder = divmod(number, 36)
        digits = _BASE36[remainder] + digits
    return digits or '0'


def generate_tracking_number() -> str:
    """``TRF`` + base-36 millisecond timestamp + 3 random base-36 chars."""
    suffix = ''.join(random.choices(_BASE36, k=3))
    return f"TRF{_to_base36(int(time.time() * 1000))}{suffix}"


class Transfer(models.Model):
    """
    A recorded movement of ``quantity`` units of one item into ``to_branch``.
    """

    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        IN_TRANSIT = 'in_transit', 'In transit'
        DELIVERED = 'delivered', 'Delivered'
        CANCELLED = 'cancelled', 'Cancelled'

    tracking_number = models.CharField(
        max_length=32,
        unique=True,
        editable=False,
        help_text="Generated unique tracking number"
    )
    item = models.ForeignKey(
        Item,
        on_delete=models.CASCADE,
        related_name='transfers'
    )
    from_branch = models.ForeignKey(
        Branch,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='outgoing_transfers',
        help_text="Source branch; empty for the central bakery"
    )
    to_branch = models.ForeignKey(
        Branch,
        on_delete=models.CASCADE,
        related_name='incoming_transfers'
    )
    quantity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.DELIVERED,
        db_index=True
    )
    notes = models.TextField(max_length=500, blank=True, default='')
    request_date = models.DateTimeField(default=timezone.now, db_index=True)
    approved_date = models.DateTimeField(null=True, blank=True)
    delivery_date = models.DateTimeField(null=True, blank=True)
    expected_delivery_date = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Transfer'
        verbose_name_plural = 'Transfers'
        ordering = ['-request_date']
        indexes = [
            models.Index(fields=['to_branch', 'status'], name='transfer_to_status_idx'),
            models.Index(fields=['from_branch', 'status'], name='transfer_from_status_idx'),
        ]

    def __str__(self):
        return f"{self.tracking_number}: {self.quantity}x {self.item.code} -> {self.to_branch.code}"

    def save(self, *args, **kwargs):
        if not self.tracking_number:
            self.tracking_number = generate_tracking_number()
        super().save(*args, **kwargs)

    @property
    def is_from_central(self) -> bool:
        return self.from_branch_id is None

    @property
    def source_label(self) -> str:
        return self.from_branch.name if self.from_branch_id else 'Central bakery'
