"""
Inventory Models - Catalogue, locations and per-branch stock levels.

Models:
    - Item: Bakery catalogue entry; ``stock`` is the central bakery quantity
    - Branch: Retail location (the ``MAIN`` branch is the central bakery)
    - Inventory: Stock level of one item at one branch (unique per pair)
"""
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone

from .utils import normalize_code


class Item(models.Model):
    """
    Catalogue item. Codes are stored trimmed and uppercased.
    """

    class Category(models.TextChoices):
        BREADS = 'Breads', 'Breads'
        PASTRIES = 'Pastries', 'Pastries'
        CAKES = 'Cakes', 'Cakes'
        COOKIES = 'Cookies', 'Cookies'
        OTHERS = 'Others', 'Others'

    code = models.CharField(
        max_length=30,
        unique=True,
        help_text="Unique item code (uppercase)"
    )
    name = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Item name"
    )
    category = models.CharField(
        max_length=20,
        choices=Category.choices,
        db_index=True
    )
    description = models.TextField(max_length=500, blank=True, default='')
    ingredients = models.TextField(blank=True, default='')
    allergens = models.CharField(max_length=255, blank=True, default='')
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.00'))],
        help_text="Unit price (non-negative)"
    )
    stock = models.PositiveIntegerField(
        default=0,
        help_text="Quantity held at the central bakery"
    )
    is_active = models.BooleanField(default=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Item'
        verbose_name_plural = 'Items'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['category', 'is_active'], name='item_category_active_idx'),
        ]

    def __str__(self):
        return f"{self.code} - {self.name}"

    def save(self, *args, **kwargs):
        self.code = normalize_code(self.code)
        if self.price is not None:
            self.price = Decimal(str(self.price)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
        super().save(*args, **kwargs)


class Branch(models.Model):
    """
    Branch location. Transfers flow from the central bakery to branches
    and between branches.
    """

    class Status(models.TextChoices):
        ACTIVE = 'active', 'Active'
        INACTIVE = 'inactive', 'Inactive'
        MAINTENANCE = 'maintenance', 'Maintenance'

    name = models.CharField(max_length=100, db_index=True)
    code = models.CharField(
        max_length=10,
        unique=True,
        help_text="Unique branch code (uppercase)"
    )
    street = models.CharField(max_length=200, blank=True, default='')
    city = models.CharField(max_length=100, db_index=True)
    state = models.CharField(max_length=100, blank=True, default='')
    zip_code = models.CharField(max_length=20, blank=True, default='')
    country = models.CharField(max_length=100, default='USA')
    phone = models.CharField(max_length=30)
    email = models.EmailField(blank=True, default='')
    fax = models.CharField(max_length=30, blank=True, default='')
    operating_hours = models.JSONField(
        default=dict,
        blank=True,
        help_text="Weekday -> {'open': 'HH:MM', 'close': 'HH:MM'}"
    )
    manager_name = models.CharField(max_length=100, blank=True, default='')
    manager_email = models.EmailField(blank=True, default='')
    manager_phone = models.CharField(max_length=30, blank=True, default='')
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.ACTIVE,
        db_index=True
    )
    seating_capacity = models.PositiveIntegerField(null=True, blank=True)
    staff_capacity = models.PositiveIntegerField(null=True, blank=True)
    description = models.TextField(max_length=500, blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Branch'
        verbose_name_plural = 'Branches'
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.name} ({self.code})"

    def save(self, *args, **kwargs):
        self.code = normalize_code(self.code)
        super().save(*args, **kwargs)

    @property
    def is_central(self) -> bool:
        return self.code == normalize_code(settings.CENTRAL_BRANCH_CODE)


class Inventory(models.Model):
    """
    Stock level of an item at a branch.

    Constraint: exactly one row per item per branch.
    """

    class StockStatus(models.TextChoices):
        OUT_OF_STOCK = 'out_of_stock', 'Out of stock'
        LOW = 'low', 'Low'
        OVERSTOCKED = 'overstocked', 'Overstocked'
        NORMAL = 'normal', 'Normal'

    item = models.ForeignKey(
        Item,
        on_delete=models.CASCADE,
        related_name='inventories'
    )
    branch = models.ForeignKey(
        Branch,
        on_delete=models.CASCADE,
        related_name='inventories'
    )
    current_stock = models.PositiveIntegerField(default=0)
    min_stock_level = models.PositiveIntegerField(default=10)
    max_stock_level = models.PositiveIntegerField(default=100)
    reorder_point = models.PositiveIntegerField(default=15)
    daily_consumption = models.PositiveIntegerField(default=0)
    notes = models.TextField(max_length=500, blank=True, default='')
    last_restocked = models.DateTimeField(default=timezone.now)
    last_updated = models.DateTimeField(auto_now=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = 'Inventory'
        verbose_name_plural = 'Inventories'
        ordering = ['branch', 'item']
        constraints = [
            models.UniqueConstraint(
                fields=['item', 'branch'],
                name='unique_item_branch_inventory'
            )
        ]
        indexes = [
            models.Index(fields=['branch', 'current_stock'], name='inventory_branch_stock_idx'),
        ]

    def __str__(self):
        return f"{self.item.code} @ {self.branch.code}: {self.current_stock} units"

    @property
    def stock_status(self) -> str:
        if self.current_stock == 0:
            return self.StockStatus.OUT_OF_STOCK
        if self.current_stock <= self.reorder_point:
            return self.StockStatus.LOW
        if self.current_stock >= self.max_stock_level:
            return self.StockStatus.OVERSTOCKED
        return self.StockStatus.NORMAL

    @property
    def is_low_stock(self) -> bool:
        return self.current_stock <= self.reorder_point

    @property
    def is_out_of_stock(self) -> bool:
        return self.current_stock == 0

    @property
    def days_until_reorder(self):
        if not self.daily_consumption:
            return None
        return max(0, (self.current_stock - self.reorder_point) // self.daily_consumption)

    @property
    def stock_value(self) -> Decimal:
        return self.current_stock * self.item.price
