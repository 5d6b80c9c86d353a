"""
Serializers for inventory models.
Provides data validation and JSON conversion for API endpoints.
"""
from decimal import Decimal, ROUND_HALF_UP

from django.db import IntegrityError
from rest_framework import serializers

from core.exceptions import DuplicateCodeError, MissingRequiredFieldError
from .models import Item, Branch, Inventory
from .services import generate_branch_code
from .utils import normalize_code


class PriceField(serializers.DecimalField):
    """Decimal field that rounds to cents instead of rejecting extra places."""

    def validate_precision(self, value):
        return super().validate_precision(
            value.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
        )


class ItemSerializer(serializers.ModelSerializer):
    """
    Serializer for Item; codes are normalized and must stay unique.

    ``stock`` is accepted on create only. Afterwards the central stock is
    changed by transfers and the reset, never by an item update.
    """
    price = PriceField(max_digits=10, decimal_places=2, min_value=Decimal('0.00'))

    class Meta:
        model = Item
        fields = [
            'id', 'code', 'name', 'category', 'description',
            'ingredients', 'allergens', 'price', 'stock', 'is_active',
            'created_at', 'updated_at'
        ]
        read_only_fields = ['id', 'created_at', 'updated_at']
        extra_kwargs = {
            # Uniqueness is checked in validate_code with a domain error
            'code': {'validators': []},
        }

    def get_fields(self):
        fields = super().get_fields()
        if self.instance is not None:
            fields['stock'] = serializers.IntegerField(read_only=True)
        return fields

    def update(self, instance, validated_data):
        for attr, value in validated_data.items():
            setattr(instance, attr, value)
        # Write only the columns sent by the client
        instance.save(update_fields=[*validated_data, 'updated_at'])
        return instance

    def validate_code(self, value):
        code = normalize_code(value)
        if not code:
            raise serializers.ValidationError("Item code is required")
        clash = Item.objects.filter(code=code)
        if self.instance is not None:
            clash = clash.exclude(pk=self.instance.pk)
        if clash.exists():
            if self.instance is None:
                raise DuplicateCodeError(f"Item code {code} already exists")
            raise DuplicateCodeError(f"Another item already uses code {code}")
        return code


class ItemMinimalSerializer(serializers.ModelSerializer):
    """Minimal serializer for nested item representation."""
    class Meta:
        model = Item
        fields = ['id', 'code', 'name', 'category', 'price']


class CentralStockSerializer(serializers.ModelSerializer):
    """Item with the quantity held at the central bakery."""
    class Meta:
        model = Item
        fields = ['id', 'code', 'name', 'category', 'price', 'stock', 'updated_at']


class BranchSerializer(serializers.ModelSerializer):
    """
    Serializer for Branch.

    ``code`` is optional on create and generated from the name when absent.
    """
    inventory_count = serializers.SerializerMethodField()

    class Meta:
        model = Branch
        fields = [
            'id', 'name', 'code', 'street', 'city', 'state', 'zip_code', 'country',
            'phone', 'email', 'fax', 'operating_hours',
            'manager_name', 'manager_email', 'manager_phone',
            'status', 'seating_capacity', 'staff_capacity', 'description',
            'inventory_count', 'created_at', 'updated_at'
        ]
        read_only_fields = ['id', 'created_at', 'updated_at']
        extra_kwargs = {
            'name': {'required': False, 'allow_blank': True},
            'city': {'required': False, 'allow_blank': True},
            'phone': {'required': False, 'allow_blank': True},
            'code': {'required': False, 'allow_blank': True, 'validators': []},
        }

    def get_inventory_count(self, obj):
        return obj.inventories.count()

    def validate_code(self, value):
        code = normalize_code(value)
        if not code:
            return code
        clash = Branch.objects.filter(code=code)
        if self.instance is not None:
            clash = clash.exclude(pk=self.instance.pk)
        if clash.exists():
            raise DuplicateCodeError(f"Branch code {code} already exists")
        return code

    def validate(self, attrs):
        required = ('name', 'city', 'phone')
        if self.instance is None:
            missing = [field for field in required if not str(attrs.get(field) or '').strip()]
        else:
            missing = [
                field for field in required
                if field in attrs and not str(attrs[field] or '').strip()
            ]
        if missing:
            raise MissingRequiredFieldError(missing)

        if self.instance is not None and 'code' in attrs and not attrs['code']:
            # Keep the existing code instead of blanking it
            attrs.pop('code')
        return attrs

    def create(self, validated_data):
        if not validated_data.get('code'):
            validated_data['code'] = generate_branch_code(validated_data['name'])
        try:
            return super().create(validated_data)
        except IntegrityError:
            raise DuplicateCodeError(f"Branch code {validated_data['code']} already exists")


class BranchMinimalSerializer(serializers.ModelSerializer):
    """Minimal serializer for nested branch representation."""
    class Meta:
        model = Branch
        fields = ['id', 'name', 'code']


class BranchStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Branch.Status.choices)


class InventorySerializer(serializers.ModelSerializer):
    """
    Ledger row with item and branch denormalized for display.
    Uses select_related('item', 'branch') in the service layer.
    """
    item = ItemMinimalSerializer(read_only=True)
    branch = BranchMinimalSerializer(read_only=True)
    stock_status = serializers.CharField(read_only=True)
    days_until_reorder = serializers.IntegerField(read_only=True, allow_null=True)
    stock_value = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)

    class Meta:
        model = Inventory
        fields = [
            'id', 'item', 'branch', 'current_stock',
            'min_stock_level', 'max_stock_level', 'reorder_point',
            'daily_consumption', 'stock_status', 'days_until_reorder',
            'stock_value', 'notes', 'last_restocked', 'last_updated'
        ]


class StockUpdateSerializer(serializers.Serializer):
    """
    Request body for PATCH /inventory/update-stock/

    ``quantity`` and ``operation`` are checked by the service layer so the
    client gets InvalidQuantity / InvalidOperation errors.
    """
    item_id = serializers.CharField()
    branch_id = serializers.CharField()
    quantity = serializers.JSONField()
    operation = serializers.CharField(required=False, default='add')
