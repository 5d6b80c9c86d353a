"""
Serializers for transfer records and transfer requests.
"""
from rest_framework import serializers

from inventory.serializers import BranchMinimalSerializer, ItemMinimalSerializer
from .models import Transfer


class TransferSerializer(serializers.ModelSerializer):
    """
    Transfer with item and branches populated.
    ``from_branch`` is null for transfers out of the central bakery.
    """
    item = ItemMinimalSerializer(read_only=True)
    from_branch = BranchMinimalSerializer(read_only=True, allow_null=True)
    to_branch = BranchMinimalSerializer(read_only=True)
    source = serializers.CharField(source='source_label', read_only=True)

    class Meta:
        model = Transfer
        fields = [
            'id', 'tracking_number', 'item', 'from_branch', 'to_branch',
            'source', 'quantity', 'status', 'notes',
            'request_date', 'approved_date', 'delivery_date',
            'expected_delivery_date', 'created_at'
        ]
        read_only_fields = fields


class TransferByCodeSerializer(serializers.Serializer):
    """
    Request body for POST /transfers/ (central bakery to branch)

    {
        "item_code": "BRD001",
        "branch_code": "DTN001",
        "quantity": 20
    }
    """
    item_code = serializers.CharField()
    branch_code = serializers.CharField()
    quantity = serializers.JSONField()
    notes = serializers.CharField(required=False, allow_blank=True, default='', max_length=500)


class BranchTransferSerializer(serializers.Serializer):
    """
    Request body for POST /transfers/branch/ (branch to branch)

    {
        "item_id": 1,
        "from_branch_id": 2,
        "to_branch_id": 3,
        "quantity": 5,
        "notes": "weekend top-up"
    }
    """
    item_id = serializers.CharField()
    from_branch_id = serializers.CharField()
    to_branch_id = serializers.CharField()
    quantity = serializers.JSONField()
    notes = serializers.CharField(required=False, allow_blank=True, default='', max_length=500)


class DriftSerializer(serializers.Serializer):
    item_id = serializers.IntegerField()
    item_code = serializers.CharField(allow_null=True)
    ledger = serializers.IntegerField()
    replayed = serializers.IntegerField()
    difference = serializers.IntegerField()


class ReconciliationSerializer(serializers.Serializer):
    branch = BranchMinimalSerializer()
    is_sink = serializers.BooleanField()
    items_checked = serializers.IntegerField()
    drift = DriftSerializer(many=True)
