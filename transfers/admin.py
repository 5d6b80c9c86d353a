"""
Django Admin configuration for the transfer log.

Transfers are append-only, so every field is read-only here.
"""
from django.contrib import admin
from .models import Transfer


@admin.register(Transfer)
class TransferAdmin(admin.ModelAdmin):
    list_display = ['tracking_number', 'item', 'source', 'to_branch', 'quantity', 'status', 'request_date']
    list_filter = ['status', 'to_branch', 'request_date']
    search_fields = ['tracking_number', 'item__code', 'to_branch__code', 'from_branch__code']
    ordering = ['-request_date']
    readonly_fields = [
        'tracking_number', 'item', 'from_branch', 'to_branch', 'quantity', 'status',
        'notes', 'request_date', 'approved_date', 'delivery_date',
        'expected_delivery_date', 'created_at', 'updated_at'
    ]

    def source(self, obj):
        return obj.source_label
    source.short_description = 'From'

    def has_add_permission(self, request):
        return False
