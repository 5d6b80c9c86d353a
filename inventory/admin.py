"""
Django Admin configuration for the catalogue, branches and ledger.
"""
from django.contrib import admin
from .models import Item, Branch, Inventory


class InventoryInline(admin.TabularInline):
    model = Inventory
    extra = 0
    fields = ['item', 'current_stock', 'reorder_point', 'max_stock_level', 'last_restocked']
    readonly_fields = ['last_restocked']
    raw_id_fields = ['item']


@admin.register(Item)
class ItemAdmin(admin.ModelAdmin):
    list_display = ['code', 'name', 'category', 'price', 'stock', 'is_active', 'updated_at']
    list_filter = ['category', 'is_active']
    search_fields = ['code', 'name', 'description']
    ordering = ['code']


@admin.register(Branch)
class BranchAdmin(admin.ModelAdmin):
    list_display = ['code', 'name', 'city', 'status', 'is_central', 'inventory_count', 'created_at']
    list_filter = ['status', 'city']
    search_fields = ['code', 'name', 'city', 'manager_name']
    ordering = ['code']
    inlines = [InventoryInline]

    def is_central(self, obj):
        return obj.is_central
    is_central.boolean = True
    is_central.short_description = 'Central'

    def inventory_count(self, obj):
        return obj.inventories.count()
    inventory_count.short_description = 'Ledger Rows'


@admin.register(Inventory)
class InventoryAdmin(admin.ModelAdmin):
    list_display = ['id', 'branch', 'item', 'current_stock', 'reorder_point', 'stock_status', 'last_updated']
    list_filter = ['branch', 'item__category']
    search_fields = ['item__code', 'item__name', 'branch__code', 'branch__name']
    ordering = ['branch', 'item']
    raw_id_fields = ['branch', 'item']

    def stock_status(self, obj):
        return Inventory.StockStatus(obj.stock_status).label
    stock_status.short_description = 'Status'
