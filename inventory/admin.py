from django.contrib import admin
from .models import (
    Category, Supplier, Warehouse, Product, ProductVariant, ComboItem,
    WarehouseStock, StockMovement, ProductSerial,
    StockTransaction, StockTransactionItem, Transfer, TransferItem,
    StocktakeSession, StocktakeItem, StocktakeCountEvent,
)


class ReadOnlyAdminMixin:
    """Ledger rows are written by the inventory services only."""

    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Category)
class CategoryAdmin(admin.ModelAdmin):
    list_display = ['name', 'parent', 'business', 'created_at']
    search_fields = ['name']
    list_filter = ['business']
    readonly_fields = ['id', 'created_at', 'updated_at']
    ordering = ['name']


@admin.register(Supplier)
class SupplierAdmin(admin.ModelAdmin):
    list_display = ['name', 'contact_person', 'phone_number', 'business', 'created_at']
    search_fields = ['name', 'contact_person', 'phone_number']
    list_filter = ['business']
    readonly_fields = ['id', 'created_at', 'updated_at']
    ordering = ['name']


@admin.register(Warehouse)
class WarehouseAdmin(admin.ModelAdmin):
    list_display = ['name', 'code', 'business', 'manager', 'is_default', 'is_active', 'created_at']
    search_fields = ['name', 'code', 'address']
    list_filter = ['business', 'is_default', 'is_active']
    readonly_fields = ['id', 'is_default', 'created_at', 'updated_at']
    ordering = ['name']


class ProductVariantInline(admin.TabularInline):
    model = ProductVariant
    extra = 0


class ComboItemInline(admin.TabularInline):
    model = ComboItem
    fk_name = 'combo'
    extra = 0


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ['name', 'sku', 'category', 'unit', 'is_combo', 'has_serial', 'is_active']
    search_fields = ['name', 'sku', 'barcode']
    list_filter = ['business', 'category', 'is_combo', 'has_serial', 'is_active']
    readonly_fields = ['id', 'created_at', 'updated_at']
    ordering = ['name']
    inlines = [ProductVariantInline, ComboItemInline]

    fieldsets = (
        ('Basic Information', {
            'fields': ('id', 'business', 'name', 'sku', 'barcode', 'category', 'unit', 'is_active')
        }),
        ('Stock Behaviour', {
            'fields': ('is_combo', 'has_serial', 'min_stock')
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )


@admin.register(WarehouseStock)
class WarehouseStockAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ['product', 'warehouse', 'quantity', 'updated_at']
    search_fields = ['product__name', 'product__sku', 'warehouse__name', 'warehouse__code']
    list_filter = ['warehouse']


@admin.register(StockMovement)
class StockMovementAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ['created_at', 'reference', 'product', 'warehouse', 'delta', 'quantity_after', 'source', 'created_by']
    search_fields = ['reference', 'product__sku', 'product__name', 'warehouse__code']
    list_filter = ['source', 'movement_type', 'warehouse']
    date_hierarchy = 'created_at'


@admin.register(ProductSerial)
class ProductSerialAdmin(admin.ModelAdmin):
    list_display = ['serial_number', 'product', 'warehouse', 'status', 'created_at']
    search_fields = ['serial_number', 'product__sku']
    list_filter = ['status', 'warehouse']
    readonly_fields = ['id', 'source_transaction', 'created_by', 'created_at']


class StockTransactionItemInline(admin.TabularInline):
    model = StockTransactionItem
    extra = 0
    readonly_fields = ['line_number', 'product', 'product_sku', 'product_name', 'quantity', 'unit_price', 'total_price', 'serials']
    can_delete = False


@admin.register(StockTransaction)
class StockTransactionAdmin(admin.ModelAdmin):
    list_display = ['reference_number', 'transaction_type', 'origin', 'warehouse', 'approval_status', 'total_amount', 'created_at']
    search_fields = ['reference_number', 'partner_name', 'partner_phone']
    list_filter = ['transaction_type', 'origin', 'approval_status', 'warehouse']
    readonly_fields = [
        'id', 'reference_number', 'approval_status', 'approved_by', 'approved_at',
        'stock_applied_at', 'total_amount', 'created_at', 'updated_at',
    ]
    inlines = [StockTransactionItemInline]


class TransferItemInline(admin.TabularInline):
    model = TransferItem
    extra = 0
    readonly_fields = ['product', 'sent_quantity', 'received_quantity', 'variance']
    can_delete = False


@admin.register(Transfer)
class TransferAdmin(admin.ModelAdmin):
    list_display = ['reference_number', 'source_warehouse', 'destination_warehouse', 'status', 'created_at', 'received_at']
    search_fields = ['reference_number', 'notes']
    list_filter = ['status', 'source_warehouse', 'destination_warehouse']
    readonly_fields = [
        'id', 'reference_number', 'status', 'dispatched_at', 'dispatched_by',
        'received_at', 'received_by', 'cancelled_at', 'cancelled_by', 'created_at', 'updated_at',
    ]
    inlines = [TransferItemInline]


class StocktakeItemInline(admin.TabularInline):
    model = StocktakeItem
    extra = 0
    fields = ['product_sku', 'product_name', 'variant_name', 'system_quantity', 'actual_quantity', 'adjusted', 'adjustment_error']
    readonly_fields = fields
    can_delete = False


@admin.register(StocktakeSession)
class StocktakeSessionAdmin(admin.ModelAdmin):
    list_display = ['reference_number', 'warehouse', 'status', 'total_diff', 'adjusted_count', 'failed_count', 'created_at']
    search_fields = ['reference_number', 'note']
    list_filter = ['status', 'warehouse']
    readonly_fields = [
        'id', 'reference_number', 'status', 'over_total', 'under_total', 'total_diff',
        'adjusted_count', 'failed_count', 'adjustment_errors', 'started_at', 'completed_at',
        'completed_by', 'cancelled_at', 'created_at', 'updated_at',
    ]
    inlines = [StocktakeItemInline]


@admin.register(StocktakeCountEvent)
class StocktakeCountEventAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ['session', 'item', 'sequence', 'kind', 'value', 'applied_at', 'superseded']
    list_filter = ['kind', 'superseded']
