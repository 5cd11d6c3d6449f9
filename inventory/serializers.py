from decimal import Decimal

from rest_framework import serializers

from .models import (
    Category,
    ComboItem,
    Product,
    ProductSerial,
    ProductVariant,
    StockMovement,
    StockTransaction,
    StockTransactionItem,
    Supplier,
    Warehouse,
    WarehouseStock,
)


class BusinessScopedSerializerMixin:
    """Reject related objects that belong to another business."""

    def _business(self):
        return self.context.get('business')

    def _check_business(self, obj, field):
        business = self._business()
        if obj is not None and business is not None and obj.business_id != business.pk:
            raise serializers.ValidationError({field: 'Unknown object'})
        return obj


class CategorySerializer(BusinessScopedSerializerMixin, serializers.ModelSerializer):
    class Meta:
        model = Category
        fields = ['id', 'name', 'parent', 'created_at', 'updated_at']
        read_only_fields = ['id', 'created_at', 'updated_at']

    def validate_parent(self, value):
        return self._check_business(value, 'parent')


class SupplierSerializer(serializers.ModelSerializer):
    class Meta:
        model = Supplier
        fields = ['id', 'name', 'contact_person', 'phone_number', 'created_at', 'updated_at']
        read_only_fields = ['id', 'created_at', 'updated_at']


class WarehouseSerializer(serializers.ModelSerializer):
    manager_name = serializers.CharField(source='manager.name', read_only=True, allow_null=True)
    product_count = serializers.SerializerMethodField()
    total_quantity = serializers.SerializerMethodField()

    class Meta:
        model = Warehouse
        fields = [
            'id', 'name', 'code', 'address', 'phone', 'manager', 'manager_name',
            'is_default', 'is_active', 'product_count', 'total_quantity',
            'created_at', 'updated_at',
        ]
        read_only_fields = ['id', 'is_default', 'is_active', 'created_at', 'updated_at']

    def _stats(self, obj):
        if not hasattr(obj, '_stats_cache'):
            obj._stats_cache = obj.get_stats()
        return obj._stats_cache

    def get_product_count(self, obj):
        return self._stats(obj)['product_count']

    def get_total_quantity(self, obj):
        return self._stats(obj)['total_quantity']

    def validate_code(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError('Warehouse code is required')
        return value


class ProductVariantSerializer(serializers.ModelSerializer):
    class Meta:
        model = ProductVariant
        fields = ['id', 'variant_name', 'sku', 'barcode', 'sort_order', 'is_active']
        read_only_fields = ['id']


class ComboItemSerializer(serializers.ModelSerializer):
    child_name = serializers.CharField(source='child.name', read_only=True)
    child_sku = serializers.CharField(source='child.sku', read_only=True)

    class Meta:
        model = ComboItem
        fields = ['id', 'child', 'child_name', 'child_sku', 'quantity']
        read_only_fields = ['id']


class ProductSerializer(BusinessScopedSerializerMixin, serializers.ModelSerializer):
    category_name = serializers.CharField(source='category.name', read_only=True, allow_null=True)
    variants = ProductVariantSerializer(many=True, read_only=True)
    combo_items = ComboItemSerializer(many=True, read_only=True)

    class Meta:
        model = Product
        fields = [
            'id', 'name', 'sku', 'barcode', 'category', 'category_name', 'unit',
            'has_serial', 'is_combo', 'min_stock', 'is_active',
            'variants', 'combo_items', 'created_at', 'updated_at',
        ]
        read_only_fields = ['id', 'created_at', 'updated_at']

    def validate_category(self, value):
        return self._check_business(value, 'category')

    def validate_sku(self, value):
        value = value.strip()
        business = self._business()
        if business is not None:
            existing = Product.objects.filter(business=business, sku__iexact=value)
            if self.instance is not None:
                existing = existing.exclude(pk=self.instance.pk)
            if existing.exists():
                raise serializers.ValidationError(f"SKU '{value}' is already used")
        return value

    def validate(self, attrs):
        is_combo = attrs.get('is_combo', getattr(self.instance, 'is_combo', False))
        has_serial = attrs.get('has_serial', getattr(self.instance, 'has_serial', False))
        if is_combo and has_serial:
            raise serializers.ValidationError({'has_serial': 'Combo products cannot be serialized'})
        return attrs


class ComboItemWriteSerializer(serializers.Serializer):
    child = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1)


class ComboDefinitionSerializer(serializers.Serializer):
    items = ComboItemWriteSerializer(many=True)


class WarehouseStockSerializer(serializers.ModelSerializer):
    warehouse_name = serializers.CharField(source='warehouse.name', read_only=True)
    product_name = serializers.CharField(source='product.name', read_only=True)
    product_sku = serializers.CharField(source='product.sku', read_only=True)

    class Meta:
        model = WarehouseStock
        fields = ['id', 'warehouse', 'warehouse_name', 'product', 'product_name', 'product_sku', 'quantity', 'updated_at']
        read_only_fields = fields


class StockMovementSerializer(serializers.ModelSerializer):
    warehouse_name = serializers.CharField(source='warehouse.name', read_only=True)
    product_name = serializers.CharField(source='product.name', read_only=True)
    product_sku = serializers.CharField(source='product.sku', read_only=True)
    created_by_name = serializers.CharField(source='created_by.name', read_only=True, allow_null=True)

    class Meta:
        model = StockMovement
        fields = [
            'id', 'warehouse', 'warehouse_name', 'product', 'product_name', 'product_sku',
            'delta', 'quantity_after', 'movement_type', 'source', 'reference', 'note',
            'created_by', 'created_by_name', 'created_at',
        ]
        read_only_fields = fields


class ProductSerialSerializer(serializers.ModelSerializer):
    product_sku = serializers.CharField(source='product.sku', read_only=True)
    warehouse_name = serializers.CharField(source='warehouse.name', read_only=True, allow_null=True)

    class Meta:
        model = ProductSerial
        fields = [
            'id', 'serial_number', 'product', 'product_sku', 'warehouse', 'warehouse_name',
            'status', 'source_transaction', 'created_at',
        ]
        read_only_fields = fields


class StockTransactionItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = StockTransactionItem
        fields = [
            'id', 'line_number', 'product', 'product_sku', 'product_name',
            'quantity', 'unit_price', 'total_price', 'serials',
        ]
        read_only_fields = fields


class StockTransactionSerializer(serializers.ModelSerializer):
    items = StockTransactionItemSerializer(many=True, read_only=True)
    warehouse_name = serializers.CharField(source='warehouse.name', read_only=True)
    supplier_name = serializers.CharField(source='supplier.name', read_only=True, allow_null=True)
    created_by_name = serializers.CharField(source='created_by.name', read_only=True, allow_null=True)
    approved_by_name = serializers.CharField(source='approved_by.name', read_only=True, allow_null=True)

    class Meta:
        model = StockTransaction
        fields = [
            'id', 'reference_number', 'transaction_type', 'origin', 'warehouse', 'warehouse_name',
            'supplier', 'supplier_name', 'transaction_date', 'partner_name', 'partner_phone',
            'note', 'total_amount', 'approval_status', 'approved_by', 'approved_by_name',
            'approved_at', 'reject_reason', 'stocktake', 'created_by', 'created_by_name',
            'created_at', 'updated_at', 'items',
        ]
        read_only_fields = fields


class StockTransactionLineSerializer(serializers.Serializer):
    product = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1)
    unit_price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0'), required=False, default=Decimal('0'))
    serials = serializers.ListField(child=serializers.CharField(allow_blank=True), required=False, default=list)


class StockTransactionCreateSerializer(serializers.Serializer):
    transaction_type = serializers.ChoiceField(choices=StockTransaction.TYPE_CHOICES)
    warehouse = serializers.UUIDField()
    supplier = serializers.UUIDField(required=False, allow_null=True)
    transaction_date = serializers.DateField(required=False, allow_null=True)
    partner_name = serializers.CharField(required=False, allow_blank=True, default='')
    partner_phone = serializers.CharField(required=False, allow_blank=True, default='')
    note = serializers.CharField(required=False, allow_blank=True, default='')
    items = StockTransactionLineSerializer(many=True)

    def validate_items(self, value):
        if not value:
            raise serializers.ValidationError('At least one line item is required')
        return value


class ApproveSerializer(serializers.Serializer):
    serials = serializers.DictField(
        child=serializers.ListField(child=serializers.CharField(allow_blank=True)),
        required=False,
        default=dict,
    )


class RejectSerializer(serializers.Serializer):
    reason = serializers.CharField(allow_blank=True, required=False, default='')


class ManualAdjustmentSerializer(serializers.Serializer):
    warehouse = serializers.UUIDField()
    product = serializers.UUIDField()
    mode = serializers.ChoiceField(choices=['add', 'subtract', 'set'])
    quantity = serializers.IntegerField(min_value=0)
    reason = serializers.CharField(required=False, allow_blank=True, default='')
