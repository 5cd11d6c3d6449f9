from rest_framework import serializers

from .models import StocktakeCountEvent, StocktakeItem, StocktakeSession


class StocktakeItemSerializer(serializers.ModelSerializer):
    diff = serializers.IntegerField(read_only=True, allow_null=True)
    product_diff = serializers.SerializerMethodField()

    class Meta:
        model = StocktakeItem
        fields = [
            'id', 'product', 'variant', 'product_name', 'product_sku', 'variant_name', 'barcode',
            'system_quantity', 'actual_quantity', 'diff', 'product_diff', 'note',
            'next_sequence', 'last_applied_sequence', 'adjusted', 'adjustment_error', 'updated_at',
        ]
        read_only_fields = fields

    def get_product_diff(self, obj):
        """Difference of the whole product; set on discrepancy listings, same as ``diff`` without variants."""
        if hasattr(obj, 'product_diff'):
            return obj.product_diff
        return None if obj.variant_id else obj.diff


class StocktakeSessionSerializer(serializers.ModelSerializer):
    warehouse_name = serializers.CharField(source='warehouse.name', read_only=True)
    created_by_name = serializers.CharField(source='created_by.name', read_only=True, allow_null=True)
    completed_by_name = serializers.CharField(source='completed_by.name', read_only=True, allow_null=True)
    total_items = serializers.IntegerField(read_only=True)
    counted_items = serializers.IntegerField(read_only=True)

    class Meta:
        model = StocktakeSession
        fields = [
            'id', 'reference_number', 'warehouse', 'warehouse_name', 'status', 'scope', 'note',
            'treat_unset_as_system', 'over_total', 'under_total', 'total_diff',
            'adjusted_count', 'failed_count', 'adjustment_errors',
            'total_items', 'counted_items',
            'created_by', 'created_by_name', 'started_at', 'completed_at', 'completed_by',
            'completed_by_name', 'cancelled_at', 'created_at', 'updated_at',
        ]
        read_only_fields = fields


class StocktakeSessionDetailSerializer(StocktakeSessionSerializer):
    items = StocktakeItemSerializer(many=True, read_only=True)

    class Meta(StocktakeSessionSerializer.Meta):
        fields = StocktakeSessionSerializer.Meta.fields + ['items']
        read_only_fields = fields


class StocktakeCreateSerializer(serializers.Serializer):
    warehouse = serializers.UUIDField()
    scope = serializers.ChoiceField(choices=StocktakeSession.SCOPE_CHOICES, default=StocktakeSession.SCOPE_ALL)
    product_ids = serializers.ListField(child=serializers.UUIDField(), required=False, default=list)
    category_ids = serializers.ListField(child=serializers.UUIDField(), required=False, default=list)
    include_variants = serializers.BooleanField(required=False, default=True)
    note = serializers.CharField(required=False, allow_blank=True, default='')


class CountEditSerializer(serializers.Serializer):
    item = serializers.UUIDField()
    kind = serializers.ChoiceField(choices=StocktakeCountEvent.KIND_CHOICES, default=StocktakeCountEvent.KIND_SET)
    value = serializers.IntegerField(required=False, allow_null=True)
    note = serializers.CharField(required=False, allow_blank=True, default='')
    sequence = serializers.IntegerField(required=False, allow_null=True, min_value=1)


class CountEditBatchSerializer(serializers.Serializer):
    edits = CountEditSerializer(many=True)
    flush = serializers.BooleanField(required=False, default=False)


class ScanSerializer(serializers.Serializer):
    code = serializers.CharField()


class StocktakeCompleteSerializer(serializers.Serializer):
    treat_unset_as_system = serializers.BooleanField(required=False, default=False)


class CountEventSerializer(serializers.ModelSerializer):
    class Meta:
        model = StocktakeCountEvent
        fields = ['id', 'item', 'sequence', 'kind', 'value', 'note', 'created_at', 'applied_at', 'superseded']
        read_only_fields = fields
