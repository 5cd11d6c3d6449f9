"""
Transfer API Serializers

Output serializers render Transfer/TransferItem; input serializers only check
request shape. Stock and workflow rules live in ``TransferCoordinator``.
"""

from rest_framework import serializers

from inventory.transfer_models import Transfer, TransferItem


class TransferItemSerializer(serializers.ModelSerializer):
    """Serializer for individual transfer line items"""

    product_name = serializers.CharField(source='product.name', read_only=True)
    product_sku = serializers.CharField(source='product.sku', read_only=True)

    class Meta:
        model = TransferItem
        fields = [
            'id',
            'product',
            'product_name',
            'product_sku',
            'sent_quantity',
            'received_quantity',
            'variance',
            'note',
        ]
        read_only_fields = fields


class TransferSerializer(serializers.ModelSerializer):
    """Read serializer for transfers"""

    items = TransferItemSerializer(many=True, read_only=True)
    source_warehouse_name = serializers.CharField(source='source_warehouse.name', read_only=True)
    destination_warehouse_name = serializers.CharField(source='destination_warehouse.name', read_only=True)
    created_by_name = serializers.SerializerMethodField()
    dispatched_by_name = serializers.SerializerMethodField()
    received_by_name = serializers.SerializerMethodField()
    total_sent = serializers.IntegerField(read_only=True)
    total_received = serializers.IntegerField(read_only=True)
    total_variance = serializers.IntegerField(read_only=True)

    class Meta:
        model = Transfer
        fields = [
            'id',
            'reference_number',
            'status',
            'source_warehouse',
            'source_warehouse_name',
            'destination_warehouse',
            'destination_warehouse_name',
            'expected_arrival_date',
            'notes',
            'created_by',
            'created_by_name',
            'created_at',
            'updated_at',
            'dispatched_at',
            'dispatched_by',
            'dispatched_by_name',
            'received_at',
            'received_by',
            'received_by_name',
            'cancelled_at',
            'cancel_reason',
            'total_sent',
            'total_received',
            'total_variance',
            'items',
        ]
        read_only_fields = fields

    @staticmethod
    def _name(user):
        return user.name if user else None

    def get_created_by_name(self, obj):
        return self._name(obj.created_by)

    def get_dispatched_by_name(self, obj):
        return self._name(obj.dispatched_by)

    def get_received_by_name(self, obj):
        return self._name(obj.received_by)


class TransferLineSerializer(serializers.Serializer):
    product = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1)


class TransferCreateSerializer(serializers.Serializer):
    source_warehouse = serializers.UUIDField()
    destination_warehouse = serializers.UUIDField()
    expected_arrival_date = serializers.DateField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, default='')
    items = TransferLineSerializer(many=True)

    def validate(self, attrs):
        if attrs['source_warehouse'] == attrs['destination_warehouse']:
            raise serializers.ValidationError({
                'destination_warehouse': 'Cannot transfer to the same warehouse as source'
            })
        if not attrs.get('items'):
            raise serializers.ValidationError({'items': 'At least one item is required'})
        return attrs


class TransferReceiveSerializer(serializers.Serializer):
    """Map of transfer item id (or product id) to the quantity that arrived."""

    received_quantities = serializers.DictField(
        child=serializers.IntegerField(min_value=0),
        required=False,
        default=dict,
    )


class TransferCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default='')
