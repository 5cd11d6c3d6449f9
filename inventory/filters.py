"""
Inventory Filters for list endpoints
"""
from django_filters import rest_framework as filters
from django.db.models import Q

from .models import Product, ProductSerial, StockMovement, StockTransaction, StocktakeSession, Transfer
from .state_machines import ApprovalStatus, StocktakeStatus, TransferStatus


class ProductFilter(filters.FilterSet):
    """Filter class for Product model."""
    search = filters.CharFilter(method='filter_search', label='Search in name, SKU and barcode')
    category = filters.UUIDFilter(field_name='category_id')
    is_active = filters.BooleanFilter(field_name='is_active')
    is_combo = filters.BooleanFilter(field_name='is_combo')
    has_serial = filters.BooleanFilter(field_name='has_serial')

    class Meta:
        model = Product
        fields = ['search', 'category', 'is_active', 'is_combo', 'has_serial']

    def filter_search(self, queryset, name, value):
        if not value:
            return queryset
        return queryset.filter(
            Q(name__icontains=value) | Q(sku__icontains=value) | Q(barcode__icontains=value)
        )


class StockTransactionFilter(filters.FilterSet):
    date_from = filters.DateFilter(field_name='transaction_date', lookup_expr='gte')
    date_to = filters.DateFilter(field_name='transaction_date', lookup_expr='lte')
    transaction_type = filters.ChoiceFilter(choices=StockTransaction.TYPE_CHOICES)
    approval_status = filters.MultipleChoiceFilter(choices=ApprovalStatus.choices, conjoined=False)
    origin = filters.ChoiceFilter(choices=StockTransaction.ORIGIN_CHOICES)
    warehouse = filters.UUIDFilter(field_name='warehouse_id')
    supplier = filters.UUIDFilter(field_name='supplier_id')
    search = filters.CharFilter(method='filter_search')

    class Meta:
        model = StockTransaction
        fields = ['transaction_type', 'approval_status', 'origin', 'warehouse', 'supplier']

    def filter_search(self, queryset, name, value):
        if not value:
            return queryset
        return queryset.filter(
            Q(reference_number__icontains=value)
            | Q(partner_name__icontains=value)
            | Q(partner_phone__icontains=value)
            | Q(items__product_sku__icontains=value)
        ).distinct()


class StockMovementFilter(filters.FilterSet):
    date_from = filters.DateTimeFilter(field_name='created_at', lookup_expr='gte')
    date_to = filters.DateTimeFilter(field_name='created_at', lookup_expr='lte')
    warehouse = filters.UUIDFilter(field_name='warehouse_id')
    product = filters.UUIDFilter(field_name='product_id')
    source = filters.MultipleChoiceFilter(choices=StockMovement.SOURCE_CHOICES, conjoined=False)
    movement_type = filters.ChoiceFilter(choices=StockMovement.TYPE_CHOICES)
    reference = filters.CharFilter(field_name='reference', lookup_expr='iexact')

    class Meta:
        model = StockMovement
        fields = ['warehouse', 'product', 'source', 'movement_type', 'reference']


class ProductSerialFilter(filters.FilterSet):
    product = filters.UUIDFilter(field_name='product_id')
    warehouse = filters.UUIDFilter(field_name='warehouse_id')
    status = filters.ChoiceFilter(choices=ProductSerial.STATUS_CHOICES)
    serial_number = filters.CharFilter(field_name='serial_number', lookup_expr='icontains')

    class Meta:
        model = ProductSerial
        fields = ['product', 'warehouse', 'status', 'serial_number']


class TransferFilter(filters.FilterSet):
    status = filters.MultipleChoiceFilter(choices=TransferStatus.choices, conjoined=False)
    source_warehouse = filters.UUIDFilter(field_name='source_warehouse_id')
    destination_warehouse = filters.UUIDFilter(field_name='destination_warehouse_id')
    warehouse = filters.UUIDFilter(method='filter_warehouse', label='Source or destination warehouse')
    date_from = filters.DateTimeFilter(field_name='created_at', lookup_expr='gte')
    date_to = filters.DateTimeFilter(field_name='created_at', lookup_expr='lte')

    class Meta:
        model = Transfer
        fields = ['status', 'source_warehouse', 'destination_warehouse']

    def filter_warehouse(self, queryset, name, value):
        return queryset.filter(Q(source_warehouse_id=value) | Q(destination_warehouse_id=value))


class StocktakeFilter(filters.FilterSet):
    status = filters.MultipleChoiceFilter(choices=StocktakeStatus.choices, conjoined=False)
    warehouse = filters.UUIDFilter(field_name='warehouse_id')

    class Meta:
        model = StocktakeSession
        fields = ['status', 'warehouse']
