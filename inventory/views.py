from uuid import UUID

import rules
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.db.models import Prefetch, Q
from django.shortcuts import get_object_or_404
from rest_framework import mixins, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import PermissionDenied, ValidationError
from rest_framework.filters import OrderingFilter
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response
from django_filters.rest_framework import DjangoFilterBackend

from accounts.models import Business
from accounts.permissions import Capability, IsBusinessMember, WAREHOUSE_MODULE
from .adjustments import ManualAdjustment
from .availability import inventory_overview, product_availability
from .exceptions import InventoryError
from .filters import ProductFilter, ProductSerialFilter, StockMovementFilter, StockTransactionFilter
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
from .serializers import (
    ApproveSerializer,
    CategorySerializer,
    ComboDefinitionSerializer,
    ComboItemSerializer,
    ManualAdjustmentSerializer,
    ProductSerialSerializer,
    ProductSerializer,
    ProductVariantSerializer,
    RejectSerializer,
    StockMovementSerializer,
    StockTransactionCreateSerializer,
    StockTransactionSerializer,
    SupplierSerializer,
    WarehouseSerializer,
    WarehouseStockSerializer,
)
from .transaction_services import TransactionProcessor
from .warehouses import WarehouseService


class CustomPageNumberPagination(PageNumberPagination):
    """Custom pagination class that allows configurable page size."""
    page_size = 25
    page_size_query_param = 'page_size'
    max_page_size = 100


def _business_ids_for_user(user):
    if not getattr(user, 'is_authenticated', False):
        return []
    return list(
        user.business_memberships.filter(is_active=True).values_list('business_id', flat=True)
    )


def _validation_details(exc):
    if hasattr(exc, 'error_dict'):
        return exc.message_dict
    return {'non_field_errors': exc.messages}


class RulesObjectPermission(permissions.BasePermission):
    """
    Check django-rules permissions on the object a view acts on.

    Views declare ``object_permissions``: a mapping of action name to
    permission, with ``'default'`` used for actions that are not listed.
    """

    def has_object_permission(self, request, view, obj):
        mapping = getattr(view, 'object_permissions', {}) or {}
        permission = mapping.get(getattr(view, 'action', None), mapping.get('default'))
        if permission is None:
            return True
        return rules.has_perm(permission, request.user, obj)


class BusinessScopedViewMixin:
    """
    Resolve the business a request works in and the actor acting for it.

    The business comes from the ``business`` query parameter, otherwise the
    user's primary business. Domain errors raised by the services are turned
    into JSON responses with their own status codes.
    """

    permission_classes = [permissions.IsAuthenticated, IsBusinessMember, RulesObjectPermission]
    pagination_class = CustomPageNumberPagination

    def get_business(self):
        if hasattr(self, '_business'):
            return self._business

        user = self.request.user
        business_param = self.request.query_params.get('business') or self.request.query_params.get('business_id')
        if business_param:
            try:
                business_uuid = UUID(str(business_param))
            except (TypeError, ValueError):
                raise ValidationError({'business': 'Invalid business id supplied.'})
            if not user.is_superuser and business_uuid not in set(_business_ids_for_user(user)):
                raise PermissionDenied('You do not belong to this business.')
            business = get_object_or_404(Business, pk=business_uuid)
        else:
            business = user.primary_business
            if business is None:
                raise PermissionDenied('You must belong to a business to access inventory.')

        self._business = business
        return business

    def get_actor(self):
        if not hasattr(self, '_actor'):
            self._actor = Capability.for_user(self.request.user, self.get_business())
        return self._actor

    def get_serializer_context(self):
        context = super().get_serializer_context()
        if getattr(self.request, 'user', None) is not None and self.request.user.is_authenticated:
            context['business'] = self.get_business()
        return context

    def require_edit(self):
        if not self.get_actor().can_edit(WAREHOUSE_MODULE):
            raise PermissionDenied('You do not have permission to manage inventory.')

    def get_owned(self, model, pk, field, **filters):
        """Fetch ``model`` by primary key within the current business."""
        try:
            return model.objects.get(pk=pk, business=self.get_business(), **filters)
        except (model.DoesNotExist, DjangoValidationError, ValueError):
            raise ValidationError({field: f'Unknown {model._meta.verbose_name}.'})

    def handle_exception(self, exc):
        if isinstance(exc, InventoryError):
            return Response(exc.as_dict(), status=exc.status_code)
        if isinstance(exc, DjangoValidationError):
            details = _validation_details(exc)
            first = next(iter(details.values()), [''])
            return Response(
                {
                    'error': first[0] if isinstance(first, list) and first else str(first),
                    'code': 'validation_error',
                    'details': details,
                },
                status=status.HTTP_400_BAD_REQUEST,
            )
        return super().handle_exception(exc)


class CategoryViewSet(BusinessScopedViewMixin, viewsets.ModelViewSet):
    """ViewSet for managing product categories"""
    serializer_class = CategorySerializer

    def get_queryset(self):
        return Category.objects.filter(business=self.get_business()).select_related('parent')

    def perform_create(self, serializer):
        self.require_edit()
        serializer.save(business=self.get_business())

    def perform_update(self, serializer):
        self.require_edit()
        serializer.save()

    def perform_destroy(self, instance):
        self.require_edit()
        if instance.products.exists():
            raise ValidationError({'category': 'Category still has products.'})
        instance.delete()


class SupplierViewSet(BusinessScopedViewMixin, viewsets.ModelViewSet):
    serializer_class = SupplierSerializer

    def get_queryset(self):
        queryset = Supplier.objects.filter(business=self.get_business())
        search = self.request.query_params.get('search')
        if search:
            queryset = queryset.filter(
                Q(name__icontains=search) | Q(contact_person__icontains=search) | Q(phone_number__icontains=search)
            )
        return queryset

    def perform_create(self, serializer):
        self.require_edit()
        serializer.save(business=self.get_business())

    def perform_update(self, serializer):
        self.require_edit()
        serializer.save()

    def perform_destroy(self, instance):
        self.require_edit()
        instance.delete()


class WarehouseViewSet(BusinessScopedViewMixin, viewsets.ModelViewSet):
    """
    Warehouses of the current business.

    ``DELETE`` deactivates the warehouse; it is refused for the default
    warehouse and for warehouses that still hold stock.
    """
    serializer_class = WarehouseSerializer
    object_permissions = {
        'retrieve': 'inventory.view_warehouse',
        'stats': 'inventory.view_warehouse',
        'stock': 'inventory.view_warehouse',
        'default': 'inventory.change_warehouse',
    }

    def get_queryset(self):
        queryset = Warehouse.objects.filter(business=self.get_business()).select_related('manager')
        include_inactive = self.request.query_params.get('include_inactive', '').lower() in ('1', 'true', 'yes')
        if self.action == 'list' and not include_inactive:
            queryset = queryset.filter(is_active=True)
        return queryset

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        warehouse = WarehouseService(self.get_actor()).create(self.get_business(), **serializer.validated_data)
        return Response(self.get_serializer(warehouse).data, status=status.HTTP_201_CREATED)

    def perform_update(self, serializer):
        self.require_edit()
        code = serializer.validated_data.get('code')
        if code and Warehouse.objects.filter(
            business=self.get_business(), code__iexact=code
        ).exclude(pk=serializer.instance.pk).exists():
            raise ValidationError({'code': f"Warehouse code '{code}' is already used"})
        serializer.save()

    def destroy(self, request, *args, **kwargs):
        warehouse = self.get_object()
        WarehouseService(self.get_actor()).deactivate(warehouse)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=['post'], url_path='set-default')
    def set_default(self, request, pk=None):
        warehouse = WarehouseService(self.get_actor()).set_default(self.get_object())
        return Response(self.get_serializer(warehouse).data)

    @action(detail=True, methods=['get'])
    def stats(self, request, pk=None):
        warehouse = self.get_object()
        return Response({'warehouse_id': str(warehouse.pk), **warehouse.get_stats()})

    @action(detail=True, methods=['get'])
    def stock(self, request, pk=None):
        """Stock cells of this warehouse; ``include_zero=true`` lists empty cells too."""
        warehouse = self.get_object()
        queryset = WarehouseStock.objects.filter(warehouse=warehouse).select_related('product', 'warehouse')
        if self.request.query_params.get('include_zero', '').lower() not in ('1', 'true', 'yes'):
            queryset = queryset.filter(quantity__gt=0)
        queryset = queryset.order_by('product__name')
        page = self.paginate_queryset(queryset)
        if page is not None:
            return self.get_paginated_response(WarehouseStockSerializer(page, many=True).data)
        return Response(WarehouseStockSerializer(queryset, many=True).data)


class ProductViewSet(BusinessScopedViewMixin, viewsets.ModelViewSet):
    """ViewSet for managing products, variants and combo definitions"""
    serializer_class = ProductSerializer
    filter_backends = [DjangoFilterBackend, OrderingFilter]
    filterset_class = ProductFilter
    ordering_fields = ['name', 'sku', 'created_at']
    object_permissions = {
        'retrieve': 'inventory.view_product',
        'availability': 'inventory.view_product',
        'movements': 'inventory.view_product',
    }

    def get_queryset(self):
        return (
            Product.objects.filter(business=self.get_business())
            .select_related('category')
            .prefetch_related(
                'variants',
                Prefetch('combo_items', queryset=ComboItem.objects.select_related('child')),
            )
        )

    def perform_create(self, serializer):
        self.require_edit()
        serializer.save(business=self.get_business())

    def perform_update(self, serializer):
        self.require_edit()
        instance = serializer.instance
        is_combo = serializer.validated_data.get('is_combo', instance.is_combo)
        if is_combo != instance.is_combo and instance.warehouse_stock.filter(quantity__gt=0).exists():
            raise ValidationError({'is_combo': 'Cannot change the type of a product that holds stock.'})
        serializer.save()

    def perform_destroy(self, instance):
        """Products with history are deactivated instead of deleted."""
        self.require_edit()
        if instance.movements.exists() or instance.warehouse_stock.exists():
            instance.is_active = False
            instance.save(update_fields=['is_active', 'updated_at'])
            return
        instance.delete()

    @action(detail=True, methods=['get'])
    def availability(self, request, pk=None):
        product = self.get_object()
        warehouse = None
        warehouse_id = request.query_params.get('warehouse')
        if warehouse_id:
            warehouse = self.get_owned(Warehouse, warehouse_id, 'warehouse')
        return Response(product_availability(product, warehouse))

    @action(detail=True, methods=['get', 'put'], url_path='combo-items')
    def combo_items(self, request, pk=None):
        """
        Read or replace the bill of materials of a combo product.

        PUT /inventory/api/products/{id}/combo-items/
        {"items": [{"child": "<uuid>", "quantity": 2}, ...]}
        """
        product = self.get_object()
        if request.method == 'GET':
            return Response(ComboItemSerializer(product.combo_items.select_related('child'), many=True).data)

        self.require_edit()
        if not product.is_combo:
            raise ValidationError({'product': 'Only combo products have combo items.'})
        serializer = ComboDefinitionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        rows = serializer.validated_data['items']
        child_ids = [row['child'] for row in rows]
        if len(set(child_ids)) != len(child_ids):
            raise ValidationError({'items': 'Each child product can appear only once.'})
        children = Product.objects.filter(business=self.get_business()).in_bulk(child_ids)
        for index, row in enumerate(rows):
            child = children.get(row['child'])
            if child is None:
                raise ValidationError({'items': f'Line {index + 1}: unknown product'})
            if child.pk == product.pk:
                raise ValidationError({'items': f'Line {index + 1}: a combo cannot contain itself'})
            if child.is_combo:
                raise ValidationError({'items': f'Line {index + 1}: combo children must be simple products'})

        with transaction.atomic():
            product.combo_items.all().delete()
            ComboItem.objects.bulk_create([
                ComboItem(combo=product, child=children[row['child']], quantity=row['quantity'])
                for row in rows
            ])
        return Response(ComboItemSerializer(product.combo_items.select_related('child'), many=True).data)

    @action(detail=True, methods=['get', 'post'])
    def variants(self, request, pk=None):
        product = self.get_object()
        if request.method == 'GET':
            return Response(ProductVariantSerializer(product.variants.all(), many=True).data)

        self.require_edit()
        if product.is_combo:
            raise ValidationError({'product': 'Combo products cannot have variants.'})
        serializer = ProductVariantSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        serializer.save(product=product)
        return Response(serializer.data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['get'])
    def movements(self, request, pk=None):
        product = self.get_object()
        queryset = StockMovement.objects.filter(product=product).select_related('warehouse', 'product', 'created_by')
        warehouse_id = request.query_params.get('warehouse')
        if warehouse_id:
            queryset = queryset.filter(warehouse_id=warehouse_id)
        page = self.paginate_queryset(queryset)
        if page is not None:
            return self.get_paginated_response(StockMovementSerializer(page, many=True).data)
        return Response(StockMovementSerializer(queryset, many=True).data)


class InventoryViewSet(BusinessScopedViewMixin, viewsets.GenericViewSet):
    """
    Inventory screen: on hand, committed and sellable per product.

    GET  /inventory/api/inventory/?warehouse=<id>&low_stock=true
    POST /inventory/api/inventory/adjust/
    """
    filter_backends = [DjangoFilterBackend]
    filterset_class = ProductFilter

    def get_queryset(self):
        return (
            Product.objects.filter(business=self.get_business(), is_active=True)
            .prefetch_related(Prefetch('combo_items', queryset=ComboItem.objects.select_related('child')))
            .order_by('name')
        )

    def list(self, request):
        warehouse = None
        warehouse_id = request.query_params.get('warehouse')
        if warehouse_id:
            warehouse = self.get_owned(Warehouse, warehouse_id, 'warehouse')
        low_stock_only = request.query_params.get('low_stock', '').lower() in ('1', 'true', 'yes')

        products = self.filter_queryset(self.get_queryset())
        if low_stock_only:
            return Response(inventory_overview(products, warehouse, low_stock_only=True))

        page = self.paginate_queryset(products)
        if page is not None:
            return self.get_paginated_response(inventory_overview(page, warehouse))
        return Response(inventory_overview(products, warehouse))

    @action(detail=False, methods=['post'])
    def adjust(self, request):
        serializer = ManualAdjustmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        warehouse = self.get_owned(Warehouse, data['warehouse'], 'warehouse', is_active=True)
        product = self.get_owned(Product, data['product'], 'product')
        document, quantity = ManualAdjustment(self.get_actor()).adjust(
            warehouse,
            product,
            mode=data['mode'],
            quantity=data['quantity'],
            reason=data['reason'],
        )
        return Response(
            {
                'warehouse_id': str(warehouse.pk),
                'product_id': str(product.pk),
                'quantity': quantity,
                'changed': document is not None,
                'transaction': StockTransactionSerializer(document).data if document is not None else None,
            },
            status=status.HTTP_201_CREATED if document is not None else status.HTTP_200_OK,
        )


class StockMovementViewSet(BusinessScopedViewMixin, viewsets.ReadOnlyModelViewSet):
    serializer_class = StockMovementSerializer
    filter_backends = [DjangoFilterBackend]
    filterset_class = StockMovementFilter

    def get_queryset(self):
        return StockMovement.objects.filter(business=self.get_business()).select_related(
            'warehouse', 'product', 'created_by'
        )


class ProductSerialViewSet(BusinessScopedViewMixin, viewsets.ReadOnlyModelViewSet):
    serializer_class = ProductSerialSerializer
    filter_backends = [DjangoFilterBackend]
    filterset_class = ProductSerialFilter

    def get_queryset(self):
        return ProductSerial.objects.filter(business=self.get_business()).select_related('product', 'warehouse')


class StockTransactionViewSet(
    BusinessScopedViewMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    viewsets.GenericViewSet,
):
    """
    Import (PN-) and export (PX-) documents.

    A document created by a user with approval rights is approved at once;
    otherwise it waits in ``pending`` for ``approve`` or ``reject``.
    """
    serializer_class = StockTransactionSerializer
    filter_backends = [DjangoFilterBackend, OrderingFilter]
    filterset_class = StockTransactionFilter
    ordering_fields = ['created_at', 'transaction_date', 'total_amount']
    object_permissions = {
        'retrieve': 'inventory.view_stocktransaction',
        'approve': 'inventory.approve_stocktransaction',
        'reject': 'inventory.approve_stocktransaction',
    }

    def get_queryset(self):
        return (
            StockTransaction.objects.filter(business=self.get_business())
            .select_related('warehouse', 'supplier', 'created_by', 'approved_by')
            .prefetch_related(Prefetch('items', queryset=StockTransactionItem.objects.order_by('line_number')))
            .order_by('-created_at')
        )

    def create(self, request, *args, **kwargs):
        serializer = StockTransactionCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        warehouse = self.get_owned(Warehouse, data['warehouse'], 'warehouse', is_active=True)
        supplier = None
        if data.get('supplier'):
            supplier = self.get_owned(Supplier, data['supplier'], 'supplier')

        document = TransactionProcessor(self.get_actor()).create(
            business=self.get_business(),
            transaction_type=data['transaction_type'],
            warehouse=warehouse,
            items=[dict(line) for line in data['items']],
            supplier=supplier,
            partner_name=data['partner_name'],
            partner_phone=data['partner_phone'],
            transaction_date=data.get('transaction_date'),
            note=data['note'],
        )
        return Response(self.get_serializer(self._reload(document)).data, status=status.HTTP_201_CREATED)

    def _reload(self, document):
        return self.get_queryset().get(pk=document.pk)

    @action(detail=True, methods=['post'])
    def approve(self, request, pk=None):
        document = self.get_object()
        serializer = ApproveSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        TransactionProcessor(self.get_actor()).approve(document, serials=serializer.validated_data['serials'] or None)
        return Response(self.get_serializer(self._reload(document)).data)

    @action(detail=True, methods=['post'])
    def reject(self, request, pk=None):
        document = self.get_object()
        serializer = RejectSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        TransactionProcessor(self.get_actor()).reject(document, serializer.validated_data['reason'])
        return Response(self.get_serializer(self._reload(document)).data)
