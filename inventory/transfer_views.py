"""
Transfer API Views

POST /inventory/api/transfers/                  create (pending)
POST /inventory/api/transfers/{id}/dispatch/    pending -> in_transit
POST /inventory/api/transfers/{id}/receive/     in_transit -> received
POST /inventory/api/transfers/{id}/cancel/      pending/in_transit -> cancelled
"""

from django.db.models import Prefetch, Q
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response
from django_filters.rest_framework import DjangoFilterBackend

from inventory.filters import TransferFilter
from inventory.models import Warehouse
from inventory.transfer_models import Transfer, TransferItem
from inventory.transfer_serializers import (
    TransferCancelSerializer,
    TransferCreateSerializer,
    TransferReceiveSerializer,
    TransferSerializer,
)
from inventory.transfer_services import TransferCoordinator
from inventory.views import BusinessScopedViewMixin


class TransferViewSet(
    BusinessScopedViewMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    viewsets.GenericViewSet,
):
    """Warehouse-to-warehouse transfers of the current business"""

    serializer_class = TransferSerializer
    filter_backends = [DjangoFilterBackend]
    filterset_class = TransferFilter
    object_permissions = {
        'retrieve': 'inventory.view_transfer',
        'default': 'inventory.change_transfer',
    }

    def get_queryset(self):
        queryset = Transfer.objects.filter(
            business=self.get_business()
        ).select_related(
            'source_warehouse',
            'destination_warehouse',
            'created_by',
            'dispatched_by',
            'received_by',
        ).prefetch_related(
            Prefetch('items', queryset=TransferItem.objects.select_related('product'))
        ).order_by('-created_at')

        search = self.request.query_params.get('search')
        if search:
            queryset = queryset.filter(
                Q(reference_number__icontains=search) |
                Q(notes__icontains=search)
            )
        return queryset

    def _respond(self, transfer, status_code=status.HTTP_200_OK):
        transfer = self.get_queryset().get(pk=transfer.pk)
        return Response(self.get_serializer(transfer).data, status=status_code)

    def create(self, request, *args, **kwargs):
        serializer = TransferCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        transfer = TransferCoordinator(self.get_actor()).create(
            business=self.get_business(),
            source_warehouse=self.get_owned(Warehouse, data['source_warehouse'], 'source_warehouse'),
            destination_warehouse=self.get_owned(Warehouse, data['destination_warehouse'], 'destination_warehouse'),
            items=[dict(line) for line in data['items']],
            notes=data['notes'],
            expected_arrival_date=data.get('expected_arrival_date'),
        )
        return self._respond(transfer, status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'], url_path='dispatch')
    def confirm_dispatch(self, request, pk=None):
        transfer = TransferCoordinator(self.get_actor()).confirm_dispatch(self.get_object())
        return self._respond(transfer)

    @action(detail=True, methods=['post'])
    def receive(self, request, pk=None):
        """
        Body (optional):
        {
            "received_quantities": {"<item or product id>": 9}
        }

        Lines that are not listed are received in full.
        """
        serializer = TransferReceiveSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        transfer = TransferCoordinator(self.get_actor()).confirm_receipt(
            self.get_object(),
            serializer.validated_data['received_quantities'] or None,
        )
        return self._respond(transfer)

    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        serializer = TransferCancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        transfer = TransferCoordinator(self.get_actor()).cancel(
            self.get_object(),
            reason=serializer.validated_data['reason'],
        )
        return self._respond(transfer)
