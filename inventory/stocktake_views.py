"""
Stocktake API Views

Count entry endpoints (``edits``, ``scan``) only queue events and return
immediately; queued events are applied by ``save`` or by the periodic
autosave task.
"""

from django.db.models import Prefetch
from django.http import HttpResponse
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response
from django_filters.rest_framework import DjangoFilterBackend

from inventory.exports import StocktakeExcelExporter
from inventory.filters import StocktakeFilter
from inventory.models import Warehouse
from inventory.stocktake_serializers import (
    CountEditBatchSerializer,
    CountEventSerializer,
    ScanSerializer,
    StocktakeCompleteSerializer,
    StocktakeCreateSerializer,
    StocktakeItemSerializer,
    StocktakeSessionDetailSerializer,
    StocktakeSessionSerializer,
)
from inventory.stocktake_services import StocktakeReconciler, pending_events
from inventory.stocktakes import StocktakeItem, StocktakeSession
from inventory.views import BusinessScopedViewMixin


class StocktakeViewSet(
    BusinessScopedViewMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    mixins.DestroyModelMixin,
    viewsets.GenericViewSet,
):
    filter_backends = [DjangoFilterBackend]
    filterset_class = StocktakeFilter
    object_permissions = {
        'retrieve': 'inventory.view_stocktakesession',
        'discrepancies': 'inventory.view_stocktakesession',
        'export': 'inventory.view_stocktakesession',
        'events': 'inventory.view_stocktakesession',
        'default': 'inventory.change_stocktakesession',
    }

    def get_queryset(self):
        queryset = StocktakeSession.objects.filter(
            business=self.get_business()
        ).select_related('warehouse', 'created_by', 'completed_by').order_by('-created_at')
        if self.action == 'retrieve':
            queryset = queryset.prefetch_related(
                Prefetch('items', queryset=StocktakeItem.objects.order_by('product_name', 'variant_name'))
            )
        return queryset

    def get_serializer_class(self):
        if self.action == 'retrieve':
            return StocktakeSessionDetailSerializer
        return StocktakeSessionSerializer

    def get_reconciler(self):
        return StocktakeReconciler(self.get_actor())

    def _respond(self, session, status_code=status.HTTP_200_OK):
        session = self.get_queryset().get(pk=session.pk)
        return Response(StocktakeSessionSerializer(session).data, status=status_code)

    def create(self, request, *args, **kwargs):
        serializer = StocktakeCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        session = self.get_reconciler().create(
            business=self.get_business(),
            warehouse=self.get_owned(Warehouse, data['warehouse'], 'warehouse'),
            scope=data['scope'],
            product_ids=data['product_ids'],
            category_ids=data['category_ids'],
            include_variants=data['include_variants'],
            note=data['note'],
        )
        return self._respond(session, status.HTTP_201_CREATED)

    def perform_destroy(self, instance):
        self.get_reconciler().delete(instance)

    @action(detail=True, methods=['post'])
    def start(self, request, pk=None):
        return self._respond(self.get_reconciler().start(self.get_object()))

    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        return self._respond(self.get_reconciler().cancel(self.get_object()))

    @action(detail=True, methods=['post'])
    def edits(self, request, pk=None):
        """
        Queue count edits.

        Body:
        {
            "edits": [{"item": "<uuid>", "kind": "set", "value": 12, "sequence": 3}],
            "flush": false
        }
        """
        session = self.get_object()
        serializer = CountEditBatchSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        reconciler = self.get_reconciler()
        events = reconciler.enqueue_edits(session, serializer.validated_data['edits'])
        applied = reconciler.flush(session) if serializer.validated_data['flush'] else 0
        return Response(
            {
                'queued': len(events),
                'applied': applied,
                'pending': pending_events(session).count(),
                'events': CountEventSerializer(events, many=True).data,
            },
            status=status.HTTP_202_ACCEPTED,
        )

    @action(detail=True, methods=['post'])
    def scan(self, request, pk=None):
        session = self.get_object()
        serializer = ScanSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        item, event = self.get_reconciler().record_scan(session, serializer.validated_data['code'])
        return Response(
            {
                'item': StocktakeItemSerializer(item).data,
                'event': CountEventSerializer(event).data if event is not None else None,
            },
            status=status.HTTP_202_ACCEPTED,
        )

    @action(detail=True, methods=['post'], url_path='fill-unset')
    def fill_unset(self, request, pk=None):
        """Set every uncounted item to its system quantity."""
        updated = self.get_reconciler().set_unset_to_system(self.get_object())
        return Response({'updated': updated})

    @action(detail=True, methods=['post'])
    def save(self, request, pk=None):
        session = self.get_object()
        applied = self.get_reconciler().save_counts(session)
        return Response({'applied': applied, 'pending': pending_events(session).count()})

    @action(detail=True, methods=['post'])
    def complete(self, request, pk=None):
        session = self.get_object()
        serializer = StocktakeCompleteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        summary = self.get_reconciler().complete(
            session,
            treat_unset_as_system=serializer.validated_data['treat_unset_as_system'],
        )
        return Response(summary)

    @action(detail=True, methods=['get'])
    def discrepancies(self, request, pk=None):
        items = StocktakeReconciler.discrepancies(self.get_object())
        return Response(StocktakeItemSerializer(items, many=True).data)

    @action(detail=True, methods=['get'])
    def events(self, request, pk=None):
        session = self.get_object()
        queryset = session.count_events.order_by('-created_at', '-sequence')
        if request.query_params.get('pending', '').lower() in ('1', 'true', 'yes'):
            queryset = pending_events(session).order_by('created_at', 'sequence')
        page = self.paginate_queryset(queryset)
        if page is not None:
            return self.get_paginated_response(CountEventSerializer(page, many=True).data)
        return Response(CountEventSerializer(queryset, many=True).data)

    @action(detail=True, methods=['get'])
    def export(self, request, pk=None):
        """Download the count sheet; ``discrepancies=true`` limits it to differing items."""
        session = self.get_object()
        discrepancies_only = request.query_params.get('discrepancies', '').lower() in ('1', 'true', 'yes')

        exporter = StocktakeExcelExporter()
        response = HttpResponse(
            exporter.export(session, discrepancies_only=discrepancies_only),
            content_type=exporter.content_type,
        )
        response['Content-Disposition'] = (
            f'attachment; filename="{exporter.filename(session, discrepancies_only)}"'
        )
        return response
