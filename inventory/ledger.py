"""
Stock Ledger

The only writer of ``WarehouseStock.quantity``.

Every change is a single conditional UPDATE (``quantity = quantity + delta``
guarded by ``quantity >= -delta`` for decrements), never a read-then-write,
so concurrent callers on the same (warehouse, product) cell serialize in the
database and cannot lose updates. Each applied change writes one immutable
``StockMovement``.

Usage:
    from inventory.ledger import StockLedger

    StockLedger.adjust_stock(warehouse, product, -3, source=StockMovement.SOURCE_EXPORT,
                             reference='PX-20240101-001', user=request.user)
"""

import logging
from typing import Iterable, List, Optional, Tuple

from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import F, Sum
from django.utils import timezone

from .exceptions import InsufficientStockError
from .models import StockMovement, WarehouseStock


logger = logging.getLogger(__name__)

# (warehouse, product, delta)
LedgerChange = Tuple[object, object, int]


class StockLedger:
    """Atomic, warehouse-scoped quantity store."""

    @classmethod
    def get_quantity(cls, warehouse, product) -> int:
        """On-hand quantity; a missing row means 0."""
        quantity = (
            WarehouseStock.objects
            .filter(warehouse=warehouse, product=product)
            .values_list('quantity', flat=True)
            .first()
        )
        return quantity or 0

    @classmethod
    def total_quantity(cls, product, warehouses=None) -> int:
        """On-hand quantity summed over ``warehouses`` (all active ones by default)."""
        rows = WarehouseStock.objects.filter(product=product)
        if warehouses is None:
            rows = rows.filter(warehouse__is_active=True)
        else:
            rows = rows.filter(warehouse__in=warehouses)
        return rows.aggregate(total=Sum('quantity'))['total'] or 0

    @classmethod
    def quantities_by_warehouse(cls, product) -> List[dict]:
        return list(
            WarehouseStock.objects
            .filter(product=product, warehouse__is_active=True)
            .select_related('warehouse')
            .order_by('-warehouse__is_default', 'warehouse__name')
            .values('warehouse_id', 'warehouse__name', 'warehouse__code', 'quantity')
        )

    @classmethod
    def _validate(cls, warehouse, product, delta):
        if product.is_combo:
            raise ValidationError({'product': f"Combo product '{product.sku}' does not hold stock"})
        if warehouse.business_id != product.business_id:
            raise ValidationError({'product': 'Product and warehouse belong to different businesses'})
        if not isinstance(delta, int) or isinstance(delta, bool):
            raise ValidationError({'delta': 'Delta must be an integer'})

    @classmethod
    @transaction.atomic
    def adjust_stock(
        cls,
        warehouse,
        product,
        delta: int,
        *,
        source: str,
        reference: str = '',
        user=None,
        note: str = '',
        document_id=None,
        line_index: Optional[int] = None,
    ) -> int:
        """
        Apply ``delta`` to (warehouse, product) and return the new quantity.

        Raises ``InsufficientStockError`` when a decrement would go below
        zero; nothing is written in that case.
        """
        cls._validate(warehouse, product, delta)
        if delta == 0:
            return cls.get_quantity(warehouse, product)

        stock, _ = WarehouseStock.objects.get_or_create(warehouse=warehouse, product=product)

        rows = WarehouseStock.objects.filter(pk=stock.pk)
        if delta < 0:
            rows = rows.filter(quantity__gte=-delta)
        matched = rows.update(quantity=F('quantity') + delta, updated_at=timezone.now())

        if matched != 1:
            available = cls.get_quantity(warehouse, product)
            logger.warning(
                "Insufficient stock for %s in %s: available %s, requested %s (%s)",
                product.sku, warehouse.code, available, -delta, reference or source,
            )
            raise InsufficientStockError(
                f"Insufficient stock for '{product.name}' in {warehouse.name}. "
                f"Available: {available}, Required: {-delta}",
                document_id=document_id,
                line_index=line_index,
                product_id=product.pk,
                warehouse_id=warehouse.pk,
                available=available,
                requested=-delta,
            )

        quantity_after = WarehouseStock.objects.values_list('quantity', flat=True).get(pk=stock.pk)

        StockMovement.objects.create(
            business_id=warehouse.business_id,
            warehouse=warehouse,
            product=product,
            delta=delta,
            quantity_after=quantity_after,
            movement_type=StockMovement.TYPE_IMPORT if delta > 0 else StockMovement.TYPE_EXPORT,
            source=source,
            reference=reference or '',
            note=note or '',
            created_by=user if getattr(user, 'pk', None) else None,
        )
        logger.debug("Ledger %s/%s %+d -> %s (%s)", warehouse.code, product.sku, delta, quantity_after, source)
        return quantity_after

    @classmethod
    @transaction.atomic
    def apply(
        cls,
        changes: Iterable[LedgerChange],
        *,
        source: str,
        reference: str = '',
        user=None,
        note: str = '',
        document_id=None,
    ) -> List[int]:
        """
        Apply several changes all-or-nothing.

        The first failing line raises (with its ``line_index``) and the
        enclosing savepoint discards every change already made.
        """
        results = []
        for index, (warehouse, product, delta) in enumerate(changes):
            results.append(
                cls.adjust_stock(
                    warehouse,
                    product,
                    delta,
                    source=source,
                    reference=reference,
                    user=user,
                    note=note,
                    document_id=document_id,
                    line_index=index,
                )
            )
        return results

    @classmethod
    def set_quantity(cls, warehouse, product, target: int, **kwargs) -> Tuple[int, int]:
        """
        Move the cell to ``target`` as a delta against a fresh read.

        A concurrent writer between the read and the update makes the result
        differ from ``target``; callers re-read and retry if they need an
        exact absolute value. Returns ``(delta, new_quantity)``.
        """
        if target < 0:
            raise ValidationError({'quantity': 'Quantity cannot be negative'})
        delta = target - cls.get_quantity(warehouse, product)
        return delta, cls.adjust_stock(warehouse, product, delta, **kwargs)
