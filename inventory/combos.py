"""
Derived stock for combo (bundle) products.

Combo stock is never stored. It is recomputed from the ledger on every call:

    combo_stock = min over children of floor(child_stock / quantity_per_combo)

A combo without children, or with a child that no longer resolves to an
active simple product, has stock 0.
"""

from typing import Dict, Optional

from django.db.models import Sum

from .models import ComboItem, WarehouseStock


class ComboResolver:
    """Read-only view over WarehouseStock and the combo bill of materials."""

    @staticmethod
    def _child_quantities(child_ids, warehouse=None) -> Dict:
        rows = WarehouseStock.objects.filter(product_id__in=child_ids)
        if warehouse is not None:
            rows = rows.filter(warehouse=warehouse)
        else:
            rows = rows.filter(warehouse__is_active=True)
        totals = rows.values('product_id').annotate(total=Sum('quantity'))
        return {row['product_id']: row['total'] or 0 for row in totals}

    @classmethod
    def combo_stock(cls, combo, warehouse=None) -> int:
        """Buildable combos in ``warehouse``, or across all active warehouses."""
        if not combo.is_combo:
            return 0

        components = list(
            ComboItem.objects
            .filter(combo=combo)
            .values_list('child_id', 'quantity', 'child__is_active', 'child__is_combo')
        )
        if not components:
            return 0

        stock = cls._child_quantities([child_id for child_id, *_ in components], warehouse)

        buildable: Optional[int] = None
        for child_id, per_combo, is_active, is_combo in components:
            if not per_combo or per_combo <= 0 or not is_active or is_combo:
                return 0
            possible = stock.get(child_id, 0) // per_combo
            buildable = possible if buildable is None else min(buildable, possible)
            if buildable == 0:
                break
        return max(buildable or 0, 0)

    @classmethod
    def combo_breakdown(cls, combo, warehouse=None):
        """Per-child detail used by the inventory view."""
        components = ComboItem.objects.filter(combo=combo).select_related('child')
        stock = cls._child_quantities([item.child_id for item in components], warehouse)
        return [
            {
                'product_id': str(item.child_id),
                'sku': item.child.sku,
                'name': item.child.name,
                'quantity_per_combo': item.quantity,
                'stock': stock.get(item.child_id, 0),
                'buildable': stock.get(item.child_id, 0) // item.quantity if item.quantity else 0,
            }
            for item in components
        ]
