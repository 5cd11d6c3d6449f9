"""
Read model for the inventory screen.

Combines ledger quantities, derived combo stock and the committed quantity
reported by order management:

    sellable = max(0, on_hand - committed)
"""

from typing import Dict, List, Optional

from .combos import ComboResolver
from .feeds import get_committed_quantity_feed
from .ledger import StockLedger


def product_availability(product, warehouse=None, feed=None, committed: Optional[int] = None) -> Dict:
    """Stock figures of one product, for one warehouse or all active ones."""
    if product.is_combo:
        on_hand = ComboResolver.combo_stock(product, warehouse)
    elif warehouse is not None:
        on_hand = StockLedger.get_quantity(warehouse, product)
    else:
        on_hand = StockLedger.total_quantity(product)

    if committed is None:
        committed = (feed or get_committed_quantity_feed()).committed_quantity(product)

    data = {
        'product_id': str(product.pk),
        'sku': product.sku,
        'name': product.name,
        'unit': product.unit,
        'is_combo': product.is_combo,
        'has_serial': product.has_serial,
        'on_hand': on_hand,
        'committed': committed,
        'sellable': max(0, on_hand - committed),
        'low_stock_threshold': product.low_stock_threshold,
        'is_low_stock': on_hand <= product.low_stock_threshold,
    }
    if product.is_combo:
        data['components'] = ComboResolver.combo_breakdown(product, warehouse)
    elif warehouse is None:
        data['warehouses'] = [
            {
                'warehouse_id': str(row['warehouse_id']),
                'warehouse_name': row['warehouse__name'],
                'warehouse_code': row['warehouse__code'],
                'quantity': row['quantity'],
            }
            for row in StockLedger.quantities_by_warehouse(product)
        ]
    return data


def inventory_overview(products, warehouse=None, low_stock_only=False) -> List[Dict]:
    feed = get_committed_quantity_feed()
    products = list(products)
    committed = feed.committed_quantities(products)
    rows = [
        product_availability(product, warehouse, committed=committed.get(product.pk, 0))
        for product in products
    ]
    if low_stock_only:
        rows = [row for row in rows if row['is_low_stock']]
    return rows
