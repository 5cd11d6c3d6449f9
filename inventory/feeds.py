"""
Committed-quantity feeds.

Order management lives outside this service. It reports, per product, how
many units are promised to unfulfilled orders; the inventory view subtracts
that from on-hand to get the sellable quantity. The feed class is configured
with ``INVENTORY_COMMITTED_QTY_FEED``.
"""

from typing import Dict, Iterable

from django.conf import settings
from django.utils.module_loading import import_string


class NullCommittedQuantityFeed:
    """Default feed: nothing is committed."""

    def committed_quantity(self, product) -> int:
        return 0

    def committed_quantities(self, products: Iterable) -> Dict:
        return {getattr(product, 'pk', product): self.committed_quantity(product) for product in products}


def get_committed_quantity_feed():
    path = getattr(settings, 'INVENTORY_COMMITTED_QTY_FEED', 'inventory.feeds.NullCommittedQuantityFeed')
    return import_string(path)()
