"""
Manual stock adjustments.

Operators correct a single cell with one of three modes:

- ``add``: increase by ``quantity``
- ``subtract``: decrease by ``quantity``, clamped to what is on hand
- ``set``: move to an absolute ``quantity``

Every mode becomes a ledger delta computed from a fresh read and is recorded
as an approved ``ADJ-`` document with the operator's reason.
"""

import logging

from django.core.exceptions import ValidationError

from accounts.permissions import WAREHOUSE_MODULE
from .audit import AuditRecorder
from .exceptions import ActionNotPermitted
from .ledger import StockLedger
from .models import StockTransaction
from .transaction_services import TransactionProcessor


logger = logging.getLogger(__name__)


class ManualAdjustment:
    MODE_ADD = 'add'
    MODE_SUBTRACT = 'subtract'
    MODE_SET = 'set'
    MODES = (MODE_ADD, MODE_SUBTRACT, MODE_SET)

    def __init__(self, actor):
        self.actor = actor
        self.processor = TransactionProcessor(actor)

    def adjust(self, warehouse, product, *, mode, quantity, reason=''):
        """
        Apply the adjustment and return ``(document, new_quantity)``.

        ``document`` is None when the adjustment resolves to no change.
        """
        if not self.actor.can_edit(WAREHOUSE_MODULE):
            raise ActionNotPermitted('You do not have permission to adjust stock')
        if mode not in self.MODES:
            raise ValidationError({'mode': f"Mode must be one of: {', '.join(self.MODES)}"})
        if product.is_combo:
            raise ValidationError({'product': 'Combo product stock is derived and cannot be adjusted'})
        if product.business_id != warehouse.business_id:
            raise ValidationError({'product': 'Unknown product'})
        try:
            quantity = int(quantity)
        except (TypeError, ValueError):
            raise ValidationError({'quantity': 'Quantity must be a whole number'})
        if quantity < 0:
            raise ValidationError({'quantity': 'Quantity cannot be negative'})

        current = StockLedger.get_quantity(warehouse, product)
        if mode == self.MODE_ADD:
            delta = quantity
        elif mode == self.MODE_SUBTRACT:
            delta = -min(quantity, current)
        else:
            delta = quantity - current

        if delta == 0:
            return None, current

        label = {self.MODE_ADD: 'Added', self.MODE_SUBTRACT: 'Subtracted', self.MODE_SET: 'Set'}[mode]
        note = f"{label} {quantity} ({current} -> {current + delta})"
        if reason:
            note = f"{note}: {reason}"

        document = self.processor.post_adjustment(
            warehouse=warehouse,
            product=product,
            delta=delta,
            origin=StockTransaction.ORIGIN_MANUAL,
            note=note,
        )
        new_quantity = StockLedger.get_quantity(warehouse, product)
        AuditRecorder.record(
            'ADJUST',
            'WarehouseStock',
            product.pk,
            f"{document.reference_number} {product.sku} @ {warehouse.code}: {note}",
            business=warehouse.business_id,
            user=self.processor.user,
            changes={'before': current, 'delta': delta, 'after': new_quantity},
        )
        logger.info("Manual adjustment %s: %s @ %s %+d", document.reference_number, product.sku, warehouse.code, delta)
        return document, new_quantity
