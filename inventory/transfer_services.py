"""
Warehouse-to-warehouse transfers.

Workflow (see ``state_machines.TRANSFER_TRANSITIONS``):
    pending --dispatch--> in_transit --receive--> received
    pending / in_transit --cancel--> cancelled

Stock moves twice: the source is decremented on dispatch and the destination
incremented on receipt. Each step posts all lines or none. Cancelling an
in-transit transfer returns the sent quantities to the source.
"""
import logging
from collections import defaultdict
from typing import Dict, Optional

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from accounts.permissions import WAREHOUSE_MODULE
from .audit import AuditRecorder
from .exceptions import ActionNotPermitted, InsufficientStockError
from .ledger import StockLedger
from .models import Product, StockMovement, generate_document_number
from .state_machines import TRANSFER_TRANSITIONS, TransferStatus, atomic_step, check_transition, transition
from .transfer_models import Transfer, TransferItem


logger = logging.getLogger(__name__)


class TransferCoordinator:
    """Drives transfer orders for one actor."""

    MODULE = WAREHOUSE_MODULE

    def __init__(self, actor):
        self.actor = actor

    @property
    def user(self):
        user = getattr(self.actor, 'user', None)
        return user if getattr(user, 'pk', None) else None

    def _require_edit(self, transfer=None):
        if not self.actor.can_edit(self.MODULE):
            raise ActionNotPermitted(
                'You do not have permission to manage transfers',
                document_id=getattr(transfer, 'pk', None),
            )

    def _audit(self, action, transfer, description):
        AuditRecorder.record(
            action,
            'Transfer',
            transfer.pk,
            description,
            business=transfer.business_id,
            user=self.user,
        )

    @transaction.atomic
    def create(self, *, business, source_warehouse, destination_warehouse, items,
               notes='', expected_arrival_date=None) -> Transfer:
        """Create a pending transfer. Stock is checked but not moved."""
        self._require_edit()

        if source_warehouse.pk == destination_warehouse.pk:
            raise ValidationError({'destination_warehouse': 'Cannot transfer to the same warehouse as source'})
        for field, warehouse in (('source_warehouse', source_warehouse), ('destination_warehouse', destination_warehouse)):
            if warehouse.business_id != business.pk or not warehouse.is_active:
                raise ValidationError({field: 'Unknown or inactive warehouse'})
        if not items:
            raise ValidationError({'items': 'At least one item is required'})

        quantities = defaultdict(int)
        order = []
        for index, item in enumerate(items):
            product = item.get('product')
            product_id = getattr(product, 'pk', product)
            try:
                quantity = int(item.get('quantity'))
            except (TypeError, ValueError):
                raise ValidationError({'items': f'Line {index + 1}: quantity must be a whole number'})
            if quantity < 1:
                raise ValidationError({'items': f'Line {index + 1}: quantity must be at least 1'})
            if product_id not in quantities:
                order.append((index, product_id))
            quantities[product_id] += quantity

        products = Product.objects.in_bulk([product_id for _, product_id in order if product_id])

        transfer = Transfer(
            business=business,
            source_warehouse=source_warehouse,
            destination_warehouse=destination_warehouse,
            notes=notes or '',
            expected_arrival_date=expected_arrival_date,
            created_by=self.user,
        )

        lines = []
        for index, product_id in order:
            product = products.get(product_id) if product_id else None
            if product is None or product.business_id != business.pk:
                raise ValidationError({'items': f'Line {index + 1}: unknown product'})
            if product.is_combo:
                raise ValidationError({'items': f"Line {index + 1}: combo product '{product.sku}' cannot be transferred"})
            available = StockLedger.get_quantity(source_warehouse, product)
            if quantities[product_id] > available:
                raise InsufficientStockError(
                    f"Insufficient stock for '{product.name}' in {source_warehouse.name}. "
                    f"Available: {available}, Required: {quantities[product_id]}",
                    line_index=index,
                    product_id=product.pk,
                    available=available,
                    requested=quantities[product_id],
                )
            lines.append(TransferItem(product=product, sent_quantity=quantities[product_id]))

        transfer.reference_number = generate_document_number(Transfer, business, Transfer.NUMBER_PREFIX)
        transfer.clean()
        transfer.save()
        for line in lines:
            line.transfer = transfer
        TransferItem.objects.bulk_create(lines)

        self._audit(
            'CREATE',
            transfer,
            f"Created transfer {transfer.reference_number}: {source_warehouse.name} -> {destination_warehouse.name}",
        )
        logger.info("Created transfer %s with %d lines", transfer.reference_number, len(lines))
        return transfer

    def confirm_dispatch(self, transfer) -> Transfer:
        """pending -> in_transit; decrements the source for every line."""
        self._require_edit(transfer)
        with atomic_step(transfer):
            if not check_transition(TRANSFER_TRANSITIONS, transfer.status, TransferStatus.IN_TRANSIT,
                                    document_id=transfer.pk):
                return transfer

            transition(
                transfer,
                TRANSFER_TRANSITIONS,
                TransferStatus.IN_TRANSIT,
                dispatched_at=timezone.now(),
                dispatched_by=self.user,
            )
            items = list(transfer.items.select_related('product'))
            StockLedger.apply(
                [(transfer.source_warehouse, item.product, -item.sent_quantity) for item in items],
                source=StockMovement.SOURCE_TRANSFER_OUT,
                reference=transfer.reference_number,
                user=self.user,
                document_id=transfer.pk,
            )
            self._audit('TRANSFER', transfer, f"Dispatched transfer {transfer.reference_number}")
        return transfer

    def confirm_receipt(self, transfer, received_quantities: Optional[Dict] = None) -> Transfer:
        """
        in_transit -> received; increments the destination.

        ``received_quantities`` maps item id (or product id) to the counted
        quantity; missing entries default to the sent quantity. Shortfalls
        are stored as negative ``variance`` on the line and are not posted
        anywhere else.
        """
        self._require_edit(transfer)
        received_quantities = {str(key): value for key, value in (received_quantities or {}).items()}

        with atomic_step(transfer):
            if not check_transition(TRANSFER_TRANSITIONS, transfer.status, TransferStatus.RECEIVED,
                                    document_id=transfer.pk):
                return transfer

            items = list(transfer.items.select_related('product'))
            for index, item in enumerate(items):
                raw = received_quantities.get(str(item.pk), received_quantities.get(str(item.product_id)))
                if raw is None:
                    received = item.sent_quantity
                else:
                    try:
                        received = int(raw)
                    except (TypeError, ValueError):
                        raise ValidationError({'received_quantities': f'Line {index + 1}: must be a whole number'})
                if received < 0 or received > item.sent_quantity:
                    raise ValidationError({
                        'received_quantities': f'Line {index + 1}: received quantity must be between 0 and {item.sent_quantity}'
                    })
                item.received_quantity = received
                item.variance = received - item.sent_quantity

            transition(
                transfer,
                TRANSFER_TRANSITIONS,
                TransferStatus.RECEIVED,
                received_at=timezone.now(),
                received_by=self.user,
            )
            TransferItem.objects.bulk_update(items, ['received_quantity', 'variance'])
            StockLedger.apply(
                [
                    (transfer.destination_warehouse, item.product, item.received_quantity)
                    for item in items if item.received_quantity
                ],
                source=StockMovement.SOURCE_TRANSFER_IN,
                reference=transfer.reference_number,
                user=self.user,
                document_id=transfer.pk,
            )

            shortfall = sum(item.variance for item in items)
            if shortfall:
                logger.warning("Transfer %s received with variance %d", transfer.reference_number, shortfall)
            self._audit(
                'TRANSFER',
                transfer,
                f"Received transfer {transfer.reference_number}" + (f" (variance {shortfall})" if shortfall else ''),
            )
        return transfer

    def cancel(self, transfer, reason='') -> Transfer:
        """Cancel; an in-transit transfer first returns its stock to the source."""
        self._require_edit(transfer)
        with atomic_step(transfer):
            previous = transfer.status
            if not check_transition(TRANSFER_TRANSITIONS, previous, TransferStatus.CANCELLED,
                                    document_id=transfer.pk):
                return transfer

            transition(
                transfer,
                TRANSFER_TRANSITIONS,
                TransferStatus.CANCELLED,
                cancelled_at=timezone.now(),
                cancelled_by=self.user,
                cancel_reason=(reason or '').strip(),
            )
            if previous == TransferStatus.IN_TRANSIT:
                StockLedger.apply(
                    [
                        (transfer.source_warehouse, item.product, item.sent_quantity)
                        for item in transfer.items.select_related('product')
                    ],
                    source=StockMovement.SOURCE_TRANSFER_REVERSAL,
                    reference=transfer.reference_number,
                    user=self.user,
                    document_id=transfer.pk,
                )
            self._audit('CANCEL', transfer, f"Cancelled transfer {transfer.reference_number}")
        return transfer
