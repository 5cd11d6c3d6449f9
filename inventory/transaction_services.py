"""
Import / export document processing.

``TransactionProcessor`` validates documents against current stock, drives
the pending -> approved | rejected workflow and is the only caller that
posts document quantities to ``StockLedger``.

Usage:
    actor = Capability.for_user(request.user, business)
    processor = TransactionProcessor(actor)
    document = processor.create(
        business=business,
        transaction_type=StockTransaction.TYPE_EXPORT,
        warehouse=warehouse,
        items=[{'product': product, 'quantity': 2, 'unit_price': Decimal('10.00')}],
    )
    processor.approve(document)
"""

import logging
from collections import defaultdict
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.utils import timezone

from accounts.permissions import WAREHOUSE_MODULE
from .audit import AuditRecorder
from .exceptions import ActionNotPermitted, DuplicateSerialError, InsufficientStockError
from .feeds import get_committed_quantity_feed
from .ledger import StockLedger
from .models import (
    Product,
    ProductSerial,
    StockMovement,
    StockTransaction,
    StockTransactionItem,
    generate_document_number,
)
from .signals import stock_transaction_approved
from .state_machines import APPROVAL_TRANSITIONS, ApprovalStatus, atomic_step, check_transition, transition


logger = logging.getLogger(__name__)


def _clean_serials(raw) -> List[str]:
    return [str(value).strip() for value in (raw or []) if str(value).strip()]


class TransactionProcessor:
    """Create, approve and reject import/export documents for one actor."""

    MODULE = WAREHOUSE_MODULE

    def __init__(self, actor, committed_feed=None):
        self.actor = actor
        self.committed_feed = committed_feed or get_committed_quantity_feed()

    @property
    def user(self):
        user = getattr(self.actor, 'user', None)
        return user if getattr(user, 'pk', None) else None

    def _require_edit(self):
        if not self.actor.can_edit(self.MODULE):
            raise ActionNotPermitted('You do not have permission to create warehouse documents')

    def _require_approve(self, document):
        if not self.actor.can_approve(self.MODULE):
            raise ActionNotPermitted(
                'You do not have permission to approve or reject warehouse documents',
                document_id=document.pk,
            )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _resolve_lines(self, business, transaction_type, items) -> List[Dict]:
        if not items:
            raise ValidationError({'items': 'At least one line item is required'})

        product_ids = []
        for item in items:
            product = item.get('product')
            product_ids.append(getattr(product, 'pk', product))
        products = Product.objects.in_bulk([pk for pk in product_ids if pk])

        lines = []
        for index, (item, product_id) in enumerate(zip(items, product_ids)):
            product = products.get(product_id) if product_id else None
            if product is None or product.business_id != business.pk:
                raise ValidationError({'items': f'Line {index + 1}: unknown product'})
            if product.is_combo:
                raise ValidationError({'items': f"Line {index + 1}: combo product '{product.sku}' has no own stock"})
            if not product.is_active:
                raise ValidationError({'items': f"Line {index + 1}: product '{product.sku}' is inactive"})

            try:
                quantity = int(item.get('quantity'))
            except (TypeError, ValueError):
                raise ValidationError({'items': f'Line {index + 1}: quantity must be a whole number'})
            if quantity < 1:
                raise ValidationError({'items': f'Line {index + 1}: quantity must be at least 1'})

            try:
                unit_price = Decimal(str(item.get('unit_price') or '0'))
            except InvalidOperation:
                raise ValidationError({'items': f'Line {index + 1}: invalid unit price'})
            if unit_price < 0:
                raise ValidationError({'items': f'Line {index + 1}: unit price cannot be negative'})

            serials = []
            if transaction_type == StockTransaction.TYPE_IMPORT and product.has_serial:
                serials = _clean_serials(item.get('serials'))
                self._check_serial_batch(product, quantity, serials, line_index=index)

            lines.append({
                'product': product,
                'quantity': quantity,
                'unit_price': unit_price,
                'serials': serials,
            })
        return lines

    @staticmethod
    def _check_serial_batch(product, quantity, serials, *, line_index=None, document_id=None):
        if len(serials) != quantity:
            raise ValidationError({
                'items': f"Line {(line_index or 0) + 1}: '{product.name}' needs {quantity} serial numbers, got {len(serials)}"
            })
        if len(set(serials)) != len(serials):
            raise DuplicateSerialError(
                f"Duplicate serial numbers submitted for '{product.name}'",
                document_id=document_id,
                line_index=line_index,
                product_id=product.pk,
            )

    def _check_export_availability(self, warehouse, lines, committed: Optional[Dict] = None):
        """available = on hand - committed; requested quantities summed per product."""
        requested = defaultdict(int)
        first_line = {}
        for index, line in enumerate(lines):
            requested[line['product'].pk] += line['quantity']
            first_line.setdefault(line['product'].pk, index)

        for index, line in enumerate(lines):
            product = line['product']
            if first_line[product.pk] != index:
                continue
            on_hand = StockLedger.get_quantity(warehouse, product)
            if committed is not None:
                reserved = int(committed.get(product.pk, committed.get(str(product.pk), 0)) or 0)
            else:
                reserved = self.committed_feed.committed_quantity(product)
            available = max(on_hand - reserved, 0)
            if requested[product.pk] > available:
                raise InsufficientStockError(
                    f"Insufficient stock for '{product.name}' in {warehouse.name}. "
                    f"Available: {available}, Required: {requested[product.pk]}",
                    line_index=index,
                    product_id=product.pk,
                    warehouse_id=warehouse.pk,
                    available=available,
                    requested=requested[product.pk],
                )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    @transaction.atomic
    def create(
        self,
        *,
        business,
        transaction_type,
        warehouse,
        items,
        supplier=None,
        partner_name='',
        partner_phone='',
        transaction_date=None,
        note='',
        committed: Optional[Dict] = None,
    ) -> StockTransaction:
        """
        Create a document; actors with approval rights get it approved inline.

        ``committed`` maps product id to units reserved elsewhere; when
        omitted the configured committed-quantity feed is asked.
        """
        self._require_edit()

        if transaction_type not in dict(StockTransaction.TYPE_CHOICES):
            raise ValidationError({'transaction_type': 'Must be import or export'})
        if warehouse.business_id != business.pk or not warehouse.is_active:
            raise ValidationError({'warehouse': 'Unknown or inactive warehouse'})
        if supplier is not None and supplier.business_id != business.pk:
            raise ValidationError({'supplier': 'Unknown supplier'})

        lines = self._resolve_lines(business, transaction_type, items)
        if transaction_type == StockTransaction.TYPE_EXPORT:
            self._check_export_availability(warehouse, lines, committed)

        document = StockTransaction.objects.create(
            business=business,
            reference_number=generate_document_number(
                StockTransaction, business, StockTransaction.NUMBER_PREFIXES[transaction_type]
            ),
            transaction_type=transaction_type,
            warehouse=warehouse,
            supplier=supplier,
            partner_name=partner_name or '',
            partner_phone=partner_phone or '',
            transaction_date=transaction_date or timezone.localdate(),
            note=note or '',
            created_by=self.user,
        )
        for index, line in enumerate(lines):
            StockTransactionItem.objects.create(
                transaction=document,
                line_number=index + 1,
                product=line['product'],
                quantity=line['quantity'],
                unit_price=line['unit_price'],
                serials=line['serials'],
            )
        document.recalculate_total()
        StockTransaction.objects.filter(pk=document.pk).update(total_amount=document.total_amount)

        auto_approve = self.actor.can_approve(self.MODULE)
        AuditRecorder.record(
            'CREATE',
            'StockTransaction',
            document.pk,
            f"Created {document.get_transaction_type_display().lower()} {document.reference_number}"
            + (' (auto-approved)' if auto_approve else ' (pending approval)'),
            business=business,
            user=self.user,
        )
        logger.info("Created %s %s with %d lines", transaction_type, document.reference_number, len(lines))

        if auto_approve:
            self._approve(document)
        return document

    def approve(self, document, serials: Optional[Dict] = None) -> StockTransaction:
        """
        Approve a pending document and post it to the ledger.

        All lines are posted or none: a failing line leaves the document
        ``pending`` and the stock untouched. Approving an already approved
        document is a no-op. ``serials`` optionally maps item id to the
        serial numbers to register for that import line.
        """
        self._require_approve(document)
        with atomic_step(document):
            return self._approve(document, serials)

    def _approve(self, document, serials=None):
        if not check_transition(APPROVAL_TRANSITIONS, document.approval_status, ApprovalStatus.APPROVED,
                                document_id=document.pk):
            logger.info("%s already approved; nothing to do", document.reference_number)
            return document

        items = list(document.items.select_related('product').order_by('line_number'))
        if not items:
            raise ValidationError({'items': 'Document has no line items'})

        serial_rows = self._collect_serials(document, items, serials or {}) if document.is_import else []

        now = timezone.now()
        # Compare-and-swap first so a concurrent approval fails before touching stock.
        transition(
            document,
            APPROVAL_TRANSITIONS,
            ApprovalStatus.APPROVED,
            field='approval_status',
            approved_by=self.user,
            approved_at=now,
            stock_applied_at=now,
        )

        source = StockMovement.SOURCE_IMPORT if document.is_import else StockMovement.SOURCE_EXPORT
        if document.origin == StockTransaction.ORIGIN_STOCKTAKE:
            source = StockMovement.SOURCE_STOCKTAKE
        elif document.origin == StockTransaction.ORIGIN_MANUAL:
            source = StockMovement.SOURCE_MANUAL

        StockLedger.apply(
            [(document.warehouse, item.product, document.sign * item.quantity) for item in items],
            source=source,
            reference=document.reference_number,
            user=self.user,
            note=document.note,
            document_id=document.pk,
        )

        if serial_rows:
            try:
                with transaction.atomic():
                    ProductSerial.objects.bulk_create(serial_rows)
            except IntegrityError:
                raise DuplicateSerialError(
                    'A serial number was registered by another request',
                    document_id=document.pk,
                )

        AuditRecorder.record(
            'APPROVE',
            'StockTransaction',
            document.pk,
            f"Approved {document.get_transaction_type_display().lower()} {document.reference_number}",
            business=document.business_id,
            user=self.user,
        )

        if document.total_amount and document.total_amount != 0:
            transaction.on_commit(
                lambda: stock_transaction_approved.send(
                    sender=StockTransaction,
                    transaction=document,
                    total_amount=document.total_amount,
                    user=self.user,
                )
            )
        return document

    def _collect_serials(self, document, items, overrides) -> List[ProductSerial]:
        """Validate serials of every serialized import line before any stock moves."""
        rows = []
        seen = set()
        for index, item in enumerate(items):
            if not item.product.has_serial:
                continue
            values = _clean_serials(overrides.get(item.pk, overrides.get(str(item.pk), item.serials)))
            self._check_serial_batch(item.product, item.quantity, values, line_index=index, document_id=document.pk)

            duplicates = seen.intersection(values)
            if duplicates:
                raise DuplicateSerialError(
                    f"Serial {sorted(duplicates)[0]} appears on more than one line",
                    document_id=document.pk,
                    line_index=index,
                    product_id=item.product_id,
                )
            seen.update(values)

            existing = list(
                ProductSerial.objects
                .filter(business_id=document.business_id, serial_number__in=values)
                .values_list('serial_number', flat=True)
            )
            if existing:
                raise DuplicateSerialError(
                    f"Serial {existing[0]} already exists",
                    document_id=document.pk,
                    line_index=index,
                    product_id=item.product_id,
                    serials=existing,
                )

            for value in values:
                rows.append(ProductSerial(
                    business_id=document.business_id,
                    product=item.product,
                    warehouse=document.warehouse,
                    serial_number=value,
                    status=ProductSerial.STATUS_IN_STOCK,
                    source_transaction=document,
                    created_by=self.user,
                ))
        return rows

    def reject(self, document, reason) -> StockTransaction:
        """Reject a pending document. Never touches stock."""
        self._require_approve(document)
        reason = (reason or '').strip()
        if not reason:
            raise ValidationError({'reason': 'A reason is required to reject a document'})
        with atomic_step(document):
            return self._reject(document, reason)

    def _reject(self, document, reason):
        if not check_transition(APPROVAL_TRANSITIONS, document.approval_status, ApprovalStatus.REJECTED,
                                document_id=document.pk):
            return document

        transition(
            document,
            APPROVAL_TRANSITIONS,
            ApprovalStatus.REJECTED,
            field='approval_status',
            reject_reason=reason,
            approved_by=self.user,
            approved_at=timezone.now(),
        )
        AuditRecorder.record(
            'REJECT',
            'StockTransaction',
            document.pk,
            f"Rejected {document.get_transaction_type_display().lower()} {document.reference_number}: {reason}",
            business=document.business_id,
            user=self.user,
        )
        return document

    # ------------------------------------------------------------------
    # System-generated documents (stocktake variances, manual adjustments)
    # ------------------------------------------------------------------

    def post_adjustment(self, *, warehouse, product, delta, origin, note='', stocktake=None) -> StockTransaction:
        """
        Record an already-approved single-line document for ``delta`` and post it.

        Import when ``delta`` is positive, export when negative. Raises
        ``InsufficientStockError`` (and writes nothing) when a decrement
        cannot be covered.
        """
        if delta == 0:
            raise ValidationError({'delta': 'Adjustment delta cannot be zero'})

        transaction_type = StockTransaction.TYPE_IMPORT if delta > 0 else StockTransaction.TYPE_EXPORT
        prefix = 'ADJ' if origin == StockTransaction.ORIGIN_MANUAL else StockTransaction.NUMBER_PREFIXES[transaction_type]
        source = StockMovement.SOURCE_MANUAL if origin == StockTransaction.ORIGIN_MANUAL else StockMovement.SOURCE_STOCKTAKE
        now = timezone.now()

        with transaction.atomic():
            document = StockTransaction.objects.create(
                business_id=warehouse.business_id,
                reference_number=generate_document_number(StockTransaction, warehouse.business, prefix),
                transaction_type=transaction_type,
                origin=origin,
                warehouse=warehouse,
                transaction_date=timezone.localdate(),
                note=note or '',
                approval_status=ApprovalStatus.APPROVED,
                approved_by=self.user,
                approved_at=now,
                stock_applied_at=now,
                stocktake=stocktake,
                created_by=self.user,
            )
            StockTransactionItem.objects.create(
                transaction=document,
                line_number=1,
                product=product,
                quantity=abs(delta),
            )
            StockLedger.adjust_stock(
                warehouse,
                product,
                delta,
                source=source,
                reference=document.reference_number,
                user=self.user,
                note=note,
                document_id=document.pk,
            )
        return document
