"""
Stocktake (physical count) sessions.

Workflow (see ``state_machines.STOCKTAKE_TRANSITIONS``):
    draft --start--> in_progress --complete--> completed
    draft / in_progress --cancel--> cancelled

Count entry is a queue. ``enqueue_edits`` and ``record_scan`` only append
``StocktakeCountEvent`` rows; ``flush`` applies them to the items in small
batches. An item row is written only when it has pending events, and each
write is guarded by the item's ``last_applied_sequence`` so two concurrent
flushes cannot apply the same event twice.

On completion every counted product whose count differs from the snapshot is
posted to the ledger through an approved stocktake transaction. A line that
cannot be posted is recorded on the session and the remaining lines still go
through.
"""

import logging
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import F, Q
from django.db.models.functions import Greatest
from django.utils import timezone

from accounts.permissions import WAREHOUSE_MODULE
from .audit import AuditRecorder
from .exceptions import (
    ActionNotPermitted,
    InvalidTransitionError,
    InventoryError,
    PartialAdjustmentError,
    UnmatchedScanError,
)
from .models import (
    Product,
    StockTransaction,
    StocktakeCountEvent,
    StocktakeItem,
    StocktakeSession,
    WarehouseStock,
    generate_document_number,
)
from .state_machines import STOCKTAKE_TRANSITIONS, StocktakeStatus, atomic_step, check_transition, transition
from .stocktakes import group_by_product
from .transaction_services import TransactionProcessor


logger = logging.getLogger(__name__)


def save_batch_size():
    return getattr(settings, 'INVENTORY_STOCKTAKE_SAVE_BATCH', 10)


def pending_events(session):
    return StocktakeCountEvent.objects.filter(session=session, applied_at__isnull=True, superseded=False)


class StocktakeReconciler:
    """Create, count and post stocktake sessions for one actor."""

    MODULE = WAREHOUSE_MODULE

    def __init__(self, actor):
        self.actor = actor

    @property
    def user(self):
        user = getattr(self.actor, 'user', None)
        return user if getattr(user, 'pk', None) else None

    def _require_edit(self, session=None):
        if not self.actor.can_edit(self.MODULE):
            raise ActionNotPermitted(
                'You do not have permission to manage stocktakes',
                document_id=getattr(session, 'pk', None),
            )

    @staticmethod
    def _require_counting(session):
        if session.status != StocktakeStatus.IN_PROGRESS:
            raise InvalidTransitionError(
                'Counts can only be entered while the stocktake is in progress',
                document_id=session.pk,
                current_status=session.status,
            )

    def _audit(self, action, session, description, changes=None):
        AuditRecorder.record(
            action,
            'StocktakeSession',
            session.pk,
            description,
            business=session.business_id,
            user=self.user,
            changes=changes,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @transaction.atomic
    def create(self, *, business, warehouse, scope=StocktakeSession.SCOPE_ALL, product_ids=None,
               category_ids=None, include_variants=True, note='') -> StocktakeSession:
        """
        Create a draft session with one item per product in scope.

        Products with active variants get one item per variant. The product's
        on-hand quantity is snapshotted once, on its first variant item; the
        other variant items start at 0 so item snapshots add up per product.
        """
        self._require_edit()
        if warehouse.business_id != business.pk or not warehouse.is_active:
            raise ValidationError({'warehouse': 'Unknown or inactive warehouse'})

        products = Product.objects.filter(business=business, is_active=True, is_combo=False)
        if scope == StocktakeSession.SCOPE_PRODUCTS:
            if not product_ids:
                raise ValidationError({'product_ids': 'Select at least one product'})
            products = products.filter(pk__in=product_ids)
        elif scope == StocktakeSession.SCOPE_CATEGORIES:
            if not category_ids:
                raise ValidationError({'category_ids': 'Select at least one category'})
            products = products.filter(Q(category_id__in=category_ids) | Q(category__parent_id__in=category_ids))
        elif scope != StocktakeSession.SCOPE_ALL:
            raise ValidationError({'scope': 'Unknown scope'})

        products = list(products.prefetch_related('variants').order_by('name'))
        if not products:
            raise ValidationError({'items': 'No products match the selected scope'})

        snapshot = dict(
            WarehouseStock.objects
            .filter(warehouse=warehouse, product__in=products)
            .values_list('product_id', 'quantity')
        )

        session = StocktakeSession.objects.create(
            business=business,
            reference_number=generate_document_number(StocktakeSession, business, StocktakeSession.NUMBER_PREFIX),
            warehouse=warehouse,
            scope=scope,
            note=note or '',
            created_by=self.user,
        )

        items = []
        for product in products:
            system_quantity = snapshot.get(product.pk, 0)
            variants = [v for v in product.variants.all() if v.is_active] if include_variants else []
            if not variants:
                items.append(StocktakeItem(
                    session=session,
                    product=product,
                    product_name=product.name,
                    product_sku=product.sku,
                    barcode=product.barcode or '',
                    system_quantity=system_quantity,
                ))
                continue
            for position, variant in enumerate(variants):
                items.append(StocktakeItem(
                    session=session,
                    product=product,
                    variant=variant,
                    product_name=product.name,
                    product_sku=variant.sku or product.sku,
                    variant_name=variant.variant_name,
                    barcode=variant.barcode or '',
                    system_quantity=system_quantity if position == 0 else 0,
                ))
        StocktakeItem.objects.bulk_create(items)

        self._audit('CREATE', session, f"Created stocktake {session.reference_number} ({len(items)} items)")
        logger.info("Created stocktake %s for %s with %d items", session.reference_number, warehouse.code, len(items))
        return session

    def start(self, session) -> StocktakeSession:
        self._require_edit(session)
        with atomic_step(session):
            if check_transition(STOCKTAKE_TRANSITIONS, session.status, StocktakeStatus.IN_PROGRESS,
                                document_id=session.pk):
                transition(session, STOCKTAKE_TRANSITIONS, StocktakeStatus.IN_PROGRESS, started_at=timezone.now())
                self._audit('UPDATE', session, f"Started stocktake {session.reference_number}")
        return session

    def cancel(self, session) -> StocktakeSession:
        """Cancel before completion. Nothing was posted, so nothing is reversed."""
        self._require_edit(session)
        with atomic_step(session):
            if check_transition(STOCKTAKE_TRANSITIONS, session.status, StocktakeStatus.CANCELLED,
                                document_id=session.pk):
                transition(session, STOCKTAKE_TRANSITIONS, StocktakeStatus.CANCELLED, cancelled_at=timezone.now())
                pending_events(session).update(superseded=True)
                self._audit('CANCEL', session, f"Cancelled stocktake {session.reference_number}")
        return session

    def delete(self, session):
        """Delete a draft or cancelled session with its items."""
        self._require_edit(session)
        if session.status not in (StocktakeStatus.DRAFT, StocktakeStatus.CANCELLED):
            raise InvalidTransitionError(
                'Only draft or cancelled stocktakes can be deleted',
                document_id=session.pk,
                current_status=session.status,
            )
        reference = session.reference_number
        with transaction.atomic():
            deleted, _ = StocktakeSession.objects.filter(
                pk=session.pk,
                status__in=[StocktakeStatus.DRAFT, StocktakeStatus.CANCELLED],
            ).delete()
            if not deleted:
                raise InvalidTransitionError('Stocktake changed while deleting', document_id=session.pk)
            self._audit('DELETE', session, f"Deleted stocktake {reference}")

    # ------------------------------------------------------------------
    # Count entry (queue)
    # ------------------------------------------------------------------

    @staticmethod
    def _allocate_sequence(item_id) -> int:
        StocktakeItem.objects.filter(pk=item_id).update(next_sequence=F('next_sequence') + 1)
        return StocktakeItem.objects.values_list('next_sequence', flat=True).get(pk=item_id) - 1

    @staticmethod
    def _reserve_sequence(item_id, sequence):
        StocktakeItem.objects.filter(pk=item_id).update(next_sequence=Greatest(F('next_sequence'), sequence + 1))

    def _build_event(self, session, item_id, edit, index):
        kind = edit.get('kind', StocktakeCountEvent.KIND_SET)
        value = edit.get('value')
        note = edit.get('note') or ''

        if kind == StocktakeCountEvent.KIND_SET:
            try:
                value = int(value)
            except (TypeError, ValueError):
                raise ValidationError({'edits': f'Edit {index + 1}: counted quantity must be a whole number'})
            if value < 0:
                raise ValidationError({'edits': f'Edit {index + 1}: counted quantity cannot be negative'})
        elif kind == StocktakeCountEvent.KIND_INCREMENT:
            try:
                value = int(1 if value is None else value)
            except (TypeError, ValueError):
                raise ValidationError({'edits': f'Edit {index + 1}: increment must be a whole number'})
            if value == 0:
                raise ValidationError({'edits': f'Edit {index + 1}: increment cannot be zero'})
        elif kind == StocktakeCountEvent.KIND_NOTE:
            value = None
        else:
            raise ValidationError({'edits': f"Edit {index + 1}: unknown kind '{kind}'"})

        sequence = edit.get('sequence')
        if sequence is None:
            sequence = self._allocate_sequence(item_id)
        else:
            try:
                sequence = int(sequence)
            except (TypeError, ValueError):
                raise ValidationError({'edits': f'Edit {index + 1}: sequence must be a whole number'})
            if sequence < 1:
                raise ValidationError({'edits': f'Edit {index + 1}: sequence must be positive'})
            self._reserve_sequence(item_id, sequence)

        return StocktakeCountEvent(
            session=session,
            item_id=item_id,
            sequence=sequence,
            kind=kind,
            value=value,
            note=note,
            created_by=self.user,
        )

    def enqueue_edits(self, session, edits: Iterable[Dict]) -> List[StocktakeCountEvent]:
        """
        Queue count edits and return the events that were new.

        Each edit is ``{'item': <id>, 'kind': 'set'|'increment'|'note',
        'value': int, 'note': str, 'sequence': int}``; ``sequence`` is
        optional and makes a resubmitted edit a no-op.
        """
        self._require_edit(session)
        self._require_counting(session)

        edits = list(edits)
        if not edits:
            return []
        item_ids = {str(pk) for pk in session.items.values_list('pk', flat=True)}

        events = []
        for index, edit in enumerate(edits):
            item_id = str(getattr(edit.get('item'), 'pk', edit.get('item')))
            if item_id not in item_ids:
                raise ValidationError({'edits': f'Edit {index + 1}: item does not belong to this stocktake'})
            events.append(self._build_event(session, item_id, edit, index))

        existing = set(
            StocktakeCountEvent.objects
            .filter(item_id__in={event.item_id for event in events}, sequence__in={event.sequence for event in events})
            .values_list('item_id', 'sequence')
        )
        existing = {(str(item_id), sequence) for item_id, sequence in existing}
        fresh = [event for event in events if (str(event.item_id), event.sequence) not in existing]
        StocktakeCountEvent.objects.bulk_create(fresh, ignore_conflicts=True)
        return fresh

    def record_scan(self, session, code):
        """
        Resolve a scanned code against this session's items and queue +1.

        Matching is a case-insensitive exact match on SKU, barcode or product
        name. Variant items share their product name, so a name scan
        counts towards the first variant in name order; scan the variant SKU or
        barcode to count a specific variant. Returns ``(item, event)``.
        """
        self._require_edit(session)
        self._require_counting(session)

        code = (code or '').strip()
        if not code:
            raise ValidationError({'code': 'Scanned code is empty'})

        item = (
            session.items
            .filter(Q(product_sku__iexact=code) | Q(barcode__iexact=code) | Q(product_name__iexact=code))
            .order_by('product_name', 'variant_name')
            .first()
        )
        if item is None:
            logger.info("Unmatched scan '%s' in stocktake %s", code, session.reference_number)
            raise UnmatchedScanError(
                f"No item in this stocktake matches '{code}'",
                document_id=session.pk,
                code=code,
            )

        events = self.enqueue_edits(session, [{'item': item.pk, 'kind': StocktakeCountEvent.KIND_INCREMENT, 'value': 1}])
        return item, events[0] if events else None

    def set_unset_to_system(self, session) -> int:
        """
        Queue counts so every uncounted product agrees with its snapshot.

        Variant items are filled per product: the uncounted remainder of the
        product's snapshot goes to its first uncounted item and the other
        uncounted items get 0. Products with edits still queued are left
        alone. Returns the number of edits queued.
        """
        self._require_edit(session)
        self._require_counting(session)

        self.flush(session)
        waiting = set(pending_events(session).exclude(kind=StocktakeCountEvent.KIND_NOTE).values_list('item_id', flat=True))
        edits = []
        for group in group_by_product(session.items.order_by('product_name', 'variant_name')):
            if any(item.pk in waiting for item in group.items):
                continue
            edits.extend(
                {'item': item.pk, 'kind': StocktakeCountEvent.KIND_SET, 'value': value}
                for item, value in group.unset_fill()
            )
        self.enqueue_edits(session, edits)
        self.flush(session)
        return len(edits)

    # ------------------------------------------------------------------
    # Flushing the queue
    # ------------------------------------------------------------------

    @staticmethod
    def _apply_events(item, events):
        """Fold events into ``item`` in memory; returns (applied, superseded) events."""
        applied, superseded = [], []
        for event in sorted(events, key=lambda e: e.sequence):
            if event.sequence <= item.last_applied_sequence:
                superseded.append(event)
                continue
            if event.kind == StocktakeCountEvent.KIND_SET:
                item.actual_quantity = event.value
            elif event.kind == StocktakeCountEvent.KIND_INCREMENT:
                item.actual_quantity = max((item.actual_quantity or 0) + event.value, 0)
            if event.note or event.kind == StocktakeCountEvent.KIND_NOTE:
                item.note = event.note
            item.last_applied_sequence = event.sequence
            applied.append(event)
        return applied, superseded

    @classmethod
    def flush(cls, session, batch_size: Optional[int] = None) -> int:
        """
        Apply pending events to their items, ``batch_size`` items per
        transaction. Returns the number of events applied.
        """
        batch_size = batch_size or save_batch_size()
        item_ids = list(pending_events(session).order_by().values_list('item_id', flat=True).distinct())
        applied_total = 0

        for start in range(0, len(item_ids), batch_size):
            chunk = item_ids[start:start + batch_size]
            with transaction.atomic():
                events_by_item = OrderedDict()
                for event in pending_events(session).filter(item_id__in=chunk).order_by('item_id', 'sequence'):
                    events_by_item.setdefault(event.item_id, []).append(event)

                now = timezone.now()
                for item in StocktakeItem.objects.filter(pk__in=list(events_by_item)):
                    expected_sequence = item.last_applied_sequence
                    applied, superseded = cls._apply_events(item, events_by_item[item.pk])

                    if applied:
                        written = StocktakeItem.objects.filter(
                            pk=item.pk,
                            last_applied_sequence=expected_sequence,
                        ).update(
                            actual_quantity=item.actual_quantity,
                            note=item.note,
                            last_applied_sequence=item.last_applied_sequence,
                            updated_at=now,
                        )
                        if not written:
                            # Another flush got there first; its result stands and these events are retried later.
                            continue
                        StocktakeCountEvent.objects.filter(pk__in=[e.pk for e in applied]).update(applied_at=now)
                        applied_total += len(applied)

                    if superseded:
                        StocktakeCountEvent.objects.filter(pk__in=[e.pk for e in superseded]).update(
                            applied_at=now,
                            superseded=True,
                        )

        if applied_total:
            logger.debug("Flushed %d count edits for stocktake %s", applied_total, session.reference_number)
        return applied_total

    def save_counts(self, session) -> int:
        """Apply the queued edits now instead of waiting for the autosave task."""
        self._require_edit(session)
        return self.flush(session)

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def complete(self, session, treat_unset_as_system: bool = False) -> Dict:
        """
        Post variances and close the session. Returns the completion summary.

        Items are grouped per product because variant items share their
        product's stock. With ``treat_unset_as_system`` the uncounted items
        of each product are filled the way ``set_unset_to_system`` fills them;
        otherwise a product with no counted item is skipped. The counted
        quantities of a product are summed and compared with its snapshot.
        """
        self._require_edit(session)
        if session.status == StocktakeStatus.COMPLETED:
            return self.summary(session)
        self.flush(session)

        processor = TransactionProcessor(self.actor)
        with atomic_step(session):
            transition(
                session,
                STOCKTAKE_TRANSITIONS,
                StocktakeStatus.COMPLETED,
                completed_at=timezone.now(),
                completed_by=self.user,
                treat_unset_as_system=treat_unset_as_system,
            )
            pending_events(session).update(superseded=True, applied_at=timezone.now())

            groups = group_by_product(
                session.items.select_related('product').order_by('product_name', 'variant_name')
            )

            over_total = under_total = adjusted = failed = 0
            errors = []
            changed_items = {}

            for line_index, group in enumerate(groups):
                items = group.items
                product = items[0].product

                if treat_unset_as_system:
                    for item, value in group.unset_fill():
                        item.actual_quantity = value
                        changed_items[item.pk] = item

                diff = group.diff
                if not diff:
                    continue
                if diff > 0:
                    over_total += diff
                else:
                    under_total += diff

                try:
                    with transaction.atomic():
                        processor.post_adjustment(
                            warehouse=session.warehouse,
                            product=product,
                            delta=diff,
                            origin=StockTransaction.ORIGIN_STOCKTAKE,
                            note=f"Stocktake {session.reference_number}: {diff:+d}",
                            stocktake=session,
                        )
                except (InventoryError, ValidationError) as exc:
                    failed += 1
                    message = getattr(exc, 'message', None) or '; '.join(getattr(exc, 'messages', [str(exc)]))
                    error = PartialAdjustmentError(
                        message,
                        document_id=session.pk,
                        line_index=line_index,
                        product_id=product.pk,
                        sku=product.sku,
                        delta=diff,
                    )
                    errors.append(error.as_dict())
                    logger.error(
                        "Stocktake %s: failed to adjust %s by %+d: %s",
                        session.reference_number, product.sku, diff, message,
                    )
                    for item in items:
                        item.adjustment_error = message
                        changed_items[item.pk] = item
                    continue

                adjusted += 1
                for item in items:
                    item.adjusted = True
                    changed_items[item.pk] = item

            if changed_items:
                StocktakeItem.objects.bulk_update(
                    list(changed_items.values()), ['actual_quantity', 'adjusted', 'adjustment_error']
                )

            totals = {
                'over_total': over_total,
                'under_total': under_total,
                'total_diff': over_total + under_total,
                'adjusted_count': adjusted,
                'failed_count': failed,
                'adjustment_errors': errors,
            }
            StocktakeSession.objects.filter(pk=session.pk).update(**totals)
            for key, value in totals.items():
                setattr(session, key, value)

            self._audit(
                'APPROVE',
                session,
                f"Completed stocktake {session.reference_number}: adjusted {adjusted} products, "
                f"over +{over_total}, under {under_total}" + (f", {failed} failed" if failed else ''),
                changes=totals,
            )
        logger.info(
            "Completed stocktake %s: %d adjusted, %d failed", session.reference_number, adjusted, failed,
        )
        return self.summary(session)

    @staticmethod
    def summary(session) -> Dict:
        return {
            'id': str(session.pk),
            'reference_number': session.reference_number,
            'status': session.status,
            'over_total': session.over_total,
            'under_total': session.under_total,
            'total_diff': session.total_diff,
            'adjusted_count': session.adjusted_count,
            'failed_count': session.failed_count,
            'errors': session.adjustment_errors,
        }

    @staticmethod
    def discrepancies(session, items=None) -> List[StocktakeItem]:
        """
        Items of every counted product whose total differs from its snapshot.

        Variants are judged together, the way ``complete`` posts them; each
        returned item carries the product's difference as ``product_diff``.
        """
        if items is None:
            items = session.items.order_by('product_name', 'variant_name')
        result = []
        for group in group_by_product(items):
            diff = group.diff
            if not diff:
                continue
            for item in group.items:
                item.product_diff = diff
                result.append(item)
        return result
