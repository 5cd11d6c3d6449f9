from io import BytesIO

from django.core.exceptions import ValidationError
from django.test import TestCase
from openpyxl import load_workbook

from accounts.models import BusinessMembership
from inventory.exceptions import ActionNotPermitted, InvalidTransitionError, UnmatchedScanError
from inventory.exports import StocktakeExcelExporter
from inventory.ledger import StockLedger
from inventory.models import (
    ProductVariant,
    StockMovement,
    StockTransaction,
    StocktakeCountEvent,
    StocktakeSession,
)
from inventory.state_machines import StocktakeStatus
from inventory.stocktake_services import StocktakeReconciler, pending_events
from inventory.tests.utils import BusinessTestMixin


class StocktakeTestCase(BusinessTestMixin, TestCase):
    def setUp(self):
        self.owner, self.business = self.create_business()
        self.manager = self.create_member(self.business, role=BusinessMembership.MANAGER)
        self.warehouse = self.create_warehouse(self.business, code='MAIN')
        self.pens = self.create_product(self.business, sku='PEN', name='Blue pen', barcode='8930001')
        self.paper = self.create_product(self.business, sku='PAPER', name='A4 paper')
        self.put_stock(self.warehouse, self.pens, 10)
        self.put_stock(self.warehouse, self.paper, 4)
        self.reconciler = StocktakeReconciler(self.actor_for(self.manager, self.business))

    def start_session(self, **kwargs):
        session = self.reconciler.create(business=self.business, warehouse=self.warehouse, **kwargs)
        return self.reconciler.start(session)

    def item_for(self, session, product):
        return session.items.get(product=product)

    def count(self, session, product, value, **extra):
        edit = {'item': self.item_for(session, product).pk, 'kind': 'set', 'value': value}
        edit.update(extra)
        return self.reconciler.enqueue_edits(session, [edit])


class StocktakeLifecycleTests(StocktakeTestCase):
    def test_create_snapshots_system_quantities(self):
        session = self.reconciler.create(business=self.business, warehouse=self.warehouse)

        self.assertEqual(session.status, StocktakeStatus.DRAFT)
        self.assertTrue(session.reference_number.startswith('KK-'))
        self.assertEqual(self.item_for(session, self.pens).system_quantity, 10)
        self.assertEqual(self.item_for(session, self.paper).system_quantity, 4)

    def test_combos_and_inactive_products_are_not_counted(self):
        self.create_combo(self.business, [(self.pens, 2)])
        self.create_product(self.business, sku='OLD', is_active=False)

        session = self.reconciler.create(business=self.business, warehouse=self.warehouse)

        self.assertEqual(session.items.count(), 2)

    def test_product_and_category_scopes(self):
        category = self.create_category(self.business, name='Stationery')
        self.paper.category = category
        self.paper.save()

        by_product = self.reconciler.create(
            business=self.business, warehouse=self.warehouse,
            scope=StocktakeSession.SCOPE_PRODUCTS, product_ids=[self.pens.pk],
        )
        by_category = self.reconciler.create(
            business=self.business, warehouse=self.warehouse,
            scope=StocktakeSession.SCOPE_CATEGORIES, category_ids=[category.pk],
        )

        self.assertEqual(list(by_product.items.values_list('product_sku', flat=True)), ['PEN'])
        self.assertEqual(list(by_category.items.values_list('product_sku', flat=True)), ['PAPER'])
        with self.assertRaises(ValidationError):
            self.reconciler.create(
                business=self.business, warehouse=self.warehouse, scope=StocktakeSession.SCOPE_PRODUCTS,
            )

    def test_variants_get_one_item_each(self):
        ProductVariant.objects.create(product=self.pens, variant_name='Red', sku='PEN-R')
        ProductVariant.objects.create(product=self.pens, variant_name='Blue', sku='PEN-B')

        session = self.reconciler.create(business=self.business, warehouse=self.warehouse)

        variant_items = session.items.filter(product=self.pens)
        self.assertEqual(variant_items.count(), 2)
        # Blue sorts first, so it carries the product snapshot.
        self.assertEqual(variant_items.get(variant_name='Blue').system_quantity, 10)
        self.assertEqual(variant_items.get(variant_name='Red').system_quantity, 0)

    def test_start_twice_is_a_noop(self):
        session = self.start_session()
        self.reconciler.start(session)
        self.assertEqual(session.status, StocktakeStatus.IN_PROGRESS)
        self.assertIsNotNone(session.started_at)

    def test_cancel_and_delete(self):
        session = self.start_session()
        self.count(session, self.pens, 3)

        self.reconciler.cancel(session)
        self.assertEqual(session.status, StocktakeStatus.CANCELLED)
        self.assertFalse(pending_events(session).exists())

        self.reconciler.delete(session)
        self.assertFalse(StocktakeSession.objects.filter(pk=session.pk).exists())

    def test_in_progress_session_cannot_be_deleted(self):
        session = self.start_session()
        with self.assertRaises(InvalidTransitionError):
            self.reconciler.delete(session)

    def test_staff_cannot_manage_stocktakes(self):
        staff = self.create_member(self.business, role=BusinessMembership.STAFF)
        reconciler = StocktakeReconciler(self.actor_for(staff, self.business))
        with self.assertRaises(ActionNotPermitted):
            reconciler.create(business=self.business, warehouse=self.warehouse)


class StocktakeCountingTests(StocktakeTestCase):
    def test_edits_are_queued_until_flushed(self):
        session = self.start_session()
        self.count(session, self.pens, 8)

        item = self.item_for(session, self.pens)
        self.assertIsNone(item.actual_quantity)

        self.assertEqual(self.reconciler.save_counts(session), 1)
        item.refresh_from_db()
        self.assertEqual(item.actual_quantity, 8)
        self.assertFalse(pending_events(session).exists())

    def test_counts_require_in_progress(self):
        session = self.reconciler.create(business=self.business, warehouse=self.warehouse)
        with self.assertRaises(InvalidTransitionError):
            self.count(session, self.pens, 1)

    def test_negative_count_is_refused(self):
        session = self.start_session()
        with self.assertRaises(ValidationError):
            self.count(session, self.pens, -1)

    def test_foreign_item_is_refused(self):
        session = self.start_session()
        other = self.start_session()
        with self.assertRaises(ValidationError):
            self.reconciler.enqueue_edits(session, [{'item': self.item_for(other, self.pens).pk, 'value': 1}])

    def test_resubmitted_sequence_is_ignored(self):
        session = self.start_session()
        self.assertEqual(len(self.count(session, self.pens, 5, sequence=1)), 1)
        self.assertEqual(self.count(session, self.pens, 6, sequence=1), [])

        StocktakeReconciler.flush(session)
        self.assertEqual(self.item_for(session, self.pens).actual_quantity, 5)

    def test_late_event_is_superseded(self):
        session = self.start_session()
        self.count(session, self.pens, 7, sequence=2)
        StocktakeReconciler.flush(session)

        self.count(session, self.pens, 3, sequence=1)
        self.assertEqual(StocktakeReconciler.flush(session), 0)

        self.assertEqual(self.item_for(session, self.pens).actual_quantity, 7)
        event = StocktakeCountEvent.objects.get(item__product=self.pens, sequence=1)
        self.assertTrue(event.superseded)
        self.assertIsNotNone(event.applied_at)

    def test_sequences_are_applied_in_order_within_a_batch(self):
        session = self.start_session()
        item = self.item_for(session, self.pens)
        self.reconciler.enqueue_edits(session, [
            {'item': item.pk, 'kind': 'set', 'value': 4},
            {'item': item.pk, 'kind': 'increment', 'value': 2},
            {'item': item.pk, 'kind': 'note', 'note': 'Shelf B'},
        ])

        StocktakeReconciler.flush(session, batch_size=1)

        item.refresh_from_db()
        self.assertEqual(item.actual_quantity, 6)
        self.assertEqual(item.note, 'Shelf B')
        self.assertEqual(item.last_applied_sequence, 3)

    def test_scan_matches_sku_barcode_or_name(self):
        session = self.start_session()

        for code in ('pen', '8930001', 'BLUE PEN'):
            item, event = self.reconciler.record_scan(session, code)
            self.assertEqual(item.product_id, self.pens.pk)
            self.assertEqual(event.kind, StocktakeCountEvent.KIND_INCREMENT)

        StocktakeReconciler.flush(session)
        self.assertEqual(self.item_for(session, self.pens).actual_quantity, 3)

    def test_unmatched_scan(self):
        session = self.start_session()
        with self.assertRaises(UnmatchedScanError):
            self.reconciler.record_scan(session, 'NOPE')

    def test_fill_unset_with_system_quantity(self):
        session = self.start_session()
        self.count(session, self.pens, 2)

        self.assertEqual(self.reconciler.set_unset_to_system(session), 1)

        self.assertEqual(self.item_for(session, self.pens).actual_quantity, 2)
        self.assertEqual(self.item_for(session, self.paper).actual_quantity, 4)


class StocktakeCompletionTests(StocktakeTestCase):
    def test_variances_are_posted(self):
        session = self.start_session()
        self.count(session, self.pens, 12)
        self.count(session, self.paper, 1)

        summary = self.reconciler.complete(session)

        self.assertEqual(summary['status'], StocktakeStatus.COMPLETED)
        self.assertEqual(summary['over_total'], 2)
        self.assertEqual(summary['under_total'], -3)
        self.assertEqual(summary['total_diff'], -1)
        self.assertEqual(summary['adjusted_count'], 2)
        self.assertEqual(summary['failed_count'], 0)
        self.assertEqual(StockLedger.get_quantity(self.warehouse, self.pens), 12)
        self.assertEqual(StockLedger.get_quantity(self.warehouse, self.paper), 1)
        self.assertEqual(
            StockTransaction.objects.filter(stocktake=session, origin=StockTransaction.ORIGIN_STOCKTAKE).count(), 2
        )
        self.assertTrue(StockMovement.objects.filter(source=StockMovement.SOURCE_STOCKTAKE).exists())

    def test_pending_edits_are_flushed_before_posting(self):
        session = self.start_session()
        self.count(session, self.pens, 9)

        self.reconciler.complete(session)

        self.assertEqual(StockLedger.get_quantity(self.warehouse, self.pens), 9)

    def test_uncounted_items_are_skipped_or_treated_as_matching(self):
        session = self.start_session()
        summary = self.reconciler.complete(session)
        self.assertEqual(summary['adjusted_count'], 0)
        self.assertIsNone(self.item_for(session, self.pens).actual_quantity)

        other = self.start_session()
        self.reconciler.complete(other, treat_unset_as_system=True)
        self.assertEqual(self.item_for(other, self.pens).actual_quantity, 10)
        self.assertEqual(StockLedger.get_quantity(self.warehouse, self.pens), 10)

    def test_failed_line_does_not_block_the_rest(self):
        session = self.start_session()
        self.count(session, self.pens, 0)
        self.count(session, self.paper, 6)
        # Stock sold after the snapshot: -10 can no longer be covered.
        StockLedger.adjust_stock(self.warehouse, self.pens, -7, source=StockMovement.SOURCE_EXPORT)

        summary = self.reconciler.complete(session)

        self.assertEqual(summary['adjusted_count'], 1)
        self.assertEqual(summary['failed_count'], 1)
        self.assertEqual(summary['errors'][0]['code'], 'partial_adjustment')
        self.assertEqual(summary['errors'][0]['sku'], 'PEN')
        self.assertEqual(StockLedger.get_quantity(self.warehouse, self.pens), 3)
        self.assertEqual(StockLedger.get_quantity(self.warehouse, self.paper), 6)
        self.assertTrue(self.item_for(session, self.pens).adjustment_error)
        self.assertTrue(self.item_for(session, self.paper).adjusted)

    def test_variant_counts_are_summed_per_product(self):
        red = ProductVariant.objects.create(product=self.pens, variant_name='Red')
        blue = ProductVariant.objects.create(product=self.pens, variant_name='Blue')
        session = self.start_session()
        self.reconciler.enqueue_edits(session, [
            {'item': session.items.get(variant=red).pk, 'value': 5},
            {'item': session.items.get(variant=blue).pk, 'value': 7},
        ])

        summary = self.reconciler.complete(session)

        self.assertEqual(summary['over_total'], 2)
        self.assertEqual(StockLedger.get_quantity(self.warehouse, self.pens), 12)

    def test_completing_twice_returns_the_stored_summary(self):
        session = self.start_session()
        self.count(session, self.pens, 11)
        first = self.reconciler.complete(session)
        second = self.reconciler.complete(session)

        self.assertEqual(first, second)
        self.assertEqual(StockLedger.get_quantity(self.warehouse, self.pens), 11)

    def test_counts_are_closed_after_completion(self):
        session = self.start_session()
        self.reconciler.complete(session)
        with self.assertRaises(InvalidTransitionError):
            self.count(session, self.pens, 1)

    def test_discrepancies_and_export(self):
        session = self.start_session()
        self.count(session, self.pens, 10)
        self.count(session, self.paper, 2)
        StocktakeReconciler.flush(session)

        self.assertEqual([item.product_sku for item in StocktakeReconciler.discrepancies(session)], ['PAPER'])

        exporter = StocktakeExcelExporter()
        content = exporter.export(session, discrepancies_only=True)
        sheet = load_workbook(BytesIO(content)).active
        rows = [row for row in sheet.iter_rows(values_only=True) if any(value is not None for value in row)]
        header_index = next(index for index, row in enumerate(rows) if row[0] == '#')

        self.assertEqual(list(rows[header_index]), exporter.headers)
        line = rows[header_index + 1]
        self.assertEqual((line[1], line[4], line[5], line[6]), ('PAPER', 4, 2, -2))
        self.assertEqual(len(rows), header_index + 2)
        self.assertEqual(exporter.filename(session, True), f"{session.reference_number}-discrepancies.xlsx")


class StocktakeVariantTests(StocktakeTestCase):
    def setUp(self):
        super().setUp()
        self.red = ProductVariant.objects.create(product=self.pens, variant_name='Red', sku='PEN-R')
        self.blue = ProductVariant.objects.create(product=self.pens, variant_name='Blue', sku='PEN-B')
        self.session = self.start_session(scope=StocktakeSession.SCOPE_PRODUCTS, product_ids=[self.pens.pk])

    def count_variant(self, variant, value):
        item = self.session.items.get(variant=variant)
        self.reconciler.enqueue_edits(self.session, [{'item': item.pk, 'value': value}])

    def counted(self, variant):
        return self.session.items.get(variant=variant).actual_quantity

    def test_fill_unset_keeps_product_total(self):
        self.assertEqual(self.reconciler.set_unset_to_system(self.session), 2)
        self.assertEqual(self.counted(self.blue) + self.counted(self.red), 10)

        summary = self.reconciler.complete(self.session)

        self.assertEqual(summary['adjusted_count'], 0)
        self.assertEqual(StockLedger.get_quantity(self.warehouse, self.pens), 10)

    def test_fill_unset_gives_the_remainder_to_uncounted_variants(self):
        self.count_variant(self.red, 4)

        self.reconciler.set_unset_to_system(self.session)

        self.assertEqual(self.counted(self.red), 4)
        self.assertEqual(self.counted(self.blue), 6)
        self.assertEqual(self.reconciler.complete(self.session)['total_diff'], 0)

    def test_treat_unset_as_system_with_every_variant_uncounted(self):
        summary = self.reconciler.complete(self.session, treat_unset_as_system=True)

        self.assertEqual(summary['adjusted_count'], 0)
        self.assertEqual(StockLedger.get_quantity(self.warehouse, self.pens), 10)
        self.assertEqual(self.counted(self.blue) + self.counted(self.red), 10)

    def test_treat_unset_as_system_with_some_variants_counted(self):
        self.count_variant(self.red, 4)

        summary = self.reconciler.complete(self.session, treat_unset_as_system=True)

        self.assertEqual(summary['total_diff'], 0)
        self.assertEqual(StockLedger.get_quantity(self.warehouse, self.pens), 10)

    def test_uncounted_variants_count_as_zero_by_default(self):
        self.count_variant(self.red, 4)

        summary = self.reconciler.complete(self.session)

        self.assertEqual(summary['under_total'], -6)
        self.assertEqual(StockLedger.get_quantity(self.warehouse, self.pens), 4)

    def test_matching_variant_counts_are_not_discrepancies(self):
        self.count_variant(self.red, 4)
        self.count_variant(self.blue, 6)
        StocktakeReconciler.flush(self.session)

        self.assertEqual(StocktakeReconciler.discrepancies(self.session), [])
        self.assertEqual(self.reconciler.complete(self.session)['adjusted_count'], 0)

    def test_discrepancies_report_the_product_difference(self):
        self.count_variant(self.red, 4)
        self.count_variant(self.blue, 5)
        StocktakeReconciler.flush(self.session)

        items = StocktakeReconciler.discrepancies(self.session)

        self.assertEqual([item.variant_name for item in items], ['Blue', 'Red'])
        self.assertEqual({item.product_diff for item in items}, {-1})

    def test_export_adds_a_total_row_per_product(self):
        self.count_variant(self.red, 4)
        self.count_variant(self.blue, 5)
        StocktakeReconciler.flush(self.session)

        content = StocktakeExcelExporter().export(self.session, discrepancies_only=True)
        sheet = load_workbook(BytesIO(content)).active
        rows = [row for row in sheet.iter_rows(values_only=True) if any(value is not None for value in row)]
        header_index = next(index for index, row in enumerate(rows) if row[0] == '#')
        blue, red, total = rows[header_index + 1:header_index + 4]

        self.assertEqual((blue[1], blue[4], blue[5], blue[6]), ('PEN-B', 10, 5, None))
        self.assertEqual((red[1], red[4], red[5], red[6]), ('PEN-R', 0, 4, None))
        self.assertEqual((total[1], total[3], total[4], total[5], total[6]), ('PEN', 'Total', 10, 9, -1))

    def test_name_scan_counts_the_first_variant(self):
        item, _ = self.reconciler.record_scan(self.session, 'blue pen')
        self.assertEqual(item.variant, self.blue)

        item, _ = self.reconciler.record_scan(self.session, 'pen-r')
        self.assertEqual(item.variant, self.red)
