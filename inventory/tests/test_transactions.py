from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import connection
from django.test import TestCase
from django.test.utils import CaptureQueriesContext
from django.utils import timezone

from accounts.models import AuditLog, BusinessMembership
from inventory.adjustments import ManualAdjustment
from inventory.exceptions import (
    ActionNotPermitted,
    ConcurrentTransitionError,
    DuplicateSerialError,
    InsufficientStockError,
    InvalidTransitionError,
)
from inventory.ledger import StockLedger
from inventory.models import ProductSerial, StockMovement, StockTransaction, generate_document_number
from inventory.signals import stock_transaction_approved
from inventory.state_machines import ApprovalStatus
from inventory.tests.utils import BusinessTestMixin
from inventory.transaction_services import TransactionProcessor


class TransactionTestCase(BusinessTestMixin, TestCase):
    def setUp(self):
        self.owner, self.business = self.create_business()
        self.manager = self.create_member(self.business, role=BusinessMembership.MANAGER)
        self.staff = self.create_member(self.business, role=BusinessMembership.STAFF)
        self.warehouse = self.create_warehouse(self.business, code='MAIN')
        self.product = self.create_product(self.business, sku='CHAIR')

    def processor(self, user):
        return TransactionProcessor(self.actor_for(user, self.business))

    def create_document(self, user, transaction_type, quantity, **kwargs):
        items = kwargs.pop('items', None) or [
            {'product': self.product, 'quantity': quantity, 'unit_price': Decimal('12.50')}
        ]
        return self.processor(user).create(
            business=self.business,
            transaction_type=transaction_type,
            warehouse=self.warehouse,
            items=items,
            **kwargs
        )


class TransactionCreateTests(TransactionTestCase):
    def test_manager_document_waits_for_approval(self):
        document = self.create_document(self.manager, StockTransaction.TYPE_IMPORT, 5)

        self.assertEqual(document.approval_status, ApprovalStatus.PENDING)
        self.assertTrue(document.reference_number.startswith('PN-'))
        self.assertEqual(document.total_amount, Decimal('62.50'))
        self.assertEqual(StockLedger.get_quantity(self.warehouse, self.product), 0)

    def test_owner_document_is_auto_approved(self):
        document = self.create_document(self.owner, StockTransaction.TYPE_IMPORT, 5)

        document.refresh_from_db()
        self.assertEqual(document.approval_status, ApprovalStatus.APPROVED)
        self.assertEqual(document.approved_by, self.owner)
        self.assertIsNotNone(document.stock_applied_at)
        self.assertEqual(StockLedger.get_quantity(self.warehouse, self.product), 5)

    def test_staff_cannot_create_documents(self):
        with self.assertRaises(ActionNotPermitted):
            self.create_document(self.staff, StockTransaction.TYPE_IMPORT, 1)

    def test_export_checks_stock_summed_per_product(self):
        self.put_stock(self.warehouse, self.product, 5)
        items = [
            {'product': self.product, 'quantity': 3},
            {'product': self.product, 'quantity': 3},
        ]

        with self.assertRaises(InsufficientStockError) as ctx:
            self.create_document(self.manager, StockTransaction.TYPE_EXPORT, 0, items=items)

        self.assertEqual(ctx.exception.line_index, 0)
        self.assertEqual(ctx.exception.context['requested'], 6)
        self.assertFalse(StockTransaction.objects.exists())

    def test_export_subtracts_committed_quantities(self):
        self.put_stock(self.warehouse, self.product, 5)

        with self.assertRaises(InsufficientStockError) as ctx:
            self.create_document(
                self.manager, StockTransaction.TYPE_EXPORT, 4, committed={self.product.pk: 2}
            )
        self.assertEqual(ctx.exception.context['available'], 3)

    def test_rejects_invalid_lines(self):
        combo = self.create_combo(self.business, [(self.product, 1)])
        _, other_business = self.create_business()
        foreign = self.create_product(other_business)

        for items in (
            [],
            [{'product': self.product, 'quantity': 0}],
            [{'product': self.product, 'quantity': 1, 'unit_price': '-1'}],
            [{'product': combo, 'quantity': 1}],
            [{'product': foreign, 'quantity': 1}],
        ):
            with self.subTest(items=items), self.assertRaises(ValidationError):
                self.processor(self.manager).create(
                    business=self.business,
                    transaction_type=StockTransaction.TYPE_IMPORT,
                    warehouse=self.warehouse,
                    items=items,
                )

    def test_serialized_import_needs_one_serial_per_unit(self):
        phone = self.create_product(self.business, sku='PHONE', has_serial=True)

        with self.assertRaises(ValidationError):
            self.create_document(
                self.manager, StockTransaction.TYPE_IMPORT, 0,
                items=[{'product': phone, 'quantity': 2, 'serials': ['IMEI-1']}],
            )
        with self.assertRaises(DuplicateSerialError):
            self.create_document(
                self.manager, StockTransaction.TYPE_IMPORT, 0,
                items=[{'product': phone, 'quantity': 2, 'serials': ['IMEI-1', 'IMEI-1']}],
            )


class TransactionApprovalTests(TransactionTestCase):
    def test_approve_posts_every_line(self):
        second = self.create_product(self.business, sku='TABLE')
        document = self.create_document(
            self.manager, StockTransaction.TYPE_IMPORT, 0,
            items=[{'product': self.product, 'quantity': 4}, {'product': second, 'quantity': 1}],
        )

        self.processor(self.owner).approve(document)

        self.assertEqual(document.approval_status, ApprovalStatus.APPROVED)
        self.assertEqual(StockLedger.get_quantity(self.warehouse, self.product), 4)
        self.assertEqual(StockLedger.get_quantity(self.warehouse, second), 1)
        self.assertEqual(
            StockMovement.objects.filter(reference=document.reference_number, source='import').count(), 2
        )

    def test_manager_cannot_approve(self):
        document = self.create_document(self.manager, StockTransaction.TYPE_IMPORT, 2)
        with self.assertRaises(ActionNotPermitted):
            self.processor(self.manager).approve(document)

    def test_second_approval_is_a_noop(self):
        document = self.create_document(self.manager, StockTransaction.TYPE_IMPORT, 2)
        processor = self.processor(self.owner)

        processor.approve(document)
        processor.approve(document)

        self.assertEqual(StockLedger.get_quantity(self.warehouse, self.product), 2)

    def test_stale_concurrent_approval_is_refused(self):
        document = self.create_document(self.manager, StockTransaction.TYPE_IMPORT, 2)
        stale = StockTransaction.objects.get(pk=document.pk)

        self.processor(self.owner).approve(document)
        with self.assertRaises(ConcurrentTransitionError):
            self.processor(self.owner).approve(stale)

        self.assertEqual(stale.approval_status, ApprovalStatus.APPROVED)
        self.assertEqual(StockLedger.get_quantity(self.warehouse, self.product), 2)

    def test_failed_export_approval_stays_pending(self):
        self.put_stock(self.warehouse, self.product, 3)
        document = self.create_document(self.manager, StockTransaction.TYPE_EXPORT, 3)
        StockLedger.adjust_stock(self.warehouse, self.product, -2, source=StockMovement.SOURCE_MANUAL)

        with self.assertRaises(InsufficientStockError):
            self.processor(self.owner).approve(document)

        self.assertEqual(document.approval_status, ApprovalStatus.PENDING)
        self.assertEqual(StockLedger.get_quantity(self.warehouse, self.product), 1)

    def test_reject_needs_reason_and_never_moves_stock(self):
        document = self.create_document(self.manager, StockTransaction.TYPE_IMPORT, 2)
        processor = self.processor(self.owner)

        with self.assertRaises(ValidationError):
            processor.reject(document, '  ')
        processor.reject(document, 'Wrong supplier')

        document.refresh_from_db()
        self.assertEqual(document.approval_status, ApprovalStatus.REJECTED)
        self.assertEqual(document.reject_reason, 'Wrong supplier')
        self.assertEqual(StockLedger.get_quantity(self.warehouse, self.product), 0)

    def test_rejected_document_cannot_be_approved(self):
        document = self.create_document(self.manager, StockTransaction.TYPE_IMPORT, 2)
        self.processor(self.owner).reject(document, 'Duplicate')

        with self.assertRaises(InvalidTransitionError):
            self.processor(self.owner).approve(document)

    def test_approval_registers_serials(self):
        phone = self.create_product(self.business, sku='PHONE', has_serial=True)
        document = self.create_document(
            self.manager, StockTransaction.TYPE_IMPORT, 0,
            items=[{'product': phone, 'quantity': 2, 'serials': ['A1', 'A2']}],
        )

        self.processor(self.owner).approve(document)

        serials = ProductSerial.objects.filter(product=phone).order_by('serial_number')
        self.assertEqual([serial.serial_number for serial in serials], ['A1', 'A2'])
        self.assertTrue(all(serial.warehouse_id == self.warehouse.pk for serial in serials))

    def test_existing_serial_blocks_approval(self):
        phone = self.create_product(self.business, sku='PHONE', has_serial=True)
        ProductSerial.objects.create(business=self.business, product=phone, serial_number='A1')
        document = self.create_document(
            self.manager, StockTransaction.TYPE_IMPORT, 0,
            items=[{'product': phone, 'quantity': 1, 'serials': ['A1']}],
        )

        with self.assertRaises(DuplicateSerialError):
            self.processor(self.owner).approve(document)
        self.assertEqual(StockLedger.get_quantity(self.warehouse, phone), 0)

    def test_approval_sends_signal_and_audit_on_commit(self):
        received = []

        def handler(sender, transaction, total_amount, user, **kwargs):
            received.append((transaction.pk, total_amount, user))

        stock_transaction_approved.connect(handler)
        self.addCleanup(stock_transaction_approved.disconnect, handler)

        document = self.create_document(self.manager, StockTransaction.TYPE_IMPORT, 2)
        with self.captureOnCommitCallbacks(execute=True):
            self.processor(self.owner).approve(document)

        self.assertEqual(received, [(document.pk, Decimal('25.00'), self.owner)])
        self.assertTrue(
            AuditLog.objects.filter(model_name='StockTransaction', action='APPROVE', object_id=str(document.pk)).exists()
        )


class ManualAdjustmentTests(TransactionTestCase):
    def adjust(self, mode, quantity, user=None):
        return ManualAdjustment(self.actor_for(user or self.manager, self.business)).adjust(
            self.warehouse, self.product, mode=mode, quantity=quantity, reason='Recount'
        )

    def test_add_and_subtract(self):
        document, quantity = self.adjust('add', 5)
        self.assertEqual(quantity, 5)
        self.assertTrue(document.reference_number.startswith('ADJ-'))
        self.assertEqual(document.origin, StockTransaction.ORIGIN_MANUAL)
        self.assertEqual(document.approval_status, ApprovalStatus.APPROVED)

        _, quantity = self.adjust('subtract', 2)
        self.assertEqual(quantity, 3)

    def test_subtract_is_clamped_to_on_hand(self):
        self.put_stock(self.warehouse, self.product, 2)
        document, quantity = self.adjust('subtract', 10)
        self.assertEqual(quantity, 0)
        self.assertEqual(document.items.get().quantity, 2)

    def test_set_to_current_value_changes_nothing(self):
        self.put_stock(self.warehouse, self.product, 4)
        document, quantity = self.adjust('set', 4)
        self.assertIsNone(document)
        self.assertEqual(quantity, 4)

    def test_set_records_the_delta(self):
        self.put_stock(self.warehouse, self.product, 4)
        document, quantity = self.adjust('set', 1)
        self.assertEqual(quantity, 1)
        self.assertEqual(document.transaction_type, StockTransaction.TYPE_EXPORT)
        self.assertIn('Recount', document.note)

    def test_invalid_requests(self):
        with self.assertRaises(ValidationError):
            self.adjust('multiply', 2)
        with self.assertRaises(ValidationError):
            self.adjust('add', -1)
        with self.assertRaises(ActionNotPermitted):
            self.adjust('add', 1, user=self.staff)


class DocumentNumberTests(TransactionTestCase):
    def test_numbers_follow_each_other_per_day(self):
        first = self.create_document(self.manager, StockTransaction.TYPE_IMPORT, 1)
        second = self.create_document(self.manager, StockTransaction.TYPE_IMPORT, 1)

        day = timezone.localdate().strftime('%Y%m%d')
        self.assertEqual(first.reference_number, f'PN-{day}-001')
        self.assertEqual(second.reference_number, f'PN-{day}-002')

    def test_numbering_locks_the_business_row(self):
        with CaptureQueriesContext(connection) as queries:
            generate_document_number(StockTransaction, self.business, 'PN')

        lock = queries.captured_queries[0]['sql']
        self.assertIn('businesses', lock)
        if connection.features.has_select_for_update:
            self.assertIn('FOR UPDATE', lock)
