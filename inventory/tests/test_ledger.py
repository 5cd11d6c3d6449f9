from django.core.exceptions import ValidationError
from django.db import transaction
from django.test import TestCase

from inventory.exceptions import InsufficientStockError
from inventory.ledger import StockLedger
from inventory.models import StockMovement, WarehouseStock
from inventory.tests.utils import BusinessTestMixin


class StockLedgerTests(BusinessTestMixin, TestCase):
    def setUp(self):
        self.owner, self.business = self.create_business()
        self.warehouse = self.create_warehouse(self.business, code='MAIN')
        self.other_warehouse = self.create_warehouse(self.business, code='SIDE')
        self.product = self.create_product(self.business, sku='BOLT')

    def test_missing_cell_reads_as_zero(self):
        self.assertEqual(StockLedger.get_quantity(self.warehouse, self.product), 0)

    def test_increment_creates_cell_and_movement(self):
        quantity = StockLedger.adjust_stock(
            self.warehouse, self.product, 12,
            source=StockMovement.SOURCE_IMPORT, reference='PN-1', user=self.owner,
        )

        self.assertEqual(quantity, 12)
        self.assertEqual(StockLedger.get_quantity(self.warehouse, self.product), 12)
        movement = StockMovement.objects.get(product=self.product)
        self.assertEqual(movement.delta, 12)
        self.assertEqual(movement.quantity_after, 12)
        self.assertEqual(movement.movement_type, StockMovement.TYPE_IMPORT)
        self.assertEqual(movement.reference, 'PN-1')
        self.assertEqual(movement.created_by, self.owner)

    def test_decrement_below_zero_is_refused_without_writing(self):
        self.put_stock(self.warehouse, self.product, 5)

        with self.assertRaises(InsufficientStockError) as ctx:
            StockLedger.adjust_stock(self.warehouse, self.product, -6, source=StockMovement.SOURCE_EXPORT)

        self.assertEqual(ctx.exception.context['available'], 5)
        self.assertEqual(ctx.exception.context['requested'], 6)
        self.assertEqual(StockLedger.get_quantity(self.warehouse, self.product), 5)
        self.assertEqual(StockMovement.objects.filter(source=StockMovement.SOURCE_EXPORT).count(), 0)

    def test_decrement_to_exactly_zero_is_allowed(self):
        self.put_stock(self.warehouse, self.product, 5)
        quantity = StockLedger.adjust_stock(self.warehouse, self.product, -5, source=StockMovement.SOURCE_EXPORT)
        self.assertEqual(quantity, 0)

    def test_zero_delta_is_a_noop(self):
        self.put_stock(self.warehouse, self.product, 3)
        movements = StockMovement.objects.count()
        self.assertEqual(StockLedger.adjust_stock(self.warehouse, self.product, 0, source='manual'), 3)
        self.assertEqual(StockMovement.objects.count(), movements)

    def test_apply_is_all_or_nothing(self):
        second = self.create_product(self.business, sku='NUT')
        self.put_stock(self.warehouse, self.product, 10)

        with self.assertRaises(InsufficientStockError) as ctx:
            StockLedger.apply(
                [
                    (self.warehouse, self.product, -4),
                    (self.warehouse, second, -1),
                ],
                source=StockMovement.SOURCE_EXPORT,
                reference='PX-1',
            )

        self.assertEqual(ctx.exception.line_index, 1)
        self.assertEqual(StockLedger.get_quantity(self.warehouse, self.product), 10)
        self.assertFalse(StockMovement.objects.filter(reference='PX-1').exists())

    def test_combo_products_hold_no_stock(self):
        combo = self.create_combo(self.business, [(self.product, 2)])
        with self.assertRaises(ValidationError):
            StockLedger.adjust_stock(self.warehouse, combo, 1, source=StockMovement.SOURCE_MANUAL)

    def test_cross_business_adjustment_is_refused(self):
        _, other_business = self.create_business()
        foreign_product = self.create_product(other_business)
        with self.assertRaises(ValidationError):
            StockLedger.adjust_stock(self.warehouse, foreign_product, 1, source=StockMovement.SOURCE_MANUAL)

    def test_set_quantity_moves_by_delta(self):
        self.put_stock(self.warehouse, self.product, 7)
        delta, quantity = StockLedger.set_quantity(
            self.warehouse, self.product, 3, source=StockMovement.SOURCE_MANUAL,
        )
        self.assertEqual((delta, quantity), (-4, 3))

    def test_total_quantity_ignores_inactive_warehouses(self):
        self.put_stock(self.warehouse, self.product, 4)
        self.put_stock(self.other_warehouse, self.product, 6)
        self.assertEqual(StockLedger.total_quantity(self.product), 10)

        self.other_warehouse.is_active = False
        self.other_warehouse.save()
        self.assertEqual(StockLedger.total_quantity(self.product), 4)
        self.assertEqual(StockLedger.total_quantity(self.product, warehouses=[self.other_warehouse]), 6)

    def test_quantity_cannot_be_edited_through_save(self):
        self.put_stock(self.warehouse, self.product, 4)
        stock = WarehouseStock.objects.get(warehouse=self.warehouse, product=self.product)
        stock.quantity = 40
        with self.assertRaises(ValidationError):
            stock.save()

    def test_movements_are_immutable(self):
        self.put_stock(self.warehouse, self.product, 4)
        movement = StockMovement.objects.get(product=self.product)
        movement.note = 'edited'
        with self.assertRaises(ValidationError):
            movement.save()

    def test_failed_line_inside_outer_transaction_keeps_outer_work(self):
        self.put_stock(self.warehouse, self.product, 2)
        with transaction.atomic():
            self.put_stock(self.other_warehouse, self.product, 1)
            with self.assertRaises(InsufficientStockError):
                StockLedger.adjust_stock(self.warehouse, self.product, -3, source=StockMovement.SOURCE_EXPORT)
        self.assertEqual(StockLedger.get_quantity(self.other_warehouse, self.product), 1)
        self.assertEqual(StockLedger.get_quantity(self.warehouse, self.product), 2)
