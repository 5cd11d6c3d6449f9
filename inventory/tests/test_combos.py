from django.test import TestCase, override_settings

from inventory.availability import inventory_overview, product_availability
from inventory.combos import ComboResolver
from inventory.feeds import NullCommittedQuantityFeed, get_committed_quantity_feed
from inventory.models import Product
from inventory.tests.utils import BusinessTestMixin


class FixedCommittedFeed(NullCommittedQuantityFeed):
    """Reports 3 committed units for every product."""

    def committed_quantity(self, product):
        return 3


class ComboStockTests(BusinessTestMixin, TestCase):
    def setUp(self):
        _, self.business = self.create_business()
        self.warehouse = self.create_warehouse(self.business, code='MAIN')
        self.other_warehouse = self.create_warehouse(self.business, code='SIDE')
        self.shampoo = self.create_product(self.business, sku='SHAMPOO')
        self.conditioner = self.create_product(self.business, sku='COND')
        self.combo = self.create_combo(self.business, [(self.shampoo, 2), (self.conditioner, 1)], sku='GIFTSET')

    def test_combo_stock_is_min_over_children(self):
        self.put_stock(self.warehouse, self.shampoo, 7)
        self.put_stock(self.warehouse, self.conditioner, 10)

        self.assertEqual(ComboResolver.combo_stock(self.combo, self.warehouse), 3)

    def test_combo_stock_follows_child_changes(self):
        self.put_stock(self.warehouse, self.shampoo, 4)
        self.put_stock(self.warehouse, self.conditioner, 1)
        self.assertEqual(ComboResolver.combo_stock(self.combo, self.warehouse), 1)

        self.put_stock(self.warehouse, self.conditioner, 5)
        self.assertEqual(ComboResolver.combo_stock(self.combo, self.warehouse), 2)

    def test_missing_child_stock_means_zero(self):
        self.put_stock(self.warehouse, self.shampoo, 10)
        self.assertEqual(ComboResolver.combo_stock(self.combo, self.warehouse), 0)

    def test_combo_without_children_has_no_stock(self):
        empty = self.create_combo(self.business, [])
        self.assertEqual(ComboResolver.combo_stock(empty), 0)

    def test_inactive_child_zeroes_combo(self):
        self.put_stock(self.warehouse, self.shampoo, 10)
        self.put_stock(self.warehouse, self.conditioner, 10)
        Product.objects.filter(pk=self.conditioner.pk).update(is_active=False)

        self.assertEqual(ComboResolver.combo_stock(self.combo, self.warehouse), 0)

    def test_all_warehouses_are_summed_before_dividing(self):
        self.put_stock(self.warehouse, self.shampoo, 3)
        self.put_stock(self.other_warehouse, self.shampoo, 3)
        self.put_stock(self.warehouse, self.conditioner, 5)

        self.assertEqual(ComboResolver.combo_stock(self.combo), 3)
        self.assertEqual(ComboResolver.combo_stock(self.combo, self.other_warehouse), 0)

    def test_simple_product_has_no_combo_stock(self):
        self.put_stock(self.warehouse, self.shampoo, 3)
        self.assertEqual(ComboResolver.combo_stock(self.shampoo), 0)

    def test_breakdown_lists_children(self):
        self.put_stock(self.warehouse, self.shampoo, 5)

        rows = {row['sku']: row for row in ComboResolver.combo_breakdown(self.combo, self.warehouse)}

        self.assertEqual(rows['SHAMPOO']['quantity_per_combo'], 2)
        self.assertEqual(rows['SHAMPOO']['stock'], 5)
        self.assertEqual(rows['SHAMPOO']['buildable'], 2)
        self.assertEqual(rows['COND']['buildable'], 0)


class AvailabilityTests(BusinessTestMixin, TestCase):
    def setUp(self):
        _, self.business = self.create_business()
        self.warehouse = self.create_warehouse(self.business, code='MAIN')
        self.product = self.create_product(self.business, sku='LAMP', min_stock=4)

    def test_defaults_to_nothing_committed(self):
        self.put_stock(self.warehouse, self.product, 10)

        data = product_availability(self.product, self.warehouse)

        self.assertEqual(data['on_hand'], 10)
        self.assertEqual(data['committed'], 0)
        self.assertEqual(data['sellable'], 10)
        self.assertFalse(data['is_low_stock'])

    def test_sellable_never_negative(self):
        self.put_stock(self.warehouse, self.product, 2)

        data = product_availability(self.product, self.warehouse, committed=5)

        self.assertEqual(data['sellable'], 0)
        self.assertTrue(data['is_low_stock'])

    @override_settings(INVENTORY_COMMITTED_QTY_FEED='inventory.tests.test_combos.FixedCommittedFeed')
    def test_configured_feed_is_used(self):
        self.assertIsInstance(get_committed_quantity_feed(), FixedCommittedFeed)
        self.put_stock(self.warehouse, self.product, 10)

        data = product_availability(self.product)

        self.assertEqual(data['committed'], 3)
        self.assertEqual(data['sellable'], 7)
        self.assertEqual(data['warehouses'][0]['quantity'], 10)

    def test_combo_availability_includes_components(self):
        combo = self.create_combo(self.business, [(self.product, 2)])
        self.put_stock(self.warehouse, self.product, 9)

        data = product_availability(combo, self.warehouse)

        self.assertTrue(data['is_combo'])
        self.assertEqual(data['on_hand'], 4)
        self.assertEqual(len(data['components']), 1)

    def test_overview_can_filter_low_stock(self):
        plenty = self.create_product(self.business, sku='PLENTY', min_stock=1)
        self.put_stock(self.warehouse, plenty, 50)
        self.put_stock(self.warehouse, self.product, 1)

        rows = inventory_overview(Product.objects.filter(business=self.business), low_stock_only=True)

        self.assertEqual([row['sku'] for row in rows], ['LAMP'])
