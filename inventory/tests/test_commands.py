from io import StringIO

from django.core.management import call_command
from django.test import TestCase

from accounts.models import Business
from inventory.models import StockTransaction, StocktakeSession, Transfer, WarehouseStock
from inventory.state_machines import ApprovalStatus, StocktakeStatus, TransferStatus


class SeedDemoDataTests(TestCase):
    def test_seeds_one_business_end_to_end(self):
        out = StringIO()
        call_command('seed_demo_data', owners=1, stdout=out)

        business = Business.objects.get()
        self.assertEqual(business.warehouses.count(), 2)
        self.assertEqual(
            StockTransaction.objects.filter(business=business, approval_status=ApprovalStatus.APPROVED).count(), 2
        )
        self.assertEqual(Transfer.objects.get(business=business).status, TransferStatus.IN_TRANSIT)
        self.assertEqual(StocktakeSession.objects.get(business=business).status, StocktakeStatus.IN_PROGRESS)
        self.assertTrue(WarehouseStock.objects.filter(warehouse__business=business, quantity__gt=0).exists())
        self.assertIn('Demo data seeding complete.', out.getvalue())

    def test_refuses_to_seed_populated_database_without_force(self):
        call_command('seed_demo_data', owners=1, stdout=StringIO())
        out = StringIO()

        call_command('seed_demo_data', owners=2, stdout=out)

        self.assertEqual(Business.objects.count(), 1)
        self.assertIn('Use --force', out.getvalue())
