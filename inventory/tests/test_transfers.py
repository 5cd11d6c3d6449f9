from django.core.exceptions import ValidationError
from django.test import TestCase

from accounts.models import BusinessMembership
from inventory.exceptions import ActionNotPermitted, InsufficientStockError, InvalidTransitionError
from inventory.ledger import StockLedger
from inventory.models import StockMovement, Transfer
from inventory.state_machines import TransferStatus
from inventory.tests.utils import BusinessTestMixin
from inventory.transfer_services import TransferCoordinator


class TransferTests(BusinessTestMixin, TestCase):
    def setUp(self):
        self.owner, self.business = self.create_business()
        self.manager = self.create_member(self.business, role=BusinessMembership.MANAGER)
        self.source = self.create_warehouse(self.business, code='HN')
        self.destination = self.create_warehouse(self.business, code='HCM')
        self.product = self.create_product(self.business, sku='FAN')
        self.put_stock(self.source, self.product, 10)
        self.coordinator = TransferCoordinator(self.actor_for(self.manager, self.business))

    def create_transfer(self, quantity=4, **kwargs):
        return self.coordinator.create(
            business=self.business,
            source_warehouse=self.source,
            destination_warehouse=self.destination,
            items=[{'product': self.product, 'quantity': quantity}],
            **kwargs
        )

    def test_create_moves_no_stock(self):
        transfer = self.create_transfer(notes='Weekly restock')

        self.assertEqual(transfer.status, TransferStatus.PENDING)
        self.assertTrue(transfer.reference_number.startswith('CK-'))
        self.assertEqual(transfer.items.get().sent_quantity, 4)
        self.assertEqual(StockLedger.get_quantity(self.source, self.product), 10)

    def test_duplicate_lines_are_merged(self):
        transfer = self.coordinator.create(
            business=self.business,
            source_warehouse=self.source,
            destination_warehouse=self.destination,
            items=[{'product': self.product, 'quantity': 3}, {'product': self.product.pk, 'quantity': 2}],
        )
        self.assertEqual(transfer.items.get().sent_quantity, 5)

    def test_create_validation(self):
        with self.assertRaises(ValidationError):
            self.coordinator.create(
                business=self.business, source_warehouse=self.source, destination_warehouse=self.source,
                items=[{'product': self.product, 'quantity': 1}],
            )
        with self.assertRaises(ValidationError):
            self.create_transfer(quantity=0)
        with self.assertRaises(InsufficientStockError):
            self.create_transfer(quantity=11)

        combo = self.create_combo(self.business, [(self.product, 1)])
        with self.assertRaises(ValidationError):
            self.coordinator.create(
                business=self.business, source_warehouse=self.source, destination_warehouse=self.destination,
                items=[{'product': combo, 'quantity': 1}],
            )

    def test_full_lifecycle(self):
        transfer = self.create_transfer()

        self.coordinator.confirm_dispatch(transfer)
        self.assertEqual(transfer.status, TransferStatus.IN_TRANSIT)
        self.assertEqual(StockLedger.get_quantity(self.source, self.product), 6)
        self.assertEqual(StockLedger.get_quantity(self.destination, self.product), 0)

        self.coordinator.confirm_receipt(transfer)
        self.assertEqual(transfer.status, TransferStatus.RECEIVED)
        self.assertEqual(StockLedger.get_quantity(self.destination, self.product), 4)
        self.assertEqual(transfer.total_variance, 0)

        sources = set(
            StockMovement.objects.filter(reference=transfer.reference_number).values_list('source', flat=True)
        )
        self.assertEqual(sources, {StockMovement.SOURCE_TRANSFER_OUT, StockMovement.SOURCE_TRANSFER_IN})

    def test_partial_receipt_records_variance(self):
        transfer = self.create_transfer()
        self.coordinator.confirm_dispatch(transfer)
        item = transfer.items.get()

        self.coordinator.confirm_receipt(transfer, {item.pk: 3})

        item.refresh_from_db()
        self.assertEqual(item.received_quantity, 3)
        self.assertEqual(item.variance, -1)
        self.assertEqual(transfer.total_variance, -1)
        self.assertEqual(StockLedger.get_quantity(self.destination, self.product), 3)
        self.assertEqual(StockLedger.get_quantity(self.source, self.product), 6)

    def test_receiving_more_than_sent_is_refused(self):
        transfer = self.create_transfer()
        self.coordinator.confirm_dispatch(transfer)

        with self.assertRaises(ValidationError):
            self.coordinator.confirm_receipt(transfer, {str(self.product.pk): 5})
        with self.assertRaises(ValidationError):
            self.coordinator.confirm_receipt(transfer, {str(self.product.pk): -1})

        self.assertEqual(transfer.status, TransferStatus.IN_TRANSIT)
        self.assertEqual(StockLedger.get_quantity(self.destination, self.product), 0)

    def test_dispatch_fails_when_stock_left_meanwhile(self):
        transfer = self.create_transfer(quantity=8)
        StockLedger.adjust_stock(self.source, self.product, -5, source=StockMovement.SOURCE_EXPORT)

        with self.assertRaises(InsufficientStockError):
            self.coordinator.confirm_dispatch(transfer)

        self.assertEqual(transfer.status, TransferStatus.PENDING)
        self.assertEqual(StockLedger.get_quantity(self.source, self.product), 5)

    def test_cancel_in_transit_restores_source(self):
        transfer = self.create_transfer()
        self.coordinator.confirm_dispatch(transfer)

        self.coordinator.cancel(transfer, 'Truck broke down')

        self.assertEqual(transfer.status, TransferStatus.CANCELLED)
        self.assertEqual(transfer.cancel_reason, 'Truck broke down')
        self.assertEqual(StockLedger.get_quantity(self.source, self.product), 10)
        self.assertTrue(
            StockMovement.objects.filter(
                reference=transfer.reference_number, source=StockMovement.SOURCE_TRANSFER_REVERSAL
            ).exists()
        )

    def test_cancel_pending_moves_nothing(self):
        transfer = self.create_transfer()
        self.coordinator.cancel(transfer)
        self.assertFalse(StockMovement.objects.filter(reference=transfer.reference_number).exists())

    def test_repeated_and_invalid_transitions(self):
        transfer = self.create_transfer()
        self.coordinator.confirm_dispatch(transfer)
        self.coordinator.confirm_dispatch(transfer)
        self.assertEqual(StockLedger.get_quantity(self.source, self.product), 6)

        self.coordinator.confirm_receipt(transfer)
        with self.assertRaises(InvalidTransitionError):
            self.coordinator.cancel(transfer)
        self.assertEqual(Transfer.objects.get(pk=transfer.pk).status, TransferStatus.RECEIVED)

    def test_staff_cannot_create_transfers(self):
        staff = self.create_member(self.business, role=BusinessMembership.STAFF)
        coordinator = TransferCoordinator(self.actor_for(staff, self.business))
        with self.assertRaises(ActionNotPermitted):
            coordinator.create(
                business=self.business, source_warehouse=self.source, destination_warehouse=self.destination,
                items=[{'product': self.product, 'quantity': 1}],
            )
