"""
Transfer Models - warehouse-to-warehouse stock movements.

A Transfer holds one TransferItem per product. Status workflow:
- pending: created, no stock moved
- in_transit: dispatched, source warehouse decremented by sent_quantity
- received: destination incremented by received_quantity
- cancelled: from pending (nothing to undo) or in_transit (source restored)

Ledger work happens in ``inventory.transfer_services.TransferCoordinator``;
the models only hold state.
"""
from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from accounts.models import Business
from .state_machines import TransferStatus
import uuid


class Transfer(models.Model):
    """Transfer order between two warehouses of the same business."""

    NUMBER_PREFIX = 'CK'

    # Primary fields
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    business = models.ForeignKey(
        Business,
        on_delete=models.CASCADE,
        related_name='transfers'
    )
    status = models.CharField(
        max_length=20,
        choices=TransferStatus.choices,
        default=TransferStatus.PENDING,
        db_index=True
    )

    source_warehouse = models.ForeignKey(
        'inventory.Warehouse',
        on_delete=models.PROTECT,
        related_name='outbound_transfers'
    )
    destination_warehouse = models.ForeignKey(
        'inventory.Warehouse',
        on_delete=models.PROTECT,
        related_name='inbound_transfers'
    )

    # Transfer tracking
    reference_number = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Auto-generated: CK-YYYYMMDD-NNN"
    )
    expected_arrival_date = models.DateField(null=True, blank=True)
    notes = models.TextField(blank=True)

    # Audit fields
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        related_name='created_transfers'
    )
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    # Dispatch tracking
    dispatched_at = models.DateTimeField(null=True, blank=True)
    dispatched_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='dispatched_transfers'
    )

    # Reception tracking
    received_at = models.DateTimeField(null=True, blank=True)
    received_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='received_transfers'
    )

    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancelled_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='cancelled_transfers'
    )
    cancel_reason = models.TextField(blank=True)

    class Meta:
        db_table = 'inventory_transfer'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['business', 'status'], name='transfer_biz_status_idx'),
            models.Index(fields=['business', 'created_at'], name='transfer_biz_created_idx'),
            models.Index(fields=['source_warehouse', 'status'], name='transfer_src_status_idx'),
            models.Index(fields=['destination_warehouse', 'status'], name='transfer_dst_status_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['business', 'reference_number'],
                name='unique_transfer_reference_per_business',
            ),
        ]

    def __str__(self):
        return f"{self.reference_number} ({self.get_status_display()})"

    def clean(self):
        """Validate transfer before saving."""
        super().clean()

        if self.source_warehouse_id and self.source_warehouse_id == self.destination_warehouse_id:
            raise ValidationError({
                'destination_warehouse': 'Cannot transfer to the same warehouse as source'
            })

        for field in ('source_warehouse', 'destination_warehouse'):
            warehouse = getattr(self, field, None)
            if warehouse is not None and self.business_id and warehouse.business_id != self.business_id:
                raise ValidationError({field: 'Warehouse belongs to a different business'})

    @property
    def total_items(self):
        """Get total number of items in transfer."""
        return self.items.count()

    @property
    def total_sent(self):
        return self.items.aggregate(total=models.Sum('sent_quantity'))['total'] or 0

    @property
    def total_received(self):
        return self.items.aggregate(total=models.Sum('received_quantity'))['total'] or 0

    @property
    def total_variance(self):
        """Units lost in transit (received - sent, so shrinkage is negative)."""
        if self.status != TransferStatus.RECEIVED:
            return 0
        return self.total_received - self.total_sent


class TransferItem(models.Model):
    """Individual product line within a transfer."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    transfer = models.ForeignKey(
        Transfer,
        on_delete=models.CASCADE,
        related_name='items'
    )
    product = models.ForeignKey(
        'inventory.Product',
        on_delete=models.PROTECT,
        related_name='transfer_items'
    )

    sent_quantity = models.PositiveIntegerField(
        validators=[MinValueValidator(1)],
        help_text="Quantity leaving the source warehouse"
    )
    received_quantity = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Quantity confirmed at the destination; set on receipt"
    )
    variance = models.IntegerField(
        default=0,
        help_text="received_quantity - sent_quantity, recorded on receipt"
    )
    note = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'inventory_transfer_item'
        ordering = ['created_at']
        # Prevent duplicate products in same transfer
        constraints = [
            models.UniqueConstraint(
                fields=['transfer', 'product'],
                name='unique_product_per_transfer'
            )
        ]

    def __str__(self):
        return f"{self.product.name} x{self.sent_quantity}"

    def clean(self):
        super().clean()
        if self.received_quantity is not None and self.sent_quantity is not None:
            if self.received_quantity > self.sent_quantity:
                raise ValidationError({
                    'received_quantity': 'Cannot receive more than was sent'
                })
