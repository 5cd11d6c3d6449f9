"""
Stock Transaction Models

Import and export documents. A document is created ``pending`` and only
touches the ledger when it becomes ``approved``; actors with approval rights
create it already approved. Stocktake and manual adjustments also produce
approved transactions so every ledger change has a document behind it.
"""

import uuid
from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Sum

from accounts.models import Business
from .state_machines import ApprovalStatus


class StockTransaction(models.Model):
    """Import (stock in) or export (stock out) document for one warehouse."""

    TYPE_IMPORT = 'import'
    TYPE_EXPORT = 'export'
    TYPE_CHOICES = [
        (TYPE_IMPORT, 'Import'),
        (TYPE_EXPORT, 'Export'),
    ]

    ORIGIN_DOCUMENT = 'document'
    ORIGIN_STOCKTAKE = 'stocktake'
    ORIGIN_MANUAL = 'manual'
    ORIGIN_CHOICES = [
        (ORIGIN_DOCUMENT, 'Import/export document'),
        (ORIGIN_STOCKTAKE, 'Stocktake adjustment'),
        (ORIGIN_MANUAL, 'Manual adjustment'),
    ]

    NUMBER_PREFIXES = {
        TYPE_IMPORT: 'PN',
        TYPE_EXPORT: 'PX',
    }

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    business = models.ForeignKey(Business, on_delete=models.CASCADE, related_name='stock_transactions')
    reference_number = models.CharField(max_length=100, db_index=True)
    transaction_type = models.CharField(max_length=10, choices=TYPE_CHOICES)
    origin = models.CharField(max_length=20, choices=ORIGIN_CHOICES, default=ORIGIN_DOCUMENT)
    warehouse = models.ForeignKey('inventory.Warehouse', on_delete=models.PROTECT, related_name='transactions')
    supplier = models.ForeignKey(
        'inventory.Supplier',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='transactions'
    )

    # Counterparty and document details
    transaction_date = models.DateField()
    partner_name = models.CharField(max_length=255, blank=True)
    partner_phone = models.CharField(max_length=50, blank=True)
    note = models.TextField(blank=True)
    total_amount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0.00'))

    # Approval workflow
    approval_status = models.CharField(
        max_length=20,
        choices=ApprovalStatus.choices,
        default=ApprovalStatus.PENDING,
        db_index=True
    )
    approved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='approved_stock_transactions'
    )
    approved_at = models.DateTimeField(null=True, blank=True)
    reject_reason = models.TextField(blank=True)

    # Set once the ledger delta has been applied; guards against double posting
    stock_applied_at = models.DateTimeField(null=True, blank=True)

    # Stocktake that produced this transaction, if any
    stocktake = models.ForeignKey(
        'inventory.StocktakeSession',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='transactions'
    )

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        related_name='created_stock_transactions'
    )
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'stock_transactions'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['business', 'transaction_type', 'approval_status'], name='stocktxn_biz_type_status_idx'),
            models.Index(fields=['warehouse', 'created_at'], name='stocktxn_wh_created_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['business', 'reference_number'],
                name='unique_reference_number_per_business',
            ),
        ]

    def __str__(self):
        return f"{self.reference_number} ({self.get_transaction_type_display()})"

    @property
    def is_import(self):
        return self.transaction_type == self.TYPE_IMPORT

    @property
    def is_export(self):
        return self.transaction_type == self.TYPE_EXPORT

    @property
    def sign(self):
        """+1 for imports, -1 for exports."""
        return 1 if self.is_import else -1

    @property
    def total_quantity(self):
        return self.items.aggregate(total=Sum('quantity'))['total'] or 0

    def recalculate_total(self):
        total = sum((item.total_price for item in self.items.all()), Decimal('0.00'))
        self.total_amount = total
        return total


class StockTransactionItem(models.Model):
    """Line of an import/export document."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    transaction = models.ForeignKey(StockTransaction, on_delete=models.CASCADE, related_name='items')
    line_number = models.PositiveIntegerField(default=0)
    product = models.ForeignKey('inventory.Product', on_delete=models.PROTECT, related_name='transaction_items')

    # Snapshot of the product at document time
    product_sku = models.CharField(max_length=100, blank=True)
    product_name = models.CharField(max_length=255, blank=True)

    quantity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    unit_price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
        validators=[MinValueValidator(Decimal('0.00'))]
    )
    total_price = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0.00'))

    # Operator-supplied serial numbers for serialized products (imports only)
    serials = models.JSONField(default=list, blank=True)

    class Meta:
        db_table = 'stock_transaction_items'
        ordering = ['line_number']

    def __str__(self):
        return f"{self.product_name or self.product_id} x{self.quantity}"

    def save(self, *args, **kwargs):
        """Auto-calculate the line total and snapshot product fields."""
        self.total_price = Decimal(self.quantity or 0) * (self.unit_price or Decimal('0.00'))
        if self.product_id and not self.product_sku:
            self.product_sku = self.product.sku
            self.product_name = self.product.name
        super().save(*args, **kwargs)
