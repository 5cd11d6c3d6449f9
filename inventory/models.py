import uuid

from django.conf import settings
from django.db import models
from django.db.models import Q, Sum
from django.core.validators import MinValueValidator
from django.core.exceptions import ValidationError
from django.utils import timezone

from accounts.models import Business


def generate_document_number(model, business, prefix, field='reference_number'):
    """
    Generate a per-business document number: PREFIX-YYYYMMDD-NNN.

    The sequence restarts every day; a counter is appended until the number
    is unused for this business. Must be called inside a transaction: the
    business row stays locked until commit, so concurrent creates in one
    business are numbered one after the other.
    """
    Business.objects.select_for_update().only('pk').get(pk=business.pk)
    date_part = timezone.localdate().strftime('%Y%m%d')
    base = f"{prefix}-{date_part}"
    existing = model.objects.filter(business=business, **{f'{field}__startswith': base}).count()
    counter = existing + 1
    reference = f"{base}-{counter:03d}"
    while model.objects.filter(business=business, **{field: reference}).exists():
        counter += 1
        reference = f"{base}-{counter:03d}"
    return reference


class Category(models.Model):
    """Product categories"""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    business = models.ForeignKey(Business, on_delete=models.CASCADE, related_name='categories')
    name = models.CharField(max_length=255)
    parent = models.ForeignKey('self', on_delete=models.CASCADE, null=True, blank=True, related_name='children')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'categories'
        verbose_name_plural = 'categories'
        ordering = ['name']
        unique_together = ['business', 'name']

    def __str__(self):
        return self.name


class Supplier(models.Model):
    """Suppliers providing stock for products."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    business = models.ForeignKey(Business, on_delete=models.CASCADE, related_name='suppliers')
    name = models.CharField(max_length=255)
    contact_person = models.CharField(max_length=255, blank=True, null=True)
    phone_number = models.CharField(max_length=50, blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'suppliers'
        ordering = ['name']
        unique_together = ['business', 'name']

    def __str__(self):
        return f"{self.name} ({self.business.name})"


class Warehouse(models.Model):
    """
    Warehouses for storing inventory.

    Exactly one active warehouse per business carries ``is_default``. A
    warehouse is never hard-deleted; ``is_active`` is cleared instead, and only
    while it holds no stock and is not the default.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    business = models.ForeignKey(Business, on_delete=models.CASCADE, related_name='warehouses')
    name = models.CharField(max_length=255)
    code = models.CharField(max_length=50)
    address = models.TextField(blank=True)
    phone = models.CharField(max_length=50, blank=True)
    manager = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='managed_warehouses'
    )
    is_default = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'warehouses'
        ordering = ['-is_default', 'name']
        unique_together = ['business', 'code']
        constraints = [
            models.UniqueConstraint(
                fields=['business'],
                condition=Q(is_default=True),
                name='one_default_warehouse_per_business',
            ),
        ]

    def __str__(self):
        return self.name

    def total_quantity(self):
        return self.stock_levels.aggregate(total=Sum('quantity'))['total'] or 0

    def get_stats(self):
        """Distinct products in stock and total units held."""
        in_stock = self.stock_levels.filter(quantity__gt=0)
        return {
            'product_count': in_stock.count(),
            'total_quantity': in_stock.aggregate(total=Sum('quantity'))['total'] or 0,
        }


class Product(models.Model):
    """
    Catalog product.

    A simple product holds stock in ``WarehouseStock`` rows. A combo product
    never stores stock; it is derived from its ``combo_items``.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    business = models.ForeignKey(Business, on_delete=models.CASCADE, related_name='products')
    name = models.CharField(max_length=255)
    sku = models.CharField(max_length=100)
    barcode = models.CharField(max_length=100, blank=True, null=True, db_index=True)
    category = models.ForeignKey(
        Category,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='products'
    )
    unit = models.CharField(max_length=50, default='pcs')
    has_serial = models.BooleanField(default=False)
    is_combo = models.BooleanField(default=False)
    min_stock = models.PositiveIntegerField(null=True, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'products'
        ordering = ['name']
        unique_together = [
            ['business', 'sku'],
        ]
        indexes = [
            models.Index(fields=['business', 'sku'], name='product_business_sku_idx'),
            models.Index(fields=['business', 'category', 'is_active'], name='product_biz_cat_active_idx'),
        ]

    def __str__(self):
        return f"{self.name} ({self.sku})"

    def clean(self):
        super().clean()
        if self.is_combo and self.has_serial:
            raise ValidationError({'has_serial': 'Combo products cannot be serialized'})

    @property
    def low_stock_threshold(self):
        if self.min_stock is not None:
            return self.min_stock
        return getattr(settings, 'INVENTORY_LOW_STOCK_DEFAULT', 5)


class ProductVariant(models.Model):
    """Sellable variant of a product (size, colour...). Shares the product's stock."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name='variants')
    variant_name = models.CharField(max_length=255)
    sku = models.CharField(max_length=100, blank=True)
    barcode = models.CharField(max_length=100, blank=True)
    sort_order = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = 'product_variants'
        ordering = ['product', 'sort_order', 'variant_name']

    def __str__(self):
        return f"{self.product.name} - {self.variant_name}"


class ComboItem(models.Model):
    """One line of a combo product's bill of materials."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    combo = models.ForeignKey(Product, on_delete=models.CASCADE, related_name='combo_items')
    child = models.ForeignKey(Product, on_delete=models.CASCADE, related_name='used_in_combos')
    quantity = models.PositiveIntegerField(
        validators=[MinValueValidator(1)],
        help_text='Units of the child product consumed by one combo'
    )

    class Meta:
        db_table = 'product_combo_items'
        unique_together = ['combo', 'child']

    def __str__(self):
        return f"{self.combo.name}: {self.quantity} x {self.child.name}"

    def clean(self):
        super().clean()
        if self.child_id and self.child_id == self.combo_id:
            raise ValidationError({'child': 'A combo cannot contain itself'})
        if self.child_id and self.child.is_combo:
            raise ValidationError({'child': 'Combo children must be simple products'})


class WarehouseStock(models.Model):
    """
    On-hand quantity of one product in one warehouse.

    This is the only place physical quantity is stored. Rows are written
    exclusively by ``inventory.ledger.StockLedger``; a missing row means 0.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    warehouse = models.ForeignKey(Warehouse, on_delete=models.PROTECT, related_name='stock_levels')
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name='warehouse_stock')
    quantity = models.IntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'warehouse_stock'
        unique_together = ['warehouse', 'product']
        constraints = [
            models.CheckConstraint(
                condition=Q(quantity__gte=0),
                name='warehouse_stock_quantity_non_negative',
            ),
        ]

    def __str__(self):
        return f"{self.product.sku} @ {self.warehouse.code}: {self.quantity}"


class StockMovement(models.Model):
    """
    Immutable record of one applied ledger adjustment.

    ``movement_type`` follows the sign of ``delta``; ``source`` tells which
    workflow caused it and ``reference`` carries that document's number.
    """
    TYPE_IMPORT = 'import'
    TYPE_EXPORT = 'export'
    TYPE_CHOICES = [
        (TYPE_IMPORT, 'Import'),
        (TYPE_EXPORT, 'Export'),
    ]

    SOURCE_IMPORT = 'import'
    SOURCE_EXPORT = 'export'
    SOURCE_TRANSFER_OUT = 'transfer_out'
    SOURCE_TRANSFER_IN = 'transfer_in'
    SOURCE_TRANSFER_REVERSAL = 'transfer_reversal'
    SOURCE_STOCKTAKE = 'stocktake'
    SOURCE_MANUAL = 'manual'
    SOURCE_CHOICES = [
        (SOURCE_IMPORT, 'Import document'),
        (SOURCE_EXPORT, 'Export document'),
        (SOURCE_TRANSFER_OUT, 'Transfer dispatch'),
        (SOURCE_TRANSFER_IN, 'Transfer receipt'),
        (SOURCE_TRANSFER_REVERSAL, 'Transfer cancellation'),
        (SOURCE_STOCKTAKE, 'Stocktake adjustment'),
        (SOURCE_MANUAL, 'Manual adjustment'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    business = models.ForeignKey(Business, on_delete=models.CASCADE, related_name='stock_movements')
    warehouse = models.ForeignKey(Warehouse, on_delete=models.PROTECT, related_name='movements')
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name='movements')
    delta = models.IntegerField()
    quantity_after = models.IntegerField()
    movement_type = models.CharField(max_length=10, choices=TYPE_CHOICES)
    source = models.CharField(max_length=20, choices=SOURCE_CHOICES)
    reference = models.CharField(max_length=100, blank=True)
    note = models.TextField(blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='stock_movements'
    )
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        db_table = 'stock_movements'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['warehouse', 'product', 'created_at'], name='movement_wh_prod_created_idx'),
            models.Index(fields=['business', 'source'], name='movement_business_source_idx'),
            models.Index(fields=['reference'], name='movement_reference_idx'),
        ]

    def __str__(self):
        sign = '+' if self.delta > 0 else ''
        return f"{self.reference or self.source}: {self.product.sku} {sign}{self.delta}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError('Stock movements are immutable')
        super().save(*args, **kwargs)


class ProductSerial(models.Model):
    """A single tracked unit of a serialized product."""
    STATUS_IN_STOCK = 'in_stock'
    STATUS_SOLD = 'sold'
    STATUS_RETURNED = 'returned'
    STATUS_DEFECTIVE = 'defective'
    STATUS_CHOICES = [
        (STATUS_IN_STOCK, 'In stock'),
        (STATUS_SOLD, 'Sold'),
        (STATUS_RETURNED, 'Returned'),
        (STATUS_DEFECTIVE, 'Defective'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    business = models.ForeignKey(Business, on_delete=models.CASCADE, related_name='product_serials')
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name='serials')
    warehouse = models.ForeignKey(
        Warehouse,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='serials'
    )
    serial_number = models.CharField(max_length=150)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_IN_STOCK)
    source_transaction = models.ForeignKey(
        'inventory.StockTransaction',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='serials'
    )
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='created_serials'
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'product_serials'
        ordering = ['serial_number']
        constraints = [
            models.UniqueConstraint(
                fields=['business', 'serial_number'],
                name='unique_serial_per_business',
            ),
        ]

    def __str__(self):
        return f"{self.serial_number} ({self.product.sku})"


# Document models live in their own modules
from .stock_transactions import StockTransaction, StockTransactionItem  # noqa: E402
from .transfer_models import Transfer, TransferItem  # noqa: E402
from .stocktakes import StocktakeSession, StocktakeItem, StocktakeCountEvent  # noqa: E402

__all__ = [
    'Category', 'Supplier', 'Warehouse', 'Product', 'ProductVariant', 'ComboItem',
    'WarehouseStock', 'StockMovement', 'ProductSerial',
    'StockTransaction', 'StockTransactionItem',
    'Transfer', 'TransferItem',
    'StocktakeSession', 'StocktakeItem', 'StocktakeCountEvent',
    'generate_document_number',
]
