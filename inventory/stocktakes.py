"""
Stocktake Models

A StocktakeSession snapshots the system quantity of every product in scope
when it is created, collects counted quantities while ``in_progress`` and
posts the variances to the ledger on completion.

Counted quantities never reach ``StocktakeItem`` directly from clients. Edits
are appended to ``StocktakeCountEvent`` and applied in batches by
``StocktakeReconciler.flush`` so count entry never waits on a save.
"""

import uuid

from django.conf import settings
from django.db import models
from django.db.models import Q

from accounts.models import Business
from .state_machines import StocktakeStatus


class StocktakeSession(models.Model):
    """Physical count of one warehouse."""

    NUMBER_PREFIX = 'KK'

    SCOPE_ALL = 'all'
    SCOPE_PRODUCTS = 'products'
    SCOPE_CATEGORIES = 'categories'
    SCOPE_CHOICES = [
        (SCOPE_ALL, 'All products'),
        (SCOPE_PRODUCTS, 'Selected products'),
        (SCOPE_CATEGORIES, 'Selected categories'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    business = models.ForeignKey(Business, on_delete=models.CASCADE, related_name='stocktakes')
    reference_number = models.CharField(max_length=100, db_index=True)
    warehouse = models.ForeignKey('inventory.Warehouse', on_delete=models.PROTECT, related_name='stocktakes')
    status = models.CharField(
        max_length=20,
        choices=StocktakeStatus.choices,
        default=StocktakeStatus.DRAFT,
        db_index=True
    )
    scope = models.CharField(max_length=20, choices=SCOPE_CHOICES, default=SCOPE_ALL)
    note = models.TextField(blank=True)

    # Completion policy and results
    treat_unset_as_system = models.BooleanField(default=False)
    over_total = models.IntegerField(default=0)
    under_total = models.IntegerField(default=0)
    total_diff = models.IntegerField(default=0)
    adjusted_count = models.PositiveIntegerField(default=0)
    failed_count = models.PositiveIntegerField(default=0)
    adjustment_errors = models.JSONField(default=list, blank=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        related_name='created_stocktakes'
    )
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    completed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='completed_stocktakes'
    )
    cancelled_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'stocktake_sessions'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['business', 'status'], name='stocktake_biz_status_idx'),
            models.Index(fields=['warehouse', 'status'], name='stocktake_wh_status_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['business', 'reference_number'],
                name='unique_stocktake_reference_per_business',
            ),
        ]

    def __str__(self):
        return f"{self.reference_number} - {self.warehouse.name}"

    @property
    def is_editable(self):
        return self.status == StocktakeStatus.IN_PROGRESS

    @property
    def counted_items(self):
        return self.items.filter(actual_quantity__isnull=False).count()

    @property
    def total_items(self):
        return self.items.count()


class StocktakeItem(models.Model):
    """One counted line: a product, or one variant of a product."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    session = models.ForeignKey(StocktakeSession, on_delete=models.CASCADE, related_name='items')
    product = models.ForeignKey('inventory.Product', on_delete=models.PROTECT, related_name='stocktake_items')
    variant = models.ForeignKey(
        'inventory.ProductVariant',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='stocktake_items'
    )

    # Snapshot taken when the session is created; for variants only the first item holds the product quantity
    product_name = models.CharField(max_length=255)
    product_sku = models.CharField(max_length=100, blank=True)
    variant_name = models.CharField(max_length=255, blank=True)
    barcode = models.CharField(max_length=100, blank=True)
    system_quantity = models.IntegerField(default=0)

    actual_quantity = models.IntegerField(null=True, blank=True)
    note = models.TextField(blank=True)

    # Count-edit queue bookkeeping
    next_sequence = models.PositiveIntegerField(default=1)
    last_applied_sequence = models.PositiveIntegerField(default=0)

    # Posting result
    adjusted = models.BooleanField(default=False)
    adjustment_error = models.TextField(blank=True)

    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'stocktake_items'
        ordering = ['product_name', 'variant_name']
        constraints = [
            models.CheckConstraint(
                condition=Q(actual_quantity__isnull=True) | Q(actual_quantity__gte=0),
                name='stocktake_item_actual_non_negative',
            ),
        ]

    def __str__(self):
        label = self.product_name
        if self.variant_name:
            label = f"{label} - {self.variant_name}"
        return f"{label}: {self.system_quantity} -> {self.actual_quantity}"

    @property
    def diff(self):
        """actual - system of this line; None while uncounted. Variants are reconciled per product (``ProductCount``)."""
        if self.actual_quantity is None:
            return None
        return self.actual_quantity - self.system_quantity

    def matches_code(self, code):
        """Case-insensitive exact match on SKU, barcode or name."""
        needle = (code or '').strip().lower()
        if not needle:
            return False
        candidates = (self.product_sku, self.barcode, self.product_name)
        return any(value and value.strip().lower() == needle for value in candidates)


class StocktakeCountEvent(models.Model):
    """
    One queued count edit.

    Unique per (item, sequence): resubmitting the same edit is a no-op.
    """

    KIND_SET = 'set'
    KIND_INCREMENT = 'increment'
    KIND_NOTE = 'note'
    KIND_CHOICES = [
        (KIND_SET, 'Set counted quantity'),
        (KIND_INCREMENT, 'Increment (scan)'),
        (KIND_NOTE, 'Note'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    session = models.ForeignKey(StocktakeSession, on_delete=models.CASCADE, related_name='count_events')
    item = models.ForeignKey(StocktakeItem, on_delete=models.CASCADE, related_name='count_events')
    sequence = models.PositiveIntegerField()
    kind = models.CharField(max_length=10, choices=KIND_CHOICES)
    value = models.IntegerField(null=True, blank=True)
    note = models.TextField(blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='stocktake_count_events'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    applied_at = models.DateTimeField(null=True, blank=True, db_index=True)
    superseded = models.BooleanField(default=False)

    class Meta:
        db_table = 'stocktake_count_events'
        ordering = ['item', 'sequence']
        constraints = [
            models.UniqueConstraint(fields=['item', 'sequence'], name='unique_count_event_sequence'),
        ]
        indexes = [
            models.Index(fields=['session', 'applied_at'], name='count_event_session_idx'),
        ]

    def __str__(self):
        return f"{self.item_id}#{self.sequence} {self.kind}={self.value}"

    @property
    def is_pending(self):
        return self.applied_at is None


class ProductCount:
    """
    The items of one product in a session.

    Variant items share their product's ledger cell, so the product's
    snapshot is stored once (on its first item, 0 on the rest) and counts are
    compared per product, never per variant.
    """

    def __init__(self, product_id, items):
        self.product_id = product_id
        self.items = list(items)

    @property
    def has_variants(self):
        return len(self.items) > 1 or any(item.variant_id for item in self.items)

    @property
    def system_quantity(self):
        return sum(item.system_quantity for item in self.items)

    @property
    def counted_quantity(self):
        counted = [item.actual_quantity for item in self.items if item.actual_quantity is not None]
        return sum(counted) if counted else None

    @property
    def diff(self):
        """Counted total minus snapshot; None while no item is counted."""
        counted = self.counted_quantity
        return None if counted is None else counted - self.system_quantity

    def unset_fill(self):
        """
        ``(item, value)`` pairs that make the uncounted items agree with the
        snapshot: the uncounted remainder goes to the first uncounted item
        and the others get 0.
        """
        unset = [item for item in self.items if item.actual_quantity is None]
        remainder = max(self.system_quantity - (self.counted_quantity or 0), 0)
        fill = []
        for item in unset:
            fill.append((item, remainder))
            remainder = 0
        return fill


def group_by_product(items):
    """Split ordered items into ``ProductCount`` groups, keeping first-seen order."""
    groups = {}
    for item in items:
        groups.setdefault(item.product_id, []).append(item)
    return [ProductCount(product_id, group) for product_id, group in groups.items()]
