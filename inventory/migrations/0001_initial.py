from decimal import Decimal

from django.conf import settings
import django.core.validators
from django.db import migrations, models
import django.db.models.deletion
import uuid


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ("accounts", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Category",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "business",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="categories",
                        to="accounts.business",
                    ),
                ),
                (
                    "parent",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="children",
                        to="inventory.category",
                    ),
                ),
            ],
            options={
                "db_table": "categories",
                "verbose_name_plural": "categories",
                "ordering": ["name"],
                "unique_together": {("business", "name")},
            },
        ),
        migrations.CreateModel(
            name="Supplier",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=255)),
                ("contact_person", models.CharField(blank=True, max_length=255, null=True)),
                ("phone_number", models.CharField(blank=True, max_length=50, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "business",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="suppliers",
                        to="accounts.business",
                    ),
                ),
            ],
            options={
                "db_table": "suppliers",
                "ordering": ["name"],
                "unique_together": {("business", "name")},
            },
        ),
        migrations.CreateModel(
            name="Warehouse",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=255)),
                ("code", models.CharField(max_length=50)),
                ("address", models.TextField(blank=True)),
                ("phone", models.CharField(blank=True, max_length=50)),
                ("is_default", models.BooleanField(default=False)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "business",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="warehouses",
                        to="accounts.business",
                    ),
                ),
                (
                    "manager",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="managed_warehouses",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "warehouses",
                "ordering": ["-is_default", "name"],
                "unique_together": {("business", "code")},
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("is_default", True)),
                        fields=("business",),
                        name="one_default_warehouse_per_business",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Product",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=255)),
                ("sku", models.CharField(max_length=100)),
                ("barcode", models.CharField(blank=True, db_index=True, max_length=100, null=True)),
                ("unit", models.CharField(default="pcs", max_length=50)),
                ("has_serial", models.BooleanField(default=False)),
                ("is_combo", models.BooleanField(default=False)),
                ("min_stock", models.PositiveIntegerField(blank=True, null=True)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "business",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="products",
                        to="accounts.business",
                    ),
                ),
                (
                    "category",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="products",
                        to="inventory.category",
                    ),
                ),
            ],
            options={
                "db_table": "products",
                "ordering": ["name"],
                "unique_together": {("business", "sku")},
                "indexes": [
                    models.Index(fields=["business", "sku"], name="product_business_sku_idx"),
                    models.Index(fields=["business", "category", "is_active"], name="product_biz_cat_active_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="ProductVariant",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("variant_name", models.CharField(max_length=255)),
                ("sku", models.CharField(blank=True, max_length=100)),
                ("barcode", models.CharField(blank=True, max_length=100)),
                ("sort_order", models.PositiveIntegerField(default=0)),
                ("is_active", models.BooleanField(default=True)),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="variants",
                        to="inventory.product",
                    ),
                ),
            ],
            options={
                "db_table": "product_variants",
                "ordering": ["product", "sort_order", "variant_name"],
            },
        ),
        migrations.CreateModel(
            name="ComboItem",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "quantity",
                    models.PositiveIntegerField(
                        help_text="Units of the child product consumed by one combo",
                        validators=[django.core.validators.MinValueValidator(1)],
                    ),
                ),
                (
                    "child",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="used_in_combos",
                        to="inventory.product",
                    ),
                ),
                (
                    "combo",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="combo_items",
                        to="inventory.product",
                    ),
                ),
            ],
            options={
                "db_table": "product_combo_items",
                "unique_together": {("combo", "child")},
            },
        ),
        migrations.CreateModel(
            name="WarehouseStock",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("quantity", models.IntegerField(default=0)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="warehouse_stock",
                        to="inventory.product",
                    ),
                ),
                (
                    "warehouse",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="stock_levels",
                        to="inventory.warehouse",
                    ),
                ),
            ],
            options={
                "db_table": "warehouse_stock",
                "unique_together": {("warehouse", "product")},
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("quantity__gte", 0)),
                        name="warehouse_stock_quantity_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="StockMovement",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("delta", models.IntegerField()),
                ("quantity_after", models.IntegerField()),
                (
                    "movement_type",
                    models.CharField(choices=[("import", "Import"), ("export", "Export")], max_length=10),
                ),
                (
                    "source",
                    models.CharField(
                        choices=[
                            ("import", "Import document"),
                            ("export", "Export document"),
                            ("transfer_out", "Transfer dispatch"),
                            ("transfer_in", "Transfer receipt"),
                            ("transfer_reversal", "Transfer cancellation"),
                            ("stocktake", "Stocktake adjustment"),
                            ("manual", "Manual adjustment"),
                        ],
                        max_length=20,
                    ),
                ),
                ("reference", models.CharField(blank=True, max_length=100)),
                ("note", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                (
                    "business",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="stock_movements",
                        to="accounts.business",
                    ),
                ),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="stock_movements",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="movements",
                        to="inventory.product",
                    ),
                ),
                (
                    "warehouse",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="movements",
                        to="inventory.warehouse",
                    ),
                ),
            ],
            options={
                "db_table": "stock_movements",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["warehouse", "product", "created_at"], name="movement_wh_prod_created_idx"),
                    models.Index(fields=["business", "source"], name="movement_business_source_idx"),
                    models.Index(fields=["reference"], name="movement_reference_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="StocktakeSession",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("reference_number", models.CharField(db_index=True, max_length=100)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("draft", "Draft"),
                            ("in_progress", "In progress"),
                            ("completed", "Completed"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="draft",
                        max_length=20,
                    ),
                ),
                (
                    "scope",
                    models.CharField(
                        choices=[
                            ("all", "All products"),
                            ("products", "Selected products"),
                            ("categories", "Selected categories"),
                        ],
                        default="all",
                        max_length=20,
                    ),
                ),
                ("note", models.TextField(blank=True)),
                ("treat_unset_as_system", models.BooleanField(default=False)),
                ("over_total", models.IntegerField(default=0)),
                ("under_total", models.IntegerField(default=0)),
                ("total_diff", models.IntegerField(default=0)),
                ("adjusted_count", models.PositiveIntegerField(default=0)),
                ("failed_count", models.PositiveIntegerField(default=0)),
                ("adjustment_errors", models.JSONField(blank=True, default=list)),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "business",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="stocktakes",
                        to="accounts.business",
                    ),
                ),
                (
                    "completed_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="completed_stocktakes",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "created_by",
                    models.ForeignKey(
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="created_stocktakes",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "warehouse",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="stocktakes",
                        to="inventory.warehouse",
                    ),
                ),
            ],
            options={
                "db_table": "stocktake_sessions",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["business", "status"], name="stocktake_biz_status_idx"),
                    models.Index(fields=["warehouse", "status"], name="stocktake_wh_status_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("business", "reference_number"),
                        name="unique_stocktake_reference_per_business",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="StocktakeItem",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("product_name", models.CharField(max_length=255)),
                ("product_sku", models.CharField(blank=True, max_length=100)),
                ("variant_name", models.CharField(blank=True, max_length=255)),
                ("barcode", models.CharField(blank=True, max_length=100)),
                ("system_quantity", models.IntegerField(default=0)),
                ("actual_quantity", models.IntegerField(blank=True, null=True)),
                ("note", models.TextField(blank=True)),
                ("next_sequence", models.PositiveIntegerField(default=1)),
                ("last_applied_sequence", models.PositiveIntegerField(default=0)),
                ("adjusted", models.BooleanField(default=False)),
                ("adjustment_error", models.TextField(blank=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="stocktake_items",
                        to="inventory.product",
                    ),
                ),
                (
                    "session",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="items",
                        to="inventory.stocktakesession",
                    ),
                ),
                (
                    "variant",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="stocktake_items",
                        to="inventory.productvariant",
                    ),
                ),
            ],
            options={
                "db_table": "stocktake_items",
                "ordering": ["product_name", "variant_name"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("actual_quantity__isnull", True), ("actual_quantity__gte", 0), _connector="OR"),
                        name="stocktake_item_actual_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="StocktakeCountEvent",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("sequence", models.PositiveIntegerField()),
                (
                    "kind",
                    models.CharField(
                        choices=[
                            ("set", "Set counted quantity"),
                            ("increment", "Increment (scan)"),
                            ("note", "Note"),
                        ],
                        max_length=10,
                    ),
                ),
                ("value", models.IntegerField(blank=True, null=True)),
                ("note", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("applied_at", models.DateTimeField(blank=True, db_index=True, null=True)),
                ("superseded", models.BooleanField(default=False)),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="stocktake_count_events",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "item",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="count_events",
                        to="inventory.stocktakeitem",
                    ),
                ),
                (
                    "session",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="count_events",
                        to="inventory.stocktakesession",
                    ),
                ),
            ],
            options={
                "db_table": "stocktake_count_events",
                "ordering": ["item", "sequence"],
                "indexes": [
                    models.Index(fields=["session", "applied_at"], name="count_event_session_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("item", "sequence"), name="unique_count_event_sequence"),
                ],
            },
        ),
        migrations.CreateModel(
            name="StockTransaction",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("reference_number", models.CharField(db_index=True, max_length=100)),
                (
                    "transaction_type",
                    models.CharField(choices=[("import", "Import"), ("export", "Export")], max_length=10),
                ),
                (
                    "origin",
                    models.CharField(
                        choices=[
                            ("document", "Import/export document"),
                            ("stocktake", "Stocktake adjustment"),
                            ("manual", "Manual adjustment"),
                        ],
                        default="document",
                        max_length=20,
                    ),
                ),
                ("transaction_date", models.DateField()),
                ("partner_name", models.CharField(blank=True, max_length=255)),
                ("partner_phone", models.CharField(blank=True, max_length=50)),
                ("note", models.TextField(blank=True)),
                ("total_amount", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14)),
                (
                    "approval_status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending approval"),
                            ("approved", "Approved"),
                            ("rejected", "Rejected"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("approved_at", models.DateTimeField(blank=True, null=True)),
                ("reject_reason", models.TextField(blank=True)),
                ("stock_applied_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "approved_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="approved_stock_transactions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "business",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="stock_transactions",
                        to="accounts.business",
                    ),
                ),
                (
                    "created_by",
                    models.ForeignKey(
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="created_stock_transactions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "stocktake",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="transactions",
                        to="inventory.stocktakesession",
                    ),
                ),
                (
                    "supplier",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="transactions",
                        to="inventory.supplier",
                    ),
                ),
                (
                    "warehouse",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transactions",
                        to="inventory.warehouse",
                    ),
                ),
            ],
            options={
                "db_table": "stock_transactions",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["business", "transaction_type", "approval_status"],
                        name="stocktxn_biz_type_status_idx",
                    ),
                    models.Index(fields=["warehouse", "created_at"], name="stocktxn_wh_created_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("business", "reference_number"),
                        name="unique_reference_number_per_business",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="StockTransactionItem",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("line_number", models.PositiveIntegerField(default=0)),
                ("product_sku", models.CharField(blank=True, max_length=100)),
                ("product_name", models.CharField(blank=True, max_length=255)),
                (
                    "quantity",
                    models.PositiveIntegerField(validators=[django.core.validators.MinValueValidator(1)]),
                ),
                (
                    "unit_price",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        max_digits=12,
                        validators=[django.core.validators.MinValueValidator(Decimal("0.00"))],
                    ),
                ),
                ("total_price", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14)),
                ("serials", models.JSONField(blank=True, default=list)),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transaction_items",
                        to="inventory.product",
                    ),
                ),
                (
                    "transaction",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="items",
                        to="inventory.stocktransaction",
                    ),
                ),
            ],
            options={
                "db_table": "stock_transaction_items",
                "ordering": ["line_number"],
            },
        ),
        migrations.CreateModel(
            name="ProductSerial",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("serial_number", models.CharField(max_length=150)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("in_stock", "In stock"),
                            ("sold", "Sold"),
                            ("returned", "Returned"),
                            ("defective", "Defective"),
                        ],
                        default="in_stock",
                        max_length=20,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "business",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="product_serials",
                        to="accounts.business",
                    ),
                ),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="created_serials",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="serials",
                        to="inventory.product",
                    ),
                ),
                (
                    "source_transaction",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="serials",
                        to="inventory.stocktransaction",
                    ),
                ),
                (
                    "warehouse",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="serials",
                        to="inventory.warehouse",
                    ),
                ),
            ],
            options={
                "db_table": "product_serials",
                "ordering": ["serial_number"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("business", "serial_number"),
                        name="unique_serial_per_business",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Transfer",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("in_transit", "In transit"),
                            ("received", "Received"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=20,
                    ),
                ),
                (
                    "reference_number",
                    models.CharField(db_index=True, help_text="Auto-generated: CK-YYYYMMDD-NNN", max_length=100),
                ),
                ("expected_arrival_date", models.DateField(blank=True, null=True)),
                ("notes", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("dispatched_at", models.DateTimeField(blank=True, null=True)),
                ("received_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("cancel_reason", models.TextField(blank=True)),
                (
                    "business",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="transfers",
                        to="accounts.business",
                    ),
                ),
                (
                    "cancelled_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="cancelled_transfers",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "created_by",
                    models.ForeignKey(
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="created_transfers",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "destination_warehouse",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="inbound_transfers",
                        to="inventory.warehouse",
                    ),
                ),
                (
                    "dispatched_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="dispatched_transfers",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "received_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="received_transfers",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "source_warehouse",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="outbound_transfers",
                        to="inventory.warehouse",
                    ),
                ),
            ],
            options={
                "db_table": "inventory_transfer",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["business", "status"], name="transfer_biz_status_idx"),
                    models.Index(fields=["business", "created_at"], name="transfer_biz_created_idx"),
                    models.Index(fields=["source_warehouse", "status"], name="transfer_src_status_idx"),
                    models.Index(fields=["destination_warehouse", "status"], name="transfer_dst_status_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("business", "reference_number"),
                        name="unique_transfer_reference_per_business",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="TransferItem",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "sent_quantity",
                    models.PositiveIntegerField(
                        help_text="Quantity leaving the source warehouse",
                        validators=[django.core.validators.MinValueValidator(1)],
                    ),
                ),
                (
                    "received_quantity",
                    models.PositiveIntegerField(
                        blank=True,
                        help_text="Quantity confirmed at the destination; set on receipt",
                        null=True,
                    ),
                ),
                (
                    "variance",
                    models.IntegerField(
                        default=0,
                        help_text="received_quantity - sent_quantity, recorded on receipt",
                    ),
                ),
                ("note", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transfer_items",
                        to="inventory.product",
                    ),
                ),
                (
                    "transfer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="items",
                        to="inventory.transfer",
                    ),
                ),
            ],
            options={
                "db_table": "inventory_transfer_item",
                "ordering": ["created_at"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("transfer", "product"),
                        name="unique_product_per_transfer",
                    ),
                ],
            },
        ),
    ]
