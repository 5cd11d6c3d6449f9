from __future__ import annotations

import random
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand
from django.db import transaction

from accounts.models import Business, BusinessMembership
from accounts.permissions import Capability
from inventory.models import Category, ComboItem, Product, StockTransaction, Supplier
from inventory.stocktake_services import StocktakeReconciler
from inventory.transaction_services import TransactionProcessor
from inventory.transfer_services import TransferCoordinator
from inventory.warehouses import WarehouseService

User = get_user_model()

BUSINESS_BLUEPRINTS = [
    {
        "business_name": "Aurora Retail Group",
        "owner_name": "Aurora Sloan",
        "email": "aurora.sloan@example.com",
        "address": "102 Market Street, Accra",
        "phones": ["+233201100001", "+233201100051"],
    },
    {
        "business_name": "BlueWave Traders",
        "owner_name": "Kwesi Djan",
        "email": "kwesi.djan@example.com",
        "address": "55 Liberation Road, Kumasi",
        "phones": ["+233201100002"],
    },
    {
        "business_name": "Summit Essentials",
        "owner_name": "Lydia Boateng",
        "email": "lydia.boateng@example.com",
        "address": "17 Ridge Avenue, Takoradi",
        "phones": ["+233201100003"],
    },
]

WAREHOUSE_DATA = [
    ("Central Warehouse", "CEN"),
    ("North Depot", "NTH"),
    ("Harbour Store", "HBR"),
]

CATEGORY_DATA = ["Beverages", "Groceries", "Personal Care"]

PRODUCT_DATA = [
    {"name": "Sparkle Orange Juice", "sku": "SP-ORJ-500", "category": "Beverages", "unit": "bottle",
     "barcode": "6001000000011", "cost": Decimal("15.25")},
    {"name": "Harvest Long Grain Rice", "sku": "HV-LGR-25KG", "category": "Groceries", "unit": "bag",
     "barcode": "6001000000028", "cost": Decimal("240.00")},
    {"name": "UltraClean Detergent", "sku": "UC-DET-2L", "category": "Personal Care", "unit": "bottle",
     "barcode": "6001000000035", "cost": Decimal("36.00")},
    {"name": "Golden Palm Oil", "sku": "GP-OIL-5L", "category": "Groceries", "unit": "jerrycan",
     "barcode": "6001000000042", "cost": Decimal("95.00")},
]


class Command(BaseCommand):
    help = (
        "Seed the database with demo data: businesses, warehouses, products, a combo, "
        "approved imports, a transfer and a stocktake in progress."
    )

    def add_arguments(self, parser):
        parser.add_argument(
            "--owners",
            type=int,
            default=2,
            help="Number of businesses to seed (default: 2).",
        )
        parser.add_argument(
            "--max-warehouses",
            type=int,
            default=2,
            help="Warehouses per business (default: 2).",
        )
        parser.add_argument(
            "--force",
            action="store_true",
            help="Seed even if businesses already exist.",
        )

    def handle(self, *args, **options):
        random.seed(42)
        max_warehouses = min(max(1, options["max_warehouses"]), len(WAREHOUSE_DATA))

        existing_businesses = Business.objects.count()
        if existing_businesses > 0 and not options["force"]:
            self.stdout.write(
                self.style.WARNING(
                    f"Database already contains {existing_businesses} businesses. "
                    "Use --force to append new demo data."
                )
            )
            return

        blueprints = BUSINESS_BLUEPRINTS[:options["owners"]]
        if len(blueprints) < options["owners"]:
            self.stdout.write(
                self.style.WARNING("Requested owners exceed predefined templates; using available templates only.")
            )

        for index, blueprint in enumerate(blueprints, start=1):
            if Business.objects.filter(name=blueprint["business_name"]).exists():
                self.stdout.write(self.style.WARNING(f"Business {blueprint['business_name']} already exists; skipped"))
                continue
            self.stdout.write(self.style.NOTICE(f"\nSeeding business {index}: {blueprint['business_name']}"))
            with transaction.atomic():
                self._seed_business(blueprint, max_warehouses)

        self.stdout.write(self.style.SUCCESS("Demo data seeding complete."))

    def _seed_business(self, blueprint, max_warehouses):
        owner = self._create_owner_user(blueprint)
        business = Business.objects.create(
            owner=owner,
            name=blueprint["business_name"],
            email=blueprint["email"],
            address=blueprint["address"],
            phone_numbers=blueprint["phones"],
        )
        actor = Capability.for_user(owner, business)
        self._create_manager(business, blueprint)

        service = WarehouseService(actor)
        warehouses = [
            service.create(business, name=name, code=code)
            for name, code in WAREHOUSE_DATA[:max_warehouses]
        ]
        self.stdout.write(self.style.SUCCESS(f"  Added {len(warehouses)} warehouses"))

        products = self._create_products(business)
        supplier = Supplier.objects.create(
            business=business,
            name=f"{blueprint['business_name']} Wholesale",
            contact_person=blueprint["owner_name"],
        )

        processor = TransactionProcessor(actor)
        for warehouse in warehouses:
            document = processor.create(
                business=business,
                transaction_type=StockTransaction.TYPE_IMPORT,
                warehouse=warehouse,
                supplier=supplier,
                items=[
                    {"product": product, "quantity": random.randint(20, 80), "unit_price": data["cost"]}
                    for product, data in products
                ],
                note="Opening stock",
            )
            self.stdout.write(self.style.SUCCESS(f"    Imported opening stock {document.reference_number}"))

        if len(warehouses) > 1:
            coordinator = TransferCoordinator(actor)
            product = products[0][0]
            transfer = coordinator.create(
                business=business,
                source_warehouse=warehouses[0],
                destination_warehouse=warehouses[1],
                items=[{"product": product, "quantity": 5}],
                notes="Demo restock",
            )
            coordinator.confirm_dispatch(transfer)
            self.stdout.write(self.style.SUCCESS(f"    Dispatched transfer {transfer.reference_number}"))

        reconciler = StocktakeReconciler(actor)
        session = reconciler.start(reconciler.create(business=business, warehouse=warehouses[0], note="Demo count"))
        self.stdout.write(self.style.SUCCESS(f"    Started stocktake {session.reference_number}"))

    def _create_owner_user(self, blueprint):
        owner, created = User.objects.get_or_create(
            email=blueprint["email"],
            defaults={"name": blueprint["owner_name"]},
        )
        if created:
            owner.set_password("DemoPass123!")
            owner.save(update_fields=["password"])
            self.stdout.write(self.style.SUCCESS(f"  Created owner account {owner.email}"))
        else:
            self.stdout.write(self.style.WARNING(f"  Owner account {owner.email} already existed"))
        return owner

    def _create_manager(self, business, blueprint):
        local, domain = blueprint["email"].split("@")
        manager, created = User.objects.get_or_create(
            email=f"{local}.manager@{domain}",
            defaults={"name": f"{blueprint['owner_name']} (Manager)"},
        )
        if created:
            manager.set_password("DemoPass123!")
            manager.save(update_fields=["password"])
        manager.add_business_membership(business, role=BusinessMembership.MANAGER)
        return manager

    def _create_products(self, business):
        categories = {
            name: Category.objects.create(business=business, name=name)
            for name in CATEGORY_DATA
        }
        products = []
        for data in PRODUCT_DATA:
            product = Product.objects.create(
                business=business,
                name=data["name"],
                sku=data["sku"],
                barcode=data["barcode"],
                unit=data["unit"],
                category=categories[data["category"]],
            )
            products.append((product, data))

        combo = Product.objects.create(business=business, name="Kitchen Starter Pack", sku="KIT-STARTER", is_combo=True)
        ComboItem.objects.create(combo=combo, child=products[1][0], quantity=1)
        ComboItem.objects.create(combo=combo, child=products[3][0], quantity=2)
        return products
