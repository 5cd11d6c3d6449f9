import uuid

from django.contrib.auth import get_user_model

from accounts.models import Business, BusinessMembership
from accounts.permissions import Capability
from inventory.ledger import StockLedger
from inventory.models import Category, ComboItem, Product, StockMovement, Warehouse

User = get_user_model()


class BusinessTestMixin:
    """Mixin for creating test businesses, members, warehouses and stock"""

    def create_user(self, **overrides):
        suffix = uuid.uuid4().hex[:6]
        return User.objects.create_user(
            email=overrides.get('email', f'user-{suffix}@example.com'),
            password='testpass123',
            name=overrides.get('name', f'User {suffix}'),
        )

    def create_business(self, owner=None, **overrides):
        suffix = uuid.uuid4().hex[:6]
        if owner is None:
            owner = self.create_user(name=f'Owner {suffix}')
        business = Business.objects.create(
            owner=owner,
            name=overrides.get('name', f'Test Business {suffix}'),
            email=overrides.get('email', f'biz{suffix}@example.com'),
        )
        return owner, business

    def create_member(self, business, role=BusinessMembership.STAFF, level=None, **user_fields):
        user = self.create_user(**user_fields)
        module_levels = {'warehouse': level} if level is not None else None
        user.add_business_membership(business, role=role, module_levels=module_levels)
        return user

    def actor_for(self, user, business):
        return Capability.for_user(user, business)

    def create_warehouse(self, business, code=None, **fields):
        code = code or f'WH-{uuid.uuid4().hex[:4].upper()}'
        is_default = not Warehouse.objects.filter(business=business, is_default=True).exists()
        return Warehouse.objects.create(
            business=business,
            name=fields.pop('name', f'Warehouse {code}'),
            code=code,
            is_default=fields.pop('is_default', is_default),
            **fields
        )

    def create_product(self, business, sku=None, **fields):
        sku = sku or f'SKU-{uuid.uuid4().hex[:6].upper()}'
        return Product.objects.create(
            business=business,
            name=fields.pop('name', f'Product {sku}'),
            sku=sku,
            **fields
        )

    def create_category(self, business, name=None, parent=None):
        return Category.objects.create(business=business, name=name or f'Category {uuid.uuid4().hex[:4]}', parent=parent)

    def create_combo(self, business, components, sku=None):
        """``components`` is a list of (child, quantity) pairs."""
        combo = self.create_product(business, sku=sku, is_combo=True)
        for child, quantity in components:
            ComboItem.objects.create(combo=combo, child=child, quantity=quantity)
        return combo

    def put_stock(self, warehouse, product, quantity):
        """Seed stock through the ledger."""
        return StockLedger.adjust_stock(
            warehouse, product, quantity, source=StockMovement.SOURCE_MANUAL, reference='SEED'
        )
