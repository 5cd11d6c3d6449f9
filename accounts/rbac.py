"""Object permissions for inventory documents using django-rules."""

from __future__ import annotations

import rules

from django.db.models import Model

from accounts.models import Business
from accounts.permissions import Capability, WAREHOUSE_MODULE


def _get_business_from_object(obj: Model | None) -> Business | None:
    """Return the owning business of an inventory object, if it has one."""
    if obj is None:
        return None

    if isinstance(obj, Business):
        return obj

    business_id = getattr(obj, 'business_id', None)
    if business_id is not None:
        return obj.business

    # Line items and count items reach their business through the parent document
    for parent_attr in ('transaction', 'transfer', 'session', 'warehouse'):
        parent = getattr(obj, parent_attr, None)
        if parent is not None and parent is not obj:
            return _get_business_from_object(parent)
    return None


def _capability(user, obj) -> Capability:
    return Capability.for_user(user, _get_business_from_object(obj))


@rules.predicate
def is_business_member(user, obj=None):
    capability = _capability(user, obj)
    return capability.membership is not None or bool(getattr(user, 'is_superuser', False))


@rules.predicate
def can_edit_warehouse(user, obj=None):
    if not getattr(user, 'is_authenticated', False):
        return False
    return _capability(user, obj).can_edit(WAREHOUSE_MODULE)


@rules.predicate
def can_approve_warehouse(user, obj=None):
    if not getattr(user, 'is_authenticated', False):
        return False
    return _capability(user, obj).can_approve(WAREHOUSE_MODULE)


# View permissions ---------------------------------------------------------

for _model in ('warehouse', 'product', 'stocktransaction', 'transfer', 'stocktakesession', 'warehousestock'):
    rules.add_perm(f'inventory.view_{_model}', is_business_member)

# Edit permissions ---------------------------------------------------------

rules.add_perm('inventory.change_warehouse', can_edit_warehouse)
rules.add_perm('inventory.add_stocktransaction', can_edit_warehouse)
rules.add_perm('inventory.add_transfer', can_edit_warehouse)
rules.add_perm('inventory.change_transfer', can_edit_warehouse)
rules.add_perm('inventory.add_stocktakesession', can_edit_warehouse)
rules.add_perm('inventory.change_stocktakesession', can_edit_warehouse)
rules.add_perm('inventory.adjust_warehousestock', can_edit_warehouse)

# Approval permissions -----------------------------------------------------

rules.add_perm('inventory.approve_stocktransaction', can_approve_warehouse)
