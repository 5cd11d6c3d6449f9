"""
Warehouse management.

Each business has exactly one default warehouse. The first warehouse created
becomes the default; moving the flag clears the old default and sets the new
one in a single transaction. Warehouses are deactivated rather than deleted,
and only when they are empty and not the default.
"""

import logging

from django.core.exceptions import ValidationError
from django.db import transaction

from accounts.permissions import WAREHOUSE_MODULE
from .audit import AuditRecorder
from .exceptions import ActionNotPermitted
from .models import Warehouse, WarehouseStock


logger = logging.getLogger(__name__)


class WarehouseService:

    def __init__(self, actor):
        self.actor = actor

    @property
    def user(self):
        user = getattr(self.actor, 'user', None)
        return user if getattr(user, 'pk', None) else None

    def _require_edit(self, warehouse=None):
        if not self.actor.can_edit(WAREHOUSE_MODULE):
            raise ActionNotPermitted(
                'You do not have permission to manage warehouses',
                document_id=getattr(warehouse, 'pk', None),
            )

    @transaction.atomic
    def create(self, business, **fields) -> Warehouse:
        self._require_edit()
        fields.pop('is_default', None)
        code = (fields.get('code') or '').strip()
        if not code:
            raise ValidationError({'code': 'Warehouse code is required'})
        if Warehouse.objects.filter(business=business, code__iexact=code).exists():
            raise ValidationError({'code': f"Warehouse code '{code}' is already used"})
        fields['code'] = code

        has_default = Warehouse.objects.select_for_update().filter(
            business=business, is_default=True
        ).exists()
        warehouse = Warehouse.objects.create(business=business, is_default=not has_default, **fields)
        AuditRecorder.record(
            'CREATE', 'Warehouse', warehouse.pk, f"Created warehouse {warehouse.name} ({warehouse.code})",
            business=business, user=self.user,
        )
        return warehouse

    @transaction.atomic
    def set_default(self, warehouse) -> Warehouse:
        """Make ``warehouse`` the business default."""
        self._require_edit(warehouse)
        if not warehouse.is_active:
            raise ValidationError({'warehouse': 'An inactive warehouse cannot be the default'})
        if warehouse.is_default:
            return warehouse

        # Lock the business's warehouses so two requests cannot both move the flag.
        list(Warehouse.objects.select_for_update().filter(business_id=warehouse.business_id))
        Warehouse.objects.filter(business_id=warehouse.business_id, is_default=True).update(is_default=False)
        Warehouse.objects.filter(pk=warehouse.pk).update(is_default=True)
        warehouse.is_default = True

        AuditRecorder.record(
            'UPDATE', 'Warehouse', warehouse.pk, f"Set {warehouse.name} as default warehouse",
            business=warehouse.business_id, user=self.user,
        )
        logger.info("Default warehouse of business %s is now %s", warehouse.business_id, warehouse.code)
        return warehouse

    @transaction.atomic
    def deactivate(self, warehouse) -> Warehouse:
        """Soft delete. Refused for the default warehouse or while it holds stock."""
        self._require_edit(warehouse)
        if warehouse.is_default:
            raise ValidationError({'warehouse': 'The default warehouse cannot be deleted'})
        if WarehouseStock.objects.filter(warehouse=warehouse, quantity__gt=0).exists():
            raise ValidationError({'warehouse': 'Warehouse still holds stock; transfer or adjust it out first'})

        warehouse.is_active = False
        warehouse.save(update_fields=['is_active', 'updated_at'])
        AuditRecorder.record(
            'DELETE', 'Warehouse', warehouse.pk, f"Deactivated warehouse {warehouse.name} ({warehouse.code})",
            business=warehouse.business_id, user=self.user,
        )
        return warehouse
