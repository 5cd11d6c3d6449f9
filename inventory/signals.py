"""
Inventory Signals

``stock_transaction_approved`` is sent once per import/export document that
reaches ``approved`` with a non-zero total. Receivers in other services
(bookkeeping) create the matching receivable/payable; inventory itself does
not listen to it.

Receivers defined here keep stock integrity:
- WarehouseStock.quantity can only change through the ledger (queryset
  updates), never through ``save()`` on an existing row.
"""

import logging

from django.core.exceptions import ValidationError
from django.db.models.signals import post_save, pre_save
from django.dispatch import Signal, receiver


logger = logging.getLogger(__name__)

# Sent with: transaction, total_amount, user
stock_transaction_approved = Signal()


@receiver(pre_save, sender='inventory.WarehouseStock')
def prevent_direct_quantity_edit(sender, instance, **kwargs):
    """
    Block edits of ``quantity`` through model saves.

    New rows start at the value they are created with (0 from the ledger).
    Existing rows are only changed by ``StockLedger`` which issues atomic
    UPDATE statements that do not send signals.
    """
    if instance._state.adding:
        return

    current = sender.objects.filter(pk=instance.pk).values_list('quantity', flat=True).first()
    if current is None or current == instance.quantity:
        return

    raise ValidationError(
        f"Cannot edit stock quantity directly ({current} -> {instance.quantity}). "
        "Use an import, export, transfer, stocktake or manual adjustment."
    )


@receiver(post_save, sender='inventory.Warehouse')
def log_warehouse_created(sender, instance, created, **kwargs):
    if created:
        logger.info("Warehouse %s (%s) created for business %s", instance.code, instance.pk, instance.business_id)
