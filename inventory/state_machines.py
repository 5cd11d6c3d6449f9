"""
Document lifecycles.

Each workflow has an explicit status enum and a transition table. Services
never write a status the table does not allow, and every write is a
compare-and-swap on the previous status (see ``transition``).
"""

import logging
from contextlib import contextmanager

from django.db import models, transaction
from django.utils import timezone

from .exceptions import ConcurrentTransitionError, InvalidTransitionError


logger = logging.getLogger(__name__)


class ApprovalStatus(models.TextChoices):
    PENDING = 'pending', 'Pending approval'
    APPROVED = 'approved', 'Approved'
    REJECTED = 'rejected', 'Rejected'


class TransferStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    IN_TRANSIT = 'in_transit', 'In transit'
    RECEIVED = 'received', 'Received'
    CANCELLED = 'cancelled', 'Cancelled'


class StocktakeStatus(models.TextChoices):
    DRAFT = 'draft', 'Draft'
    IN_PROGRESS = 'in_progress', 'In progress'
    COMPLETED = 'completed', 'Completed'
    CANCELLED = 'cancelled', 'Cancelled'


APPROVAL_TRANSITIONS = {
    ApprovalStatus.PENDING: {ApprovalStatus.APPROVED, ApprovalStatus.REJECTED},
    ApprovalStatus.APPROVED: set(),
    ApprovalStatus.REJECTED: set(),
}

TRANSFER_TRANSITIONS = {
    TransferStatus.PENDING: {TransferStatus.IN_TRANSIT, TransferStatus.CANCELLED},
    TransferStatus.IN_TRANSIT: {TransferStatus.RECEIVED, TransferStatus.CANCELLED},
    TransferStatus.RECEIVED: set(),
    TransferStatus.CANCELLED: set(),
}

STOCKTAKE_TRANSITIONS = {
    StocktakeStatus.DRAFT: {StocktakeStatus.IN_PROGRESS, StocktakeStatus.CANCELLED},
    StocktakeStatus.IN_PROGRESS: {StocktakeStatus.COMPLETED, StocktakeStatus.CANCELLED},
    StocktakeStatus.COMPLETED: set(),
    StocktakeStatus.CANCELLED: set(),
}


def is_allowed(table, current, target):
    return target in table.get(current, set())


def check_transition(table, current, target, *, document_id=None):
    """
    Validate ``current -> target``.

    Returns False when the document is already in ``target`` (a repeated
    request, nothing to do), True when the move is allowed, and raises
    ``InvalidTransitionError`` otherwise.
    """
    if current == target:
        return False
    if not is_allowed(table, current, target):
        raise InvalidTransitionError(
            f"Cannot move from '{current}' to '{target}'",
            document_id=document_id,
            current_status=str(current),
            requested_status=str(target),
        )
    return True


def transition(instance, table, target, *, field='status', **updates):
    """
    Compare-and-swap ``instance.<field>`` from its loaded value to ``target``.

    The UPDATE only matches while the stored status still equals the value
    this request read, so two requests racing on the same document cannot
    both succeed. Extra ``updates`` are written in the same statement. Call
    inside ``transaction.atomic`` so ledger work done afterwards rolls the
    status back on failure.
    """
    current = getattr(instance, field)
    check_transition(table, current, target, document_id=instance.pk)

    values = {field: target, **updates}
    if hasattr(instance, 'updated_at'):
        values['updated_at'] = timezone.now()

    matched = type(instance).objects.filter(pk=instance.pk, **{field: current}).update(**values)
    if matched != 1:
        raise ConcurrentTransitionError(
            f"{type(instance).__name__} status changed while processing '{target}'",
            document_id=instance.pk,
            expected_status=str(current),
        )

    for key, value in values.items():
        setattr(instance, key, value)
    logger.info("%s %s: %s -> %s", type(instance).__name__, instance.pk, current, target)
    return instance


@contextmanager
def atomic_step(instance):
    """
    Run one workflow step in a transaction.

    On failure the database rolls back and ``instance`` is reloaded, so the
    caller sees the status that is actually stored.
    """
    try:
        with transaction.atomic():
            yield instance
    except Exception:
        instance.refresh_from_db()
        raise
