"""
Audit trail writer.

``AuditRecorder.record`` schedules an ``accounts.AuditLog`` row for when the
surrounding database transaction commits. It never raises: a failing audit
write is logged and the business operation carries on.
"""

import logging

from django.db import transaction

from accounts.models import AuditLog


logger = logging.getLogger(__name__)


class AuditRecorder:

    @staticmethod
    def _write(business_id, user_id, action, entity_type, entity_id, description, changes):
        try:
            AuditLog.objects.create(
                business_id=business_id,
                user_id=user_id,
                action=action,
                model_name=entity_type,
                object_id=str(entity_id) if entity_id is not None else '',
                description=description,
                changes=changes or {},
            )
        except Exception:
            logger.error(
                "Failed to write audit log for %s %s (%s)", entity_type, entity_id, action,
                exc_info=True,
            )

    @classmethod
    def record(cls, action, entity_type, entity_id, description, *, business=None, user=None, changes=None):
        """Record one audit entry once the current transaction commits."""
        business_id = getattr(business, 'pk', business)
        user_id = getattr(user, 'pk', None)
        try:
            transaction.on_commit(
                lambda: cls._write(business_id, user_id, action, entity_type, entity_id, description, changes)
            )
        except Exception:
            logger.error("Failed to schedule audit log for %s %s", entity_type, entity_id, exc_info=True)
