"""
Capability objects
==================

Business rules never look at requests or role strings directly. Views build a
``Capability`` for the acting user and pass it to the inventory services,
which only ask two questions of it:

    actor.can_edit('warehouse')          # create documents, transfers, counts
    actor.approval_level('warehouse')    # >= threshold approves / auto-approves

Usage:
    from accounts.permissions import Capability

    actor = Capability.for_user(request.user, business)
    processor.create(..., actor=actor)

Tests and background jobs can use ``StaticCapability`` to pin levels without
creating memberships.
"""

from typing import Optional, Protocol, runtime_checkable

from django.conf import settings
from rest_framework import permissions as drf_permissions

from accounts.models import BusinessMembership


WAREHOUSE_MODULE = 'warehouse'


def edit_level_threshold() -> int:
    return getattr(settings, 'INVENTORY_EDIT_LEVEL', 2)


def approve_level_threshold() -> int:
    return getattr(settings, 'INVENTORY_AUTO_APPROVE_LEVEL', 3)


@runtime_checkable
class Editor(Protocol):
    user: object

    def can_edit(self, module: str) -> bool:
        ...


@runtime_checkable
class Approver(Editor, Protocol):
    def approval_level(self, module: str) -> int:
        ...

    def can_approve(self, module: str) -> bool:
        ...


class Capability:
    """Permission levels of one user inside one business."""

    def __init__(self, user, business, membership: Optional[BusinessMembership] = None):
        self.user = user
        self.business = business
        self.membership = membership

    @classmethod
    def for_user(cls, user, business=None):
        """
        Build the capability from the user's active membership.

        When ``business`` is omitted the user's primary business is used.
        Users without a membership get a capability with no levels at all.
        """
        if not user or not getattr(user, 'is_authenticated', False):
            return cls(None, business)

        memberships = BusinessMembership.objects.filter(user=user, is_active=True).select_related('business')
        if business is not None:
            memberships = memberships.filter(business=business)
        membership = memberships.order_by('-updated_at').first()
        if membership is None:
            return cls(user, business)
        return cls(user, membership.business, membership)

    @property
    def display_name(self):
        if self.user is None:
            return 'system'
        return getattr(self.user, 'name', None) or str(self.user)

    def approval_level(self, module: str) -> int:
        if self.user is not None and getattr(self.user, 'is_superuser', False):
            return BusinessMembership.MAX_LEVEL
        if self.membership is None:
            return 0
        return self.membership.level_for(module)

    def can_edit(self, module: str) -> bool:
        return self.approval_level(module) >= edit_level_threshold()

    def can_approve(self, module: str) -> bool:
        return self.approval_level(module) >= approve_level_threshold()

    def __repr__(self):
        return f"<Capability user={self.display_name!r} business={self.business!r}>"


class StaticCapability:
    """Capability with fixed levels, used by background jobs and tests."""

    def __init__(self, user=None, business=None, levels=None, default_level=0):
        self.user = user
        self.business = business
        self.levels = dict(levels or {})
        self.default_level = default_level

    @property
    def display_name(self):
        if self.user is None:
            return 'system'
        return getattr(self.user, 'name', None) or str(self.user)

    def approval_level(self, module: str) -> int:
        return self.levels.get(module, self.default_level)

    def can_edit(self, module: str) -> bool:
        return self.approval_level(module) >= edit_level_threshold()

    def can_approve(self, module: str) -> bool:
        return self.approval_level(module) >= approve_level_threshold()


class IsBusinessMember(drf_permissions.BasePermission):
    """Allow access only to users with an active business membership."""

    message = 'You must belong to a business to access inventory.'

    def has_permission(self, request, view):
        user = request.user
        if not user or not user.is_authenticated:
            return False
        return BusinessMembership.objects.filter(user=user, is_active=True).exists()
