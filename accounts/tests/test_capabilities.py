"""
Tests for capability objects and the django-rules predicates built on them.
"""

import rules
from django.contrib.auth import get_user_model
from django.test import TestCase, override_settings

from accounts.models import Business, BusinessMembership
from accounts.permissions import WAREHOUSE_MODULE, Capability, StaticCapability

User = get_user_model()


class CapabilityTests(TestCase):
    def setUp(self):
        self.owner = User.objects.create_user(email='owner@test.com', password='testpass123', name='Owner')
        self.business = Business.objects.create(owner=self.owner, name='Test Business')

    def member(self, email, role, **kwargs):
        user = User.objects.create_user(email=email, password='testpass123', name=email.split('@')[0])
        user.add_business_membership(self.business, role=role, **kwargs)
        return user

    def test_owner_membership_is_created_with_business(self):
        membership = BusinessMembership.objects.get(business=self.business, user=self.owner)
        self.assertEqual(membership.role, BusinessMembership.OWNER)
        self.assertTrue(membership.is_admin)
        self.assertEqual(self.owner.primary_business, self.business)

    def test_role_defaults(self):
        manager = self.member('manager@test.com', BusinessMembership.MANAGER)
        staff = self.member('staff@test.com', BusinessMembership.STAFF)

        owner_capability = Capability.for_user(self.owner, self.business)
        manager_capability = Capability.for_user(manager, self.business)
        staff_capability = Capability.for_user(staff, self.business)

        self.assertEqual(owner_capability.approval_level(WAREHOUSE_MODULE), 3)
        self.assertTrue(owner_capability.can_approve(WAREHOUSE_MODULE))
        self.assertTrue(manager_capability.can_edit(WAREHOUSE_MODULE))
        self.assertFalse(manager_capability.can_approve(WAREHOUSE_MODULE))
        self.assertFalse(staff_capability.can_edit(WAREHOUSE_MODULE))

    def test_module_level_overrides_role_default(self):
        staff = self.member('approver@test.com', BusinessMembership.STAFF, module_levels={WAREHOUSE_MODULE: 3})
        capability = Capability.for_user(staff, self.business)
        self.assertTrue(capability.can_approve(WAREHOUSE_MODULE))
        self.assertEqual(capability.approval_level('accounting'), 1)

    def test_inactive_membership_grants_nothing(self):
        manager = self.member('manager@test.com', BusinessMembership.MANAGER)
        BusinessMembership.objects.filter(user=manager).update(is_active=False)

        capability = Capability.for_user(manager, self.business)

        self.assertIsNone(capability.membership)
        self.assertEqual(capability.approval_level(WAREHOUSE_MODULE), 0)

    def test_other_business_grants_nothing(self):
        other_owner = User.objects.create_user(email='other@test.com', password='testpass123', name='Other')
        other_business = Business.objects.create(owner=other_owner, name='Other Business')

        self.assertFalse(Capability.for_user(self.owner, other_business).can_edit(WAREHOUSE_MODULE))

    def test_superuser_has_every_level(self):
        admin = User.objects.create_superuser(email='root@test.com', password='testpass123', name='Root')
        self.assertTrue(Capability.for_user(admin, self.business).can_approve(WAREHOUSE_MODULE))

    @override_settings(INVENTORY_AUTO_APPROVE_LEVEL=2)
    def test_thresholds_come_from_settings(self):
        manager = self.member('manager@test.com', BusinessMembership.MANAGER)
        self.assertTrue(Capability.for_user(manager, self.business).can_approve(WAREHOUSE_MODULE))

    def test_static_capability(self):
        system = StaticCapability(levels={WAREHOUSE_MODULE: 3})
        self.assertTrue(system.can_approve(WAREHOUSE_MODULE))
        self.assertFalse(system.can_edit('accounting'))
        self.assertEqual(system.display_name, 'system')


class RulesPredicateTests(TestCase):
    def setUp(self):
        self.owner = User.objects.create_user(email='owner@test.com', password='testpass123', name='Owner')
        self.business = Business.objects.create(owner=self.owner, name='Test Business')
        self.manager = User.objects.create_user(email='manager@test.com', password='testpass123', name='Manager')
        self.manager.add_business_membership(self.business, role=BusinessMembership.MANAGER)
        self.outsider = User.objects.create_user(email='out@test.com', password='testpass123', name='Outsider')

    def test_approval_permission(self):
        self.assertTrue(rules.has_perm('inventory.approve_stocktransaction', self.owner, self.business))
        self.assertFalse(rules.has_perm('inventory.approve_stocktransaction', self.manager, self.business))

    def test_edit_and_view_permissions(self):
        self.assertTrue(rules.has_perm('inventory.change_transfer', self.manager, self.business))
        self.assertTrue(rules.has_perm('inventory.view_transfer', self.manager, self.business))
        self.assertFalse(rules.has_perm('inventory.view_transfer', self.outsider, self.business))
