import uuid

from django.contrib.auth.models import AbstractBaseUser, BaseUserManager, PermissionsMixin
from django.db import models


class UserManager(BaseUserManager):
    """Custom user manager for UUID primary keys"""
    def create_user(self, email, password=None, **extra_fields):
        if not email:
            raise ValueError('The Email field must be set')
        email = self.normalize_email(email)
        user = self.model(email=email, **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault('is_staff', True)
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('is_active', True)

        if extra_fields.get('is_staff') is not True:
            raise ValueError('Superuser must have is_staff=True.')
        if extra_fields.get('is_superuser') is not True:
            raise ValueError('Superuser must have is_superuser=True.')

        return self.create_user(email, password, **extra_fields)


class User(AbstractBaseUser, PermissionsMixin):
    """Custom user model with UUID primary key"""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    email = models.EmailField(unique=True)
    is_active = models.BooleanField(default=True)
    is_staff = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = UserManager()

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = ['name']

    class Meta:
        db_table = 'users'
        ordering = ['name']

    def __str__(self):
        return f"{self.name} ({self.email})"

    def active_business_memberships(self):
        """Return queryset of active business memberships."""
        return self.business_memberships.filter(is_active=True)

    @property
    def primary_business(self):
        """Return the most recently updated active business membership's business, if any."""
        membership = (
            self.active_business_memberships()
            .select_related('business')
            .order_by('-updated_at', '-created_at')
            .first()
        )
        return membership.business if membership else None

    def add_business_membership(self, business, role='STAFF', is_admin=False, module_levels=None):
        """Helper to create or update a business membership for this user."""
        defaults = {
            'role': role,
            'is_admin': is_admin or role == BusinessMembership.OWNER,
            'is_active': True,
        }
        if module_levels is not None:
            defaults['module_levels'] = module_levels
        membership, _ = BusinessMembership.objects.update_or_create(
            business=business,
            user=self,
            defaults=defaults,
        )
        return membership


class Business(models.Model):
    """A tenant: every warehouse, product and document belongs to exactly one."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    owner = models.ForeignKey('User', on_delete=models.CASCADE, related_name='owned_businesses')
    name = models.CharField(max_length=255, unique=True)
    email = models.EmailField(blank=True)
    address = models.TextField(blank=True)
    phone_numbers = models.JSONField(default=list, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'businesses'
        ordering = ['name']

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        is_new = self._state.adding
        super().save(*args, **kwargs)
        if is_new:
            self.owner.add_business_membership(
                business=self,
                role=BusinessMembership.OWNER,
                is_admin=True
            )


class BusinessMembership(models.Model):
    """Associates users with businesses, roles and per-module permission levels."""
    OWNER = 'OWNER'
    ADMIN = 'ADMIN'
    MANAGER = 'MANAGER'
    STAFF = 'STAFF'
    ROLE_CHOICES = [
        (OWNER, 'Owner'),
        (ADMIN, 'Administrator'),
        (MANAGER, 'Manager'),
        (STAFF, 'Staff'),
    ]

    # Levels granted when module_levels has no entry for a module
    DEFAULT_ROLE_LEVELS = {
        MANAGER: 2,
        STAFF: 1,
    }
    MAX_LEVEL = 3

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    business = models.ForeignKey(Business, on_delete=models.CASCADE, related_name='memberships')
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='business_memberships')
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default=STAFF)
    is_admin = models.BooleanField(default=False)
    module_levels = models.JSONField(
        default=dict,
        blank=True,
        help_text="Per-module permission level, e.g. {'warehouse': 3}"
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'business_memberships'
        unique_together = ['business', 'user']
        ordering = ['business__name', 'user__name']

    def __str__(self):
        return f"{self.user.name} - {self.business.name} ({self.role})"

    def save(self, *args, **kwargs):
        if self.role == self.OWNER:
            self.is_admin = True
        super().save(*args, **kwargs)

    def level_for(self, module):
        """Permission level this membership holds on ``module`` (0 = none)."""
        if not self.is_active:
            return 0
        if self.is_admin or self.role in (self.OWNER, self.ADMIN):
            return self.MAX_LEVEL
        explicit = (self.module_levels or {}).get(module)
        if explicit is not None:
            return int(explicit)
        return self.DEFAULT_ROLE_LEVELS.get(self.role, 0)


class AuditLog(models.Model):
    """Audit trail for all critical operations"""
    ACTION_CHOICES = [
        ('CREATE', 'Create'),
        ('UPDATE', 'Update'),
        ('DELETE', 'Delete'),
        ('APPROVE', 'Approve'),
        ('REJECT', 'Reject'),
        ('CANCEL', 'Cancel'),
        ('TRANSFER', 'Transfer'),
        ('ADJUST', 'Adjust'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    business = models.ForeignKey(Business, on_delete=models.CASCADE, null=True, blank=True, related_name='audit_logs')
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=20, choices=ACTION_CHOICES)
    model_name = models.CharField(max_length=100)
    object_id = models.CharField(max_length=100, blank=True)
    description = models.TextField(blank=True)
    changes = models.JSONField(default=dict, blank=True)
    timestamp = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-timestamp']
        indexes = [
            models.Index(fields=['user', 'timestamp'], name='audit_user_ts_idx'),
            models.Index(fields=['model_name', 'object_id'], name='audit_model_object_idx'),
            models.Index(fields=['action', 'timestamp'], name='audit_action_ts_idx'),
        ]

    def __str__(self):
        return f"{self.user} - {self.action} - {self.model_name} - {self.timestamp}"
