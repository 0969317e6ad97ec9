"""
CORE App - Custom User Model for Flash Express

Handles: Users (Clients, Couriers, Assigning users, Super users, Admins)
"""

import uuid
from decimal import Decimal

from django.conf import settings
from django.contrib.auth.models import AbstractBaseUser, BaseUserManager, PermissionsMixin
from django.db import models
from django.utils import timezone


class UserRole(models.TextChoices):
    """User role enumeration."""
    ADMIN = 'ADMIN', 'Administrator'
    SUPER_USER = 'SUPER_USER', 'Super User'
    ASSIGNING_USER = 'ASSIGNING_USER', 'Assigning User'
    CLIENT = 'CLIENT', 'Client'
    COURIER = 'COURIER', 'Courier'


def default_flat_rate_fee():
    return settings.DEFAULT_CLIENT_FLAT_RATE_FEE


class UserManager(BaseUserManager):
    """Custom user manager for email-based authentication."""

    def create_user(self, email, password=None, **extra_fields):
        if not email:
            raise ValueError('Email address is required')

        user = self.model(email=self.normalize_email(email), **extra_fields)
        if password:
            user.set_password(password)
        else:
            user.set_unusable_password()
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault('is_staff', True)
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('role', UserRole.ADMIN)

        if extra_fields.get('is_staff') is not True:
            raise ValueError('Superuser must have is_staff=True.')
        if extra_fields.get('is_superuser') is not True:
            raise ValueError('Superuser must have is_superuser=True.')

        return self.create_user(email, password, **extra_fields)


class User(AbstractBaseUser, PermissionsMixin):
    """
    Custom User model using email as primary identifier.

    Key Business Logic:
    - role drives the capability set (see core.permissions)
    - flat_rate_fee is the client fee policy, stamped on a shipment
      when it is assigned to a courier; changing it never touches
      existing shipments
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    email = models.EmailField(unique=True, verbose_name="Email")

    # Profile
    full_name = models.CharField(max_length=150, blank=True, verbose_name="Full name")
    phone_number = models.CharField(max_length=20, blank=True, verbose_name="Phone number")
    role = models.CharField(
        max_length=20,
        choices=UserRole.choices,
        default=UserRole.CLIENT,
        verbose_name="Role"
    )

    # Client fee policy
    flat_rate_fee = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=default_flat_rate_fee,
        verbose_name="Flat rate fee (EGP)"
    )

    # Status
    is_active = models.BooleanField(default=True)
    is_staff = models.BooleanField(default=False)
    date_joined = models.DateTimeField(default=timezone.now)

    objects = UserManager()

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = []

    class Meta:
        verbose_name = "User"
        verbose_name_plural = "Users"
        ordering = ['-date_joined']
        indexes = [
            models.Index(fields=['role'], name='core_user_role_idx'),
        ]

    def __str__(self):
        return f"{self.full_name or self.email} ({self.get_role_display()})"

    @property
    def is_client(self) -> bool:
        return self.role == UserRole.CLIENT

    @property
    def is_courier(self) -> bool:
        return self.role == UserRole.COURIER

    @property
    def is_admin_role(self) -> bool:
        return self.role == UserRole.ADMIN


def update_client_flat_rate(actor, client, flat_rate_fee: Decimal) -> User:
    """
    Change a client's fee policy.

    Applies to shipments assigned from now on only.
    """
    from core.exceptions import InvalidAmountError
    from core.permissions import Permission, require_permission
    from core.utils import parse_amount

    require_permission(actor, Permission.MANAGE_CLIENT_FEES)

    flat_rate_fee = parse_amount(flat_rate_fee, "flat_rate_fee")
    if client.role != UserRole.CLIENT:
        raise InvalidAmountError("Flat rate fees apply to clients only", 'client', client.pk)

    client.flat_rate_fee = flat_rate_fee
    client.save(update_fields=['flat_rate_fee'])
    return client
