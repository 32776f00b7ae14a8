from django.contrib.auth.models import AbstractBaseUser, BaseUserManager, PermissionsMixin
from django.core.exceptions import ValidationError
from django.db import models

from .capabilities import PlanConfig, is_valid_override, parse_capability


class CustomUserManager(BaseUserManager):
    """Manager for custom User model with email authentication."""

    def create_user(self, email, password=None, **extra_fields):
        if not email:
            raise ValueError('Email is required')
        email = self.normalize_email(email)
        user = self.model(email=email, **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault('is_staff', True)
        extra_fields.setdefault('is_superuser', True)

        if extra_fields.get('is_staff') is not True:
            raise ValueError('Superuser must have is_staff=True.')
        if extra_fields.get('is_superuser') is not True:
            raise ValueError('Superuser must have is_superuser=True.')

        return self.create_user(email, password, **extra_fields)


class Plan(models.Model):
    """
    Subscription tier in the plan catalog.

    ``sort_order`` is a strict total order over tiers; a higher value is a
    more expensive plan, which is how plan changes are classified as upgrade
    or downgrade. ``config`` holds {"features": {...}, "limits": {...}}.
    """

    INTERVAL_CHOICES = [
        ('month', 'Monthly'),
        ('year', 'Yearly'),
    ]

    name = models.CharField(max_length=50, unique=True, help_text='Stable identifier, e.g. "free", "pro"')
    display_name = models.CharField(max_length=100)
    description = models.TextField(blank=True)
    price = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    currency = models.CharField(max_length=3, default='usd')
    interval = models.CharField(max_length=10, choices=INTERVAL_CHOICES, default='month')
    sort_order = models.IntegerField(unique=True, help_text='Tier rank; higher is a more expensive plan')
    config = models.JSONField(default=dict, blank=True)

    # Stripe price references
    stripe_price_id_monthly = models.CharField(max_length=255, blank=True, help_text='Stripe Price ID (price_xxx)')
    stripe_price_id_yearly = models.CharField(max_length=255, blank=True, help_text='Stripe Price ID (price_xxx)')

    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['sort_order']

    def __str__(self):
        return self.display_name or self.name

    def clean(self):
        try:
            PlanConfig.from_json(self.config, strict=True)
        except ValueError as exc:
            raise ValidationError({'config': str(exc)})

    def get_config(self):
        return PlanConfig.from_json(self.config)

    def price_ids(self):
        """Stripe price ids that identify this plan."""
        return [p for p in (self.stripe_price_id_monthly, self.stripe_price_id_yearly) if p]

    def default_price_id(self):
        return self.stripe_price_id_monthly or self.stripe_price_id_yearly

    @property
    def is_free(self):
        return self.price == 0 and not self.price_ids()


class User(AbstractBaseUser, PermissionsMixin):
    """Custom User model with email as the primary identifier."""

    email = models.EmailField(unique=True)
    first_name = models.CharField(max_length=30, blank=True)
    last_name = models.CharField(max_length=30, blank=True)

    is_active = models.BooleanField(default=True)
    is_staff = models.BooleanField(default=False)

    # Entitlements
    plan = models.ForeignKey(
        Plan,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='accounts'
    )
    feature_overrides = models.JSONField(
        default=dict,
        blank=True,
        help_text='Capability key -> true/false, integer limit, or null (unset)'
    )

    # Stripe billing state
    stripe_customer_id = models.CharField(max_length=255, null=True, blank=True, help_text='Stripe Customer ID (cus_xxx)')
    stripe_subscription_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text='Stripe Subscription ID (sub_xxx)'
    )
    stripe_price_id = models.CharField(max_length=255, null=True, blank=True)
    stripe_current_period_end = models.DateTimeField(null=True, blank=True)
    scheduled_plan = models.ForeignKey(
        Plan,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='scheduled_accounts',
        help_text='Plan that becomes active at the next renewal (pending downgrade)'
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = CustomUserManager()

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = []

    class Meta:
        verbose_name = 'user'
        verbose_name_plural = 'users'

    def __str__(self):
        return self.email

    def clean(self):
        super().clean()
        if not isinstance(self.feature_overrides, dict):
            raise ValidationError({'feature_overrides': 'Overrides must be an object.'})
        for key, value in self.feature_overrides.items():
            capability = parse_capability(key)
            if capability is None:
                raise ValidationError({'feature_overrides': f'Unknown capability "{key}".'})
            if not is_valid_override(capability, value):
                raise ValidationError({'feature_overrides': f'Invalid value for "{key}": {value!r}.'})

    def get_full_name(self):
        full_name = ' '.join(part for part in [self.first_name, self.last_name] if part)
        return full_name or self.email

    def get_short_name(self):
        return self.first_name or self.email.split('@')[0]

    def has_unlimited_access(self):
        """Check if user has unlimited access (admin/staff)."""
        return self.is_staff or self.is_superuser

    def has_active_subscription(self):
        return bool(self.stripe_subscription_id)

    def get_role(self):
        if self.is_superuser:
            return 'superadmin'
        if self.is_staff:
            return 'admin'
        return 'user'
