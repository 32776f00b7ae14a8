from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Sum
from django.db.models.functions import Coalesce

from .config import ProfileConfig


class ReferralProfile(models.Model):
    """Template for a referral programme (affiliate or customer referral)."""

    AFFILIATE = 'AFFILIATE'
    CUSTOMER = 'CUSTOMER'
    TYPE_CHOICES = [
        (AFFILIATE, 'Affiliate'),
        (CUSTOMER, 'Customer'),
    ]

    name = models.CharField(max_length=100, unique=True)
    type = models.CharField(max_length=20, choices=TYPE_CHOICES)
    description = models.TextField(blank=True)
    config = models.JSONField(default=dict, blank=True)
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return f"{self.name} ({self.get_type_display()})"

    def clean(self):
        try:
            ProfileConfig.from_json(self.config)
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError({'config': f'Invalid config: {exc}'})


class ReferralAssignment(models.Model):
    """
    Binds an account to a referral code and a profile.

    ``total_earned`` and ``total_paid`` only go down through an explicit
    commission reversal.
    """

    ACTIVE = 'ACTIVE'
    PAUSED = 'PAUSED'
    TERMINATED = 'TERMINATED'
    STATUS_CHOICES = [
        (ACTIVE, 'Active'),
        (PAUSED, 'Paused'),
        (TERMINATED, 'Terminated'),
    ]

    STRIPE_CONNECT = 'STRIPE_CONNECT'
    BANK_TRANSFER = 'BANK_TRANSFER'
    PAYPAL = 'PAYPAL'
    PAYOUT_METHOD_CHOICES = [
        (STRIPE_CONNECT, 'Stripe Connect'),
        (BANK_TRANSFER, 'Bank transfer'),
        (PAYPAL, 'PayPal'),
    ]

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='referral_assignment'
    )
    profile = models.ForeignKey(ReferralProfile, on_delete=models.PROTECT, related_name='assignments')
    referral_code = models.CharField(max_length=20, unique=True)
    custom_slug = models.SlugField(max_length=50, unique=True, null=True, blank=True)
    config_override = models.JSONField(null=True, blank=True, help_text='Merged section by section over the profile config')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=ACTIVE)

    # Payout destination
    payout_method = models.CharField(max_length=20, choices=PAYOUT_METHOD_CHOICES, default=BANK_TRANSFER)
    stripe_connect_id = models.CharField(max_length=255, blank=True, help_text='Stripe Connect account (acct_xxx)')
    payout_details = models.TextField(blank=True, help_text='PayPal email or bank details for manual payouts')

    # Counters
    total_referrals = models.PositiveIntegerField(default=0)
    total_converted = models.PositiveIntegerField(default=0)
    total_earned = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    total_paid = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Referral Assignment'
        verbose_name_plural = 'Referral Assignments'

    def __str__(self):
        return f"{self.referral_code} → {self.user.email}"

    def clean(self):
        if self.config_override:
            try:
                ProfileConfig.from_json(self.config_override)
            except (KeyError, TypeError, ValueError) as exc:
                raise ValidationError({'config_override': f'Invalid config: {exc}'})

    @property
    def public_code(self):
        return self.custom_slug or self.referral_code

    def get_effective_config(self):
        base = ProfileConfig.from_json(self.profile.config)
        if not self.config_override:
            return base
        return base.merged_with(ProfileConfig.from_json(self.config_override))

    def is_affiliate(self):
        return self.profile.type == ReferralProfile.AFFILIATE


class Referral(models.Model):
    """A referred account and where it stands in the conversion funnel."""

    REGISTERED = 'REGISTERED'
    CONVERTED = 'CONVERTED'
    QUALIFIED = 'QUALIFIED'
    REFUNDED = 'REFUNDED'
    FRAUDULENT = 'FRAUDULENT'
    CANCELLED = 'CANCELLED'
    STATUS_CHOICES = [
        (REGISTERED, 'Registered'),
        (CONVERTED, 'Converted'),
        (QUALIFIED, 'Qualified'),
        (REFUNDED, 'Refunded'),
        (FRAUDULENT, 'Fraudulent'),
        (CANCELLED, 'Cancelled'),
    ]
    OPEN_STATUSES = (REGISTERED, CONVERTED, QUALIFIED)
    CLOSED_STATUSES = (REFUNDED, FRAUDULENT, CANCELLED)

    assignment = models.ForeignKey(ReferralAssignment, on_delete=models.CASCADE, related_name='referrals')
    referred_user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='referral'
    )
    referred_email = models.EmailField()
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=REGISTERED)
    source = models.CharField(max_length=50, blank=True)

    registered_at = models.DateTimeField(null=True, blank=True)
    converted_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.assignment.referral_code} → {self.referred_email} ({self.status})"


class CommissionQuerySet(models.QuerySet):

    def available(self):
        """Qualified commissions not yet claimed by a payout."""
        return self.filter(status=ReferralCommission.QUALIFIED, payout__isnull=True)

    def total(self):
        """Sum of effective amounts (adjusted amount when set, else total amount)."""
        result = self.aggregate(
            total=Sum(Coalesce('adjusted_amount', 'total_amount'))
        )['total']
        return result or Decimal('0')


class ReferralCommission(models.Model):
    """
    One commission per qualifying Stripe payment.

    Counted toward the available balance only while QUALIFIED and unclaimed.
    """

    PENDING = 'PENDING'
    QUALIFIED = 'QUALIFIED'
    PAID = 'PAID'
    REVERSED = 'REVERSED'
    STATUS_CHOICES = [
        (PENDING, 'Pending'),
        (QUALIFIED, 'Qualified'),
        (PAID, 'Paid'),
        (REVERSED, 'Reversed'),
    ]

    assignment = models.ForeignKey(ReferralAssignment, on_delete=models.CASCADE, related_name='commissions')
    referral = models.ForeignKey(Referral, on_delete=models.CASCADE, related_name='commissions')
    payout = models.ForeignKey(
        'ReferralPayout',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='commissions'
    )

    # Stripe references
    stripe_payment_id = models.CharField(max_length=255, unique=True)
    stripe_invoice_id = models.CharField(max_length=255, blank=True)

    # Amounts
    base_amount = models.DecimalField(max_digits=12, decimal_places=2, help_text='Payment amount the commission is based on')
    commission_rate = models.DecimalField(max_digits=6, decimal_places=4, default=Decimal('0'))
    fixed_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'))
    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    adjusted_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    adjustment_reason = models.CharField(max_length=255, blank=True)
    currency = models.CharField(max_length=3, default='USD')

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=PENDING)
    qualifies_at = models.DateTimeField()
    qualified_at = models.DateTimeField(null=True, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    reversed_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = CommissionQuerySet.as_manager()

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['assignment', 'status'], name='referrals_r_assignm_6f1c2e_idx'),
            models.Index(fields=['status', 'qualifies_at'], name='referrals_r_status_9b4d7a_idx'),
        ]

    def __str__(self):
        return f"{self.effective_amount} {self.currency} for {self.assignment.referral_code} ({self.status})"

    @property
    def effective_amount(self):
        if self.adjusted_amount is not None:
            return self.adjusted_amount
        return self.total_amount


class ReferralPayout(models.Model):
    """A payout attempt. ``amount`` is frozen at claim time."""

    PENDING = 'PENDING'
    PROCESSING = 'PROCESSING'
    COMPLETED = 'COMPLETED'
    FAILED = 'FAILED'
    STATUS_CHOICES = [
        (PENDING, 'Pending'),
        (PROCESSING, 'Processing'),
        (COMPLETED, 'Completed'),
        (FAILED, 'Failed'),
    ]
    OPEN_STATUSES = (PENDING, PROCESSING)
    TERMINAL_STATUSES = (COMPLETED, FAILED)

    assignment = models.ForeignKey(ReferralAssignment, on_delete=models.CASCADE, related_name='payouts')
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default='USD')
    method = models.CharField(max_length=20, choices=ReferralAssignment.PAYOUT_METHOD_CHOICES)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=PENDING)

    stripe_transfer_id = models.CharField(max_length=255, blank=True)
    reference = models.CharField(max_length=255, blank=True, help_text='Transaction ID or reference number')
    failure_reason = models.TextField(blank=True)
    notes = models.TextField(blank=True)
    processed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='processed_referral_payouts'
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    processed_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-created_at']
        verbose_name = 'Referral Payout'
        verbose_name_plural = 'Referral Payouts'

    def __str__(self):
        return f"{self.amount} {self.currency} to {self.assignment.user.email} ({self.status})"

    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES


class ReferralAuditLog(models.Model):
    """Append-only record of ledger actions. Rows are never updated or deleted."""

    PAYOUT_REQUESTED = 'PAYOUT_REQUESTED'
    PAYOUT_INITIATED = 'PAYOUT_INITIATED'
    PAYOUT_FAILED = 'PAYOUT_FAILED'
    PAYOUT_COMPLETED = 'PAYOUT_COMPLETED'
    COMMISSION_REVERSED = 'COMMISSION_REVERSED'
    COMMISSION_ADJUSTED = 'COMMISSION_ADJUSTED'
    REFUND_AFTER_PAYOUT = 'REFUND_AFTER_PAYOUT'
    CHARGEBACK_DETECTED = 'CHARGEBACK_DETECTED'
    ACTION_CHOICES = [
        (PAYOUT_REQUESTED, 'Payout requested'),
        (PAYOUT_INITIATED, 'Payout initiated'),
        (PAYOUT_FAILED, 'Payout failed'),
        (PAYOUT_COMPLETED, 'Payout completed'),
        (COMMISSION_REVERSED, 'Commission reversed'),
        (COMMISSION_ADJUSTED, 'Commission adjusted'),
        (REFUND_AFTER_PAYOUT, 'Refund after payout'),
        (CHARGEBACK_DETECTED, 'Chargeback detected'),
    ]

    SYSTEM = 'SYSTEM'

    action = models.CharField(max_length=40, choices=ACTION_CHOICES)
    actor = models.CharField(max_length=255, default=SYSTEM, help_text='SYSTEM or the acting user\'s email')
    assignment = models.ForeignKey(
        ReferralAssignment, on_delete=models.PROTECT, null=True, blank=True, related_name='audit_entries'
    )
    payout = models.ForeignKey(
        ReferralPayout, on_delete=models.PROTECT, null=True, blank=True, related_name='audit_entries'
    )
    commission = models.ForeignKey(
        ReferralCommission, on_delete=models.PROTECT, null=True, blank=True, related_name='audit_entries'
    )
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']
        verbose_name = 'Referral Audit Entry'
        verbose_name_plural = 'Referral Audit Log'

    def __str__(self):
        return f"{self.action} by {self.actor} at {self.created_at:%Y-%m-%d %H:%M}"

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise ValueError('Audit log entries cannot be modified')
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError('Audit log entries cannot be deleted')


class EarlyReversal(models.Model):
    """
    A refund or dispute received before any commission existed for its payment.

    Applied to the commission when the payment accrues one.
    """

    REFUND = 'REFUND'
    CHARGEBACK = 'CHARGEBACK'
    KIND_CHOICES = [
        (REFUND, 'Refund'),
        (CHARGEBACK, 'Chargeback'),
    ]

    stripe_payment_id = models.CharField(max_length=255, unique=True)
    kind = models.CharField(max_length=20, choices=KIND_CHOICES)
    refunded_cents = models.PositiveBigIntegerField(default=0, help_text='Cumulative refunded amount')
    is_full_refund = models.BooleanField(default=False)
    applied_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.kind} for {self.stripe_payment_id}"
