"""
Referral codes, referral registration and commission accrual.
"""
import logging
import secrets
from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.db.models import F, Q
from django.utils import timezone

from referrals.config import FIXED, HYBRID, PERCENTAGE
from referrals.models import (
    Referral,
    ReferralAssignment,
    ReferralCommission,
    ReferralProfile,
)
from .ledger_service import apply_early_reversal, cents_to_money, to_money

logger = logging.getLogger(__name__)

# No 0/O or 1/I
CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
CODE_LENGTH = 6
MAX_CODE_ATTEMPTS = 10


def generate_referral_code(prefix=None):
    prefix = settings.REFERRAL_CODE_PREFIX if prefix is None else prefix
    return prefix + ''.join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def _unique_referral_code():
    code = generate_referral_code()
    for _ in range(MAX_CODE_ATTEMPTS):
        if not ReferralAssignment.objects.filter(referral_code=code).exists():
            return code
        code = generate_referral_code()
    raise RuntimeError('Could not generate a unique referral code')


def auto_assign_referral_code(user_id):
    """
    Give a paying customer their own referral code.

    Uses the active CUSTOMER profile. Returns the existing assignment when the
    account already has one, or None when no customer profile is configured.
    """
    existing = ReferralAssignment.objects.filter(user_id=user_id).first()
    if existing:
        return existing

    profile = ReferralProfile.objects.filter(type=ReferralProfile.CUSTOMER, is_active=True).first()
    if profile is None:
        logger.info("No active CUSTOMER profile found for auto-assignment")
        return None

    try:
        with transaction.atomic():
            assignment = ReferralAssignment.objects.create(
                user_id=user_id,
                profile=profile,
                referral_code=_unique_referral_code(),
                status=ReferralAssignment.ACTIVE,
            )
    except IntegrityError:
        # Concurrent delivery created it first
        return ReferralAssignment.objects.get(user_id=user_id)

    logger.info(f"Auto-assigned referral code {assignment.referral_code} to user {user_id}")
    return assignment


def find_active_assignment(code):
    if not code:
        return None
    return (
        ReferralAssignment.objects.select_related('profile', 'user')
        .filter(Q(referral_code=code) | Q(custom_slug=code), status=ReferralAssignment.ACTIVE)
        .first()
    )


def referral_code_for_account(account):
    """Code of the assignment that referred ``account``, if any."""
    referral = Referral.objects.select_related('assignment').filter(referred_user=account).first()
    return referral.assignment.public_code if referral else None


def register_referral(code, user, source=''):
    """
    Record that ``user`` signed up through ``code``.

    Returns the Referral, or None for an unknown code or a self-referral.
    """
    assignment = find_active_assignment(code)
    if assignment is None:
        logger.info(f"Invalid or inactive referral code {code}")
        return None
    if assignment.user_id == user.pk:
        logger.info(f"Self-referral rejected for user {user.pk}")
        return None

    existing = Referral.objects.filter(referred_user=user).first()
    if existing:
        return existing

    try:
        with transaction.atomic():
            referral = Referral.objects.create(
                assignment=assignment,
                referred_user=user,
                referred_email=user.email,
                status=Referral.REGISTERED,
                registered_at=timezone.now(),
                source=source,
            )
            ReferralAssignment.objects.filter(pk=assignment.pk).update(total_referrals=F('total_referrals') + 1)
    except IntegrityError:
        return Referral.objects.get(referred_user=user)

    logger.info(f"Referral {referral.pk} registered for user {user.pk} via {assignment.referral_code}")
    return referral


def compute_reward(config, base_amount, converted_count):
    """Return (reward, rate, fixed) for a payment of ``base_amount``."""
    rate = config.rate_for(converted_count)
    fixed = config.reward.fixed_amount or Decimal('0')
    reward_type = config.reward_type

    if reward_type == PERCENTAGE:
        return to_money(base_amount * rate), rate, Decimal('0')
    if reward_type == FIXED:
        return to_money(fixed), Decimal('0'), fixed
    if reward_type == HYBRID:
        return to_money(base_amount * rate + fixed), rate, fixed
    return Decimal('0'), rate, fixed


def _month_to_date_total(assignment, now):
    start_of_month = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return ReferralCommission.objects.filter(
        assignment=assignment,
        created_at__gte=start_of_month,
        status__in=[ReferralCommission.PENDING, ReferralCommission.QUALIFIED, ReferralCommission.PAID],
    ).total()


def calculate_commission(customer_id, payment_id, invoice_id, amount_cents, currency, referral_code=None, user=None):
    """
    Accrue a PENDING commission for a successful payment.

    Idempotent by ``payment_id``: a second call for the same payment returns
    the commission created by the first.

    Args:
        customer_id: Stripe customer of the paying account
        payment_id: Stripe PaymentIntent (or Charge) id
        invoice_id: Stripe invoice id, if any
        amount_cents: amount paid, in cents
        currency: ISO currency code
        referral_code: code from subscription metadata, used when no referral exists yet
        user: the paying account, when already known

    Returns:
        ReferralCommission or None when the payment earns nothing
    """
    existing = ReferralCommission.objects.filter(stripe_payment_id=payment_id).first()
    if existing:
        logger.info(f"Commission already exists for payment {payment_id}")
        return existing

    if user is None and customer_id:
        user = get_user_model().objects.filter(stripe_customer_id=customer_id).first()
    if user is None:
        logger.info(f"No user found for Stripe customer {customer_id}")
        return None

    referral = (
        Referral.objects.select_related('assignment__profile')
        .filter(referred_user=user, status__in=Referral.OPEN_STATUSES)
        .first()
    )
    if referral is None and referral_code:
        referral = register_referral(referral_code, user, source='STRIPE_WEBHOOK')
        if referral is not None and referral.status not in Referral.OPEN_STATUSES:
            referral = None
    if referral is None:
        return None

    assignment = referral.assignment
    if assignment.status != ReferralAssignment.ACTIVE:
        logger.info(f"Referral assignment {assignment.pk} not active")
        return None

    is_customer_profile = assignment.profile.type == ReferralProfile.CUSTOMER
    if is_customer_profile and referral.commissions.exists():
        # Customer referrals earn on the first payment only
        return None

    config = assignment.get_effective_config()
    now = timezone.now()
    base_amount = cents_to_money(amount_cents)
    reward, rate, fixed = compute_reward(config, base_amount, assignment.total_converted)

    cap = config.limits.max_monthly_commission
    if cap is not None:
        month_total = _month_to_date_total(assignment, now)
        if month_total + reward > cap:
            reward = max(to_money(cap - month_total), Decimal('0'))
    if reward <= 0:
        logger.info(f"No commission for payment {payment_id} (zero reward or monthly limit reached)")
        return None

    if is_customer_profile:
        qualifies_at = now
    else:
        qualifies_at = now + timedelta(days=config.grace_period_days)

    try:
        with transaction.atomic():
            commission = ReferralCommission.objects.create(
                assignment=assignment,
                referral=referral,
                stripe_payment_id=payment_id,
                stripe_invoice_id=invoice_id or '',
                base_amount=base_amount,
                commission_rate=rate,
                fixed_amount=fixed,
                total_amount=reward,
                currency=currency.upper(),
                status=ReferralCommission.PENDING,
                qualifies_at=qualifies_at,
            )
            converted = Referral.objects.filter(pk=referral.pk, status=Referral.REGISTERED).update(
                status=Referral.CONVERTED,
                converted_at=now,
            )
            if converted:
                ReferralAssignment.objects.filter(pk=assignment.pk).update(
                    total_converted=F('total_converted') + 1
                )
    except IntegrityError:
        return ReferralCommission.objects.get(stripe_payment_id=payment_id)

    logger.info(f"Commission {commission.pk} created: {reward} {commission.currency} for assignment {assignment.pk}")
    if apply_early_reversal(payment_id) is not None:
        commission.refresh_from_db()
    return commission


def qualify_commissions(now=None):
    """
    Promote PENDING commissions whose qualification time has passed.

    Commissions on refunded, fraudulent or cancelled referrals are reversed
    instead. Returns (qualified_count, reversed_count).
    """
    now = now or timezone.now()
    qualified_count = 0
    reversed_count = 0

    due = (
        ReferralCommission.objects.select_related('referral')
        .filter(status=ReferralCommission.PENDING, qualifies_at__lte=now)
        .order_by('qualifies_at')
    )

    for commission in due:
        with transaction.atomic():
            if commission.referral.status in Referral.CLOSED_STATUSES:
                updated = ReferralCommission.objects.filter(
                    pk=commission.pk, status=ReferralCommission.PENDING
                ).update(
                    status=ReferralCommission.REVERSED,
                    reversed_at=now,
                    adjustment_reason=f'Referral {commission.referral.status.lower()}',
                )
                reversed_count += updated
                continue

            updated = ReferralCommission.objects.filter(
                pk=commission.pk, status=ReferralCommission.PENDING
            ).update(status=ReferralCommission.QUALIFIED, qualified_at=now)
            if not updated:
                continue

            ReferralAssignment.objects.filter(pk=commission.assignment_id).update(
                total_earned=F('total_earned') + commission.effective_amount
            )
            Referral.objects.filter(pk=commission.referral_id, status=Referral.CONVERTED).update(
                status=Referral.QUALIFIED
            )
            qualified_count += 1

    if qualified_count or reversed_count:
        logger.info(f"Qualified {qualified_count} commissions, reversed {reversed_count}")
    return qualified_count, reversed_count
