import itertools
from datetime import timedelta
from decimal import Decimal

import pytest
from django.db.models import F
from django.utils import timezone

from accounts.models import User
from referrals.config import DEFAULT_AFFILIATE_CONFIG, DEFAULT_CUSTOMER_CONFIG
from referrals.models import Referral, ReferralAssignment, ReferralCommission, ReferralProfile


@pytest.fixture
def affiliate_profile(db):
    return ReferralProfile.objects.create(
        name='Affiliate', type=ReferralProfile.AFFILIATE, config=DEFAULT_AFFILIATE_CONFIG
    )


@pytest.fixture
def customer_profile(db):
    return ReferralProfile.objects.create(
        name='Customer', type=ReferralProfile.CUSTOMER, config=DEFAULT_CUSTOMER_CONFIG
    )


@pytest.fixture
def affiliate(db):
    return User.objects.create_user(email='affiliate@example.com', password='s3cret-pass')


@pytest.fixture
def assignment(affiliate, affiliate_profile):
    return ReferralAssignment.objects.create(
        user=affiliate,
        profile=affiliate_profile,
        referral_code='CLAFF234',
        payout_method=ReferralAssignment.BANK_TRANSFER,
    )


@pytest.fixture
def referred_user(free_plan):
    return User.objects.create_user(
        email='referred@example.com', password='s3cret-pass', plan=free_plan, stripe_customer_id='cus_ref'
    )


@pytest.fixture
def referral(assignment, referred_user):
    return Referral.objects.create(
        assignment=assignment,
        referred_user=referred_user,
        referred_email=referred_user.email,
        status=Referral.REGISTERED,
        registered_at=timezone.now(),
    )


@pytest.fixture
def make_commission(assignment, referral):
    """Create a commission directly in the ledger, keeping total_earned consistent."""
    counter = itertools.count(1)

    def _make(amount, status=ReferralCommission.QUALIFIED, base_amount=None, payment_id=None, currency='USD'):
        amount = Decimal(amount)
        commission = ReferralCommission.objects.create(
            assignment=assignment,
            referral=referral,
            stripe_payment_id=payment_id or f'pi_test_{next(counter)}',
            base_amount=Decimal(base_amount) if base_amount is not None else amount * 10,
            commission_rate=Decimal('0.10'),
            total_amount=amount,
            currency=currency,
            status=status,
            qualifies_at=timezone.now() - timedelta(days=1),
            qualified_at=timezone.now() if status != ReferralCommission.PENDING else None,
        )
        if status in (ReferralCommission.QUALIFIED, ReferralCommission.PAID):
            ReferralAssignment.objects.filter(pk=assignment.pk).update(total_earned=F('total_earned') + amount)
        return commission

    return _make
