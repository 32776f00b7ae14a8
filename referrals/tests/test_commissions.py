"""
Referral codes, referral registration, commission accrual and qualification.
"""
from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from accounts.models import User
from referrals.config import DEFAULT_AFFILIATE_CONFIG, FIXED, HYBRID, ProfileConfig
from referrals.models import EarlyReversal, Referral, ReferralAssignment, ReferralAuditLog, ReferralCommission
from referrals.services.commission_service import (
    CODE_ALPHABET,
    auto_assign_referral_code,
    calculate_commission,
    compute_reward,
    generate_referral_code,
    qualify_commissions,
    register_referral,
)
from referrals.services.ledger_service import handle_chargeback, handle_refund, qualified_balance

pytestmark = pytest.mark.django_db


def pay(payment_id='pi_1', amount_cents=5000, customer_id='cus_ref', **kwargs):
    return calculate_commission(
        customer_id=customer_id,
        payment_id=payment_id,
        invoice_id=f'in_{payment_id}',
        amount_cents=amount_cents,
        currency='usd',
        **kwargs
    )


class TestConfig:

    def test_override_merges_section_by_section(self):
        base = ProfileConfig.from_json(DEFAULT_AFFILIATE_CONFIG)
        override = ProfileConfig.from_json({'payout_settings': {'min_threshold': '100'}})

        merged = base.merged_with(override)

        assert merged.min_threshold == Decimal('100')
        assert merged.reward == base.reward
        assert merged.tiers == base.tiers
        assert merged.grace_period_days == 30

    def test_tier_selection(self):
        config = ProfileConfig.from_json(DEFAULT_AFFILIATE_CONFIG)
        assert config.rate_for(0) == Decimal('0.10')
        assert config.rate_for(4) == Decimal('0.10')
        assert config.rate_for(5) == Decimal('0.15')
        assert config.rate_for(250) == Decimal('0.20')

    def test_settings_fallbacks(self, settings):
        settings.REFERRAL_DEFAULT_MIN_PAYOUT = 250
        config = ProfileConfig.from_json({})
        assert config.min_threshold == Decimal('250')
        assert config.grace_period_days == 30

    def test_unknown_reward_type_rejected(self):
        with pytest.raises(ValueError):
            ProfileConfig.from_json({'reward': {'type': 'BARTER'}})

    def test_reward_types(self):
        fixed = ProfileConfig.from_json({'reward': {'type': FIXED, 'fixed_amount': '10'}})
        hybrid = ProfileConfig.from_json({'reward': {'type': HYBRID, 'percentage': '0.05', 'fixed_amount': '2'}})

        assert compute_reward(fixed, Decimal('99.00'), 0)[0] == Decimal('10.00')
        assert compute_reward(hybrid, Decimal('100.00'), 0)[0] == Decimal('7.00')


class TestReferralCodes:

    def test_code_format(self):
        code = generate_referral_code()
        assert code.startswith('CL')
        assert len(code) == 8
        assert all(ch in CODE_ALPHABET for ch in code[2:])

    def test_auto_assign_uses_customer_profile(self, customer_profile, user):
        assignment = auto_assign_referral_code(user.pk)

        assert assignment.profile == customer_profile
        assert assignment.status == ReferralAssignment.ACTIVE
        # Second call returns the same assignment
        assert auto_assign_referral_code(user.pk) == assignment

    def test_auto_assign_without_customer_profile(self, user):
        assert auto_assign_referral_code(user.pk) is None


class TestRegisterReferral:

    def test_registers_and_counts(self, assignment, user):
        referral = register_referral('CLAFF234', user, source='LINK')

        assert referral.status == Referral.REGISTERED
        assert referral.referred_email == user.email
        assignment.refresh_from_db()
        assert assignment.total_referrals == 1

    def test_custom_slug_works(self, assignment, user):
        assignment.custom_slug = 'jane-photo'
        assignment.save()
        assert register_referral('jane-photo', user) is not None

    def test_self_referral_rejected(self, assignment, affiliate):
        assert register_referral('CLAFF234', affiliate) is None
        assert Referral.objects.count() == 0

    def test_unknown_or_paused_code(self, assignment, user):
        assert register_referral('CLNOPE22', user) is None

        assignment.status = ReferralAssignment.PAUSED
        assignment.save()
        assert register_referral('CLAFF234', user) is None

    def test_second_registration_keeps_first(self, assignment, user):
        first = register_referral('CLAFF234', user)
        assert register_referral('CLAFF234', user) == first
        assignment.refresh_from_db()
        assert assignment.total_referrals == 1


class TestCalculateCommission:

    def test_percentage_commission(self, referral, assignment):
        commission = pay()

        assert commission.total_amount == Decimal('5.00')
        assert commission.commission_rate == Decimal('0.10')
        assert commission.base_amount == Decimal('50.00')
        assert commission.currency == 'USD'
        assert commission.status == ReferralCommission.PENDING
        assert commission.qualifies_at > timezone.now() + timedelta(days=29)

        referral.refresh_from_db()
        assignment.refresh_from_db()
        assert referral.status == Referral.CONVERTED
        assert assignment.total_converted == 1
        # Not earned until qualified
        assert assignment.total_earned == Decimal('0')

    def test_same_payment_is_idempotent(self, referral, assignment):
        first = pay()
        second = pay()

        assert first.pk == second.pk
        assert ReferralCommission.objects.count() == 1
        assignment.refresh_from_db()
        assert assignment.total_converted == 1

    def test_every_affiliate_payment_earns(self, referral):
        pay('pi_1')
        pay('pi_2')
        assert ReferralCommission.objects.count() == 2

    def test_tier_rate_applies(self, referral, assignment):
        ReferralAssignment.objects.filter(pk=assignment.pk).update(total_converted=5)
        commission = pay(amount_cents=10000)
        assert commission.total_amount == Decimal('15.00')

    def test_monthly_cap(self, referral, assignment):
        assignment.config_override = {'limits': {'max_monthly_commission': '8'}}
        assignment.save()

        assert pay('pi_1').total_amount == Decimal('5.00')
        assert pay('pi_2').total_amount == Decimal('3.00')
        assert pay('pi_3') is None

    def test_no_referral_no_commission(self, user):
        user.stripe_customer_id = 'cus_plain'
        user.save()
        assert pay(customer_id='cus_plain') is None

    def test_referral_code_from_metadata_registers(self, assignment, referred_user):
        commission = pay(referral_code='CLAFF234')

        assert commission is not None
        assert Referral.objects.get(referred_user=referred_user).source == 'STRIPE_WEBHOOK'

    def test_closed_referral_earns_nothing(self, referral):
        referral.status = Referral.FRAUDULENT
        referral.save()
        assert pay() is None

    def test_customer_profile_first_payment_only(self, customer_profile, referred_user):
        referrer = User.objects.create_user(email='customer@example.com', password='s3cret-pass')
        customer_assignment = ReferralAssignment.objects.create(
            user=referrer, profile=customer_profile, referral_code='CLCUS234'
        )
        register_referral('CLCUS234', referred_user)

        first = pay('pi_1', amount_cents=1200)
        assert first.total_amount == Decimal('10.00')
        assert first.assignment == customer_assignment
        assert first.qualifies_at <= timezone.now()

        assert pay('pi_2', amount_cents=1200) is None


class TestQualification:

    def test_due_commission_qualifies(self, referral, assignment, make_commission):
        referral.status = Referral.CONVERTED
        referral.save()
        commission = make_commission('20.00', status=ReferralCommission.PENDING)

        assert qualify_commissions() == (1, 0)

        commission.refresh_from_db()
        assignment.refresh_from_db()
        referral.refresh_from_db()
        assert commission.status == ReferralCommission.QUALIFIED
        assert commission.qualified_at is not None
        assert assignment.total_earned == Decimal('20.00')
        assert referral.status == Referral.QUALIFIED

    def test_commission_in_grace_period_waits(self, referral):
        commission = pay()

        assert qualify_commissions() == (0, 0)
        commission.refresh_from_db()
        assert commission.status == ReferralCommission.PENDING

        assert qualify_commissions(now=timezone.now() + timedelta(days=31)) == (1, 0)

    def test_closed_referral_commission_reversed(self, referral, assignment, make_commission):
        referral.status = Referral.REFUNDED
        referral.save()
        commission = make_commission('20.00', status=ReferralCommission.PENDING)

        assert qualify_commissions() == (0, 1)

        commission.refresh_from_db()
        assignment.refresh_from_db()
        assert commission.status == ReferralCommission.REVERSED
        assert assignment.total_earned == Decimal('0')

    def test_running_twice_is_harmless(self, referral, assignment, make_commission):
        make_commission('20.00', status=ReferralCommission.PENDING)

        qualify_commissions()
        assert qualify_commissions() == (0, 0)
        assignment.refresh_from_db()
        assert assignment.total_earned == Decimal('20.00')


class TestRefundBeforePayment:
    """Refund and dispute events can arrive before the payment's invoice event."""

    def test_full_refund_reverses_new_commission(self, referral, assignment):
        handle_refund('pi_1', 5000, True)

        commission = pay()

        assert commission.status == ReferralCommission.REVERSED
        assert qualify_commissions(now=timezone.now() + timedelta(days=365)) == (0, 0)
        assert qualified_balance(assignment) == Decimal('0')
        referral.refresh_from_db()
        assert referral.status == Referral.REFUNDED
        assert EarlyReversal.objects.get(stripe_payment_id='pi_1').applied_at is not None

    def test_partial_refund_adjusts_new_commission(self, referral, assignment):
        handle_refund('pi_1', 2500, False)

        commission = pay()

        assert commission.status == ReferralCommission.PENDING
        assert commission.adjusted_amount == Decimal('2.50')
        qualify_commissions(now=timezone.now() + timedelta(days=31))
        assert qualified_balance(assignment) == Decimal('2.50')

    def test_chargeback_reverses_new_commission(self, referral, assignment):
        handle_chargeback('pi_1')

        commission = pay()

        assert commission.status == ReferralCommission.REVERSED
        referral.refresh_from_db()
        assert referral.status == Referral.FRAUDULENT

    def test_applied_once(self, referral, assignment):
        handle_refund('pi_1', 2500, False)
        first = pay()
        second = pay()

        assert first.pk == second.pk
        assert ReferralAuditLog.objects.filter(action=ReferralAuditLog.COMMISSION_ADJUSTED).count() == 1
