"""
Refunds and chargebacks against the commission ledger.
"""
from decimal import Decimal

import pytest

from referrals.models import EarlyReversal, Referral, ReferralAuditLog, ReferralCommission
from referrals.services.ledger_service import (
    handle_chargeback,
    handle_refund,
    pending_balance,
    qualified_balance,
)

pytestmark = pytest.mark.django_db


def audit_actions():
    return list(ReferralAuditLog.objects.order_by('pk').values_list('action', flat=True))


class TestBalances:

    def test_balances_by_status(self, assignment, make_commission):
        make_commission('10.00')
        make_commission('5.00', status=ReferralCommission.PENDING)
        make_commission('7.00', status=ReferralCommission.PAID)
        make_commission('3.00', status=ReferralCommission.REVERSED)

        assert qualified_balance(assignment) == Decimal('10.00')
        assert pending_balance(assignment) == Decimal('5.00')

    def test_adjusted_amount_counts(self, assignment, make_commission):
        commission = make_commission('10.00')
        commission.adjusted_amount = Decimal('4.00')
        commission.save()
        assert qualified_balance(assignment) == Decimal('4.00')


class TestFullRefund:

    def test_reverses_qualified_commission(self, assignment, referral, make_commission):
        make_commission('5.00', base_amount='50.00', payment_id='pi_1')

        commission = handle_refund('pi_1', 5000, True)

        assert commission.status == ReferralCommission.REVERSED
        assert commission.reversed_at is not None
        assignment.refresh_from_db()
        referral.refresh_from_db()
        assert assignment.total_earned == Decimal('0.00')
        assert referral.status == Referral.REFUNDED
        assert audit_actions() == [ReferralAuditLog.COMMISSION_REVERSED]

    def test_replay_is_noop(self, assignment, make_commission):
        make_commission('5.00', base_amount='50.00', payment_id='pi_1')

        handle_refund('pi_1', 5000, True)
        handle_refund('pi_1', 5000, True)

        assignment.refresh_from_db()
        assert assignment.total_earned == Decimal('0.00')
        assert len(audit_actions()) == 1

    def test_pending_commission_does_not_touch_earned(self, assignment, make_commission):
        make_commission('5.00', base_amount='50.00', payment_id='pi_1', status=ReferralCommission.PENDING)

        handle_refund('pi_1', 5000, True)

        assignment.refresh_from_db()
        assert assignment.total_earned == Decimal('0')
        assert ReferralCommission.objects.get().status == ReferralCommission.REVERSED

    def test_unknown_payment(self, db):
        assert handle_refund('pi_unknown', 100, True) is None

    def test_unknown_payment_is_kept_for_later(self, db):
        handle_refund('pi_unknown', 100, False)
        handle_refund('pi_unknown', 300, False)
        handle_chargeback('pi_unknown')

        reversal = EarlyReversal.objects.get(stripe_payment_id='pi_unknown')
        assert reversal.kind == EarlyReversal.CHARGEBACK
        assert reversal.refunded_cents == 300
        assert reversal.applied_at is None


class TestPartialRefund:

    def test_adjusts_proportionally(self, assignment, make_commission):
        make_commission('5.00', base_amount='50.00', payment_id='pi_1')

        commission = handle_refund('pi_1', 2500, False)

        assert commission.status == ReferralCommission.QUALIFIED
        assert commission.adjusted_amount == Decimal('2.50')
        assert commission.total_amount == Decimal('5.00')
        assignment.refresh_from_db()
        assert assignment.total_earned == Decimal('2.50')
        assert audit_actions() == [ReferralAuditLog.COMMISSION_ADJUSTED]

    def test_same_refund_twice_is_noop(self, assignment, make_commission):
        make_commission('5.00', base_amount='50.00', payment_id='pi_1')

        handle_refund('pi_1', 2500, False)
        handle_refund('pi_1', 2500, False)

        assignment.refresh_from_db()
        assert assignment.total_earned == Decimal('2.50')
        assert len(audit_actions()) == 1

    def test_cumulative_refunds(self, assignment, make_commission):
        make_commission('5.00', base_amount='50.00', payment_id='pi_1')

        handle_refund('pi_1', 2500, False)
        commission = handle_refund('pi_1', 4000, False)

        assert commission.adjusted_amount == Decimal('1.00')
        assignment.refresh_from_db()
        assert assignment.total_earned == Decimal('1.00')

    def test_refund_of_whole_amount_reverses(self, make_commission):
        make_commission('5.00', base_amount='50.00', payment_id='pi_1')
        commission = handle_refund('pi_1', 5000, False)
        assert commission.status == ReferralCommission.REVERSED


class TestRefundAfterPayout:

    def test_paid_commission_is_flagged_not_reversed(self, assignment, make_commission):
        make_commission('5.00', base_amount='50.00', payment_id='pi_1', status=ReferralCommission.PAID)

        commission = handle_refund('pi_1', 5000, True)

        assert commission.status == ReferralCommission.PAID
        assert commission.adjustment_reason == 'Refund after payout: FULL - 50.00'
        assignment.refresh_from_db()
        assert assignment.total_earned == Decimal('5.00')
        assert audit_actions() == [ReferralAuditLog.REFUND_AFTER_PAYOUT]

    def test_flag_written_once(self, make_commission):
        make_commission('5.00', base_amount='50.00', payment_id='pi_1', status=ReferralCommission.PAID)

        handle_refund('pi_1', 5000, True)
        handle_refund('pi_1', 5000, True)

        assert len(audit_actions()) == 1


class TestChargeback:

    def test_reverses_and_flags_referral(self, assignment, referral, make_commission):
        make_commission('5.00', payment_id='pi_1')

        commission = handle_chargeback('pi_1')

        assert commission.status == ReferralCommission.REVERSED
        assignment.refresh_from_db()
        referral.refresh_from_db()
        assert assignment.total_earned == Decimal('0.00')
        assert referral.status == Referral.FRAUDULENT
        assert audit_actions() == [ReferralAuditLog.CHARGEBACK_DETECTED]

    def test_replay_is_noop(self, assignment, make_commission):
        make_commission('5.00', payment_id='pi_1')

        handle_chargeback('pi_1')
        handle_chargeback('pi_1')

        assignment.refresh_from_db()
        assert assignment.total_earned == Decimal('0.00')
        assert len(audit_actions()) == 1

    def test_chargeback_on_paid_commission(self, assignment, make_commission):
        make_commission('5.00', payment_id='pi_1', status=ReferralCommission.PAID)

        commission = handle_chargeback('pi_1')

        assert commission.status == ReferralCommission.REVERSED
        entry = ReferralAuditLog.objects.get()
        assert entry.metadata['previous_status'] == ReferralCommission.PAID
        assert entry.metadata['amount'] == '5.00'
