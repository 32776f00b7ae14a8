"""
Referral commission ledger: balances, reversals and the audit trail.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from referrals.models import (
    EarlyReversal,
    Referral,
    ReferralAssignment,
    ReferralAuditLog,
    ReferralCommission,
)

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')


def to_money(value):
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def cents_to_money(cents):
    return to_money(Decimal(int(cents)) / 100)


def _jsonable(value):
    if isinstance(value, Decimal):
        return str(value)
    return value


def record_audit(action, actor=ReferralAuditLog.SYSTEM, assignment=None, payout=None, commission=None, **metadata):
    """Append an entry to the audit log."""
    return ReferralAuditLog.objects.create(
        action=action,
        actor=actor,
        assignment=assignment,
        payout=payout,
        commission=commission,
        metadata={key: _jsonable(value) for key, value in metadata.items()},
    )


def qualified_balance(assignment):
    """Sum of QUALIFIED commissions not claimed by any payout."""
    return ReferralCommission.objects.filter(assignment=assignment).available().total()


def pending_balance(assignment):
    """Sum of commissions still inside their qualification window."""
    return ReferralCommission.objects.filter(
        assignment=assignment, status=ReferralCommission.PENDING
    ).total()


def reverse_commission(commission, reason, action=ReferralAuditLog.COMMISSION_REVERSED, actor=ReferralAuditLog.SYSTEM):
    """
    Mark a commission REVERSED, keeping the row.

    If the commission had already been counted in ``total_earned`` the
    counter is decremented by its effective amount.
    """
    was_earned = commission.status in (ReferralCommission.QUALIFIED, ReferralCommission.PAID)
    previous_status = commission.status
    amount = commission.effective_amount

    commission.status = ReferralCommission.REVERSED
    commission.reversed_at = timezone.now()
    commission.adjustment_reason = reason
    commission.save(update_fields=['status', 'reversed_at', 'adjustment_reason', 'updated_at'])

    if was_earned:
        ReferralAssignment.objects.filter(pk=commission.assignment_id).update(
            total_earned=F('total_earned') - amount
        )

    record_audit(
        action,
        actor=actor,
        assignment=commission.assignment,
        commission=commission,
        payout=commission.payout,
        reason=reason,
        amount=amount,
        previous_status=previous_status,
    )
    logger.info(f"Commission {commission.pk} reversed ({reason}), previous status {previous_status}")


def handle_refund(payment_id, refunded_cents, is_full_refund):
    """
    Apply a refund of ``payment_id`` to its commission.

    ``refunded_cents`` is the cumulative refunded amount, so applying the same
    refund twice leaves the ledger unchanged.
    """
    with transaction.atomic():
        commission = (
            ReferralCommission.objects.select_for_update()
            .select_related('assignment', 'referral')
            .filter(stripe_payment_id=payment_id)
            .first()
        )
        if commission is None:
            _record_early_reversal(
                payment_id, EarlyReversal.REFUND, refunded_cents=refunded_cents, is_full_refund=is_full_refund
            )
            return None

        if commission.status == ReferralCommission.REVERSED:
            return commission

        refunded = cents_to_money(refunded_cents)
        kind = 'FULL' if is_full_refund else 'PARTIAL'

        if commission.status == ReferralCommission.PAID:
            reason = f'Refund after payout: {kind} - {refunded}'
            if commission.adjustment_reason != reason:
                commission.adjustment_reason = reason
                commission.save(update_fields=['adjustment_reason', 'updated_at'])
                record_audit(
                    ReferralAuditLog.REFUND_AFTER_PAYOUT,
                    assignment=commission.assignment,
                    commission=commission,
                    payout=commission.payout,
                    refunded=refunded,
                    full_refund=is_full_refund,
                )
                logger.warning(f"Refund on paid commission {commission.pk}, flagged for review")
            return commission

        if is_full_refund or refunded >= commission.base_amount:
            reverse_commission(commission, 'Full refund')
            Referral.objects.filter(pk=commission.referral_id).update(
                status=Referral.REFUNDED,
                cancelled_at=timezone.now(),
            )
            return commission

        ratio = refunded / commission.base_amount if commission.base_amount else Decimal('1')
        adjusted = max(to_money(commission.total_amount * (1 - ratio)), Decimal('0'))
        if commission.adjusted_amount == adjusted:
            return commission

        previous = commission.effective_amount
        commission.adjusted_amount = adjusted
        commission.adjustment_reason = f'Partial refund: {refunded}'
        commission.save(update_fields=['adjusted_amount', 'adjustment_reason', 'updated_at'])

        if commission.status == ReferralCommission.QUALIFIED:
            ReferralAssignment.objects.filter(pk=commission.assignment_id).update(
                total_earned=F('total_earned') + (adjusted - previous)
            )

        record_audit(
            ReferralAuditLog.COMMISSION_ADJUSTED,
            assignment=commission.assignment,
            commission=commission,
            previous_amount=previous,
            adjusted_amount=adjusted,
            refunded=refunded,
        )
        logger.info(f"Commission {commission.pk} adjusted from {previous} to {adjusted}")
        return commission


def handle_chargeback(payment_id):
    """Reverse the commission for a disputed payment and flag the referral."""
    with transaction.atomic():
        commission = (
            ReferralCommission.objects.select_for_update()
            .select_related('assignment', 'referral')
            .filter(stripe_payment_id=payment_id)
            .first()
        )
        if commission is None:
            _record_early_reversal(payment_id, EarlyReversal.CHARGEBACK)
            return None

        if commission.status != ReferralCommission.REVERSED:
            reverse_commission(commission, 'Chargeback', action=ReferralAuditLog.CHARGEBACK_DETECTED)
            logger.warning(f"Chargeback on payment {payment_id}, commission {commission.pk} reversed")

        Referral.objects.filter(pk=commission.referral_id).exclude(status=Referral.FRAUDULENT).update(
            status=Referral.FRAUDULENT,
            cancelled_at=timezone.now(),
        )
        return commission


def _record_early_reversal(payment_id, kind, refunded_cents=0, is_full_refund=False):
    """Keep a refund or dispute whose payment has no commission yet. A chargeback outranks a refund."""
    reversal, created = EarlyReversal.objects.select_for_update().get_or_create(
        stripe_payment_id=payment_id,
        defaults={'kind': kind, 'refunded_cents': refunded_cents, 'is_full_refund': is_full_refund},
    )
    if not created:
        if kind == EarlyReversal.CHARGEBACK:
            reversal.kind = EarlyReversal.CHARGEBACK
        reversal.refunded_cents = max(reversal.refunded_cents, refunded_cents)
        reversal.is_full_refund = reversal.is_full_refund or is_full_refund
        reversal.save(update_fields=['kind', 'refunded_cents', 'is_full_refund', 'updated_at'])
    logger.info(f"No commission for payment {payment_id} yet, {reversal.kind.lower()} kept for later")
    return reversal


def apply_early_reversal(payment_id):
    """
    Apply a refund or dispute that arrived before the commission for ``payment_id``.

    Returns the commission when something was applied, else None.
    """
    reversal = EarlyReversal.objects.filter(stripe_payment_id=payment_id, applied_at__isnull=True).first()
    if reversal is None:
        return None

    if reversal.kind == EarlyReversal.CHARGEBACK:
        commission = handle_chargeback(payment_id)
    else:
        commission = handle_refund(payment_id, reversal.refunded_cents, reversal.is_full_refund)

    if commission is not None:
        EarlyReversal.objects.filter(pk=reversal.pk).update(applied_at=timezone.now())
        logger.info(f"Applied early {reversal.kind.lower()} to commission {commission.pk}")
    return commission
