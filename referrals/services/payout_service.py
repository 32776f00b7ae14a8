"""
Payout requests and settlement.

A payout claims every qualified, unclaimed commission of an affiliate in one
transaction. If the Stripe transfer that follows fails, the payout is marked
FAILED and every claimed commission is released again.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import stripe
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from accounts.services.stripe_gateway import get_gateway
from referrals.models import (
    ReferralAssignment,
    ReferralAuditLog,
    ReferralCommission,
    ReferralPayout,
    ReferralProfile,
)
from .ledger_service import pending_balance, qualified_balance, record_audit

logger = logging.getLogger(__name__)


class PayoutError(Exception):
    """A payout request or settlement was rejected before anything changed."""

    def __init__(self, code, message, balance=None, threshold=None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.balance = balance
        self.threshold = threshold


@dataclass
class PayoutOutcome:
    payout: ReferralPayout
    transfer_error: Optional[str] = None

    @property
    def failed(self):
        return self.transfer_error is not None


def get_affiliate_assignment(account_id):
    return (
        ReferralAssignment.objects.select_related('profile', 'user')
        .filter(
            user_id=account_id,
            status=ReferralAssignment.ACTIVE,
            profile__type=ReferralProfile.AFFILIATE,
        )
        .first()
    )


def payout_summary(assignment):
    """Balances and recent payouts shown on the affiliate dashboard."""
    available = qualified_balance(assignment)
    threshold = assignment.get_effective_config().min_threshold
    return {
        'available_balance': available,
        'pending_balance': pending_balance(assignment),
        'total_earned': assignment.total_earned,
        'total_paid': assignment.total_paid,
        'payout_method': assignment.payout_method,
        'min_threshold': threshold,
        'can_request_payout': available > 0 and available >= threshold,
        'recent_payouts': list(assignment.payouts.order_by('-created_at')[:10]),
    }


def _amount_in_cents(amount):
    return int((amount * 100).to_integral_value())


class PayoutService:
    """Claims commissions into payouts and moves money through Stripe Connect."""

    def __init__(self, gateway=None):
        self.gateway = gateway or get_gateway()

    def request_payout(self, account_id) -> PayoutOutcome:
        """
        Request a payout of the account's whole available balance.

        Raises:
            PayoutError: no_program, nothing_to_pay_out, below_threshold or
                claim_conflict; nothing is written in any of these cases
        """
        assignment = get_affiliate_assignment(account_id)
        if assignment is None:
            raise PayoutError('no_program', 'You are not enrolled in the affiliate program')

        with transaction.atomic():
            locked = ReferralAssignment.objects.select_for_update().select_related('profile').get(pk=assignment.pk)
            threshold = locked.get_effective_config().min_threshold

            commissions = list(
                ReferralCommission.objects.select_for_update()
                .filter(assignment=locked)
                .available()
                .order_by('created_at')
            )
            if not commissions:
                raise PayoutError(
                    'nothing_to_pay_out', 'No qualified commissions to pay out',
                    balance=Decimal('0'), threshold=threshold,
                )

            balance = sum((c.effective_amount for c in commissions), Decimal('0'))
            if balance < threshold:
                raise PayoutError(
                    'below_threshold', f'Minimum payout is {threshold}',
                    balance=balance, threshold=threshold,
                )

            payout = ReferralPayout.objects.create(
                assignment=locked,
                amount=balance,
                currency=commissions[0].currency,
                method=locked.payout_method,
                status=ReferralPayout.PENDING,
            )
            ids = [c.pk for c in commissions]
            claimed = ReferralCommission.objects.filter(
                pk__in=ids,
                payout__isnull=True,
                status=ReferralCommission.QUALIFIED,
            ).update(payout=payout)
            if claimed != len(ids):
                logger.warning(f"Claim conflict for assignment {locked.pk}: {claimed}/{len(ids)} commissions claimed")
                raise PayoutError('claim_conflict', 'Balance changed while requesting payout, please retry')

        logger.info(f"Payout {payout.pk} created for assignment {assignment.pk}: {balance} {payout.currency}")

        if assignment.payout_method == ReferralAssignment.STRIPE_CONNECT and assignment.stripe_connect_id:
            return self._transfer(payout, assignment)

        record_audit(
            ReferralAuditLog.PAYOUT_REQUESTED,
            actor=assignment.user.email,
            assignment=assignment,
            payout=payout,
            amount=payout.amount,
            method=payout.method,
            commission_count=len(ids),
        )
        return PayoutOutcome(payout)

    def _transfer(self, payout, assignment):
        try:
            transfer = self.gateway.create_transfer(
                amount_cents=_amount_in_cents(payout.amount),
                currency=payout.currency,
                destination=assignment.stripe_connect_id,
                metadata={'payout_id': str(payout.pk), 'assignment_id': str(assignment.pk)},
            )
        except stripe.StripeError as e:
            logger.error(f"Transfer for payout {payout.pk} failed: {str(e)}")
            self._fail_payout(payout, str(e) or e.__class__.__name__)
            payout.refresh_from_db()
            return PayoutOutcome(payout, transfer_error=payout.failure_reason)

        ReferralPayout.objects.filter(pk=payout.pk, status=ReferralPayout.PENDING).update(
            status=ReferralPayout.PROCESSING,
            stripe_transfer_id=transfer['id'],
            processed_at=timezone.now(),
            updated_at=timezone.now(),
        )
        payout.refresh_from_db()
        record_audit(
            ReferralAuditLog.PAYOUT_INITIATED,
            assignment=assignment,
            payout=payout,
            amount=payout.amount,
            transfer_id=transfer['id'],
        )
        logger.info(f"Payout {payout.pk} processing, transfer {transfer['id']}")
        return PayoutOutcome(payout)

    def _fail_payout(self, payout, reason, actor=ReferralAuditLog.SYSTEM, processed_by=None):
        """Mark a payout FAILED and release every commission it claimed."""
        now = timezone.now()
        with transaction.atomic():
            ReferralPayout.objects.filter(pk=payout.pk).update(
                status=ReferralPayout.FAILED,
                failure_reason=reason,
                failed_at=now,
                processed_at=now,
                processed_by=processed_by,
                updated_at=now,
            )
            released = ReferralCommission.objects.filter(payout_id=payout.pk).update(payout=None)
            record_audit(
                ReferralAuditLog.PAYOUT_FAILED,
                actor=actor,
                assignment=payout.assignment,
                payout=payout,
                reason=reason,
                released_commissions=released,
            )
        logger.warning(f"Payout {payout.pk} failed, {released} commissions released: {reason}")

    def settle_payout(self, payout_id, status, actor_user=None, reference='', reason=''):
        """
        Move an open payout to COMPLETED or FAILED.

        Repeating the transition a payout already made is a no-op; any other
        change to a settled payout is rejected.
        """
        if status not in ReferralPayout.TERMINAL_STATUSES:
            raise PayoutError('invalid_status', f'Cannot settle a payout as {status}')

        actor = actor_user.email if actor_user else ReferralAuditLog.SYSTEM

        with transaction.atomic():
            payout = (
                ReferralPayout.objects.select_for_update()
                .select_related('assignment')
                .filter(pk=payout_id)
                .first()
            )
            if payout is None:
                raise PayoutError('not_found', 'Payout not found')
            if payout.status == status:
                return payout
            if payout.is_terminal():
                raise PayoutError('already_settled', f'Payout is already {payout.status}')

            if status == ReferralPayout.FAILED:
                self._fail_payout(payout, reason or 'Marked failed by operator', actor=actor, processed_by=actor_user)
                payout.refresh_from_db()
                return payout

            now = timezone.now()
            payout.status = ReferralPayout.COMPLETED
            payout.completed_at = now
            payout.processed_at = payout.processed_at or now
            payout.processed_by = actor_user
            if reference:
                payout.reference = reference
            payout.save(update_fields=['status', 'completed_at', 'processed_at', 'processed_by', 'reference', 'updated_at'])

            paid = ReferralCommission.objects.filter(
                payout=payout, status=ReferralCommission.QUALIFIED
            ).update(status=ReferralCommission.PAID, paid_at=now)
            reversed_share = ReferralCommission.objects.filter(
                payout=payout, status=ReferralCommission.REVERSED
            )
            reversed_count = reversed_share.count()
            reversed_amount = reversed_share.total()
            ReferralAssignment.objects.filter(pk=payout.assignment_id).update(
                total_paid=F('total_paid') + payout.amount
            )
            record_audit(
                ReferralAuditLog.PAYOUT_COMPLETED,
                actor=actor,
                assignment=payout.assignment,
                payout=payout,
                amount=payout.amount,
                reference=payout.reference,
                paid_commissions=paid,
                reversed_commissions=reversed_count,
                reversed_amount=reversed_amount,
            )

        if reversed_count:
            logger.warning(
                f"Payout {payout.pk} completed with {reversed_count} reversed commissions "
                f"({reversed_amount}), needs operator review"
            )
        logger.info(f"Payout {payout.pk} completed by {actor}")
        return payout
