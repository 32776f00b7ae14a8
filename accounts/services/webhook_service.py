"""
Stripe webhook reconciliation.

Incoming events are verified, parsed into one of a closed set of event
variants, and dispatched to a handler. Every handler is safe to run more than
once for the same event and converges regardless of delivery order.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import stripe
from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from ..models import Plan, User
from .stripe_gateway import (
    get_gateway,
    invoice_subscription_id,
    subscription_period_end,
    subscription_price_id,
    timestamp_to_datetime,
)

logger = logging.getLogger(__name__)

ENDED_STATUSES = ('canceled', 'incomplete_expired')


class WebhookError(Exception):
    """The event is not authentic or lacks data it must carry. Maps to HTTP 400."""


# Event variants

@dataclass(frozen=True)
class CheckoutCompleted:
    event_id: str
    session_id: str
    subscription_id: str
    user_id: int
    plan_id: Optional[int] = None


@dataclass(frozen=True)
class InvoicePaymentSucceeded:
    event_id: str
    invoice_id: str
    subscription_id: Optional[str]
    customer_id: Optional[str]
    payment_id: Optional[str]
    amount_paid: int
    currency: str
    billing_reason: Optional[str] = None


@dataclass(frozen=True)
class ChargeRefunded:
    event_id: str
    charge_id: str
    payment_id: str
    amount_refunded: int
    is_full_refund: bool


@dataclass(frozen=True)
class DisputeCreated:
    event_id: str
    dispute_id: str
    charge_id: Optional[str]
    payment_id: Optional[str]


@dataclass(frozen=True)
class SubscriptionDeleted:
    event_id: str
    subscription_id: str


@dataclass(frozen=True)
class Ignored:
    event_id: str
    event_type: str


EVENT_VARIANTS = (
    CheckoutCompleted,
    InvoicePaymentSucceeded,
    ChargeRefunded,
    DisputeCreated,
    SubscriptionDeleted,
    Ignored,
)


def _parse_int(value, field_name, required=False):
    if value in (None, ''):
        if required:
            raise WebhookError(f'{field_name} missing in metadata')
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise WebhookError(f'{field_name} is not a valid id: {value!r}')


def _object_id(value):
    if isinstance(value, dict):
        return value.get('id')
    return value


def _invoice_payment_id(invoice):
    payment_id = _object_id(invoice.get('payment_intent')) or _object_id(invoice.get('charge'))
    if payment_id:
        return payment_id
    for payment in (invoice.get('payments') or {}).get('data') or []:
        details = payment.get('payment') or {}
        payment_id = _object_id(details.get('payment_intent')) or _object_id(details.get('charge'))
        if payment_id:
            return payment_id
    return None


def parse_event(event: dict):
    """Turn a verified Stripe event dict into an event variant."""
    event_id = event.get('id', '')
    event_type = event.get('type', '')
    obj = (event.get('data') or {}).get('object') or {}

    if event_type == 'checkout.session.completed':
        metadata = obj.get('metadata') or {}
        subscription_id = _object_id(obj.get('subscription'))
        user_id = _parse_int(metadata.get('user_id'), 'user_id', required=True)
        if not subscription_id:
            raise WebhookError('Subscription id missing')
        return CheckoutCompleted(
            event_id=event_id,
            session_id=obj.get('id', ''),
            subscription_id=subscription_id,
            user_id=user_id,
            plan_id=_parse_int(metadata.get('plan_id'), 'plan_id'),
        )

    if event_type == 'invoice.payment_succeeded':
        return InvoicePaymentSucceeded(
            event_id=event_id,
            invoice_id=obj.get('id', ''),
            subscription_id=invoice_subscription_id(obj),
            customer_id=_object_id(obj.get('customer')),
            payment_id=_invoice_payment_id(obj),
            amount_paid=obj.get('amount_paid') or 0,
            currency=obj.get('currency') or 'usd',
            billing_reason=obj.get('billing_reason'),
        )

    if event_type == 'charge.refunded':
        return ChargeRefunded(
            event_id=event_id,
            charge_id=obj.get('id', ''),
            payment_id=_object_id(obj.get('payment_intent')) or obj.get('id', ''),
            amount_refunded=obj.get('amount_refunded') or 0,
            is_full_refund=bool(obj.get('refunded')),
        )

    if event_type == 'charge.dispute.created':
        return DisputeCreated(
            event_id=event_id,
            dispute_id=obj.get('id', ''),
            charge_id=_object_id(obj.get('charge')),
            payment_id=_object_id(obj.get('payment_intent')),
        )

    if event_type == 'customer.subscription.deleted':
        return SubscriptionDeleted(event_id=event_id, subscription_id=obj.get('id', ''))

    return Ignored(event_id=event_id, event_type=event_type)


class WebhookService:
    """Applies Stripe events to accounts and the referral ledger."""

    def __init__(self, gateway=None):
        self.gateway = gateway or get_gateway()
        self.handlers = {
            CheckoutCompleted: self.handle_checkout_completed,
            InvoicePaymentSucceeded: self.handle_invoice_payment_succeeded,
            ChargeRefunded: self.handle_charge_refunded,
            DisputeCreated: self.handle_dispute_created,
            SubscriptionDeleted: self.handle_subscription_deleted,
            Ignored: self.handle_ignored,
        }

    def process(self, payload: bytes, sig_header: str):
        """
        Verify and apply one webhook delivery.

        Raises:
            WebhookError: signature invalid, payload malformed, or required data missing
        """
        try:
            event = self.gateway.verify_webhook(payload, sig_header)
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Webhook signature verification failed: {str(e)}")
            raise WebhookError('Invalid signature')
        except ValueError:
            logger.warning("Webhook payload is not valid JSON")
            raise WebhookError('Invalid payload')

        logger.info(f"Received Stripe event {event.get('id')} ({event.get('type')})")
        return self.dispatch(parse_event(event))

    def dispatch(self, variant):
        return self.handlers[type(variant)](variant)

    # Handlers

    def handle_ignored(self, event: Ignored):
        logger.debug(f"Ignoring Stripe event {event.event_id} ({event.event_type})")

    def _plan_for(self, plan_id, price_id):
        """The plan billed by ``price_id`` wins over the plan named in checkout metadata."""
        if price_id:
            plan = Plan.objects.filter(
                Q(stripe_price_id_monthly=price_id) | Q(stripe_price_id_yearly=price_id)
            ).first()
            if plan is not None:
                if plan_id and plan.pk != plan_id:
                    logger.info(f"Checkout plan {plan_id} superseded by plan {plan.pk} billed at {price_id}")
                return plan
        if plan_id:
            return Plan.objects.filter(pk=plan_id).first()
        return None

    def _reset_to_free(self, accounts):
        free_plan = Plan.objects.filter(name=settings.FREE_PLAN_NAME).first()
        if free_plan is None:
            logger.warning(f"No '{settings.FREE_PLAN_NAME}' plan configured; cancelled accounts keep no plan")
        return accounts.update(
            plan=free_plan,
            stripe_subscription_id=None,
            stripe_price_id=None,
            stripe_current_period_end=None,
            scheduled_plan=None,
        )

    def handle_checkout_completed(self, event: CheckoutCompleted):
        from referrals.services.commission_service import auto_assign_referral_code

        subscription = self.gateway.retrieve_subscription(event.subscription_id)

        if subscription.get('status') in ENDED_STATUSES:
            # Only an account still on this subscription (or on none) ends up free
            updated = self._reset_to_free(
                User.objects.filter(pk=event.user_id).filter(
                    Q(stripe_subscription_id__isnull=True)
                    | Q(stripe_subscription_id='')
                    | Q(stripe_subscription_id=event.subscription_id)
                )
            )
            logger.info(
                f"Checkout {event.session_id} subscription {event.subscription_id} already "
                f"{subscription.get('status')}, {updated} account reset to free"
            )
            return

        price_id = subscription_price_id(subscription)

        period_end = subscription_period_end(subscription) or timestamp_to_datetime(subscription.get('ended_at'))
        if period_end is None:
            existing = User.objects.filter(
                pk=event.user_id, stripe_subscription_id=event.subscription_id
            ).values_list('stripe_current_period_end', flat=True).first()
            period_end = existing or timezone.now() + timedelta(days=settings.CHECKOUT_PERIOD_FALLBACK_DAYS)

        linked = (
            User.objects.select_related('plan')
            .filter(pk=event.user_id, stripe_subscription_id=event.subscription_id)
            .first()
        )
        if linked is not None:
            # Later upgrades and scheduled downgrades own the plan from here on
            User.objects.filter(pk=linked.pk).update(stripe_current_period_end=period_end)
            logger.info(f"Checkout {event.session_id} already applied to user {linked.pk}, period end refreshed")
            if linked.plan is not None and not linked.plan.is_free:
                auto_assign_referral_code(linked.pk)
            return

        plan = self._plan_for(event.plan_id, price_id)
        if plan is None:
            logger.error(f"No plan found for checkout {event.session_id} (plan_id={event.plan_id}, price={price_id})")
            return

        updated = User.objects.filter(pk=event.user_id).update(
            stripe_subscription_id=event.subscription_id,
            stripe_customer_id=_object_id(subscription.get('customer')),
            stripe_price_id=price_id,
            stripe_current_period_end=period_end,
            plan=plan,
            scheduled_plan=None,
        )
        if not updated:
            logger.error(f"Checkout {event.session_id} references unknown user {event.user_id}")
            return

        logger.info(f"User {event.user_id} subscribed to plan {plan.name} ({event.subscription_id})")

        if not plan.is_free:
            auto_assign_referral_code(event.user_id)

    def handle_invoice_payment_succeeded(self, event: InvoicePaymentSucceeded):
        from referrals.services.commission_service import calculate_commission

        if not event.subscription_id:
            logger.info(f"Invoice {event.invoice_id} has no subscription, skipping")
            return

        subscription = self.gateway.retrieve_subscription(event.subscription_id)
        metadata = subscription.get('metadata') or {}

        period_end = subscription_period_end(subscription)
        if period_end:
            User.objects.filter(stripe_subscription_id=event.subscription_id).update(
                stripe_current_period_end=period_end
            )
            logger.info(f"Updated period end for subscription {event.subscription_id}")

        account = User.objects.filter(stripe_subscription_id=event.subscription_id).first()
        if account is None and metadata.get('user_id', '').isdigit():
            account = User.objects.filter(pk=int(metadata['user_id'])).first()

        if account is not None and event.billing_reason == 'subscription_cycle':
            self._apply_scheduled_plan(account, subscription)

        if event.payment_id and event.amount_paid > 0:
            calculate_commission(
                customer_id=event.customer_id,
                payment_id=event.payment_id,
                invoice_id=event.invoice_id,
                amount_cents=event.amount_paid,
                currency=event.currency,
                referral_code=metadata.get('referral_code') or None,
                user=account,
            )

    def _apply_scheduled_plan(self, account, subscription):
        target = account.scheduled_plan
        if target is None:
            scheduled_id = (subscription.get('metadata') or {}).get('scheduled_plan_id')
            if scheduled_id and scheduled_id.isdigit() and int(scheduled_id) != account.plan_id:
                target = Plan.objects.filter(pk=int(scheduled_id)).first()
        if target is None:
            return

        User.objects.filter(pk=account.pk).update(
            plan=target,
            stripe_price_id=subscription_price_id(subscription) or account.stripe_price_id,
            scheduled_plan=None,
        )
        logger.info(f"Activated scheduled plan {target.name} for user {account.pk}")

    def handle_charge_refunded(self, event: ChargeRefunded):
        from referrals.services.ledger_service import handle_refund

        handle_refund(event.payment_id, event.amount_refunded, event.is_full_refund)

    def handle_dispute_created(self, event: DisputeCreated):
        from referrals.services.ledger_service import handle_chargeback

        payment_id = event.payment_id
        if not payment_id and event.charge_id:
            charge = self.gateway.retrieve_charge(event.charge_id)
            payment_id = _object_id(charge.get('payment_intent')) or charge.get('id')
        if not payment_id:
            raise WebhookError('Dispute has no charge reference')

        handle_chargeback(payment_id)

    def handle_subscription_deleted(self, event: SubscriptionDeleted):
        updated = self._reset_to_free(User.objects.filter(stripe_subscription_id=event.subscription_id))
        if updated:
            logger.info(f"Subscription {event.subscription_id} cancelled, account reverted to free plan")
        else:
            logger.info(f"Subscription {event.subscription_id} already cleared")
