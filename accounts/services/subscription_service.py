"""
Subscription lifecycle: new subscriptions, upgrades and downgrades.

The local plan assignment is only written after a synchronous upgrade has
succeeded at Stripe, or later by the webhook handler. Downgrades only record
a scheduled plan; the switch happens on the next renewal.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

import stripe
from django.conf import settings
from django.utils import timezone

from ..models import Plan, User
from .stripe_gateway import get_gateway, subscription_item_id, subscription_period_end

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ('active', 'trialing')

# Stripe error codes meaning there was nothing left to invoice
NOTHING_TO_INVOICE_CODES = (
    'invoice_no_subscription_line_items',
    'invoice_no_customer_line_items',
)

CHECKOUT = 'checkout'
UPGRADE = 'upgrade'
DOWNGRADE = 'downgrade'
UNCHANGED = 'unchanged'
NEW_SUBSCRIPTION = 'new_subscription'


class PlanChangeError(Exception):
    """A plan change was rejected. ``retryable`` is set for processor failures."""

    def __init__(self, code, message, retryable=False):
        super().__init__(message)
        self.code = code
        self.message = message
        self.retryable = retryable


@dataclass
class PlanChangeOutcome:
    type: str
    message: str
    plan: Optional[Plan] = None
    url: Optional[str] = None
    effective_date: Optional[datetime] = None


class SubscriptionService:
    """Drives plan changes against Stripe."""

    def __init__(self, gateway=None):
        self.gateway = gateway or get_gateway()

    # Lookups

    def _get_plan(self, plan_id):
        plan = Plan.objects.filter(pk=plan_id, is_active=True).first()
        if plan is None:
            raise PlanChangeError('plan_not_found', 'Plan not found')
        return plan

    def _get_account(self, account_id):
        account = User.objects.select_related('plan', 'scheduled_plan').filter(pk=account_id).first()
        if account is None:
            raise PlanChangeError('account_not_found', 'Account not found')
        return account

    def _resolve_price(self, plan, price_id):
        if price_id:
            if price_id not in plan.price_ids():
                raise PlanChangeError('invalid_price', 'Price does not belong to the selected plan')
            return price_id
        return plan.default_price_id()

    def _active_subscription(self, account):
        """
        Return the account's live Stripe subscription, or None.

        A reference to a subscription that no longer exists or is not
        active/trialing is cleared locally.
        """
        subscription_id = account.stripe_subscription_id
        if not subscription_id:
            return None

        try:
            subscription = self.gateway.retrieve_subscription(subscription_id)
        except stripe.InvalidRequestError:
            logger.warning(f"Subscription {subscription_id} for user {account.pk} no longer exists at Stripe")
            subscription = None
        except stripe.StripeError as e:
            logger.error(f"Error retrieving subscription {subscription_id}: {str(e)}")
            raise PlanChangeError('processor_error', 'Payment processor unavailable, please retry', retryable=True)

        if subscription and subscription.get('status') in ACTIVE_STATUSES:
            return subscription

        logger.info(f"Clearing stale subscription {subscription_id} for user {account.pk}")
        User.objects.filter(pk=account.pk, stripe_subscription_id=subscription_id).update(
            stripe_subscription_id=None,
            stripe_price_id=None,
            stripe_current_period_end=None,
            scheduled_plan=None,
        )
        account.stripe_subscription_id = None
        account.stripe_price_id = None
        account.stripe_current_period_end = None
        account.scheduled_plan = None
        return None

    @staticmethod
    def _is_upgrade(account, plan):
        if account.plan is None:
            return True
        return plan.sort_order > account.plan.sort_order

    # Plan change

    def change_plan(self, account_id, plan_id, price_id=None, referral_code=None) -> PlanChangeOutcome:
        """
        Move an account to another plan.

        Args:
            account_id: the account changing plans
            plan_id: target Plan primary key
            price_id: Stripe price to subscribe to (defaults to the plan's monthly price)
            referral_code: code to attach to a new subscription's metadata

        Returns:
            PlanChangeOutcome with type checkout, upgrade, downgrade or unchanged

        Raises:
            PlanChangeError: on missing plan/account or any Stripe failure
        """
        plan = self._get_plan(plan_id)
        account = self._get_account(account_id)

        subscription = self._active_subscription(account)

        if subscription is None:
            if plan.is_free:
                if account.plan_id == plan.pk:
                    return PlanChangeOutcome(UNCHANGED, f'You are already on the {plan} plan.', plan=plan)
                return self._assign_free_plan(account, plan)
            price_id = self._resolve_price(plan, price_id)
            return self._start_checkout(account, plan, price_id, referral_code)

        if account.plan_id == plan.pk:
            return PlanChangeOutcome(UNCHANGED, f'You are already on the {plan} plan.', plan=plan)

        if self._is_upgrade(account, plan):
            price_id = self._resolve_price(plan, price_id)
            return self._upgrade(account, subscription, plan, price_id)

        price_id = None if plan.is_free else self._resolve_price(plan, price_id)
        return self._downgrade(account, subscription, plan, price_id)

    def _assign_free_plan(self, account, plan):
        # No billing relationship involved
        User.objects.filter(pk=account.pk).update(plan=plan, scheduled_plan=None)
        logger.info(f"User {account.pk} moved to free plan {plan.name}")
        return PlanChangeOutcome(DOWNGRADE, f'Your plan is now {plan}.', plan=plan, effective_date=timezone.now())

    def _ensure_customer(self, account):
        if account.stripe_customer_id:
            return account.stripe_customer_id

        customer = self.gateway.create_customer(
            email=account.email,
            metadata={'user_id': str(account.pk)},
        )
        User.objects.filter(pk=account.pk).update(stripe_customer_id=customer['id'])
        account.stripe_customer_id = customer['id']
        return customer['id']

    def _start_checkout(self, account, plan, price_id, referral_code):
        from referrals.services.commission_service import referral_code_for_account

        if not price_id:
            raise PlanChangeError('plan_not_found', 'Plan has no price configured')

        referral_code = referral_code or referral_code_for_account(account) or ''
        metadata = {
            'user_id': str(account.pk),
            'plan_id': str(plan.pk),
            'referral_code': referral_code,
        }

        try:
            customer_id = self._ensure_customer(account)
            session = self.gateway.create_checkout_session(
                customer=customer_id,
                mode='subscription',
                line_items=[{'price': price_id, 'quantity': 1}],
                success_url=f'{settings.APP_URL}/dashboard/billing?success=true&session_id={{CHECKOUT_SESSION_ID}}',
                cancel_url=f'{settings.APP_URL}/dashboard/billing?canceled=true',
                metadata=metadata,
                subscription_data={'metadata': metadata},
            )
        except stripe.StripeError as e:
            logger.error(f"Error creating checkout session for user {account.pk}: {str(e)}")
            raise PlanChangeError('processor_error', 'Payment processor unavailable, please retry', retryable=True)

        logger.info(f"Checkout session {session.get('id')} created for user {account.pk}, plan {plan.name}")
        return PlanChangeOutcome(CHECKOUT, 'Redirecting to checkout.', plan=plan, url=session.get('url'))

    def _upgrade(self, account, subscription, plan, price_id):
        subscription_id = subscription['id']

        try:
            self.gateway.modify_subscription(
                subscription_id,
                items=[{'id': subscription_item_id(subscription), 'price': price_id}],
                proration_behavior='create_prorations',
                cancel_at_period_end=False,
                metadata={'scheduled_plan_id': ''},
            )
        except stripe.StripeError as e:
            logger.error(f"Error upgrading subscription {subscription_id}: {str(e)}")
            raise PlanChangeError('processor_error', 'Payment processor unavailable, please retry', retryable=True)

        self._invoice_proration(account, subscription_id)

        User.objects.filter(pk=account.pk).update(plan=plan, stripe_price_id=price_id, scheduled_plan=None)
        logger.info(f"User {account.pk} upgraded to {plan.name}")
        return PlanChangeOutcome(UPGRADE, f'Your plan is now {plan}.', plan=plan)

    def _invoice_proration(self, account, subscription_id):
        """Bill the proration right away instead of on the next renewal."""
        try:
            invoice = self.gateway.create_invoice(account.stripe_customer_id, subscription_id)
            self.gateway.pay_invoice(invoice['id'])
        except stripe.InvalidRequestError as e:
            if getattr(e, 'code', None) in NOTHING_TO_INVOICE_CODES:
                logger.info(f"No proration to invoice for subscription {subscription_id}")
            else:
                logger.error(f"Error invoicing proration for subscription {subscription_id}: {str(e)}")
        except stripe.StripeError as e:
            logger.error(f"Error invoicing proration for subscription {subscription_id}: {str(e)}")

    def _downgrade(self, account, subscription, plan, price_id):
        subscription_id = subscription['id']
        metadata = {'scheduled_plan_id': str(plan.pk)}

        try:
            if price_id is None:
                # A free plan has no price; end the subscription at period end
                self.gateway.modify_subscription(subscription_id, cancel_at_period_end=True, metadata=metadata)
            else:
                self.gateway.modify_subscription(
                    subscription_id,
                    items=[{'id': subscription_item_id(subscription), 'price': price_id}],
                    proration_behavior='none',
                    billing_cycle_anchor='unchanged',
                    cancel_at_period_end=False,
                    metadata=metadata,
                )
        except stripe.StripeError as e:
            logger.error(f"Error scheduling downgrade of subscription {subscription_id}: {str(e)}")
            raise PlanChangeError('processor_error', 'Payment processor unavailable, please retry', retryable=True)

        User.objects.filter(pk=account.pk).update(scheduled_plan=plan)
        logger.info(f"User {account.pk} scheduled downgrade to {plan.name}")

        effective_date = subscription_period_end(subscription)
        if effective_date:
            message = f'Your plan will change to {plan} on {effective_date:%B %d, %Y}.'
        else:
            message = f'Your plan will change to {plan} at the end of the current billing period.'
        return PlanChangeOutcome(DOWNGRADE, message, plan=plan, effective_date=effective_date)

    # Preview

    def preview_change(self, account_id, plan_id, price_id=None) -> dict:
        """
        Describe what a plan change would do without changing anything.

        Returns:
            dict with 'type' (new_subscription, unchanged, upgrade, downgrade)
            plus proration or effective-date details
        """
        plan = self._get_plan(plan_id)
        account = self._get_account(account_id)
        current_name = str(account.plan) if account.plan else 'Free'

        if account.plan_id == plan.pk:
            return {'type': UNCHANGED, 'current_plan': current_name, 'new_plan': str(plan)}

        subscription = None
        if account.stripe_subscription_id:
            try:
                subscription = self.gateway.retrieve_subscription(account.stripe_subscription_id)
            except stripe.StripeError:
                subscription = None

        if not subscription or subscription.get('status') not in ACTIVE_STATUSES:
            return {
                'type': NEW_SUBSCRIPTION,
                'current_plan': current_name,
                'new_plan': str(plan),
                'message': 'You will be redirected to checkout to complete payment.',
            }

        if self._is_upgrade(account, plan):
            price_id = self._resolve_price(plan, price_id)
            try:
                preview = self.gateway.preview_invoice(
                    account.stripe_customer_id,
                    account.stripe_subscription_id,
                    [{'id': subscription_item_id(subscription), 'price': price_id}],
                )
            except stripe.StripeError as e:
                logger.error(f"Error previewing upgrade for user {account.pk}: {str(e)}")
                raise PlanChangeError('processor_error', 'Payment processor unavailable, please retry', retryable=True)

            cents = sum(line.get('amount', 0) for line in preview['lines']['data'] if _is_proration(line))
            amount = Decimal(cents) / 100
            currency = (preview.get('currency') or plan.currency).upper()
            return {
                'type': UPGRADE,
                'current_plan': current_name,
                'new_plan': str(plan),
                'proration_amount': amount,
                'currency': currency,
                'message': f'You will be charged {amount:.2f} {currency} now for the prorated difference.',
            }

        effective_date = subscription_period_end(subscription)
        return {
            'type': DOWNGRADE,
            'current_plan': current_name,
            'new_plan': str(plan),
            'effective_date': effective_date,
            'message': (
                f'Your plan will change to {plan} on {effective_date:%B %d, %Y}.'
                if effective_date else
                f'Your plan will change to {plan} at the end of the current billing period.'
            ),
        }


def _is_proration(line):
    if line.get('proration'):
        return True
    details = (line.get('parent') or {}).get('subscription_item_details') or {}
    return bool(details.get('proration'))
