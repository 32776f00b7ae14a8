"""
Thin wrapper around the Stripe API.

All Stripe calls made by the billing and referral services go through a
StripeGateway instance. Views build one with ``get_gateway()``; tests pass a
fake object with the same methods. Every method returns plain dicts.
"""
import json
import logging
from datetime import datetime, timezone as dt_timezone

import stripe
from django.conf import settings

logger = logging.getLogger(__name__)


def timestamp_to_datetime(timestamp):
    """Convert a Stripe unix timestamp to an aware datetime (None passes through)."""
    if not timestamp:
        return None
    return datetime.fromtimestamp(int(timestamp), tz=dt_timezone.utc)


def subscription_period_end(subscription):
    """
    Current period end of a subscription as a datetime.

    Newer API versions report the period on the subscription items instead of
    the subscription itself.
    """
    if not subscription:
        return None
    period_end = subscription.get('current_period_end')
    if not period_end:
        items = (subscription.get('items') or {}).get('data') or []
        if items:
            period_end = items[0].get('current_period_end')
    return timestamp_to_datetime(period_end)


def subscription_item_id(subscription):
    items = (subscription.get('items') or {}).get('data') or []
    return items[0]['id'] if items else None


def subscription_price_id(subscription):
    items = (subscription.get('items') or {}).get('data') or []
    if not items:
        return None
    return (items[0].get('price') or {}).get('id')


def invoice_subscription_id(invoice):
    """Subscription an invoice belongs to, wherever the API version puts it."""
    subscription = invoice.get('subscription')
    if not subscription:
        details = (invoice.get('parent') or {}).get('subscription_details') or {}
        subscription = details.get('subscription')
    if isinstance(subscription, dict):
        return subscription.get('id')
    return subscription


def _as_dict(obj):
    # StripeObject serializes itself as JSON
    if obj is None or isinstance(obj, dict):
        return obj
    return json.loads(str(obj))


class StripeGateway:
    """Service for calls to the Stripe API."""

    def __init__(self, api_key=None, webhook_secret=None):
        self.api_key = api_key if api_key is not None else settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.STRIPE_WEBHOOK_SECRET
        if not self.api_key:
            logger.warning('STRIPE_SECRET_KEY not configured; Stripe API calls will fail')

    # Webhooks

    def verify_webhook(self, payload: bytes, sig_header: str) -> dict:
        """
        Verify a webhook signature and return the event as a dict.

        Raises:
            stripe.SignatureVerificationError: bad or missing signature, or no secret configured
            ValueError: payload is not valid JSON
        """
        if not self.webhook_secret:
            raise stripe.SignatureVerificationError('Webhook secret not configured', sig_header, payload)
        if not sig_header:
            raise stripe.SignatureVerificationError('Missing signature header', sig_header, payload)

        body = payload.decode('utf-8') if isinstance(payload, bytes) else payload
        stripe.WebhookSignature.verify_header(body, sig_header, self.webhook_secret)
        return json.loads(body)

    # Customers and checkout

    def create_customer(self, email, metadata):
        customer = stripe.Customer.create(api_key=self.api_key, email=email, metadata=metadata)
        return _as_dict(customer)

    def create_checkout_session(self, **params):
        session = stripe.checkout.Session.create(api_key=self.api_key, **params)
        return _as_dict(session)

    # Subscriptions

    def retrieve_subscription(self, subscription_id):
        return _as_dict(stripe.Subscription.retrieve(subscription_id, api_key=self.api_key))

    def modify_subscription(self, subscription_id, **params):
        return _as_dict(stripe.Subscription.modify(subscription_id, api_key=self.api_key, **params))

    # Invoices

    def create_invoice(self, customer_id, subscription_id):
        invoice = stripe.Invoice.create(
            api_key=self.api_key,
            customer=customer_id,
            subscription=subscription_id,
        )
        return _as_dict(invoice)

    def pay_invoice(self, invoice_id):
        return _as_dict(stripe.Invoice.pay(invoice_id, api_key=self.api_key))

    def preview_invoice(self, customer_id, subscription_id, items):
        invoice = stripe.Invoice.create_preview(
            api_key=self.api_key,
            customer=customer_id,
            subscription=subscription_id,
            subscription_details={
                'items': items,
                'proration_behavior': 'create_prorations',
            },
        )
        return _as_dict(invoice)

    # Charges and transfers

    def retrieve_charge(self, charge_id):
        return _as_dict(stripe.Charge.retrieve(charge_id, api_key=self.api_key))

    def create_transfer(self, amount_cents, currency, destination, metadata):
        transfer = stripe.Transfer.create(
            api_key=self.api_key,
            amount=amount_cents,
            currency=currency.lower(),
            destination=destination,
            metadata=metadata,
        )
        return _as_dict(transfer)


def get_gateway():
    return StripeGateway()
