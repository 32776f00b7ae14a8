"""
Shared pytest fixtures: plan catalog, accounts, API clients and a fake Stripe gateway.
"""
import hashlib
import hmac
import json
import time
from decimal import Decimal

import pytest
import stripe
from rest_framework.test import APIClient

from accounts.models import Plan, User
from accounts.services.stripe_gateway import StripeGateway

WEBHOOK_SECRET = 'whsec_test_secret'

# 2030-01-01 00:00:00 UTC
PERIOD_END = 1893456000


@pytest.fixture(autouse=True)
def test_settings(settings):
    settings.SECURE_SSL_REDIRECT = False
    settings.STRIPE_SECRET_KEY = 'sk_test_fake'
    settings.STRIPE_WEBHOOK_SECRET = WEBHOOK_SECRET
    settings.APP_URL = 'https://app.example.com'
    settings.REFERRAL_DEFAULT_MIN_PAYOUT = 500
    settings.REFERRAL_DEFAULT_GRACE_DAYS = 30
    settings.STORAGES = {
        'default': {'BACKEND': 'django.core.files.storage.FileSystemStorage'},
        'staticfiles': {'BACKEND': 'django.contrib.staticfiles.storage.StaticFilesStorage'},
    }
    return settings


class FakeGateway(StripeGateway):
    """
    In-memory stand-in for the Stripe API.

    Webhook verification is the real one. Every other call is recorded in
    ``calls`` as (method, kwargs); set ``errors[method]`` to make a call raise.
    """

    def __init__(self):
        super().__init__(api_key='sk_test_fake', webhook_secret=WEBHOOK_SECRET)
        self.calls = []
        self.errors = {}
        self.subscriptions = {}
        self.charges = {}
        self.preview = {'currency': 'usd', 'lines': {'data': []}}

    def _record(self, method, **kwargs):
        self.calls.append((method, kwargs))
        if method in self.errors:
            raise self.errors[method]

    def calls_to(self, method):
        return [kwargs for name, kwargs in self.calls if name == method]

    def create_customer(self, email, metadata):
        self._record('create_customer', email=email, metadata=metadata)
        return {'id': 'cus_new', 'email': email}

    def create_checkout_session(self, **params):
        self._record('create_checkout_session', **params)
        return {'id': 'cs_test_1', 'url': 'https://checkout.stripe.com/c/pay/cs_test_1'}

    def retrieve_subscription(self, subscription_id):
        self._record('retrieve_subscription', subscription_id=subscription_id)
        if subscription_id not in self.subscriptions:
            raise stripe.InvalidRequestError(f'No such subscription: {subscription_id}', 'id')
        return self.subscriptions[subscription_id]

    def modify_subscription(self, subscription_id, **params):
        self._record('modify_subscription', subscription_id=subscription_id, **params)
        return self.subscriptions.get(subscription_id, {'id': subscription_id})

    def create_invoice(self, customer_id, subscription_id):
        self._record('create_invoice', customer_id=customer_id, subscription_id=subscription_id)
        return {'id': 'in_proration'}

    def pay_invoice(self, invoice_id):
        self._record('pay_invoice', invoice_id=invoice_id)
        return {'id': invoice_id, 'status': 'paid'}

    def preview_invoice(self, customer_id, subscription_id, items):
        self._record('preview_invoice', customer_id=customer_id, subscription_id=subscription_id, items=items)
        return self.preview

    def retrieve_charge(self, charge_id):
        self._record('retrieve_charge', charge_id=charge_id)
        return self.charges[charge_id]

    def create_transfer(self, amount_cents, currency, destination, metadata):
        self._record(
            'create_transfer',
            amount_cents=amount_cents, currency=currency, destination=destination, metadata=metadata,
        )
        return {'id': 'tr_test_1', 'amount': amount_cents}


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def make_subscription():
    """Build a Stripe subscription dict in the shape the API returns."""

    def _make(subscription_id='sub_123', price_id='price_pro_monthly', status='active',
              customer='cus_123', period_end=PERIOD_END, metadata=None):
        return {
            'id': subscription_id,
            'object': 'subscription',
            'status': status,
            'customer': customer,
            'current_period_end': period_end,
            'metadata': metadata or {},
            'items': {
                'data': [{
                    'id': 'si_123',
                    'price': {'id': price_id},
                    'current_period_end': period_end,
                }],
            },
        }

    return _make


@pytest.fixture
def sign_payload():
    """Return a function producing a valid Stripe-Signature header for a payload."""

    def _sign(payload, secret=WEBHOOK_SECRET):
        timestamp = int(time.time())
        signed = f'{timestamp}.{payload}'.encode('utf-8')
        signature = hmac.new(secret.encode('utf-8'), signed, hashlib.sha256).hexdigest()
        return f't={timestamp},v1={signature}'

    return _sign


@pytest.fixture
def make_event():
    def _make(event_type, obj, event_id='evt_1'):
        return json.dumps({'id': event_id, 'type': event_type, 'data': {'object': obj}})

    return _make


# Plan catalog

@pytest.fixture
def free_plan(db):
    return Plan.objects.create(
        name='free',
        display_name='Free',
        price=Decimal('0'),
        sort_order=0,
        config={
            'features': {'publicProfile': True},
            'limits': {'maxProjects': 3, 'maxImagesPerProject': 20},
        },
    )


@pytest.fixture
def pro_plan(db):
    return Plan.objects.create(
        name='pro',
        display_name='Pro',
        price=Decimal('12.00'),
        sort_order=1,
        stripe_price_id_monthly='price_pro_monthly',
        stripe_price_id_yearly='price_pro_yearly',
        config={
            'features': {'hideBranding': True, 'passwordProtection': True, 'highResDownloads': True},
            'limits': {'maxProjects': 50, 'maxImagesPerProject': 500},
        },
    )


@pytest.fixture
def studio_plan(db):
    return Plan.objects.create(
        name='studio',
        display_name='Studio',
        price=Decimal('29.00'),
        sort_order=2,
        stripe_price_id_monthly='price_studio_monthly',
        stripe_price_id_yearly='price_studio_yearly',
        config={
            'features': {'hideBranding': True, 'whiteLabel': True, 'customDomain': True},
            'limits': {'maxProjects': -1, 'maxImagesPerProject': -1},
        },
    )


@pytest.fixture
def plans(free_plan, pro_plan, studio_plan):
    return {'free': free_plan, 'pro': pro_plan, 'studio': studio_plan}


# Accounts

@pytest.fixture
def user(free_plan):
    return User.objects.create_user(email='member@example.com', password='s3cret-pass', plan=free_plan)


@pytest.fixture
def pro_user(pro_plan):
    return User.objects.create_user(
        email='pro@example.com',
        password='s3cret-pass',
        plan=pro_plan,
        stripe_customer_id='cus_123',
        stripe_subscription_id='sub_123',
        stripe_price_id='price_pro_monthly',
    )


@pytest.fixture
def staff_user(db):
    return User.objects.create_user(email='staff@example.com', password='s3cret-pass', is_staff=True)


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def auth_client(api_client, user):
    api_client.force_authenticate(user=user)
    return api_client
