import pytest
from django.core.management import call_command

from accounts.models import Plan

pytestmark = pytest.mark.django_db


class TestSeedPlans:

    def test_creates_catalog(self, settings):
        settings.STRIPE_PRICE_PRO_MONTHLY = 'price_env_pro'

        call_command('seed_plans')

        assert list(Plan.objects.values_list('name', flat=True)) == ['free', 'pro', 'studio']
        free = Plan.objects.get(name='free')
        pro = Plan.objects.get(name='pro')
        assert free.is_free
        assert pro.stripe_price_id_monthly == 'price_env_pro'
        assert pro.get_config().limits

    def test_rerun_keeps_admin_price_ids(self, settings):
        call_command('seed_plans')
        Plan.objects.filter(name='studio').update(stripe_price_id_monthly='price_set_in_admin')

        settings.STRIPE_PRICE_STUDIO_MONTHLY = ''
        call_command('seed_plans')

        assert Plan.objects.count() == 3
        assert Plan.objects.get(name='studio').stripe_price_id_monthly == 'price_set_in_admin'
