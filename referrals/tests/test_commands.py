import pytest
from django.core.management import call_command

from referrals.models import ReferralCommission, ReferralProfile

pytestmark = pytest.mark.django_db


class TestSeedReferralProfiles:

    def test_creates_both_profiles(self):
        call_command('seed_referral_profiles')

        assert ReferralProfile.objects.get(name='Affiliate').type == ReferralProfile.AFFILIATE
        assert ReferralProfile.objects.get(name='Customer').type == ReferralProfile.CUSTOMER

    def test_existing_config_kept_unless_reset(self):
        call_command('seed_referral_profiles')
        ReferralProfile.objects.filter(name='Affiliate').update(config={'payout_settings': {'min_threshold': '50'}})

        call_command('seed_referral_profiles')
        assert ReferralProfile.objects.get(name='Affiliate').config == {'payout_settings': {'min_threshold': '50'}}

        call_command('seed_referral_profiles', '--reset')
        assert 'tiers' in ReferralProfile.objects.get(name='Affiliate').config


class TestProcessCommissions:

    def test_qualifies_due_commissions(self, make_commission):
        commission = make_commission('25.00', status=ReferralCommission.PENDING)

        call_command('process_commissions')

        commission.refresh_from_db()
        assert commission.status == ReferralCommission.QUALIFIED
