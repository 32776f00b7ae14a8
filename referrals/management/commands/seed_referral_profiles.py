"""
Management command to create the default referral profiles.
Existing profiles keep their config unless --reset is passed.
"""
from django.core.management.base import BaseCommand

from referrals.config import DEFAULT_AFFILIATE_CONFIG, DEFAULT_CUSTOMER_CONFIG
from referrals.models import ReferralProfile


class Command(BaseCommand):
    help = 'Create the default Affiliate and Customer referral profiles'

    def add_arguments(self, parser):
        parser.add_argument('--reset', action='store_true', help='Overwrite existing profile configs')

    def handle(self, *args, **options):
        profiles = [
            {
                'name': 'Affiliate',
                'type': ReferralProfile.AFFILIATE,
                'description': 'Percentage commission on every payment, paid out once qualified.',
                'config': DEFAULT_AFFILIATE_CONFIG,
            },
            {
                'name': 'Customer',
                'type': ReferralProfile.CUSTOMER,
                'description': 'Assigned automatically to paying customers; rewards the first payment of each referral.',
                'config': DEFAULT_CUSTOMER_CONFIG,
            },
        ]

        for profile_data in profiles:
            name = profile_data.pop('name')
            if options['reset']:
                profile, created = ReferralProfile.objects.update_or_create(name=name, defaults=profile_data)
            else:
                profile, created = ReferralProfile.objects.get_or_create(name=name, defaults=profile_data)

            if created:
                self.stdout.write(self.style.SUCCESS(f'Created: {profile}'))
            else:
                self.stdout.write(self.style.WARNING(f'Exists: {profile}'))
