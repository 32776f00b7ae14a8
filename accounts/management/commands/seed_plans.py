"""
Management command to seed the plan catalog.
Safe to run repeatedly: plans are upserted by name.
"""
from decimal import Decimal

from django.conf import settings
from django.core.management.base import BaseCommand
from django.db import transaction

from accounts.capabilities import UNLIMITED, PlanConfig
from accounts.models import Plan


class Command(BaseCommand):
    help = 'Create or update the Free, Pro and Studio plans'

    def get_plans(self):
        return [
            {
                'name': settings.FREE_PLAN_NAME,
                'display_name': 'Free',
                'description': 'A single gallery to get started.',
                'price': Decimal('0'),
                'sort_order': 0,
                'config': {
                    'features': {'publicProfile': True, 'lowResDownloads': True},
                    'limits': {'maxProjects': 1, 'maxImagesPerProject': 20, 'maxCloudAccounts': 1},
                },
            },
            {
                'name': 'pro',
                'display_name': 'Pro',
                'description': 'Professional galleries with your own branding.',
                'price': Decimal('12.00'),
                'sort_order': 1,
                'stripe_price_id_monthly': settings.STRIPE_PRICE_PRO_MONTHLY,
                'stripe_price_id_yearly': settings.STRIPE_PRICE_PRO_YEARLY,
                'config': {
                    'features': {
                        'professionalProfile': True,
                        'coverImage': True,
                        'hideBranding': True,
                        'highResDownloads': True,
                        'passwordProtection': True,
                        'customWatermark': True,
                        'basicInsights': True,
                        'bookingConfig': True,
                    },
                    'limits': {
                        'maxProjects': 25,
                        'maxImagesPerProject': 500,
                        'maxCloudAccounts': 3,
                        'maxSocialLinks': 5,
                        'bookingWindow': 12,
                    },
                },
            },
            {
                'name': 'studio',
                'display_name': 'Studio',
                'description': 'Unlimited galleries, white label and payments.',
                'price': Decimal('29.00'),
                'sort_order': 2,
                'stripe_price_id_monthly': settings.STRIPE_PRICE_STUDIO_MONTHLY,
                'stripe_price_id_yearly': settings.STRIPE_PRICE_STUDIO_YEARLY,
                'config': {
                    'features': {
                        'professionalProfile': True,
                        'coverImage': True,
                        'hideBranding': True,
                        'whiteLabel': True,
                        'customDomain': True,
                        'highResDownloads': True,
                        'passwordProtection': True,
                        'customWatermark': True,
                        'videoGallery': True,
                        'advancedInsights': True,
                        'collaborativeGalleries': True,
                        'bookingConfig': True,
                        'bookingPayments': True,
                        'calendarSync': True,
                        'stripeIntegration': True,
                        'prioritySupport': True,
                    },
                    'limits': {
                        'maxProjects': UNLIMITED,
                        'maxImagesPerProject': UNLIMITED,
                        'maxCloudAccounts': UNLIMITED,
                        'maxSocialLinks': UNLIMITED,
                        'maxScenaProjects': 10,
                        'bookingWindow': 52,
                    },
                },
            },
        ]

    @transaction.atomic
    def handle(self, *args, **options):
        created_count = 0
        updated_count = 0

        for plan_data in self.get_plans():
            PlanConfig.from_json(plan_data['config'], strict=True)

            # Keep price ids already set in the admin when the env var is empty
            for field in ('stripe_price_id_monthly', 'stripe_price_id_yearly'):
                if field in plan_data and not plan_data[field]:
                    del plan_data[field]

            plan, created = Plan.objects.update_or_create(
                name=plan_data.pop('name'),
                defaults=plan_data
            )
            if created:
                created_count += 1
                self.stdout.write(self.style.SUCCESS(f'Created: {plan.display_name}'))
            else:
                updated_count += 1
                self.stdout.write(self.style.WARNING(f'Updated: {plan.display_name}'))

        self.stdout.write(self.style.SUCCESS(
            f'\nDone! Created {created_count}, updated {updated_count} plans.'
        ))
