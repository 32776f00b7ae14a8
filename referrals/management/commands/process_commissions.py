"""
Promote commissions whose grace period has passed.
Run from cron, e.g. hourly.
"""
from django.core.management.base import BaseCommand

from referrals.services.commission_service import qualify_commissions


class Command(BaseCommand):
    help = 'Qualify PENDING referral commissions whose qualification date has passed'

    def handle(self, *args, **options):
        qualified, reversed_count = qualify_commissions()
        self.stdout.write(self.style.SUCCESS(
            f'Qualified {qualified} commissions, reversed {reversed_count}.'
        ))
