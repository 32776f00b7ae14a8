# Generated migration for referrals app
# Initial migration: profiles, assignments, commission ledger, payouts, audit log

from decimal import Decimal

from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='ReferralProfile',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=100, unique=True)),
                ('type', models.CharField(choices=[('AFFILIATE', 'Affiliate'), ('CUSTOMER', 'Customer')], max_length=20)),
                ('description', models.TextField(blank=True)),
                ('config', models.JSONField(blank=True, default=dict)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='ReferralAssignment',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('referral_code', models.CharField(max_length=20, unique=True)),
                ('custom_slug', models.SlugField(blank=True, null=True, unique=True)),
                ('config_override', models.JSONField(blank=True, help_text='Merged section by section over the profile config', null=True)),
                ('status', models.CharField(choices=[('ACTIVE', 'Active'), ('PAUSED', 'Paused'), ('TERMINATED', 'Terminated')], default='ACTIVE', max_length=20)),
                ('payout_method', models.CharField(choices=[('STRIPE_CONNECT', 'Stripe Connect'), ('BANK_TRANSFER', 'Bank transfer'), ('PAYPAL', 'PayPal')], default='BANK_TRANSFER', max_length=20)),
                ('stripe_connect_id', models.CharField(blank=True, help_text='Stripe Connect account (acct_xxx)', max_length=255)),
                ('payout_details', models.TextField(blank=True, help_text='PayPal email or bank details for manual payouts')),
                ('total_referrals', models.PositiveIntegerField(default=0)),
                ('total_converted', models.PositiveIntegerField(default=0)),
                ('total_earned', models.DecimalField(decimal_places=2, default=Decimal('0'), max_digits=12)),
                ('total_paid', models.DecimalField(decimal_places=2, default=Decimal('0'), max_digits=12)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('profile', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='assignments', to='referrals.referralprofile')),
                ('user', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='referral_assignment', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Referral Assignment',
                'verbose_name_plural': 'Referral Assignments',
            },
        ),
        migrations.CreateModel(
            name='Referral',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('referred_email', models.EmailField(max_length=254)),
                ('status', models.CharField(choices=[('REGISTERED', 'Registered'), ('CONVERTED', 'Converted'), ('QUALIFIED', 'Qualified'), ('REFUNDED', 'Refunded'), ('FRAUDULENT', 'Fraudulent'), ('CANCELLED', 'Cancelled')], default='REGISTERED', max_length=20)),
                ('source', models.CharField(blank=True, max_length=50)),
                ('registered_at', models.DateTimeField(blank=True, null=True)),
                ('converted_at', models.DateTimeField(blank=True, null=True)),
                ('cancelled_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('assignment', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='referrals', to='referrals.referralassignment')),
                ('referred_user', models.OneToOneField(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='referral', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='ReferralPayout',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('amount', models.DecimalField(decimal_places=2, max_digits=12)),
                ('currency', models.CharField(default='USD', max_length=3)),
                ('method', models.CharField(choices=[('STRIPE_CONNECT', 'Stripe Connect'), ('BANK_TRANSFER', 'Bank transfer'), ('PAYPAL', 'PayPal')], max_length=20)),
                ('status', models.CharField(choices=[('PENDING', 'Pending'), ('PROCESSING', 'Processing'), ('COMPLETED', 'Completed'), ('FAILED', 'Failed')], default='PENDING', max_length=20)),
                ('stripe_transfer_id', models.CharField(blank=True, max_length=255)),
                ('reference', models.CharField(blank=True, help_text='Transaction ID or reference number', max_length=255)),
                ('failure_reason', models.TextField(blank=True)),
                ('notes', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('processed_at', models.DateTimeField(blank=True, null=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('failed_at', models.DateTimeField(blank=True, null=True)),
                ('assignment', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='payouts', to='referrals.referralassignment')),
                ('processed_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='processed_referral_payouts', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Referral Payout',
                'verbose_name_plural': 'Referral Payouts',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='ReferralCommission',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('stripe_payment_id', models.CharField(max_length=255, unique=True)),
                ('stripe_invoice_id', models.CharField(blank=True, max_length=255)),
                ('base_amount', models.DecimalField(decimal_places=2, help_text='Payment amount the commission is based on', max_digits=12)),
                ('commission_rate', models.DecimalField(decimal_places=4, default=Decimal('0'), max_digits=6)),
                ('fixed_amount', models.DecimalField(decimal_places=2, default=Decimal('0'), max_digits=12)),
                ('total_amount', models.DecimalField(decimal_places=2, max_digits=12)),
                ('adjusted_amount', models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ('adjustment_reason', models.CharField(blank=True, max_length=255)),
                ('currency', models.CharField(default='USD', max_length=3)),
                ('status', models.CharField(choices=[('PENDING', 'Pending'), ('QUALIFIED', 'Qualified'), ('PAID', 'Paid'), ('REVERSED', 'Reversed')], default='PENDING', max_length=20)),
                ('qualifies_at', models.DateTimeField()),
                ('qualified_at', models.DateTimeField(blank=True, null=True)),
                ('paid_at', models.DateTimeField(blank=True, null=True)),
                ('reversed_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('assignment', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='commissions', to='referrals.referralassignment')),
                ('payout', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='commissions', to='referrals.referralpayout')),
                ('referral', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='commissions', to='referrals.referral')),
            ],
            options={
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['assignment', 'status'], name='referrals_r_assignm_6f1c2e_idx'),
                    models.Index(fields=['status', 'qualifies_at'], name='referrals_r_status_9b4d7a_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ReferralAuditLog',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('action', models.CharField(choices=[('PAYOUT_REQUESTED', 'Payout requested'), ('PAYOUT_INITIATED', 'Payout initiated'), ('PAYOUT_FAILED', 'Payout failed'), ('PAYOUT_COMPLETED', 'Payout completed'), ('COMMISSION_REVERSED', 'Commission reversed'), ('COMMISSION_ADJUSTED', 'Commission adjusted'), ('REFUND_AFTER_PAYOUT', 'Refund after payout'), ('CHARGEBACK_DETECTED', 'Chargeback detected')], max_length=40)),
                ('actor', models.CharField(default='SYSTEM', help_text="SYSTEM or the acting user's email", max_length=255)),
                ('metadata', models.JSONField(blank=True, default=dict)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('assignment', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='audit_entries', to='referrals.referralassignment')),
                ('commission', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='audit_entries', to='referrals.referralcommission')),
                ('payout', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='audit_entries', to='referrals.referralpayout')),
            ],
            options={
                'verbose_name': 'Referral Audit Entry',
                'verbose_name_plural': 'Referral Audit Log',
                'ordering': ['-created_at'],
            },
        ),
    ]
