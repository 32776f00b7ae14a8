# Refunds and disputes that arrive before their commission

from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ('referrals', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='EarlyReversal',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('stripe_payment_id', models.CharField(max_length=255, unique=True)),
                ('kind', models.CharField(choices=[('REFUND', 'Refund'), ('CHARGEBACK', 'Chargeback')], max_length=20)),
                ('refunded_cents', models.PositiveBigIntegerField(default=0, help_text='Cumulative refunded amount')),
                ('is_full_refund', models.BooleanField(default=False)),
                ('applied_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'ordering': ['-created_at'],
            },
        ),
    ]
