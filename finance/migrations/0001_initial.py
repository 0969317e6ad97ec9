import django.db.models.deletion
import uuid
from decimal import Decimal
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ('logistics', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='CourierStats',
            fields=[
                ('courier', models.OneToOneField(db_constraint=False, on_delete=django.db.models.deletion.DO_NOTHING, primary_key=True, related_name='courier_stats', serialize=False, to=settings.AUTH_USER_MODEL, verbose_name='Courier')),
                ('commission_type', models.CharField(choices=[('FLAT', 'Flat amount'), ('PERCENTAGE', 'Percentage of price')], default='FLAT', max_length=12, verbose_name='Commission type')),
                ('commission_value', models.DecimalField(decimal_places=2, default=Decimal('30.00'), max_digits=10, verbose_name='Commission value (EGP or %)')),
                ('total_earnings', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12, verbose_name='Total earnings (EGP)')),
                ('current_balance', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12, verbose_name='Current balance (EGP)')),
                ('deliveries_completed', models.PositiveIntegerField(default=0)),
                ('deliveries_failed', models.PositiveIntegerField(default=0)),
                ('consecutive_failures', models.PositiveIntegerField(default=0)),
                ('last_delivery_date', models.DateTimeField(blank=True, null=True)),
                ('is_restricted', models.BooleanField(default=False, verbose_name='Restricted')),
                ('restriction_reason', models.CharField(blank=True, max_length=255, verbose_name='Restriction reason')),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Courier stats',
                'verbose_name_plural': 'Courier stats',
            },
        ),
        migrations.CreateModel(
            name='CourierTransaction',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('transaction_type', models.CharField(choices=[('EARNING', 'Delivery earning'), ('PENALTY', 'Penalty'), ('WITHDRAWAL_REQUEST', 'Withdrawal request'), ('PAYOUT_PROCESSED', 'Payout processed')], max_length=20, verbose_name='Type')),
                ('status', models.CharField(choices=[('PENDING', 'Pending'), ('PROCESSED', 'Processed')], default='PROCESSED', max_length=10, verbose_name='Status')),
                ('amount', models.DecimalField(decimal_places=2, max_digits=12, verbose_name='Amount (EGP)')),
                ('description', models.CharField(blank=True, max_length=255, verbose_name='Description')),
                ('timestamp', models.DateTimeField(auto_now_add=True)),
                ('processed_at', models.DateTimeField(blank=True, null=True)),
                ('courier', models.ForeignKey(db_constraint=False, on_delete=django.db.models.deletion.DO_NOTHING, related_name='courier_transactions', to=settings.AUTH_USER_MODEL, verbose_name='Courier')),
                ('processed_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='processed_courier_transactions', to=settings.AUTH_USER_MODEL, verbose_name='Processed by')),
                ('shipment', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='courier_transactions', to='logistics.shipment', verbose_name='Related shipment')),
            ],
            options={
                'verbose_name': 'Courier transaction',
                'verbose_name_plural': 'Courier transactions',
                'ordering': ['-timestamp'],
                'indexes': [
                    models.Index(fields=['courier', 'timestamp'], name='courier_tx_courier_ts_idx'),
                    models.Index(fields=['transaction_type', 'status'], name='courier_tx_type_status_idx'),
                ],
            },
        ),
    ]
