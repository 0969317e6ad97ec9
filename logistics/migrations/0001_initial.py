import django.db.models.deletion
import django.utils.timezone
from decimal import Decimal
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Shipment',
            fields=[
                ('id', models.CharField(editable=False, max_length=32, primary_key=True, serialize=False)),
                ('recipient_name', models.CharField(max_length=150, verbose_name='Recipient name')),
                ('recipient_phone', models.CharField(max_length=20, verbose_name='Recipient phone')),
                ('pickup_address', models.TextField(blank=True, verbose_name='Pickup address')),
                ('dropoff_address', models.TextField(verbose_name='Delivery address')),
                ('destination_city', models.CharField(choices=[('CAIRO', 'Cairo'), ('GIZA', 'Giza'), ('ALEXANDRIA', 'Alexandria'), ('OTHER', 'Other')], default='CAIRO', max_length=20, verbose_name='Destination city')),
                ('package_description', models.CharField(blank=True, max_length=255, verbose_name='Package description')),
                ('priority', models.CharField(choices=[('STANDARD', 'Standard'), ('URGENT', 'Urgent'), ('EXPRESS', 'Express')], default='STANDARD', max_length=10, verbose_name='Priority')),
                ('price', models.DecimalField(decimal_places=2, max_digits=10, verbose_name='Price (EGP)')),
                ('package_value', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=10, verbose_name='Declared value (EGP)')),
                ('payment_method', models.CharField(choices=[('COD', 'Cash on Delivery'), ('TRANSFER', 'Bank / Wallet Transfer')], default='COD', max_length=10, verbose_name='Payment method')),
                ('client_flat_rate_fee', models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True, verbose_name='Client fee (EGP)')),
                ('courier_commission', models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True, verbose_name='Courier commission (EGP)')),
                ('status', models.CharField(choices=[('WAITING_FOR_PACKAGING', 'Waiting for Packaging'), ('PACKAGED_AND_WAITING_FOR_ASSIGNMENT', 'Packaged and Waiting for Assignment'), ('ASSIGNED_TO_COURIER', 'Assigned to Courier'), ('IN_TRANSIT', 'In Transit'), ('OUT_FOR_DELIVERY', 'Out for Delivery'), ('DELIVERED', 'Delivered'), ('DELIVERY_FAILED', 'Delivery Failed'), ('RETURN_REQUESTED', 'Return Requested'), ('RETURN_IN_PROGRESS', 'Return in Progress'), ('RETURNED', 'Returned')], default='WAITING_FOR_PACKAGING', max_length=40, verbose_name='Status')),
                ('status_history', models.JSONField(blank=True, default=list, verbose_name='Status history')),
                ('failure_reason', models.CharField(blank=True, max_length=255, verbose_name='Failure reason')),
                ('creation_date', models.DateTimeField(default=django.utils.timezone.now, editable=False)),
                ('delivery_date', models.DateTimeField(blank=True, null=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('client', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='client_shipments', to=settings.AUTH_USER_MODEL, verbose_name='Client')),
                ('courier', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='courier_shipments', to=settings.AUTH_USER_MODEL, verbose_name='Courier')),
            ],
            options={
                'verbose_name': 'Shipment',
                'verbose_name_plural': 'Shipments',
                'ordering': ['-creation_date'],
                'indexes': [
                    models.Index(fields=['status', 'creation_date'], name='shipment_status_created_idx'),
                    models.Index(fields=['client', 'status'], name='shipment_client_status_idx'),
                    models.Index(fields=['courier', 'status'], name='shipment_courier_status_idx'),
                ],
            },
        ),
    ]
