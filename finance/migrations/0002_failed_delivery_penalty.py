from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ('finance', '0001_initial'),
    ]

    operations = [
        migrations.AddField(
            model_name='couriertransaction',
            name='is_failed_delivery_penalty',
            field=models.BooleanField(default=False, verbose_name='Failed delivery penalty'),
        ),
        migrations.AddConstraint(
            model_name='couriertransaction',
            constraint=models.UniqueConstraint(
                condition=models.Q(is_failed_delivery_penalty=True),
                fields=('shipment',),
                name='courier_tx_one_failed_delivery_penalty',
            ),
        ),
    ]
