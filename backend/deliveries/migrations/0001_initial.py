import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='VehicleType',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=50, unique=True)),
                ('description', models.TextField(blank=True, default='')),
                ('max_weight_kg', models.DecimalField(decimal_places=2, default=20, max_digits=7)),
                ('base_price', models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                ('price_per_km', models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                ('is_active', models.BooleanField(default=True)),
            ],
            options={
                'db_table': 'vehicle_types',
                'ordering': ['base_price'],
            },
        ),
        migrations.CreateModel(
            name='Delivery',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('pickup_address', models.TextField(blank=True, default='')),
                ('pickup_latitude', models.DecimalField(decimal_places=6, max_digits=9)),
                ('pickup_longitude', models.DecimalField(decimal_places=6, max_digits=9)),
                ('pickup_contact_name', models.CharField(blank=True, default='', max_length=100)),
                ('pickup_contact_phone', models.CharField(blank=True, default='', max_length=20)),
                ('pickup_instructions', models.TextField(blank=True, default='')),
                ('delivery_address', models.TextField(blank=True, default='')),
                ('delivery_latitude', models.DecimalField(decimal_places=6, max_digits=9)),
                ('delivery_longitude', models.DecimalField(decimal_places=6, max_digits=9)),
                ('delivery_contact_name', models.CharField(blank=True, default='', max_length=100)),
                ('delivery_contact_phone', models.CharField(blank=True, default='', max_length=20)),
                ('delivery_instructions', models.TextField(blank=True, default='')),
                ('package_description', models.TextField(blank=True, default='')),
                ('package_weight', models.DecimalField(blank=True, decimal_places=2, max_digits=7, null=True)),
                ('package_value', models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True)),
                ('distance_km', models.DecimalField(decimal_places=2, default=0, max_digits=8)),
                ('estimated_duration', models.PositiveIntegerField(blank=True, null=True)),
                ('total_price', models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('driver_offered', 'Delivery Offered'), ('driver_assigned', 'Driver Assigned'), ('pickup_arrived', 'Arrived at Pickup'), ('package_collected', 'Package Collected'), ('in_transit', 'In Transit'), ('delivered', 'Delivered'), ('cancelled', 'Cancelled'), ('failed', 'Failed')], default='pending', max_length=20)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('offered_at', models.DateTimeField(blank=True, null=True)),
                ('assigned_at', models.DateTimeField(blank=True, null=True)),
                ('arrived_at_pickup_at', models.DateTimeField(blank=True, null=True)),
                ('picked_up_at', models.DateTimeField(blank=True, null=True)),
                ('in_transit_at', models.DateTimeField(blank=True, null=True)),
                ('delivered_at', models.DateTimeField(blank=True, null=True)),
                ('cancelled_at', models.DateTimeField(blank=True, null=True)),
                ('cancellation_reason', models.TextField(blank=True, default='')),
                ('failure_reason', models.TextField(blank=True, default='')),
                ('proof_photo_url', models.URLField(blank=True, default='', max_length=500)),
                ('recipient_name', models.CharField(blank=True, default='', max_length=100)),
                ('delivery_notes', models.TextField(blank=True, default='')),
                ('signature_data', models.TextField(blank=True, default='')),
                ('customer', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='deliveries', to=settings.AUTH_USER_MODEL)),
                ('driver', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='assigned_deliveries', to=settings.AUTH_USER_MODEL)),
                ('vehicle_type', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='deliveries', to='deliveries.vehicletype')),
            ],
            options={
                'db_table': 'deliveries',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['status', 'offered_at'], name='delivery_status_offered_idx'),
                    models.Index(fields=['driver', 'status'], name='delivery_driver_status_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='DeliveryOffer',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('status', models.CharField(choices=[('offered', 'Offered'), ('accepted', 'Accepted'), ('declined', 'Declined'), ('expired', 'Expired'), ('withdrawn', 'Withdrawn')], default='offered', max_length=20)),
                ('distance_meters', models.FloatField(blank=True, null=True)),
                ('sent_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('responded_at', models.DateTimeField(blank=True, null=True)),
                ('delivery', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='offers', to='deliveries.delivery')),
                ('driver', models.ForeignKey(limit_choices_to={'role': 'driver'}, on_delete=django.db.models.deletion.CASCADE, related_name='delivery_offers', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'delivery_offers',
                'ordering': ['sent_at'],
                'constraints': [
                    models.UniqueConstraint(fields=('delivery', 'driver'), name='unique_delivery_driver_offer'),
                ],
            },
        ),
        migrations.CreateModel(
            name='DriverLocationHistory',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('event_type', models.CharField(choices=[('pickup', 'Pickup'), ('delivery', 'Delivery'), ('shift_start', 'Shift start'), ('shift_end', 'Shift end')], max_length=20)),
                ('latitude', models.DecimalField(decimal_places=7, max_digits=10)),
                ('longitude', models.DecimalField(decimal_places=7, max_digits=10)),
                ('accuracy', models.FloatField(blank=True, null=True)),
                ('speed_kmh', models.FloatField(blank=True, null=True)),
                ('heading', models.FloatField(blank=True, null=True)),
                ('timestamp', models.DateTimeField(default=django.utils.timezone.now)),
                ('delivery', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='location_events', to='deliveries.delivery')),
                ('driver', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='location_history', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'driver_location_history',
                'ordering': ['-timestamp'],
                'indexes': [
                    models.Index(fields=['driver', '-timestamp'], name='location_driver_time_idx'),
                    models.Index(fields=['delivery'], name='location_delivery_idx'),
                ],
            },
        ),
    ]
