import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Equipment',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('serial_number', models.CharField(db_index=True, max_length=50, unique=True)),
                ('product_name', models.CharField(max_length=100)),
                ('category', models.CharField(help_text='Equipment type/category', max_length=100)),
                ('location', models.CharField(blank=True, default='', max_length=200)),
                ('status', models.CharField(choices=[('AVAILABLE', 'Available'), ('SECURITY', 'Security'), ('REPAIR', 'Repair'), ('LOST', 'Lost'), ('PENDING_TRANSFER', 'Pending Transfer')], default='AVAILABLE', max_length=20)),
                ('condition', models.CharField(choices=[('GOOD', 'Good'), ('NEEDS_REPAIR', 'Needs Repair'), ('WORN', 'Worn')], default='GOOD', max_length=20)),
                ('current_holder_name', models.CharField(blank=True, default='', max_length=150)),
                ('tracking_history', models.JSONField(blank=True, default=list, help_text='Most recent 20 custody events, oldest first')),
                ('notes', models.TextField(blank=True, null=True)),
                ('last_seen', models.DateTimeField(blank=True, help_text='Last confirmed daily check-in', null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('current_holder', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='held_equipment', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Equipment',
                'verbose_name_plural': 'Equipment',
                'ordering': ['serial_number'],
            },
        ),
        migrations.CreateModel(
            name='TransferRequest',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('equipment_serial', models.CharField(max_length=50)),
                ('equipment_name', models.CharField(max_length=100)),
                ('from_user_name', models.CharField(max_length=150)),
                ('to_user_name', models.CharField(max_length=150)),
                ('reason', models.TextField()),
                ('note', models.TextField(blank=True, null=True)),
                ('status', models.CharField(choices=[('PENDING', 'Pending'), ('APPROVED', 'Approved'), ('REJECTED', 'Rejected'), ('CANCELLED', 'Cancelled')], default='PENDING', max_length=20)),
                ('status_history', models.JSONField(blank=True, default=list)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('equipment', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='transfer_requests', to='equipment.equipment')),
                ('from_user', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='transfer_requests_sent', to=settings.AUTH_USER_MODEL)),
                ('to_user', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='transfer_requests_received', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Transfer Request',
                'verbose_name_plural': 'Transfer Requests',
                'ordering': ['-created_at', '-id'],
                'indexes': [
                    models.Index(fields=['to_user', 'status'], name='equipment_tr_to_status_idx'),
                    models.Index(fields=['status', 'created_at'], name='equipment_tr_status_date_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('status', 'PENDING')), fields=('equipment',), name='unique_pending_transfer_per_equipment'),
                ],
            },
        ),
        migrations.CreateModel(
            name='CustodyEvent',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('event_type', models.CharField(max_length=50)),
                ('payload', models.JSONField(blank=True, default=dict)),
                ('status', models.CharField(choices=[('PENDING', 'Pending'), ('DISPATCHED', 'Dispatched'), ('FAILED', 'Failed')], default='PENDING', max_length=20)),
                ('attempts', models.PositiveIntegerField(default=0)),
                ('action_logged', models.BooleanField(default=False)),
                ('notified', models.BooleanField(default=False)),
                ('last_error', models.TextField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('dispatched_at', models.DateTimeField(blank=True, null=True)),
                ('equipment', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='custody_events', to='equipment.equipment')),
                ('transfer_request', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='custody_events', to='equipment.transferrequest')),
            ],
            options={
                'verbose_name': 'Custody Event',
                'verbose_name_plural': 'Custody Events',
                'ordering': ['created_at', 'id'],
                'indexes': [
                    models.Index(fields=['status', 'created_at'], name='equipment_ce_status_date_idx'),
                ],
            },
        ),
    ]
