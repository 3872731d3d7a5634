import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('equipment', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='ActionLog',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('action_type', models.CharField(choices=[('TRANSFER_REQUESTED', 'Transfer Requested'), ('TRANSFER_APPROVED', 'Transfer Approved'), ('TRANSFER_REJECTED', 'Transfer Rejected'), ('TRANSFER_CANCELLED', 'Transfer Cancelled'), ('MAINTENANCE_START', 'Maintenance Start'), ('MAINTENANCE_COMPLETE', 'Maintenance Complete'), ('STATUS_UPDATE', 'Status Update'), ('CONDITION_UPDATE', 'Condition Update'), ('LOCATION_UPDATE', 'Location Update'), ('DAILY_CHECK_IN', 'Daily Check-in'), ('EQUIPMENT_CREATED', 'Equipment Created')], max_length=30)),
                ('equipment_serial', models.CharField(max_length=50)),
                ('equipment_name', models.CharField(max_length=100)),
                ('actor_name', models.CharField(max_length=150)),
                ('target_name', models.CharField(blank=True, max_length=150, null=True)),
                ('note', models.TextField(blank=True, null=True)),
                ('timestamp', models.DateTimeField(auto_now_add=True, db_index=True)),
                ('actor', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='action_logs', to=settings.AUTH_USER_MODEL)),
                ('equipment', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='action_logs', to='equipment.equipment')),
                ('target', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='targeted_action_logs', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Action Log',
                'verbose_name_plural': 'Action Logs',
                'ordering': ['-timestamp', '-id'],
                'indexes': [
                    models.Index(fields=['equipment', 'timestamp'], name='audit_al_equipment_ts_idx'),
                    models.Index(fields=['actor', 'timestamp'], name='audit_al_actor_ts_idx'),
                    models.Index(fields=['action_type', 'timestamp'], name='audit_al_action_ts_idx'),
                ],
            },
        ),
    ]
