from django.conf import settings
from django.db import models


class ActionLog(models.Model):
    """
    System-wide, append-only audit trail of significant equipment actions.
    Independent of the per-equipment tracking history.
    """
    TRANSFER_REQUESTED = 'TRANSFER_REQUESTED'
    TRANSFER_APPROVED = 'TRANSFER_APPROVED'
    TRANSFER_REJECTED = 'TRANSFER_REJECTED'
    TRANSFER_CANCELLED = 'TRANSFER_CANCELLED'
    MAINTENANCE_START = 'MAINTENANCE_START'
    MAINTENANCE_COMPLETE = 'MAINTENANCE_COMPLETE'
    STATUS_UPDATE = 'STATUS_UPDATE'
    CONDITION_UPDATE = 'CONDITION_UPDATE'
    LOCATION_UPDATE = 'LOCATION_UPDATE'
    DAILY_CHECK_IN = 'DAILY_CHECK_IN'
    EQUIPMENT_CREATED = 'EQUIPMENT_CREATED'

    ACTION_CHOICES = [
        (TRANSFER_REQUESTED, 'Transfer Requested'),
        (TRANSFER_APPROVED, 'Transfer Approved'),
        (TRANSFER_REJECTED, 'Transfer Rejected'),
        (TRANSFER_CANCELLED, 'Transfer Cancelled'),
        (MAINTENANCE_START, 'Maintenance Start'),
        (MAINTENANCE_COMPLETE, 'Maintenance Complete'),
        (STATUS_UPDATE, 'Status Update'),
        (CONDITION_UPDATE, 'Condition Update'),
        (LOCATION_UPDATE, 'Location Update'),
        (DAILY_CHECK_IN, 'Daily Check-in'),
        (EQUIPMENT_CREATED, 'Equipment Created'),
    ]

    action_type = models.CharField(max_length=30, choices=ACTION_CHOICES)

    # What was acted upon (snapshots survive equipment deletion)
    equipment = models.ForeignKey(
        'equipment.Equipment',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='action_logs'
    )
    equipment_serial = models.CharField(max_length=50)
    equipment_name = models.CharField(max_length=100)

    # Who
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        related_name='action_logs'
    )
    actor_name = models.CharField(max_length=150)
    target = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='targeted_action_logs'
    )
    target_name = models.CharField(max_length=150, null=True, blank=True)

    note = models.TextField(null=True, blank=True)
    timestamp = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        verbose_name = 'Action Log'
        verbose_name_plural = 'Action Logs'
        ordering = ['-timestamp', '-id']
        indexes = [
            models.Index(fields=['equipment', 'timestamp'], name='audit_al_equipment_ts_idx'),
            models.Index(fields=['actor', 'timestamp'], name='audit_al_actor_ts_idx'),
            models.Index(fields=['action_type', 'timestamp'], name='audit_al_action_ts_idx'),
        ]

    def __str__(self):
        return f"{self.actor_name} - {self.action_type} - {self.equipment_serial} - {self.timestamp}"
