from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone

from .exceptions import InvalidTransferState
from .history import MAX_TRACKING_HISTORY_ENTRIES, get_most_recent_history_entry


class Equipment(models.Model):
    """
    One physical, serialized item and its current custody state.
    """
    STATUS_AVAILABLE = 'AVAILABLE'
    STATUS_SECURITY = 'SECURITY'
    STATUS_REPAIR = 'REPAIR'
    STATUS_LOST = 'LOST'
    STATUS_PENDING_TRANSFER = 'PENDING_TRANSFER'

    EQUIPMENT_STATUS_CHOICES = [
        (STATUS_AVAILABLE, 'Available'),
        (STATUS_SECURITY, 'Security'),
        (STATUS_REPAIR, 'Repair'),
        (STATUS_LOST, 'Lost'),
        (STATUS_PENDING_TRANSFER, 'Pending Transfer'),
    ]

    CONDITION_GOOD = 'GOOD'
    CONDITION_NEEDS_REPAIR = 'NEEDS_REPAIR'
    CONDITION_WORN = 'WORN'

    EQUIPMENT_CONDITION_CHOICES = [
        (CONDITION_GOOD, 'Good'),
        (CONDITION_NEEDS_REPAIR, 'Needs Repair'),
        (CONDITION_WORN, 'Worn'),
    ]

    serial_number = models.CharField(max_length=50, unique=True, db_index=True)
    product_name = models.CharField(max_length=100)
    category = models.CharField(max_length=100, help_text="Equipment type/category")
    location = models.CharField(max_length=200, blank=True, default='')
    status = models.CharField(
        max_length=20,
        choices=EQUIPMENT_STATUS_CHOICES,
        default=STATUS_AVAILABLE
    )
    condition = models.CharField(
        max_length=20,
        choices=EQUIPMENT_CONDITION_CHOICES,
        default=CONDITION_GOOD
    )
    current_holder = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='held_equipment'
    )
    current_holder_name = models.CharField(max_length=150, blank=True, default='')
    tracking_history = models.JSONField(
        default=list,
        blank=True,
        help_text=f"Most recent {MAX_TRACKING_HISTORY_ENTRIES} custody events, oldest first"
    )
    notes = models.TextField(null=True, blank=True)
    last_seen = models.DateTimeField(null=True, blank=True, help_text="Last confirmed daily check-in")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Equipment'
        verbose_name_plural = 'Equipment'
        ordering = ['serial_number']

    def __str__(self):
        return f"{self.serial_number} - {self.product_name}"

    @property
    def is_pending_transfer(self):
        return self.status == self.STATUS_PENDING_TRANSFER

    @property
    def last_history_entry(self):
        return get_most_recent_history_entry(self.tracking_history)


class TransferRequest(models.Model):
    """
    One attempt to move custody of an equipment item from one holder to another.
    Kept forever as an audit record.
    """
    STATUS_PENDING = 'PENDING'
    STATUS_APPROVED = 'APPROVED'
    STATUS_REJECTED = 'REJECTED'
    STATUS_CANCELLED = 'CANCELLED'

    TRANSFER_STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_APPROVED, 'Approved'),
        (STATUS_REJECTED, 'Rejected'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    TERMINAL_STATUSES = (STATUS_APPROVED, STATUS_REJECTED, STATUS_CANCELLED)

    equipment = models.ForeignKey(Equipment, on_delete=models.PROTECT, related_name='transfer_requests')
    # Snapshots of the equipment at request time
    equipment_serial = models.CharField(max_length=50)
    equipment_name = models.CharField(max_length=100)

    from_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        related_name='transfer_requests_sent'
    )
    from_user_name = models.CharField(max_length=150)
    to_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        related_name='transfer_requests_received'
    )
    to_user_name = models.CharField(max_length=150)

    reason = models.TextField()
    note = models.TextField(null=True, blank=True)

    status = models.CharField(
        max_length=20,
        choices=TRANSFER_STATUS_CHOICES,
        default=STATUS_PENDING
    )
    status_history = models.JSONField(default=list, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Transfer Request'
        verbose_name_plural = 'Transfer Requests'
        ordering = ['-created_at', '-id']
        constraints = [
            models.UniqueConstraint(
                fields=['equipment'],
                condition=Q(status='PENDING'),
                name='unique_pending_transfer_per_equipment',
            ),
        ]
        indexes = [
            models.Index(fields=['to_user', 'status'], name='equipment_tr_to_status_idx'),
            models.Index(fields=['status', 'created_at'], name='equipment_tr_status_date_idx'),
        ]

    def __str__(self):
        return f"{self.equipment_serial}: {self.from_user_name} -> {self.to_user_name} ({self.status})"

    @property
    def is_pending(self):
        return self.status == self.STATUS_PENDING

    def transition_to(self, status, user, note=None):
        """
        Move out of PENDING into a terminal status and append the matching
        status history entry. Does not save.
        """
        if not self.is_pending:
            raise InvalidTransferState()
        if status not in self.TERMINAL_STATUSES:
            raise ValueError(f"{status} is not a terminal transfer status")

        self.status = status
        self.status_history = list(self.status_history or []) + [
            build_status_entry(status, user, note)
        ]


def build_status_entry(status, user, note=None):
    entry = {
        'status': status,
        'timestamp': timezone.now().isoformat(),
        'updated_by': user.pk,
        'updated_by_name': user.display_name,
    }
    if note:
        entry['note'] = note
    return entry


class CustodyEvent(models.Model):
    """
    Outbox row for side effects of a committed custody change.

    Written in the same transaction as the Equipment/TransferRequest change;
    the action log entry and notifications it describes are applied after
    commit by equipment.dispatch.
    """
    STATUS_PENDING = 'PENDING'
    STATUS_DISPATCHED = 'DISPATCHED'
    STATUS_FAILED = 'FAILED'

    EVENT_STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_DISPATCHED, 'Dispatched'),
        (STATUS_FAILED, 'Failed'),
    ]

    event_type = models.CharField(max_length=50)
    equipment = models.ForeignKey(
        Equipment,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='custody_events'
    )
    transfer_request = models.ForeignKey(
        TransferRequest,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='custody_events'
    )
    payload = models.JSONField(default=dict, blank=True)

    status = models.CharField(max_length=20, choices=EVENT_STATUS_CHOICES, default=STATUS_PENDING)
    attempts = models.PositiveIntegerField(default=0)
    action_logged = models.BooleanField(default=False)
    notified = models.BooleanField(default=False)
    last_error = models.TextField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    dispatched_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        verbose_name = 'Custody Event'
        verbose_name_plural = 'Custody Events'
        ordering = ['created_at', 'id']
        indexes = [
            models.Index(fields=['status', 'created_at'], name='equipment_ce_status_date_idx'),
        ]

    def __str__(self):
        return f"{self.event_type} #{self.pk} ({self.status})"
