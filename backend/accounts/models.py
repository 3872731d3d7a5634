from django.contrib.auth.models import AbstractUser
from django.db import models
from django.utils import timezone


class User(AbstractUser):
    """
    Custom User model with role-based access control.
    Every person who can hold equipment is a User.
    """

    ROLE_CHOICES = [
        ('ROOT_SUPERADMIN', 'Root Superadmin'),
        ('ADMIN', 'Admin'),
        ('EQUIPMENT_MANAGER', 'Equipment Manager'),
        ('COMMANDER', 'Commander'),
        ('SOLDIER', 'Soldier'),
        ('AUDITOR', 'Auditor'),
    ]

    # Roles allowed to see every pending transfer and to manage equipment records
    PRIVILEGED_ROLES = ['ROOT_SUPERADMIN', 'ADMIN', 'EQUIPMENT_MANAGER', 'COMMANDER']

    phone_number = models.CharField(max_length=20, null=True, blank=True)
    unit = models.CharField(max_length=100, null=True, blank=True, help_text="Assigned unit or platoon")
    status = models.CharField(
        max_length=20,
        choices=[('ACTIVE', 'Active'), ('INACTIVE', 'Inactive')],
        default='ACTIVE'
    )
    role = models.CharField(max_length=50, choices=ROLE_CHOICES, default='SOLDIER')

    # Notification preferences
    notification_preferences = models.JSONField(
        default=dict,
        blank=True,
        help_text='User notification preferences (in_app_notifications)'
    )

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'User'
        verbose_name_plural = 'Users'
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.display_name} ({self.get_role_display()})"

    @property
    def display_name(self):
        """Name shown on history entries, action logs and notifications."""
        return self.get_full_name() or self.username

    def is_privileged(self):
        """Check if user can see and manage all equipment transfers."""
        return self.is_superuser or self.role in self.PRIVILEGED_ROLES

    def wants_in_app_notifications(self):
        return self.notification_preferences.get('in_app_notifications', True)


class Notification(models.Model):
    """
    In-app notifications for users.
    """
    NOTIFICATION_TYPES = [
        ('EQUIPMENT_TRANSFER', 'Equipment Transfer'),
        ('EQUIPMENT_STATUS', 'Equipment Status'),
        ('SYSTEM', 'System'),
        ('OTHER', 'Other'),
    ]

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='notifications')
    type = models.CharField(max_length=50, choices=NOTIFICATION_TYPES, default='OTHER')
    event = models.CharField(max_length=50, blank=True, default='', help_text="Event that produced this notification")
    title = models.CharField(max_length=200)
    message = models.TextField()
    link = models.CharField(max_length=500, null=True, blank=True)
    is_read = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    read_at = models.DateTimeField(null=True, blank=True)

    # Related object (generic)
    content_type = models.ForeignKey(
        'contenttypes.ContentType',
        on_delete=models.SET_NULL,
        null=True,
        blank=True
    )
    object_id = models.PositiveIntegerField(null=True, blank=True)

    class Meta:
        verbose_name = 'Notification'
        verbose_name_plural = 'Notifications'
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['user', 'is_read', '-created_at'], name='accounts_notif_user_read_idx'),
        ]

    def __str__(self):
        return f"{self.user.username} - {self.title}"

    def mark_as_read(self):
        """Mark notification as read."""
        if not self.is_read:
            self.is_read = True
            self.read_at = timezone.now()
            self.save(update_fields=['is_read', 'read_at'])
