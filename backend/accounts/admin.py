from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from .models import User, Notification


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ['username', 'email', 'get_full_name', 'role', 'unit', 'status']
    list_filter = ['role', 'status', 'is_active', 'is_staff']
    search_fields = ['username', 'email', 'first_name', 'last_name', 'phone_number']

    fieldsets = BaseUserAdmin.fieldsets + (
        ('Personnel Information', {
            'fields': ('phone_number', 'unit', 'status', 'notification_preferences')
        }),
        ('Role & Access', {
            'fields': ('role',)
        }),
    )

    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        ('Personnel Information', {
            'fields': ('phone_number', 'unit', 'status')
        }),
        ('Role & Access', {
            'fields': ('role',)
        }),
    )


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ['user', 'type', 'event', 'title', 'is_read', 'created_at']
    list_filter = ['type', 'event', 'is_read', 'created_at']
    search_fields = ['user__username', 'user__email', 'title', 'message']
    readonly_fields = ['created_at', 'read_at']
    date_hierarchy = 'created_at'
