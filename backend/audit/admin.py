from django.contrib import admin
from .models import ActionLog


@admin.register(ActionLog)
class ActionLogAdmin(admin.ModelAdmin):
    list_display = ['timestamp', 'action_type', 'equipment_serial', 'equipment_name', 'actor_name', 'target_name']
    list_filter = ['action_type', 'timestamp']
    search_fields = ['equipment_serial', 'equipment_name', 'actor_name', 'target_name', 'note']
    readonly_fields = [f.name for f in ActionLog._meta.fields]
    date_hierarchy = 'timestamp'

    # Append-only
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
