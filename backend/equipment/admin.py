from django.contrib import admin
from .models import CustodyEvent, Equipment, TransferRequest


@admin.register(Equipment)
class EquipmentAdmin(admin.ModelAdmin):
    list_display = ['serial_number', 'product_name', 'category', 'status', 'condition', 'current_holder_name', 'last_seen']
    list_filter = ['status', 'condition', 'category']
    search_fields = ['serial_number', 'product_name', 'current_holder_name']
    # Custody fields are written by equipment.services only
    readonly_fields = ['status', 'current_holder', 'current_holder_name', 'tracking_history', 'last_seen', 'created_at', 'updated_at']


@admin.register(TransferRequest)
class TransferRequestAdmin(admin.ModelAdmin):
    list_display = ['equipment_serial', 'from_user_name', 'to_user_name', 'status', 'created_at']
    list_filter = ['status', 'created_at']
    search_fields = ['equipment_serial', 'equipment_name', 'from_user_name', 'to_user_name']
    readonly_fields = [field.name for field in TransferRequest._meta.fields]

    def has_add_permission(self, request):
        return False


@admin.register(CustodyEvent)
class CustodyEventAdmin(admin.ModelAdmin):
    list_display = ['id', 'event_type', 'status', 'attempts', 'action_logged', 'notified', 'created_at', 'dispatched_at']
    list_filter = ['status', 'event_type']
    readonly_fields = ['event_type', 'equipment', 'transfer_request', 'payload', 'attempts', 'action_logged', 'notified', 'last_error', 'created_at', 'dispatched_at']
