from rest_framework import permissions

# Actions on equipment reserved to privileged roles
MANAGER_ACTIONS = {'create', 'update_status', 'start_maintenance', 'complete_maintenance'}


class EquipmentViewSetPermission(permissions.BasePermission):
    """Combined permission for EquipmentViewSet."""

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False

        # AUDITOR: Read-only access
        if request.user.role == 'AUDITOR':
            return request.method in permissions.SAFE_METHODS

        if view.action in MANAGER_ACTIONS:
            return request.user.is_privileged()

        return True


class TransferRequestPermission(permissions.BasePermission):
    """
    Any authenticated non-auditor may open and act on transfer requests;
    requester-only cancel and remind are enforced by equipment.services.
    """

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        if request.user.role == 'AUDITOR':
            return request.method in permissions.SAFE_METHODS
        if view.action == 'pending':
            return request.user.is_privileged()
        return True

    def has_object_permission(self, request, view, obj):
        user = request.user
        if user.is_privileged() or user.role == 'AUDITOR':
            return True
        if view.action in ('approve', 'reject'):
            return obj.to_user_id == user.pk
        return user.pk in (obj.from_user_id, obj.to_user_id)
