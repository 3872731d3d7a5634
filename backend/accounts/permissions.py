from rest_framework import permissions


class CanViewAuditTrail(permissions.BasePermission):
    """Managers, commanders and auditors may read the system-wide action log."""

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        return request.user.is_privileged() or request.user.role == 'AUDITOR'
