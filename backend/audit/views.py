from rest_framework import viewsets
from accounts.permissions import CanViewAuditTrail
from .filters import ActionLogFilter
from .models import ActionLog
from .serializers import ActionLogSerializer


class ActionLogViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = ActionLog.objects.all()
    serializer_class = ActionLogSerializer
    permission_classes = [CanViewAuditTrail]
    filterset_class = ActionLogFilter
    search_fields = ['equipment_serial', 'equipment_name', 'actor_name', 'target_name', 'note']
    ordering = ['-timestamp', '-id']
