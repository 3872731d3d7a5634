from django.db.models import Q
from django.utils.dateparse import parse_datetime
from rest_framework import viewsets, status
from rest_framework.decorators import action
from rest_framework.response import Response

from audit.serializers import ActionLogSerializer
from audit.utils import get_equipment_action_logs
from . import services
from .exceptions import (
    EquipmentError,
    EquipmentNotFound,
    InvalidEquipmentOperation,
    InvalidTransferState,
    TransferPermissionDenied,
    TransferRequestNotFound,
)
from .history import get_history_entries_by_action, get_history_entries_by_date_range
from .models import Equipment, TransferRequest
from .pagination import StandardResultsSetPagination
from .permissions import EquipmentViewSetPermission, TransferRequestPermission
from .serializers import (
    ConditionUpdateSerializer,
    EquipmentCreateSerializer,
    EquipmentListSerializer,
    EquipmentSerializer,
    LocationUpdateSerializer,
    NoteSerializer,
    StatusUpdateSerializer,
    TransferDecisionSerializer,
    TransferRequestCreateSerializer,
    TransferRequestSerializer,
)


def equipment_error_response(exc):
    """Translate a domain error into an API response."""
    if isinstance(exc, (EquipmentNotFound, TransferRequestNotFound)):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, TransferPermissionDenied):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, (InvalidTransferState, InvalidEquipmentOperation)):
        code = status.HTTP_400_BAD_REQUEST
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return Response({'error': exc.message}, status=code)


class EquipmentViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Equipment records. Every write goes through equipment.services so the
    tracking history and action log stay consistent.
    """
    queryset = Equipment.objects.select_related('current_holder')
    permission_classes = [EquipmentViewSetPermission]
    pagination_class = StandardResultsSetPagination
    lookup_value_regex = r'\d+'
    filterset_fields = ['status', 'condition', 'category', 'current_holder']
    search_fields = ['serial_number', 'product_name', 'category', 'location', 'current_holder_name']
    ordering_fields = ['serial_number', 'product_name', 'updated_at', 'last_seen']
    ordering = ['serial_number']

    def get_serializer_class(self):
        if self.action == 'list':
            return EquipmentListSerializer
        return EquipmentSerializer

    def create(self, request):
        serializer = EquipmentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            equipment = services.register_equipment(
                data['serial_number'],
                data['product_name'],
                data['category'],
                request.user,
                holder=data.get('holder'),
                location=data.get('location', ''),
                condition=data.get('condition', Equipment.CONDITION_GOOD),
                notes=data.get('notes') or None,
            )
        except EquipmentError as e:
            return equipment_error_response(e)
        return Response(EquipmentSerializer(equipment).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['get'])
    def history(self, request, pk=None):
        """
        Tracking history, oldest first.
        Optional filters: ?action=<action>, ?start=<iso>&end=<iso>.
        """
        equipment = self.get_object()
        entries = equipment.tracking_history or []

        action_filter = request.query_params.get('action')
        if action_filter:
            entries = get_history_entries_by_action(entries, action_filter)

        start = request.query_params.get('start')
        end = request.query_params.get('end')
        if start or end:
            start_dt = parse_datetime(start) if start else None
            end_dt = parse_datetime(end) if end else None
            if (start and start_dt is None) or (end and end_dt is None):
                return Response(
                    {'error': 'start and end must be ISO 8601 datetimes'},
                    status=status.HTTP_400_BAD_REQUEST
                )
            if start_dt is None or end_dt is None:
                return Response(
                    {'error': 'Both start and end are required for a date range'},
                    status=status.HTTP_400_BAD_REQUEST
                )
            entries = get_history_entries_by_date_range(entries, start_dt, end_dt)

        return Response(entries)

    @action(detail=True, methods=['get'], url_path='transfer-requests')
    def transfer_requests(self, request, pk=None):
        equipment = self.get_object()
        queryset = services.get_equipment_transfer_requests(equipment.pk)
        return Response(TransferRequestSerializer(queryset, many=True).data)

    @action(detail=True, methods=['get'], url_path='pending-transfer')
    def pending_transfer(self, request, pk=None):
        equipment = self.get_object()
        transfer_request = services.get_pending_transfer_request_for_equipment(equipment.pk)
        if transfer_request is None:
            return Response({'pending': False, 'transfer_request': None})
        return Response({'pending': True, 'transfer_request': TransferRequestSerializer(transfer_request).data})

    @action(detail=True, methods=['get'], url_path='action-logs')
    def action_logs(self, request, pk=None):
        equipment = self.get_object()
        limit = request.query_params.get('limit')
        logs = get_equipment_action_logs(equipment.pk, int(limit) if limit and limit.isdigit() else None)
        return Response(ActionLogSerializer(logs, many=True).data)

    def _run(self, operation, pk, *args, **kwargs):
        try:
            equipment = operation(pk, *args, **kwargs)
        except EquipmentError as e:
            return equipment_error_response(e)
        return Response(EquipmentSerializer(equipment).data)

    @action(detail=True, methods=['post'], url_path='update-status')
    def update_status(self, request, pk=None):
        serializer = StatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self._run(
            services.update_equipment_status, pk,
            serializer.validated_data['status'], request.user, serializer.validated_data.get('note'),
        )

    @action(detail=True, methods=['post'], url_path='update-condition')
    def update_condition(self, request, pk=None):
        serializer = ConditionUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self._run(
            services.update_equipment_condition, pk,
            serializer.validated_data['condition'], request.user, serializer.validated_data.get('note'),
        )

    @action(detail=True, methods=['post'], url_path='update-location')
    def update_location(self, request, pk=None):
        serializer = LocationUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self._run(
            services.update_equipment_location, pk,
            serializer.validated_data['location'], request.user, serializer.validated_data.get('note'),
        )

    @action(detail=True, methods=['post'], url_path='start-maintenance')
    def start_maintenance(self, request, pk=None):
        serializer = NoteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self._run(services.start_maintenance, pk, request.user, serializer.validated_data.get('note'))

    @action(detail=True, methods=['post'], url_path='complete-maintenance')
    def complete_maintenance(self, request, pk=None):
        serializer = NoteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self._run(services.complete_maintenance, pk, request.user, serializer.validated_data.get('note'))

    @action(detail=True, methods=['post'], url_path='check-in')
    def check_in(self, request, pk=None):
        serializer = NoteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self._run(services.record_daily_check_in, pk, request.user, serializer.validated_data.get('note'))


class TransferRequestViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = TransferRequestSerializer
    permission_classes = [TransferRequestPermission]
    pagination_class = StandardResultsSetPagination
    lookup_value_regex = r'\d+'
    filterset_fields = ['status', 'equipment', 'from_user', 'to_user']
    search_fields = ['equipment_serial', 'equipment_name', 'from_user_name', 'to_user_name', 'reason']
    ordering = ['-created_at', '-id']

    def get_queryset(self):
        user = self.request.user
        queryset = TransferRequest.objects.select_related('equipment', 'from_user', 'to_user')
        if user.is_privileged() or user.role == 'AUDITOR':
            return queryset
        # Everyone else sees the requests they sent or received
        return queryset.filter(Q(from_user=user) | Q(to_user=user))

    def create(self, request):
        serializer = TransferRequestCreateSerializer(data=request.data, context={'request': request})
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            transfer_request_id = services.create_transfer_request(
                data['equipment'].pk,
                data['to_user'],
                data['reason'],
                request.user,
                data.get('note') or None,
            )
        except EquipmentError as e:
            return equipment_error_response(e)
        transfer_request = TransferRequest.objects.get(pk=transfer_request_id)
        return Response(TransferRequestSerializer(transfer_request).data, status=status.HTTP_201_CREATED)

    def _decide(self, request, operation, field):
        transfer_request = self.get_object()
        serializer = TransferDecisionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            operation(transfer_request.pk, request.user, serializer.validated_data.get(field) or None)
        except EquipmentError as e:
            return equipment_error_response(e)
        transfer_request.refresh_from_db()
        return Response(TransferRequestSerializer(transfer_request).data)

    @action(detail=True, methods=['post'])
    def approve(self, request, pk=None):
        """Approve a pending transfer; custody moves to the recipient."""
        return self._decide(request, services.approve_transfer_request, 'note')

    @action(detail=True, methods=['post'])
    def reject(self, request, pk=None):
        """Reject a pending transfer; custody stays with the requester."""
        return self._decide(request, services.reject_transfer_request, 'reason')

    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        """Withdraw a pending transfer (original requester only)."""
        return self._decide(request, services.cancel_transfer_request, 'reason')

    @action(detail=True, methods=['post'])
    def remind(self, request, pk=None):
        transfer_request = self.get_object()
        try:
            services.send_transfer_reminder(transfer_request.pk, request.user)
        except EquipmentError as e:
            return equipment_error_response(e)
        return Response({'message': 'Reminder sent'})

    @action(detail=False, methods=['get'])
    def incoming(self, request):
        """Pending requests waiting on the current user."""
        queryset = services.get_pending_transfer_requests_for_user(request.user)
        page = self.paginate_queryset(queryset)
        if page is not None:
            return self.get_paginated_response(TransferRequestSerializer(page, many=True).data)
        return Response(TransferRequestSerializer(queryset, many=True).data)

    @action(detail=False, methods=['get'])
    def pending(self, request):
        """Every pending request (managers only)."""
        queryset = services.get_all_pending_transfer_requests()
        page = self.paginate_queryset(queryset)
        if page is not None:
            return self.get_paginated_response(TransferRequestSerializer(page, many=True).data)
        return Response(TransferRequestSerializer(queryset, many=True).data)
