from django.contrib.auth import get_user_model
from rest_framework import serializers
from .models import Equipment, TransferRequest

User = get_user_model()


class EquipmentSerializer(serializers.ModelSerializer):
    status_display = serializers.CharField(source='get_status_display', read_only=True)
    condition_display = serializers.CharField(source='get_condition_display', read_only=True)
    is_pending_transfer = serializers.ReadOnlyField()

    class Meta:
        model = Equipment
        fields = '__all__'
        read_only_fields = [
            'status', 'condition', 'location', 'current_holder', 'current_holder_name',
            'tracking_history', 'last_seen', 'created_at', 'updated_at',
        ]


class EquipmentListSerializer(serializers.ModelSerializer):
    """Lightweight serializer for list views (no tracking history)."""
    status_display = serializers.CharField(source='get_status_display', read_only=True)

    class Meta:
        model = Equipment
        fields = [
            'id', 'serial_number', 'product_name', 'category', 'location', 'status',
            'status_display', 'condition', 'current_holder', 'current_holder_name',
            'last_seen', 'updated_at',
        ]


class EquipmentCreateSerializer(serializers.Serializer):
    serial_number = serializers.CharField(max_length=50)
    product_name = serializers.CharField(max_length=100)
    category = serializers.CharField(max_length=100)
    location = serializers.CharField(max_length=200, required=False, allow_blank=True, default='')
    condition = serializers.ChoiceField(
        choices=Equipment.EQUIPMENT_CONDITION_CHOICES, required=False, default=Equipment.CONDITION_GOOD
    )
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    holder = serializers.PrimaryKeyRelatedField(queryset=User.objects.all(), required=False, allow_null=True)


class StatusUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Equipment.EQUIPMENT_STATUS_CHOICES)
    note = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class ConditionUpdateSerializer(serializers.Serializer):
    condition = serializers.ChoiceField(choices=Equipment.EQUIPMENT_CONDITION_CHOICES)
    note = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class LocationUpdateSerializer(serializers.Serializer):
    location = serializers.CharField(max_length=200)
    note = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class NoteSerializer(serializers.Serializer):
    note = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class TransferRequestSerializer(serializers.ModelSerializer):
    status_display = serializers.CharField(source='get_status_display', read_only=True)

    class Meta:
        model = TransferRequest
        fields = '__all__'
        read_only_fields = [
            'equipment_serial', 'equipment_name', 'from_user', 'from_user_name',
            'to_user_name', 'status', 'status_history', 'created_at', 'updated_at',
        ]


class TransferRequestCreateSerializer(serializers.Serializer):
    equipment = serializers.PrimaryKeyRelatedField(queryset=Equipment.objects.all())
    to_user = serializers.PrimaryKeyRelatedField(queryset=User.objects.filter(is_active=True))
    reason = serializers.CharField()
    note = serializers.CharField(required=False, allow_blank=True, allow_null=True)

    def validate(self, attrs):
        request = self.context.get('request')
        if request and attrs['to_user'].pk == request.user.pk:
            raise serializers.ValidationError({'to_user': 'Cannot transfer equipment to yourself'})
        return attrs


class TransferDecisionSerializer(serializers.Serializer):
    """Optional free text attached to approve (note) or reject/cancel (reason)."""
    note = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    reason = serializers.CharField(required=False, allow_blank=True, allow_null=True)
