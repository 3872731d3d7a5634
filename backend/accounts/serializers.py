from rest_framework import serializers
from django.contrib.auth import get_user_model
from .models import Notification

User = get_user_model()


class UserSerializer(serializers.ModelSerializer):
    """Serializer for User model."""
    role_display = serializers.CharField(source='get_role_display', read_only=True)
    display_name = serializers.CharField(read_only=True)

    class Meta:
        model = User
        fields = [
            'id', 'username', 'email', 'first_name', 'last_name', 'display_name',
            'phone_number', 'unit', 'status', 'role', 'role_display',
            'is_active', 'date_joined', 'last_login',
        ]
        read_only_fields = fields


class NotificationSerializer(serializers.ModelSerializer):
    """Serializer for Notification model."""
    type_display = serializers.CharField(source='get_type_display', read_only=True)

    class Meta:
        model = Notification
        fields = [
            'id', 'type', 'type_display', 'event', 'title', 'message', 'link',
            'is_read', 'created_at', 'read_at', 'object_id',
        ]
        read_only_fields = [
            'id', 'type', 'event', 'title', 'message', 'link',
            'created_at', 'read_at', 'object_id',
        ]
