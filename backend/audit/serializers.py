from rest_framework import serializers
from .models import ActionLog


class ActionLogSerializer(serializers.ModelSerializer):
    action_type_display = serializers.CharField(source='get_action_type_display', read_only=True)

    class Meta:
        model = ActionLog
        fields = '__all__'
        read_only_fields = ['timestamp']
