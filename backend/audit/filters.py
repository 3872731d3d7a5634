import django_filters
from .models import ActionLog


class ActionLogFilter(django_filters.FilterSet):
    start = django_filters.IsoDateTimeFilter(field_name='timestamp', lookup_expr='gte')
    end = django_filters.IsoDateTimeFilter(field_name='timestamp', lookup_expr='lte')

    class Meta:
        model = ActionLog
        fields = ['action_type', 'equipment', 'actor', 'target']
