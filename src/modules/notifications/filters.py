import django_filters

from modules.notifications.constants import NotificationType
from modules.notifications.models import Notification


class NotificationFilter(django_filters.FilterSet):
    type = django_filters.ChoiceFilter(choices=NotificationType.choices)
    is_read = django_filters.BooleanFilter(field_name="is_read")
    order = django_filters.UUIDFilter(field_name="order_id")
    since = django_filters.IsoDateTimeFilter(field_name="created_at", lookup_expr="gte")

    class Meta:
        model = Notification
        fields = ["type", "is_read", "order", "since"]
