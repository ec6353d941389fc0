import django_filters

from modules.orders.models import Order


class OrderFilter(django_filters.FilterSet):
    status = django_filters.CharFilter(field_name="order_status", lookup_expr="iexact")
    payment_status = django_filters.CharFilter(
        field_name="payment__status", lookup_expr="iexact"
    )
    pickup_status = django_filters.CharFilter(
        field_name="pickup_status", lookup_expr="iexact"
    )
    pickup_date = django_filters.DateFilter(field_name="pickup_date")
    user = django_filters.NumberFilter(field_name="user_id")
    start_date = django_filters.DateFilter(field_name="created_at", lookup_expr="date__gte")
    end_date = django_filters.DateFilter(field_name="created_at", lookup_expr="date__lte")

    class Meta:
        model = Order
        fields = [
            "status",
            "payment_status",
            "pickup_status",
            "pickup_date",
            "user",
            "start_date",
            "end_date",
        ]
