"""Order DRF serializers for API input/output.

The serializer operates at the Interface layer (API Views).
Business logic lives in the services, which receive validated plain
values from the views.
"""

from __future__ import annotations

from rest_framework import serializers

from modules.orders.constants import OrderStatus, PaymentStatus
from modules.orders.models import Order, Payment

# ---------------------------------------------------------------------------
# Input Serializers
# ---------------------------------------------------------------------------


class UpdateOrderSerializer(serializers.Serializer):
    """PATCH body: a status change, a pickup date, or both."""

    status = serializers.ChoiceField(choices=OrderStatus.choices, required=False)
    pickup_date = serializers.DateField(required=False)
    reason = serializers.CharField(required=False, default="", allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)

    def to_internal_value(self, data):
        if isinstance(data.get("status"), str):
            data = {**data, "status": data["status"].upper()}
        return super().to_internal_value(data)

    def validate(self, attrs):
        if "status" not in attrs and "pickup_date" not in attrs:
            raise serializers.ValidationError(
                "Provide 'status' and/or 'pickup_date'."
            )
        if attrs.get("status") == OrderStatus.CANCELLED:
            raise serializers.ValidationError(
                {"status": "Use the /cancel/ endpoint for cancellations."}
            )
        if attrs.get("status") == OrderStatus.COMPLETED:
            raise serializers.ValidationError(
                {"status": "Use the /picked-up/ endpoint to complete an order."}
            )
        return attrs


class PaymentStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=PaymentStatus.choices)
    reason = serializers.CharField(required=False, default="", allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)
    amount = serializers.DecimalField(
        max_digits=12, decimal_places=2, min_value=0, required=False
    )

    def to_internal_value(self, data):
        if isinstance(data.get("status"), str):
            data = {**data, "status": data["status"].upper()}
        return super().to_internal_value(data)


class CancelOrderSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, default="", allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)


class StartPreparationSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, allow_blank=True)
    estimated_time = serializers.CharField(required=False, allow_blank=True)


class CompletePreparationSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, allow_blank=True)


class ReadyForPickupSerializer(serializers.Serializer):
    pickup_location = serializers.CharField(required=False, allow_blank=True)
    pickup_hours = serializers.CharField(required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)


class DelayOrderSerializer(serializers.Serializer):
    reason = serializers.CharField()
    new_estimated_time = serializers.CharField(required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)


class PickupRemindersSerializer(serializers.Serializer):
    pickup_date = serializers.DateField()


# ---------------------------------------------------------------------------
# Output Serializers (Read)
# ---------------------------------------------------------------------------


class PaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = [
            "id",
            "status",
            "method",
            "amount",
            "proof_url",
            "notes",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class OrderSerializer(serializers.ModelSerializer):
    """Read serializer for orders with their payment."""

    payment = PaymentSerializer(read_only=True)

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "user_id",
            "order_status",
            "subtotal_amount",
            "service_fee",
            "total_amount",
            "pickup_date",
            "pickup_status",
            "notes",
            "created_at",
            "updated_at",
            "payment",
        ]
        read_only_fields = fields


class OrderListSerializer(serializers.ModelSerializer):
    """Lightweight serializer for order list."""

    payment_status = serializers.CharField(source="payment.status", read_only=True)

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "user_id",
            "order_status",
            "payment_status",
            "total_amount",
            "pickup_date",
            "pickup_status",
            "created_at",
        ]
        read_only_fields = fields
